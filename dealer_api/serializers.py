"""JSON shaping for API responses (camelCase keys, ISO-8601 UTC timestamps)."""

from datetime import datetime, timezone

from .models import Customer, Order, Quote, Vehicle
from .utils import line_total


def iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc).isoformat()


def item_json(it) -> dict:
    return {"vehicleSku": it.vehicle_sku, "price": it.price, "qty": it.qty}


def vehicle_json(v: Vehicle) -> dict:
    return {
        "id": v.id,
        "sku": v.sku,
        "model": v.model,
        "version": v.version,
        "color": v.color,
        "specs": v.specs or {},
        "msrp": v.msrp,
        "stockTotal": v.stock_total,
        "stockByDealer": v.stock_by_dealer or [],
        "createdAt": iso(v.created_at),
    }


def customer_json(c: Customer) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "phone": c.phone,
        "email": c.email,
        "address": c.address,
        "notes": c.notes,
        "createdAt": iso(c.created_at),
    }


def quote_json(q: Quote, customer: Customer | None = None, expand: bool = False) -> dict:
    out = {
        "id": q.id,
        "dealerId": q.dealer_id,
        "createdBy": q.created_by,
        "customerId": q.customer_id,
        "items": [item_json(it) for it in q.items],
        "discounts": q.discounts,
        "total": q.total,
        "status": q.status,
        "createdAt": iso(q.created_at),
    }
    if expand:
        out["customer"] = customer_json(customer) if customer else None
    return out


def payment_json(o: Order) -> dict:
    return {"method": o.payment_method, "status": o.payment_status, "plan": o.payment_plan}


def order_json(
    o: Order,
    customer: Customer | None = None,
    quote: Quote | None = None,
    expand: bool = False,
) -> dict:
    out = {
        "id": o.id,
        "dealerId": o.dealer_id,
        "createdBy": o.created_by,
        "customerId": o.customer_id,
        "quoteId": o.quote_id,
        "items": [item_json(it) for it in o.items],
        "total": line_total(o.items),
        "payment": payment_json(o),
        "delivery": {
            "status": o.delivery_status,
            "eta": iso(o.delivery_eta),
            "tracking": o.delivery_tracking,
        },
        "status": o.status,
        "createdAt": iso(o.created_at),
    }
    if expand:
        out["customer"] = customer_json(customer) if customer else None
        out["quote"] = quote_json(quote) if quote else None
    return out

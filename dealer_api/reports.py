"""Order reports.

    rows = await sales_by_staff(db, dealer_id="d1", start=..., end=...)
    rows = await aging_receivables(db)

Both are read-only and return plain dicts ready for JSONResponse.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, OrderItem
from .serializers import iso, payment_json
from .utils import line_total

AGING_LIMIT = 200


@dataclass
class StaffSales:
    """One sales-by-staff group. `count` is item rows, not orders."""
    created_by: str = ""
    sales: float = 0.0
    count: int = 0

    def as_dict(self) -> dict:
        return {"_id": self.created_by, "sales": self.sales, "count": self.count}


async def sales_by_staff(
    db: AsyncSession,
    dealer_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict]:
    sales = func.sum(OrderItem.price * OrderItem.qty).label("sales")
    item_count = func.count(OrderItem.id).label("item_count")
    stmt = (
        select(Order.created_by, sales, item_count)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .group_by(Order.created_by)
        .order_by(sales.desc(), Order.created_by.asc())
    )
    if dealer_id:
        stmt = stmt.where(Order.dealer_id == dealer_id)
    if start is not None:
        stmt = stmt.where(Order.created_at >= start)
    if end is not None:
        stmt = stmt.where(Order.created_at <= end)

    rows = (await db.execute(stmt)).all()
    return [
        StaffSales(created_by=r.created_by, sales=float(r.sales or 0.0), count=int(r.item_count)).as_dict()
        for r in rows
    ]


async def aging_receivables(db: AsyncSession, limit: int = AGING_LIMIT) -> list[dict]:
    """Orders not marked Paid (a missing payment status counts as unpaid)."""
    stmt = (
        select(Order)
        .where(or_(Order.payment_status.is_(None), Order.payment_status != "Paid"))
        .order_by(Order.created_at.asc(), Order.id.asc())
        .limit(limit)
    )
    orders = (await db.execute(stmt)).scalars().all()
    return [
        {
            "id": o.id,
            "dealerId": o.dealer_id,
            "total": line_total(o.items),
            "payment": payment_json(o),
            "createdAt": iso(o.created_at),
        }
        for o in orders
    ]

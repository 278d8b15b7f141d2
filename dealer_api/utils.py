import uuid
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now — for TIMESTAMP columns (not TIMESTAMPTZ)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def new_id() -> str:
    return uuid.uuid4().hex

def parse_datetime(s: str | None) -> datetime | None:
    """Parse an ISO date or datetime into naive UTC. Raises ValueError on junk."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        raise ValueError(f"Invalid date: {s}")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt

def line_total(items) -> float:
    """Sum of price × qty over item rows or item dicts."""
    total = 0.0
    for it in items:
        if isinstance(it, dict):
            total += it["price"] * it["qty"]
        else:
            total += it.price * it.qty
    return total

def like_pattern(q: str) -> str:
    """Substring LIKE pattern with %, _ and the escape char escaped (escape='\\')."""
    q = q.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{q}%"

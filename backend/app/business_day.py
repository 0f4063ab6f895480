"""
Business-day arithmetic.

All clock reads happen here, at the boundary; the matcher and the reconciler only see
civil dates (`datetime.date`) computed once per call.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from .config import settings
from .domain import Order


_CUTOFF_RE = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?\s*(?:hs|h)?\s*$", re.IGNORECASE)


def business_tz(name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(name or settings.business_timezone)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def business_now(now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return _as_utc(now).astimezone(tz or business_tz())


def business_today(now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> date:
    return business_now(now, tz).date()


def order_business_date(order: Order, tz: Optional[ZoneInfo] = None) -> Optional[date]:
    """
    Delivery date (its UTC calendar date) when present, otherwise the creation instant
    in the business timezone.
    """
    if order.delivery_date is not None:
        return _as_utc(order.delivery_date).date()
    if order.created_at is not None:
        return _as_utc(order.created_at).astimezone(tz or business_tz()).date()
    return None


def filter_orders_for_day(orders: Iterable[Order], location: str, day: date, tz: Optional[ZoneInfo] = None) -> list[Order]:
    tz = tz or business_tz()
    out = []
    for o in orders:
        if not o.location or o.location != location:
            continue
        if not o.items:
            continue
        if order_business_date(o, tz) != day:
            continue
        out.append(o)
    return out


def next_business_day(d: date) -> date:
    """Following day; Sunday has no deliveries so it rolls over to Monday."""
    nxt = d + timedelta(days=1)
    if nxt.weekday() == 6:
        nxt += timedelta(days=1)
    return nxt


def parse_cutoff(raw) -> Optional[tuple[int, int]]:
    """
    "14", "14:30", "14hs", 14 -> (hour, minute). None when unset or unparseable.
    """
    if raw is None:
        return None
    if isinstance(raw, int):
        return (raw, 0) if 0 <= raw <= 23 else None
    m = _CUTOFF_RE.match(str(raw))
    if not m:
        return None
    hour = int(m.group(1))
    minute = int(m.group(2) or 0)
    if hour > 23 or minute > 59:
        return None
    return (hour, minute)


def cutoff_passed(local_now: datetime, cutoff: tuple[int, int]) -> bool:
    return (local_now.hour, local_now.minute) >= cutoff

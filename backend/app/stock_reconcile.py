"""
Daily stock reconciliation for one (location, date).

Every run re-derives the counters from raw orders: the prior day's closing stock is
recomputed as opening + replenishment - matched sales and the stored closing value is never
read. Running it again with the same orders rewrites identical rows; running it after an
order edit corrects every dependent counter.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from .business_day import business_tz, filter_orders_for_day
from .catalog import load_catalog_snapshot, products_for_stock
from .domain import CatalogEntry, Order, StockCounter
from .line_matching import matched_quantity, unmatched_items
from .logs import json_log
from .text_norm import normalize, normalize_weight


def stock_row_section(section: Optional[str], product: Optional[str]) -> str:
    """Section for a stock row; rows written before sections were stored get one from the name."""
    if section:
        return section
    p = normalize(product)
    if "GATO" in p:
        return "GATO"
    if "PERRO" in p or "BIG DOG" in p:
        return "PERRO"
    if "OTROS" in p:
        return "OTROS"
    return "PERRO"


def _entry_of(row: StockCounter) -> CatalogEntry:
    return CatalogEntry(
        section=stock_row_section(row.entry.section, row.entry.product),
        product=row.entry.product,
        weight=row.entry.weight,
    )


def load_orders_for_days(store, location: str, days: list[date]) -> dict[date, list[Order]]:
    """One fetch covering every requested day, split with the business-day rule."""
    if not days:
        return {}
    rows = store.list_orders(location, min(days), max(days))
    orders = [Order.from_row(r) for r in rows]
    tz = business_tz()
    return {d: filter_orders_for_day(orders, location, d, tz) for d in days}


def reconcile_stock_for_date(store, location: str, day: date) -> dict:
    """
    Recompute the stock sheet of `location` for `day` from the latest prior sheet.

    Returns {"updated_count", "carried_from_date"}; `carried_from_date` is None (and nothing
    is written) when the location has no earlier sheet.
    """
    # Single writer per location for the rest of the transaction.
    if not store.lock_location_day(location, day):
        json_log("info", "stock.reconcile.unknown_location", location=location, date=day)
        return {"updated_count": 0, "carried_from_date": None, "unmatched_items": 0}

    existing = [StockCounter.from_row(r) for r in store.read_stock_counters(location, day)]
    prior_day = store.latest_stock_date_before(location, day)
    if prior_day is None:
        json_log("info", "stock.reconcile.no_prior", location=location, date=day, existing=len(existing))
        return {"updated_count": 0, "carried_from_date": None, "unmatched_items": 0}

    prior_rows = [StockCounter.from_row(r) for r in store.read_stock_counters(location, prior_day)]
    orders = load_orders_for_days(store, location, [prior_day, day])
    prior_orders = orders[prior_day]
    day_orders = orders[day]

    by_key = {(c.entry.product, c.entry.weight): c for c in existing}
    updated = 0
    for prev in prior_rows:
        entry = _entry_of(prev)
        prior_sales = matched_quantity(entry, prior_orders)
        opening = prev.opening_stock + prev.replenishment - prior_sales
        ordered = matched_quantity(entry, day_orders)
        current = by_key.get((entry.product, entry.weight))
        replenishment = current.replenishment if current is not None else 0

        row = StockCounter(
            location=location,
            entry=entry,
            date=day,
            id=current.id if current is not None else None,
        ).recomputed(opening, replenishment, ordered)
        store.upsert_stock_counter(row)
        updated += 1

    unmatched = unmatched_items([_entry_of(p) for p in prior_rows], day_orders)
    json_log(
        "info",
        "stock.reconcile.done",
        location=location,
        date=day,
        carried_from=prior_day,
        updated=updated,
        orders_prior=len(prior_orders),
        orders_today=len(day_orders),
        unmatched_items=len(unmatched),
    )
    return {"updated_count": updated, "carried_from_date": prior_day, "unmatched_items": len(unmatched)}


def update_replenishment(store, location: str, day: date, *, product: str, weight: Optional[str], value: int) -> dict:
    """Set the manually entered replenishment of one row, then recompute the day."""
    if value < 0:
        raise ValueError("replenishment must be >= 0")
    store.lock_location_day(location, day)
    found = store.set_replenishment(location, day, normalize(product), normalize_weight(weight), int(value))
    if not found:
        return {"found": False, "updated_count": 0, "carried_from_date": None}
    out = reconcile_stock_for_date(store, location, day)
    return {"found": True, **out}


def add_stock_row(
    store,
    location: str,
    day: date,
    *,
    section: Optional[str],
    product: str,
    weight: Optional[str],
    opening_stock: int,
    replenishment: int = 0,
) -> dict:
    """
    Add one row to a location's sheet (how a location gets its first sheet).

    The product must be on the stock product list as of `day`; `orders_today` is derived from
    the day's orders like any reconciled row. Returns {"created", "row"}; `created` is False
    when the row already exists.
    """
    if opening_stock < 0 or replenishment < 0:
        raise ValueError("stock values must be >= 0")
    entry = CatalogEntry.of(section, product, weight)
    allowed = products_for_stock(load_catalog_snapshot(store), as_of=day)
    if entry not in allowed:
        raise ValueError(f"not a stock product: {entry.section} / {entry.product}" + (f" / {entry.weight}" if entry.weight else ""))

    store.register_location(location)
    store.lock_location_day(location, day)
    ordered = matched_quantity(entry, load_orders_for_days(store, location, [day])[day])
    row = StockCounter(location=location, entry=entry, date=day).recomputed(int(opening_stock), int(replenishment), ordered)
    created = store.insert_stock_counter_if_absent(row)
    json_log(
        "info",
        "stock.row.added" if created else "stock.row.exists",
        location=location,
        date=day,
        product=entry.product,
        weight=entry.weight,
    )
    return {"created": created, "row": row}

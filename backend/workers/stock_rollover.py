#!/usr/bin/env python3
"""
Stock rollover sweep.

Once a same-day-delivery location is past its order cut-off, seed the next business day's
stock sheet from today's recomputed closing stock (opening + replenishment - matched
sales, clamped at 0). Rows that already exist for the next day are left alone; the daily
reconciliation owns them.
"""

import argparse
from contextlib import nullcontext
from datetime import datetime, timezone

import psycopg
from psycopg.rows import dict_row

from backend.app.business_day import (
    business_now,
    business_tz,
    cutoff_passed,
    filter_orders_for_day,
    next_business_day,
    parse_cutoff,
)
from backend.app.config import settings
from backend.app.domain import CatalogEntry, Order, StockCounter
from backend.app.line_matching import matched_quantity
from backend.app.logs import json_log
from backend.app.stock_reconcile import stock_row_section
from backend.app.store import PgStore


def _savepoint(store):
    sp = getattr(store, "savepoint", None)
    return sp() if callable(sp) else nullcontext()


def rollover_location(store, location: str, today, next_day) -> int:
    today_rows = [StockCounter.from_row(r) for r in store.read_stock_counters(location, today)]
    if not today_rows:
        json_log("info", "worker.rollover.no_stock", location=location, date=today)
        return 0

    tz = business_tz()
    orders = [Order.from_row(r) for r in store.list_orders(location, today, today)]
    orders = filter_orders_for_day(orders, location, today, tz)
    already = {(c.entry.product, c.entry.weight) for c in (StockCounter.from_row(r) for r in store.read_stock_counters(location, next_day))}

    created = 0
    for row in today_rows:
        if (row.entry.product, row.entry.weight) in already:
            continue
        entry = row.entry
        if not entry.section:
            entry = CatalogEntry(section=stock_row_section(None, entry.product), product=entry.product, weight=entry.weight)
        sold = matched_quantity(entry, orders)
        opening = max(0, row.opening_stock + row.replenishment - sold)
        seeded = StockCounter(
            location=location,
            entry=entry,
            date=next_day,
            opening_stock=opening,
            replenishment=0,
            orders_today=0,
            closing_stock=opening,
        )
        if store.insert_stock_counter_if_absent(seeded):
            created += 1
    return created


def run_rollover_sweep(store, now: datetime) -> dict:
    """
    Returns {"locations_processed", "rows_created", "errors"}. A failing location is logged
    and reported under "errors"; the sweep carries on with the rest.
    """
    local_now = business_now(now)
    today = local_now.date()
    next_day = next_business_day(today)

    processed = 0
    rows_created = 0
    skipped = []
    errors: dict[str, str] = {}
    for loc in store.list_rollover_locations():
        location = loc["location"]
        cutoff = parse_cutoff(loc.get("order_cutoff"))
        if cutoff is None:
            cutoff = (settings.stock_default_cutoff_hour, 0)
        if not cutoff_passed(local_now, cutoff):
            skipped.append(location)
            continue
        try:
            with _savepoint(store):
                store.lock_location_day(location, next_day)
                n = rollover_location(store, location, today, next_day)
        except Exception as ex:
            json_log("error", "worker.rollover.error", location=location, date=today, error=str(ex))
            errors[location] = str(ex)
            continue
        processed += 1
        rows_created += n
        json_log("info", "worker.rollover.location_done", location=location, date=today, next_date=next_day, rows_created=n)

    return {
        "today": today,
        "next_date": next_day,
        "locations_processed": processed,
        "rows_created": rows_created,
        "skipped_before_cutoff": skipped,
        "errors": errors,
    }


def run_rollover(db_url: str, now: datetime = None) -> dict:
    now = now or datetime.now(timezone.utc)
    with psycopg.connect(db_url, row_factory=dict_row) as conn:
        conn.execute(f"SET statement_timeout = {int(settings.db_statement_timeout_ms)}")
        with conn.transaction():
            return run_rollover_sweep(PgStore(conn), now)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=settings.db_url)
    args = parser.parse_args()
    out = run_rollover(args.db)
    json_log("info", "worker.rollover.done", **out)


if __name__ == "__main__":
    main()

"""
PostgreSQL-backed collaborators for the catalog/stock core.

A `PgStore` wraps one pooled connection, so everything done through it during a
`run_with_store` call is a single transaction: reconciliation reads orders once, takes the
location lock and upserts its rows before commit.
"""

from datetime import date, timedelta
from typing import Callable, Optional, TypeVar

from .db import get_conn, with_store_retry
from .domain import PriceRecord, StockCounter

T = TypeVar("T")


class PgStore:
    def __init__(self, conn):
        self.conn = conn

    def savepoint(self):
        # Nested transaction: one failing location does not poison the sweep's transaction.
        return self.conn.transaction()

    # -- orders ------------------------------------------------------------------

    def list_orders(self, location: Optional[str] = None, date_from: Optional[date] = None, date_to: Optional[date] = None):
        """
        Orders whose delivery date (or creation time, when undelivered) falls in the range.

        The range is widened by a day on each side; callers narrow it with the business-day
        rule (`filter_orders_for_day`) so timezone edges never drop an order.
        """
        lo = (date_from - timedelta(days=1)) if date_from else None
        hi = (date_to + timedelta(days=2)) if date_to else None
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, location, delivery_date, created_at, items
                FROM orders
                WHERE (%s::text IS NULL OR location = %s)
                  AND (
                    %s::date IS NULL
                    OR COALESCE(delivery_date, created_at) >= %s::date
                  )
                  AND (
                    %s::date IS NULL
                    OR COALESCE(delivery_date, created_at) < %s::date
                  )
                ORDER BY COALESCE(delivery_date, created_at) ASC, id ASC
                """,
                (location, location, lo, lo, hi, hi),
            )
            return cur.fetchall() or []

    # -- prices ------------------------------------------------------------------

    def list_price_records(self, section: Optional[str] = None, product: Optional[str] = None):
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, section, product, weight, price_tier, price, effective_date, is_active, created_at
                FROM prices
                WHERE (%s::text IS NULL OR upper(section) = upper(%s))
                  AND (%s::text IS NULL OR upper(product) = upper(%s))
                ORDER BY section, product, weight NULLS FIRST, price_tier, effective_date ASC, created_at ASC
                """,
                (section, section, product, product),
            )
            return cur.fetchall() or []

    def list_catalog_products(self):
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT DISTINCT upper(section) AS section, upper(product) AS product, upper(weight) AS weight
                FROM prices
                WHERE is_active = true
                ORDER BY 1, 2, 3 NULLS FIRST
                """
            )
            return cur.fetchall() or []

    def insert_price_record(self, rec: PriceRecord):
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO prices (section, product, weight, price_tier, price, effective_date, is_active)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING id, section, product, weight, price_tier, price, effective_date, is_active, created_at
                """,
                (
                    rec.entry.section,
                    rec.entry.product,
                    rec.entry.weight,
                    rec.tier,
                    rec.price,
                    rec.effective_date,
                    rec.active,
                ),
            )
            return cur.fetchone()

    # -- stock -------------------------------------------------------------------

    def read_stock_counters(self, location: str, day: date):
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, location, section, product, weight, stock_date,
                       opening_stock, replenishment, orders_today, closing_stock
                FROM stock_counters
                WHERE location = %s AND stock_date = %s
                ORDER BY section NULLS LAST, product, weight NULLS FIRST
                """,
                (location, day),
            )
            return cur.fetchall() or []

    def latest_stock_date_before(self, location: str, day: date) -> Optional[date]:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT max(stock_date) AS stock_date
                FROM stock_counters
                WHERE location = %s AND stock_date < %s
                """,
                (location, day),
            )
            row = cur.fetchone()
            return row["stock_date"] if row else None

    def upsert_stock_counter(self, counter: StockCounter):
        r = counter.to_row()
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO stock_counters
                  (location, section, product, weight, stock_date,
                   opening_stock, replenishment, orders_today, closing_stock)
                VALUES
                  (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (location, product, (COALESCE(weight, '')), stock_date) DO UPDATE
                SET section = EXCLUDED.section,
                    opening_stock = EXCLUDED.opening_stock,
                    replenishment = EXCLUDED.replenishment,
                    orders_today = EXCLUDED.orders_today,
                    closing_stock = EXCLUDED.closing_stock,
                    updated_at = now()
                RETURNING id
                """,
                (
                    r["location"],
                    r["section"],
                    r["product"],
                    r["weight"],
                    r["stock_date"],
                    r["opening_stock"],
                    r["replenishment"],
                    r["orders_today"],
                    r["closing_stock"],
                ),
            )
            return cur.fetchone()["id"]

    def insert_stock_counter_if_absent(self, counter: StockCounter) -> bool:
        """Insert unless a row for the same (location, product, weight, date) exists."""
        r = counter.to_row()
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO stock_counters
                  (location, section, product, weight, stock_date,
                   opening_stock, replenishment, orders_today, closing_stock)
                VALUES
                  (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (location, product, (COALESCE(weight, '')), stock_date) DO NOTHING
                RETURNING id
                """,
                (
                    r["location"],
                    r["section"],
                    r["product"],
                    r["weight"],
                    r["stock_date"],
                    r["opening_stock"],
                    r["replenishment"],
                    r["orders_today"],
                    r["closing_stock"],
                ),
            )
            return cur.fetchone() is not None

    def set_replenishment(self, location: str, day: date, product: str, weight: Optional[str], value: int) -> bool:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                UPDATE stock_counters
                SET replenishment = %s,
                    closing_stock = opening_stock + %s - orders_today,
                    updated_at = now()
                WHERE location = %s AND stock_date = %s
                  AND product = %s AND COALESCE(weight, '') = COALESCE(%s, '')
                RETURNING id
                """,
                (value, value, location, day, product, weight),
            )
            return cur.fetchone() is not None

    def register_location(self, location: str) -> None:
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO stock_locations (location) VALUES (%s)
                ON CONFLICT (location) DO NOTHING
                """,
                (location,),
            )

    def lock_location_day(self, location: str, day: date) -> bool:
        """
        Serialize writers for one location until the transaction ends.

        The lock is per location (not per day): reconciling day D reads day D-1's rows, so
        two days of one location are not independent either. A location is only registered
        here when it already has stock rows; returns False for unknown locations.
        """
        with self.conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO stock_locations (location)
                SELECT %s
                WHERE EXISTS (SELECT 1 FROM stock_counters WHERE location = %s)
                ON CONFLICT (location) DO NOTHING
                """,
                (location, location),
            )
            cur.execute(
                "SELECT location FROM stock_locations WHERE location = %s FOR UPDATE",
                (location,),
            )
            return cur.fetchone() is not None

    def list_rollover_locations(self):
        with self.conn.cursor() as cur:
            cur.execute(
                """
                SELECT location, order_cutoff
                FROM stock_locations
                WHERE enabled = true
                  AND same_day_delivery = true
                  AND order_cutoff IS NOT NULL
                  AND btrim(order_cutoff) <> ''
                ORDER BY location
                """
            )
            return cur.fetchall() or []


def run_with_store(fn: Callable[[PgStore], T], *, operation: str) -> T:
    """One transaction per attempt; transient failures retry the whole unit of work."""

    def _once() -> T:
        with get_conn() as conn:
            return fn(PgStore(conn))

    return with_store_retry(_once, operation=operation)

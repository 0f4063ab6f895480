import os
import sys
from contextlib import contextmanager

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


class FakeStore:
    """
    In-memory stand-in for `PgStore`: same method names, rows as plain dicts like
    psycopg's dict_row.
    """

    def __init__(self, *, orders=None, prices=None, counters=None, locations=None):
        self.orders = list(orders or [])
        self.prices = list(prices or [])
        self.counters = {}
        self.locations = list(locations or [])
        self.locks = []
        self.registered = {l["location"] for l in self.locations}
        self.upserts = 0
        self.list_orders_calls = 0
        for c in counters or []:
            self.put_counter(c)

    @staticmethod
    def _key(r):
        return (r["location"], r["product"], r.get("weight") or "", r["stock_date"])

    def put_counter(self, row: dict):
        full = {
            "id": row.get("id") or f"sc-{len(self.counters) + 1}",
            "section": None,
            "weight": None,
            "opening_stock": 0,
            "replenishment": 0,
            "orders_today": 0,
            "closing_stock": 0,
            **row,
        }
        self.counters[self._key(full)] = full

    def counter(self, location, product, weight, day):
        return self.counters.get((location, product, weight or "", day))

    @contextmanager
    def savepoint(self):
        yield

    # -- PgStore interface --

    def list_orders(self, location=None, date_from=None, date_to=None):
        self.list_orders_calls += 1
        return [o for o in self.orders if location is None or o.get("location") == location]

    def list_price_records(self, section=None, product=None):
        out = []
        for r in self.prices:
            if section and (r.get("section") or "").upper() != section.upper():
                continue
            if product and (r.get("product") or "").upper() != product.upper():
                continue
            out.append(r)
        return out

    def list_catalog_products(self):
        seen = {}
        for r in self.prices:
            if not r.get("is_active", True):
                continue
            key = ((r.get("section") or "").upper(), (r.get("product") or "").upper(), (r.get("weight") or "").upper() or None)
            seen.setdefault(key, {"section": key[0], "product": key[1], "weight": key[2]})
        return [seen[k] for k in sorted(seen, key=lambda k: (k[0], k[1], k[2] or ""))]

    def insert_price_record(self, rec):
        row = {
            "id": f"p-{len(self.prices) + 1}",
            "section": rec.entry.section,
            "product": rec.entry.product,
            "weight": rec.entry.weight,
            "price_tier": rec.tier,
            "price": rec.price,
            "effective_date": rec.effective_date,
            "is_active": rec.active,
            "created_at": None,
        }
        self.prices.append(row)
        return row

    def read_stock_counters(self, location, day):
        rows = [dict(r) for r in self.counters.values() if r["location"] == location and r["stock_date"] == day]
        rows.sort(key=lambda r: (r["product"], r.get("weight") or ""))
        return rows

    def latest_stock_date_before(self, location, day):
        dates = [r["stock_date"] for r in self.counters.values() if r["location"] == location and r["stock_date"] < day]
        return max(dates) if dates else None

    def upsert_stock_counter(self, counter):
        self.upserts += 1
        row = counter.to_row()
        existing = self.counters.get(self._key(row))
        if existing:
            existing.update(row)
            return existing["id"]
        self.put_counter(row)
        return self.counters[self._key(row)]["id"]

    def insert_stock_counter_if_absent(self, counter):
        row = counter.to_row()
        if self._key(row) in self.counters:
            return False
        self.put_counter(row)
        return True

    def set_replenishment(self, location, day, product, weight, value):
        r = self.counter(location, product, weight, day)
        if r is None:
            return False
        r["replenishment"] = value
        r["closing_stock"] = r["opening_stock"] + value - r["orders_today"]
        return True

    def register_location(self, location):
        self.registered.add(location)

    def lock_location_day(self, location, day):
        self.locks.append((location, day))
        if any(r["location"] == location for r in self.counters.values()):
            self.registered.add(location)
        return location in self.registered

    def list_rollover_locations(self):
        return list(self.locations)


@pytest.fixture
def make_store():
    return FakeStore

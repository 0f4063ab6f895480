from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from datetime import date, datetime, timezone
from typing import Optional

from ..business_day import business_today
from ..catalog import load_catalog_snapshot, products_for_stock
from ..descriptors import format_descriptor
from ..domain import StockCounter
from ..store import run_with_store
from ..stock_reconcile import add_stock_row, reconcile_stock_for_date, update_replenishment
from ..validation import Section, WeightToken
from ...workers.stock_rollover import run_rollover_sweep

router = APIRouter(prefix="/stock", tags=["stock"])


def _counter_out(c: StockCounter) -> dict:
    return {
        "id": c.id,
        "location": c.location,
        "section": c.entry.section or None,
        "product": c.entry.product,
        "weight": c.entry.weight,
        "date": c.date,
        "opening_stock": c.opening_stock,
        "replenishment": c.replenishment,
        "orders_today": c.orders_today,
        "closing_stock": c.closing_stock,
    }


def _location(raw: str) -> str:
    loc = (raw or "").strip()
    if not loc:
        raise HTTPException(status_code=400, detail="location is required")
    return loc


@router.get("/products")
def stock_products(as_of: Optional[date] = None):
    """Products that can get a row on a stock sheet (section, product, weight)."""
    as_of = as_of or business_today()
    entries = run_with_store(
        lambda store: products_for_stock(load_catalog_snapshot(store), as_of=as_of), operation="stock.products"
    )
    return {
        "as_of": as_of,
        "products": [
            {
                "section": e.section,
                "product": e.product,
                "weight": e.weight,
                "descriptor": format_descriptor(e.section, e.product, e.weight),
            }
            for e in entries
        ],
    }


@router.get("/{location}/{stock_date}")
def list_stock(location: str, stock_date: date):
    loc = _location(location)
    rows = run_with_store(lambda store: store.read_stock_counters(loc, stock_date), operation="stock.read")
    return {"location": loc, "date": stock_date, "rows": [_counter_out(StockCounter.from_row(r)) for r in rows]}


@router.post("/{location}/{stock_date}/reconcile")
def reconcile(location: str, stock_date: date):
    loc = _location(location)
    out = run_with_store(lambda store: reconcile_stock_for_date(store, loc, stock_date), operation="stock.reconcile")
    return {"location": loc, "date": stock_date, **out}


class ReplenishmentIn(BaseModel):
    product: str = Field(min_length=1, max_length=200)
    weight: WeightToken = None
    replenishment: int = Field(ge=0)


@router.patch("/{location}/{stock_date}/replenishment")
def set_replenishment(location: str, stock_date: date, data: ReplenishmentIn):
    loc = _location(location)
    out = run_with_store(
        lambda store: update_replenishment(
            store, loc, stock_date, product=data.product, weight=data.weight, value=data.replenishment
        ),
        operation="stock.replenishment",
    )
    if not out["found"]:
        raise HTTPException(status_code=404, detail="stock row not found")
    return {"location": loc, "date": stock_date, **out}


class StockRowIn(BaseModel):
    section: Section
    product: str = Field(min_length=1, max_length=200)
    weight: WeightToken = None
    opening_stock: int = Field(ge=0)
    replenishment: int = Field(default=0, ge=0)


@router.post("/{location}/{stock_date}/rows")
def add_row(location: str, stock_date: date, data: StockRowIn):
    loc = _location(location)
    try:
        out = run_with_store(
            lambda store: add_stock_row(
                store,
                loc,
                stock_date,
                section=data.section,
                product=data.product,
                weight=data.weight,
                opening_stock=data.opening_stock,
                replenishment=data.replenishment,
            ),
            operation="stock.add_row",
        )
    except ValueError as ex:
        raise HTTPException(status_code=400, detail=str(ex))
    if not out["created"]:
        raise HTTPException(status_code=409, detail="stock row already exists")
    return {"location": loc, "date": stock_date, "row": _counter_out(out["row"])}


class RolloverIn(BaseModel):
    # Lets ops replay a sweep "as of" a past instant; defaults to now.
    now: Optional[datetime] = None


@router.post("/rollover")
def rollover(data: Optional[RolloverIn] = None):
    now = (data.now if data else None) or datetime.now(timezone.utc)
    return run_with_store(lambda store: run_rollover_sweep(store, now), operation="stock.rollover")

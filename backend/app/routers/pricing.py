from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from ..business_day import business_today
from ..catalog import CatalogSnapshot, load_catalog_snapshot, new_price_version
from ..descriptors import format_descriptor, parse_descriptor
from ..domain import CatalogEntry, OrderLineItem, OrderOption, PriceRecord
from ..logs import json_log
from ..order_totals import calculate_order_total
from ..price_resolver import PRICE_NOT_FOUND, PriceFailure, resolve_price
from ..store import run_with_store
from ..validation import PRICE_TIERS, SECTIONS, BuyerType, PaymentMethod, PriceTier, Section, WeightToken, normalize_tier

router = APIRouter(prefix="/pricing", tags=["pricing"])


def _record_out(r: PriceRecord) -> dict:
    return {
        "id": r.id,
        "section": r.entry.section,
        "product": r.entry.product,
        "weight": r.entry.weight,
        "descriptor": format_descriptor(r.entry.section, r.entry.product, r.entry.weight),
        "tier": r.tier,
        "price": r.price,
        "effective_date": r.effective_date,
        "is_active": r.active,
        "created_at": r.created_at,
    }


def _failure_response(f: PriceFailure) -> JSONResponse:
    status = 404 if f.code == PRICE_NOT_FOUND else 403
    return JSONResponse(
        status_code=status,
        content={
            "detail": f.message,
            "code": f.code,
            "tried_queries": f.tried_queries,
        },
    )


class ResolveIn(BaseModel):
    # Either a checkout descriptor ("PERRO - POLLO - 10KG") or section + product (+ weight).
    descriptor: Optional[str] = None
    section: Optional[Section] = None
    product: Optional[str] = None
    weight: WeightToken = None
    buyer_type: BuyerType = "RETAIL"
    payment_method: Optional[PaymentMethod] = None
    as_of: Optional[date] = None


@router.post("/resolve")
def resolve(data: ResolveIn):
    if data.descriptor:
        entry = parse_descriptor(data.descriptor)
    else:
        if not data.section or not (data.product or "").strip():
            raise HTTPException(status_code=400, detail="descriptor or section+product is required")
        entry = CatalogEntry.of(data.section, data.product, data.weight)
    as_of = data.as_of or business_today()

    snapshot = run_with_store(load_catalog_snapshot, operation="pricing.load_catalog")
    res = resolve_price(
        snapshot,
        section=entry.section,
        product=entry.product,
        weight=entry.weight,
        buyer_type=data.buyer_type,
        payment_method=data.payment_method,
        as_of=as_of,
    )
    if isinstance(res, PriceFailure):
        return _failure_response(res)
    return {
        "price": res.price,
        "tier": res.tier,
        "used_fallback": res.used_fallback,
        "as_of": as_of,
        "record": _record_out(res.record),
    }


class OrderOptionIn(BaseModel):
    name: str = ""
    quantity: Optional[int] = Field(default=None, ge=0)


class OrderItemIn(BaseModel):
    name: str
    full_name: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    options: List[OrderOptionIn] = []


class OrderTotalIn(BaseModel):
    items: List[OrderItemIn]
    buyer_type: BuyerType = "RETAIL"
    payment_method: Optional[PaymentMethod] = None
    as_of: Optional[date] = None


@router.post("/order-total")
def order_total(data: OrderTotalIn):
    items = [
        OrderLineItem(
            name=i.name,
            full_name=i.full_name,
            quantity=i.quantity or None,
            options=tuple(OrderOption(name=o.name, quantity=o.quantity or None) for o in i.options),
        )
        for i in data.items
    ]
    as_of = data.as_of or business_today()
    snapshot = run_with_store(load_catalog_snapshot, operation="pricing.load_catalog")
    out = calculate_order_total(
        snapshot,
        items,
        buyer_type=data.buyer_type,
        payment_method=data.payment_method,
        as_of=as_of,
    )
    # Totals with unresolved items are provisional.
    return {**out, "as_of": as_of, "provisional": out["unresolved_count"] > 0}


@router.get("/catalog")
def catalog(as_of: Optional[date] = None):
    """Catalog identities with the price that applies per tier on `as_of` (default: today)."""
    as_of = as_of or business_today()
    snapshot = run_with_store(load_catalog_snapshot, operation="pricing.load_catalog")
    latest = snapshot.latest_prices(as_of)
    entries = []
    for e in snapshot.products():
        per_tier = latest.get(e, {})
        entries.append(
            {
                "section": e.section,
                "product": e.product,
                "weight": e.weight,
                "descriptor": format_descriptor(e.section, e.product, e.weight),
                "prices": {
                    tier: {"price": r.price, "effective_date": r.effective_date, "id": r.id}
                    for tier, r in sorted(per_tier.items())
                },
            }
        )
    return {"as_of": as_of, "entries": entries}


@router.get("/products")
def catalog_products():
    """Distinct active catalog identities, without prices."""
    rows = run_with_store(lambda store: store.list_catalog_products(), operation="pricing.products")
    return {
        "products": [
            {**r, "descriptor": format_descriptor(r["section"], r["product"], r.get("weight"))}
            for r in rows
        ]
    }


@router.get("/history")
def history(section: str, product: str, tier: str, weight: Optional[str] = None):
    entry = CatalogEntry.of(section, product, weight)
    tier = normalize_tier(tier)
    if entry.section not in SECTIONS:
        raise HTTPException(status_code=400, detail=f"invalid section: {section}")
    if tier not in PRICE_TIERS:
        raise HTTPException(status_code=400, detail=f"invalid tier: {tier}")
    if not entry.product:
        raise HTTPException(status_code=400, detail="product is required")
    snapshot = run_with_store(
        lambda store: CatalogSnapshot.of(
            PriceRecord.from_row(r) for r in store.list_price_records(section=entry.section, product=entry.product)
        ),
        operation="pricing.history",
    )
    return {
        "section": entry.section,
        "product": entry.product,
        "weight": entry.weight,
        "tier": tier,
        "history": [_record_out(r) for r in snapshot.history(entry, tier)],
    }


class PriceIn(BaseModel):
    section: Section
    product: str = Field(min_length=1, max_length=200)
    weight: WeightToken = None
    tier: PriceTier
    price: Decimal = Field(ge=0)
    effective_date: Optional[date] = None


@router.post("/prices")
def create_price(data: PriceIn):
    """A price change inserts a new version; existing rows are never edited."""
    try:
        rec = new_price_version(
            section=data.section,
            product=data.product,
            weight=data.weight,
            tier=data.tier,
            price=data.price,
            effective_date=data.effective_date or business_today(),
        )
    except ValueError as ex:
        raise HTTPException(status_code=400, detail=str(ex))

    row = run_with_store(lambda store: store.insert_price_record(rec), operation="pricing.insert_price")
    out = _record_out(PriceRecord.from_row(row))
    json_log("info", "pricing.price_version.created", **{k: out[k] for k in ("id", "descriptor", "tier", "price", "effective_date")})
    return out

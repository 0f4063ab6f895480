"""
Catalog price resolution.

`resolve_price` never raises for catalog gaps or policy rejections: it returns either a
`PriceResult` (price + the record that produced it) or a `PriceFailure` listing the query
variants that were tried, so batch callers (order totals) can keep going.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from .catalog import CatalogSnapshot
from .domain import PriceRecord
from .logs import json_log
from .text_norm import normalize, normalize_weight
from .validation import normalize_buyer_type, normalize_section


PRICE_NOT_FOUND = "PRICE_NOT_FOUND"
RESTRICTED_PRODUCT = "RESTRICTED_PRODUCT"

_GRAMS_RE = re.compile(r"(\d+)\s*GRS", re.IGNORECASE)
_CORNALITOS_WHOLESALE_WEIGHTS = ("200GRS", "30GRS")


@dataclass(frozen=True)
class PriceResult:
    price: Decimal
    record: PriceRecord
    tier: str
    # Set when the exact-weight query found nothing and the weightless retry did.
    used_fallback: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class PriceFailure:
    code: str
    message: str
    tried_queries: list[dict] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False


Resolution = Union[PriceResult, PriceFailure]


def select_tier(buyer_type: Optional[str], payment_method: Optional[str]) -> str:
    if normalize_buyer_type(buyer_type) == "WHOLESALE":
        return "WHOLESALE"
    if (payment_method or "").strip().lower() == "cash":
        return "CASH_RETAIL"
    return "TRANSFER_RETAIL"


def is_wholesale_only(product: str, weight: Optional[str] = None) -> bool:
    p = normalize(product)
    if "GARRAS" in p or "CALDO" in p:
        return True
    if "HUESOS RECREATIVO" in p or "HUESO RECREATIVO" in p:
        return True
    if "CORNALITOS" in p:
        w = normalize_weight(weight)
        if not w:
            m = _GRAMS_RE.search(p)
            w = f"{m.group(1)}GRS" if m else None
        return w in _CORNALITOS_WHOLESALE_WEIGHTS
    return False


def _pick(records: list[PriceRecord]) -> Optional[PriceRecord]:
    if not records:
        return None

    def key(r: PriceRecord):
        created = r.created_at or datetime.min
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return (r.effective_date, created)

    return max(records, key=key)


def resolve_price(
    snapshot: CatalogSnapshot,
    *,
    section: str,
    product: str,
    weight: Optional[str],
    buyer_type: Optional[str],
    payment_method: Optional[str],
    as_of: date,
) -> Resolution:
    section = normalize_section(section)
    product = normalize(product)
    weight = normalize_weight(weight)
    is_wholesale = normalize_buyer_type(buyer_type) == "WHOLESALE"

    if section == "RAW" and not is_wholesale:
        json_log("info", "pricing.resolve.restricted", section=section, product=product)
        return PriceFailure(
            code=RESTRICTED_PRODUCT,
            message=f"{section} products are only sold to wholesale buyers",
        )

    tier = "WHOLESALE" if is_wholesale_only(product, weight) else select_tier(buyer_type, payment_method)

    # Weight is baked into the product name for CORNALITOS.
    query_weight = None if "CORNALITOS" in product else weight

    tried: list[dict] = []
    exact = {"section": section, "product": product, "tier": tier, "weight": query_weight, "as_of": as_of.isoformat()}
    tried.append({**exact, "match_weight": True})
    rec = _pick(snapshot.find(section=section, product=product, tier=tier, as_of=as_of, weight=query_weight))
    if rec is not None:
        return PriceResult(price=rec.price, record=rec, tier=tier)

    # Entries created before weight granularity was tracked: one retry, weight ignored.
    tried.append({**exact, "weight": None, "match_weight": False})
    rec = _pick(snapshot.find(section=section, product=product, tier=tier, as_of=as_of, match_weight=False))
    if rec is not None:
        json_log(
            "info",
            "pricing.resolve.weight_fallback",
            section=section,
            product=product,
            requested_weight=query_weight,
            matched_weight=rec.entry.weight,
        )
        return PriceResult(price=rec.price, record=rec, tier=tier, used_fallback=True)

    json_log("warning", "pricing.resolve.not_found", section=section, product=product, weight=weight, tier=tier, as_of=as_of)
    return PriceFailure(
        code=PRICE_NOT_FOUND,
        message=f"no {tier} price for {section} / {product}" + (f" / {weight}" if weight else "") + f" as of {as_of.isoformat()}",
        tried_queries=tried,
    )

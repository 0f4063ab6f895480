"""
Order totals from the price catalog.

Items carrying a checkout descriptor ("PERRO - POLLO - 10KG") are priced from it; older
items only have a display name, so their section is deduced from name tokens with a
versioned table. Items that cannot be priced are logged and left out of the total; the
caller gets `unresolved_count` and must treat the total as provisional when it is > 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Optional

from .catalog import CatalogSnapshot
from .descriptors import parse_descriptor
from .domain import OrderLineItem
from .errors import MalformedDescriptor
from .logs import json_log
from .price_resolver import RESTRICTED_PRODUCT, PriceFailure, PriceResult, resolve_price
from .text_norm import item_weight_kg, normalize, normalize_weight, strip_species_box_prefix


MALFORMED_DESCRIPTOR = "MALFORMED_DESCRIPTOR"


@dataclass(frozen=True)
class SectionRule:
    section: str
    confidence: float
    applies: Callable[[str], bool]


def _any(*tokens: str) -> Callable[[str], bool]:
    return lambda name: any(t in name for t in tokens)


def _small_chicken_treat(name: str) -> bool:
    return "POLLO" in name and ("40GRS" in name or "100GRS" in name)


# Bump the version whenever a rule changes; it is reported with every deduced item.
SECTION_DEDUCTION_VERSION = "2"
SECTION_DEDUCTION_RULES: tuple[SectionRule, ...] = (
    SectionRule("GATO", 0.9, _any("GATO")),
    SectionRule("OTROS", 0.9, _any("BOX DE COMPLEMENTOS", "HUESOS CARNOSOS", "HUESO CARNOSO")),
    SectionRule(
        "RAW",
        0.7,
        _any("CORNALITOS", "GARRAS", "CALDO", "HUESOS RECREATIVO", "HUESO RECREATIVO", "HIGADO", "TRAQUEA", "OREJAS", "TREAT"),
    ),
    SectionRule("RAW", 0.6, _small_chicken_treat),
    SectionRule("PERRO", 0.9, _any("BOX PERRO", "BIG DOG", "PERRO")),
)
DEFAULT_SECTION = "PERRO"
DEFAULT_SECTION_CONFIDENCE = 0.4
LOW_CONFIDENCE_BELOW = 0.6


def deduce_section(name: str) -> tuple[str, float]:
    n = normalize(name)
    for rule in SECTION_DEDUCTION_RULES:
        if rule.applies(n):
            return rule.section, rule.confidence
    return DEFAULT_SECTION, DEFAULT_SECTION_CONFIDENCE


def _resolve_item(snapshot, item: OrderLineItem, buyer_type, payment_method, as_of) -> dict:
    attempt: dict = {"name": item.name}
    failure: Optional[PriceFailure] = None

    if item.full_name and " - " in item.full_name:
        try:
            entry = parse_descriptor(item.full_name)
        except MalformedDescriptor as ex:
            failure = PriceFailure(code=MALFORMED_DESCRIPTOR, message=str(ex))
        else:
            res = resolve_price(
                snapshot,
                section=entry.section,
                product=entry.product,
                weight=entry.weight,
                buyer_type=buyer_type,
                payment_method=payment_method,
                as_of=as_of,
            )
            attempt.update(section=entry.section, product=entry.product, weight=entry.weight, source="descriptor")
            if isinstance(res, PriceResult):
                return {**attempt, "result": res, "low_confidence": False}
            # Policy rejections are final; no deduction retry.
            if res.code == RESTRICTED_PRODUCT:
                return {**attempt, "result": res, "low_confidence": False}
            failure = res

    # Name-only items (and descriptors that did not resolve).
    section, confidence = deduce_section(item.name)
    product = normalize(item.name)
    if section in ("PERRO", "GATO"):
        product = strip_species_box_prefix(product)
    weight = normalize_weight(item.options[0].name) if item.options else None
    res = resolve_price(
        snapshot,
        section=section,
        product=product,
        weight=weight,
        buyer_type=buyer_type,
        payment_method=payment_method,
        as_of=as_of,
    )
    deduced = {
        "name": item.name,
        "section": section,
        "product": product,
        "weight": weight,
        "source": "deduced",
        "deduction_version": SECTION_DEDUCTION_VERSION,
        "confidence": confidence,
        "low_confidence": confidence < LOW_CONFIDENCE_BELOW,
    }
    if isinstance(res, PriceResult):
        return {**deduced, "result": res}
    # Report the structured attempt when there was one.
    if failure is not None:
        return {**attempt, "result": failure, "low_confidence": False}
    return {**deduced, "result": res}


def calculate_order_total(
    snapshot: CatalogSnapshot,
    items: Iterable[OrderLineItem],
    *,
    buyer_type: Optional[str],
    payment_method: Optional[str],
    as_of: date,
) -> dict:
    total = Decimal("0")
    total_kg = 0.0
    per_item = []
    unresolved = 0

    for idx, item in enumerate(items):
        qty = item.effective_quantity
        r = _resolve_item(snapshot, item, buyer_type, payment_method, as_of)
        res = r.pop("result")
        row = {**r, "index": idx, "quantity": qty}
        if isinstance(res, PriceResult):
            subtotal = res.price * qty
            total += subtotal
            row.update(
                resolved=True,
                tier=res.tier,
                unit_price=res.price,
                subtotal=subtotal,
                price_record_id=res.record.id,
                used_fallback=res.used_fallback,
            )
        else:
            unresolved += 1
            row.update(resolved=False, error_code=res.code, error=res.message, tried_queries=res.tried_queries)
            json_log(
                "warning",
                "pricing.order_total.item_unresolved",
                item_index=idx,
                name=item.name,
                full_name=item.full_name,
                code=res.code,
                error=res.message,
            )
        opt = item.options[0].name if item.options else ""
        total_kg += item_weight_kg(item.name, opt) * qty
        per_item.append(row)

    return {
        "total": total,
        "per_item": per_item,
        "unresolved_count": unresolved,
        "total_kg": round(total_kg, 3),
    }

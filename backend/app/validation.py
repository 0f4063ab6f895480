from __future__ import annotations

from typing import Annotated, Literal, Optional

from pydantic import BeforeValidator, StringConstraints


SECTIONS = ("PERRO", "GATO", "OTROS", "RAW")
PRICE_TIERS = ("CASH_RETAIL", "TRANSFER_RETAIL", "WHOLESALE")
BUYER_TYPES = ("RETAIL", "WHOLESALE")

# English names and legacy stored values map onto the canonical tokens.
_SECTION_ALIASES = {
    "DOG": "PERRO",
    "CAT": "GATO",
    "OTHER": "OTROS",
    "OTHERS": "OTROS",
}
_TIER_ALIASES = {
    "EFECTIVO": "CASH_RETAIL",
    "CASH": "CASH_RETAIL",
    "TRANSFERENCIA": "TRANSFER_RETAIL",
    "TRANSFER": "TRANSFER_RETAIL",
    "MAYORISTA": "WHOLESALE",
}
_BUYER_ALIASES = {
    "MINORISTA": "RETAIL",
    "MAYORISTA": "WHOLESALE",
}


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


def normalize_section(v: Optional[str]) -> str:
    s = _to_upper_str(v) or ""
    return _SECTION_ALIASES.get(s, s)


def normalize_tier(v: Optional[str]) -> str:
    s = _to_upper_str(v) or ""
    return _TIER_ALIASES.get(s, s)


def normalize_buyer_type(v: Optional[str]) -> str:
    s = _to_upper_str(v) or ""
    return _BUYER_ALIASES.get(s, s)


def _section_or_none(v):
    if v is None:
        return v
    return normalize_section(v)


def _tier_or_none(v):
    if v is None:
        return v
    return normalize_tier(v)


def _buyer_or_none(v):
    if v is None:
        return v
    return normalize_buyer_type(v)


Section = Annotated[Literal["PERRO", "GATO", "OTROS", "RAW"], BeforeValidator(_section_or_none)]
PriceTier = Annotated[Literal["CASH_RETAIL", "TRANSFER_RETAIL", "WHOLESALE"], BeforeValidator(_tier_or_none)]
BuyerType = Annotated[Literal["RETAIL", "WHOLESALE"], BeforeValidator(_buyer_or_none)]

# Payment methods are free-form identifiers ("cash", "bank-transfer", "mercado-pago").
# Only "cash" changes pricing.
PaymentMethod = Annotated[
    str,
    BeforeValidator(_to_lower_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[a-z0-9][a-z0-9_-]*$"),
]

# Canonical weight tokens are uppercase without spaces ("5KG", "200GRS").
WeightToken = Annotated[
    Optional[str],
    BeforeValidator(lambda v: (_to_upper_str(v) or "").replace(" ", "") or None),
]

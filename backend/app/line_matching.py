"""
Order line item -> catalog entry matching used by stock accounting.

Line item names are free text written by checkout over several generations of the
storefront ("BOX PERRO POLLO (10KG)", "BIG DOG (15kg)" + option "VACA", "BARF/ POLLO",
"HUESOS CARNOSOS 5KG", ...). Matching is a pure reduction over (entry, orders):

1. species gate (GATO rows only take GATO items, PERRO rows never do, BIG DOG parity);
2. strategy passes, first hit wins: BIG DOG items go through the flavor passes, every
   other item through the regular passes.

An item that no pass accepts contributes nothing. Weight mismatches are exclusions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .domain import CatalogEntry, Order, OrderLineItem
from .text_norm import (
    extract_weight_token,
    normalize,
    normalize_weight,
    strip_known_prefixes,
    strip_species_box_prefix,
    strip_weight,
)

BIG_DOG = "BIG DOG"
FLAVORS = ("POLLO", "VACA", "CORDERO", "CERDO", "CONEJO", "PAVO", "MIX")

_first_kg = extract_weight_token
_strip_kg = strip_weight


@dataclass(frozen=True)
class _Row:
    """Catalog side, computed once per matched_quantity call."""

    section: str
    name: str
    weight: Optional[str]
    clean_name: str
    weight_token: Optional[str]
    full_ident: str
    is_big_dog: bool

    @classmethod
    def of(cls, entry: CatalogEntry) -> "_Row":
        section = normalize(entry.section)
        name = normalize(entry.product)
        # Current catalog rows sometimes repeat the section: "PERRO POLLO".
        if section and name.startswith(section):
            name = name[len(section):].strip()
        weight = normalize_weight(entry.weight)
        full_ident = f"{name} {weight or ''}"
        return cls(
            section=section,
            name=name,
            weight=weight,
            clean_name=_strip_kg(name),
            weight_token=_first_kg(full_ident) or weight,
            full_ident=full_ident,
            is_big_dog=BIG_DOG in name,
        )


@dataclass(frozen=True)
class _Item:
    base: str
    options: tuple[str, ...]
    product: str
    clean_product: str
    flavor: str
    weight_token: Optional[str]
    is_big_dog: bool

    @classmethod
    def of(cls, item: OrderLineItem) -> "_Item":
        base = normalize(item.name)
        options = tuple(normalize(o.name) for o in item.options)
        product = f"{base} {options[0] if options else ''}".strip()
        return cls(
            base=base,
            options=options,
            product=product,
            clean_product=_strip_kg(product),
            flavor=_strip_kg(strip_species_box_prefix(base)),
            weight_token=_first_kg(f"{base} {' '.join(options)}"),
            is_big_dog=BIG_DOG in base,
        )


def passes_species_gate(row: _Row, item: _Item) -> bool:
    if "OTROS" in row.section:
        return True
    if "GATO" in row.section:
        return "GATO" in item.base
    if "PERRO" in row.section:
        if "GATO" in item.base:
            return False
        return row.is_big_dog == item.is_big_dog
    return True


def _weights_agree(row: _Row, item: _Item) -> bool:
    if row.weight_token or item.weight_token:
        return row.weight_token == item.weight_token
    return True


# -- BIG DOG passes ------------------------------------------------------------------

def _big_dog_by_option(row: _Row, item: _Item) -> bool:
    # A flavor option, when present, decides on its own.
    opt = next((o for o in item.options if any(f in o for f in FLAVORS)), None)
    return opt is not None and opt in row.full_ident


def _big_dog_by_name(row: _Row, item: _Item) -> bool:
    item_flavor = next((f for f in FLAVORS if f in item.base), None)
    row_flavor = next((f for f in FLAVORS if f in row.full_ident), None)
    clean_item = _strip_kg(item.base)
    clean_row = _strip_kg(row.name)
    if not (clean_item == clean_row or (clean_row in clean_item and len(clean_row) > 5)):
        return False
    if row_flavor:
        return row_flavor in item.base
    # A flavorless bulk row must not absorb flavored sales.
    return item_flavor is None


# -- regular passes ------------------------------------------------------------------

def _regular_by_name(row: _Row, item: _Item) -> bool:
    cn, ci = row.clean_name, item.clean_product
    name_match = (
        ci == cn
        or cn in ci
        or (ci and ci in cn)
        or cn in item.base
        or item.flavor == cn
    )
    # With a weight on the row, "POLLO CON VERDURAS" must not count as "POLLO 10KG".
    strict_flavor = not row.weight_token or item.flavor == cn
    return bool(name_match and strict_flavor and _weights_agree(row, item))


def _regular_by_flavor(row: _Row, item: _Item) -> bool:
    return bool(item.flavor) and item.flavor == row.clean_name and _weights_agree(row, item)


def _regular_by_vendor_prefix(row: _Row, item: _Item) -> bool:
    alt = _strip_kg(strip_known_prefixes(item.product))
    if not alt:
        return False
    name_match = alt == row.clean_name or row.clean_name in alt or alt in row.clean_name
    if not name_match:
        return False
    if row.weight_token and alt != row.clean_name:
        return False
    return _weights_agree(row, item)


MatchPass = tuple[str, Callable[[_Row, _Item], bool]]

BIG_DOG_PASSES: tuple[MatchPass, ...] = (
    ("big_dog_option_flavor", _big_dog_by_option),
    ("big_dog_name", _big_dog_by_name),
)

REGULAR_PASSES: tuple[MatchPass, ...] = (
    ("name", _regular_by_name),
    ("extracted_flavor", _regular_by_flavor),
    ("vendor_prefix", _regular_by_vendor_prefix),
)


def _match(row: _Row, item: _Item) -> Optional[str]:
    if not row.clean_name:
        return None
    if not passes_species_gate(row, item):
        return None
    passes = BIG_DOG_PASSES if (row.is_big_dog and item.is_big_dog) else REGULAR_PASSES
    for name, fn in passes:
        if fn(row, item):
            return name
    return None


def item_matches(entry: CatalogEntry, item: OrderLineItem) -> Optional[str]:
    """Name of the pass that accepted `item` for `entry`, or None."""
    return _match(_Row.of(entry), _Item.of(item))


def matched_quantity(entry: CatalogEntry, orders: Iterable[Order]) -> int:
    row = _Row.of(entry)
    total = 0
    for order in orders:
        for item in order.items:
            if _match(row, _Item.of(item)):
                total += item.effective_quantity
    return total


def unmatched_items(entries: Iterable[CatalogEntry], orders: Iterable[Order]) -> list[OrderLineItem]:
    """Line items that no catalog entry accepts (invisible to stock accounting)."""
    rows = [_Row.of(e) for e in entries]
    out = []
    for order in orders:
        for item in order.items:
            view = _Item.of(item)
            if not any(_match(r, view) for r in rows):
                out.append(item)
    return out

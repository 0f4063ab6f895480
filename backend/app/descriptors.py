"""
Catalog descriptor parsing: "SECTION - PRODUCT - WEIGHT" -> CatalogEntry.

Descriptors reach us from checkout (item.full_name), from the admin price selects and
from legacy orders, so a handful of shapes need special handling. Each shape is a
(predicate, transform) rule; shape rules are tried in order and the first match wins,
then post rules run unconditionally on the result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

from .domain import CatalogEntry
from .errors import MalformedDescriptor
from .text_norm import extract_weight_token, normalize, normalize_weight
from .validation import normalize_section


_QTY_SUFFIX_RE = re.compile(r"\s*-\s*x\d+\s*$", re.IGNORECASE)
_GRAMS_TOKEN_RE = re.compile(r"\d+\s*GRS", re.IGNORECASE)

COMBO_BOX = "BOX DE COMPLEMENTOS"


@dataclass
class _Draft:
    parts: list[str]
    section: str
    product: str
    weight: Optional[str]


@dataclass(frozen=True)
class DescriptorRule:
    name: str
    applies: Callable[[_Draft], bool]
    apply: Callable[[_Draft], None]


def _is_bone(s: str) -> bool:
    s = normalize(s)
    return "HUESOS CARNOSOS" in s or "HUESO CARNOSO" in s


def _bone_plural(s: str) -> str:
    return normalize(s).replace("HUESO CARNOSO", "HUESOS CARNOSOS", 1)


def _is_combo_box(s: str) -> bool:
    s = normalize(s)
    return COMBO_BOX in s or "BOX COMPLEMENTOS" in s


def _has_embedded_weight(s: str) -> bool:
    return bool(extract_weight_token(s) or _GRAMS_TOKEN_RE.search(s or ""))


# -- shape rules ---------------------------------------------------------------------

def _species_box_applies(d: _Draft) -> bool:
    s = normalize(d.section)
    return "BOX" in s and ("PERRO" in s or "GATO" in s) and not _is_combo_box(s)


def _species_box_apply(d: _Draft) -> None:
    # "BOX PERRO POLLO - 5KG": species and flavor live in the first segment.
    words = normalize(d.section).split(" ")
    if len(words) >= 3:
        d.section = words[1]
        d.product = " ".join(words[2:])
        d.weight = d.parts[1]


def _bones_in_otros_applies(d: _Draft) -> bool:
    return normalize_section(d.section) == "OTROS" and _is_bone(d.product)


def _bones_in_otros_apply(d: _Draft) -> None:
    product = _bone_plural(d.product)
    if d.weight and not _has_embedded_weight(product):
        product = f"{product} {normalize(d.weight)}"
    d.product = product
    d.weight = None


def _legacy_bones_applies(d: _Draft) -> bool:
    return _is_bone(d.section)


def _legacy_bones_apply(d: _Draft) -> None:
    # "HUESOS CARNOSOS - 5KG": no OTROS prefix, weight in the second segment.
    name = _bone_plural(d.parts[0])
    tail = normalize(d.parts[1]) if len(d.parts) >= 2 else ""
    d.section = "OTROS"
    d.product = f"{name} {tail}" if tail else name
    d.weight = None


def _combo_box_applies(d: _Draft) -> bool:
    return _is_combo_box(d.section) or _is_combo_box(d.product)


def _combo_box_apply(d: _Draft) -> None:
    # The "1U" suffix is display-only.
    d.section = "OTROS"
    d.product = COMBO_BOX
    d.weight = None


SHAPE_RULES: tuple[DescriptorRule, ...] = (
    DescriptorRule("species_box", _species_box_applies, _species_box_apply),
    DescriptorRule("bones_in_otros", _bones_in_otros_applies, _bones_in_otros_apply),
    DescriptorRule("legacy_bones", _legacy_bones_applies, _legacy_bones_apply),
    DescriptorRule("combo_box", _combo_box_applies, _combo_box_apply),
)


def _cornalitos_applies(d: _Draft) -> bool:
    return "CORNALITOS" in normalize(d.product)


def _cornalitos_apply(d: _Draft) -> None:
    d.weight = None


POST_RULES: tuple[DescriptorRule, ...] = (
    DescriptorRule("cornalitos_weight_in_name", _cornalitos_applies, _cornalitos_apply),
)


def strip_quantity_suffix(descriptor: str) -> str:
    return _QTY_SUFFIX_RE.sub("", descriptor or "").strip()


def matching_rule(descriptor: str) -> Optional[str]:
    """Name of the shape rule a descriptor would hit, for diagnostics."""
    d = _draft(descriptor)
    for rule in SHAPE_RULES:
        if rule.applies(d):
            return rule.name
    return None


def _draft(descriptor: str) -> _Draft:
    cleaned = strip_quantity_suffix(descriptor)
    parts = [p.strip() for p in cleaned.split(" - ")]
    if len(parts) < 2:
        raise MalformedDescriptor(descriptor)
    return _Draft(
        parts=parts,
        section=parts[0],
        product=parts[1],
        weight=parts[2] if len(parts) > 2 else None,
    )


def parse_descriptor(descriptor: str) -> CatalogEntry:
    """
    Split a formatted descriptor into a CatalogEntry.

    Raises MalformedDescriptor when fewer than two " - " separated segments remain
    after the display-only " - xN" quantity suffix is removed.
    """
    d = _draft(descriptor)
    for rule in SHAPE_RULES:
        if rule.applies(d):
            rule.apply(d)
            break
    for rule in POST_RULES:
        if rule.applies(d):
            rule.apply(d)
    return CatalogEntry(
        section=normalize_section(d.section),
        product=normalize(d.product),
        weight=normalize_weight(d.weight),
    )


def format_descriptor(section: str, product: str, weight: Optional[str] = None) -> str:
    parts = [normalize_section(section), normalize(product)]
    w = normalize_weight(weight)
    if w:
        parts.append(w)
    return " - ".join(parts)

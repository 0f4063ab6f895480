from __future__ import annotations

import re
from typing import Optional


_WS_RE = re.compile(r"\s+")
_WEIGHT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*KG", re.IGNORECASE)
# Weight token plus the surrounding whitespace/parentheses: "POLLO (5KG)", "BIG DOG (15kg)".
_WEIGHT_STRIP_RE = re.compile(r"\s*\(?\d+(?:\.\d+)?\s*KG\)?", re.IGNORECASE)

_SPECIES_BOX_PREFIX_RE = re.compile(r"^BOX\s+(?:PERRO|GATO)\s+", re.IGNORECASE)
_VENDOR_PREFIX_RE = re.compile(r"^(?:BARF\s*/\s*|MEDALLONES\s*/\s*)", re.IGNORECASE)

_GRAMS_RE = re.compile(r"(\d+)\s*GRS", re.IGNORECASE)
_KG_VALUE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*K?G", re.IGNORECASE)


def normalize(s: Optional[str]) -> str:
    """Uppercase, trim and collapse internal whitespace."""
    return _WS_RE.sub(" ", str(s or "")).strip().upper()


def strip_weight(s: Optional[str]) -> str:
    return normalize(_WEIGHT_STRIP_RE.sub("", str(s or "")))


def extract_weight_token(s: Optional[str]) -> Optional[str]:
    """First "<n>KG" token in `s`, uppercased and without spaces ("5 kg" -> "5KG")."""
    m = _WEIGHT_RE.search(str(s or ""))
    if not m:
        return None
    return _WS_RE.sub("", m.group(0)).upper()


def normalize_weight(w: Optional[str]) -> Optional[str]:
    out = _WS_RE.sub("", str(w or "")).upper()
    return out or None


def strip_species_box_prefix(s: Optional[str]) -> str:
    return normalize(_SPECIES_BOX_PREFIX_RE.sub("", normalize(s)))


def strip_vendor_prefix(s: Optional[str]) -> str:
    return normalize(_VENDOR_PREFIX_RE.sub("", normalize(s)))


def strip_known_prefixes(s: Optional[str]) -> str:
    """Drop "BARF/" / "MEDALLONES/" and then "BOX PERRO " / "BOX GATO "."""
    return strip_species_box_prefix(strip_vendor_prefix(s))


def item_weight_kg(product_name: Optional[str] = "", option_name: Optional[str] = "") -> float:
    """Kilograms represented by one unit of a line item, 0 when it should not count."""
    product = normalize(product_name)
    option = normalize(option_name)
    combined = f"{product} {option}"

    # Unit packs.
    if "OREJA" in product:
        return 0.0

    # Small portions sold in grams.
    m = _GRAMS_RE.search(combined)
    if m and int(m.group(1)) < 1000:
        return 0.0

    if any(tok in product for tok in ("CORNALITO", "GARRA", "CALDO", "COMPLEMENTO")):
        return 0.0

    if "BIG DOG" in product:
        return 15.0

    for src in (option, product):
        m = _KG_VALUE_RE.search(src)
        if m:
            return float(m.group(1))

    if "BOX" in product:
        return 5.0 if "GATO" in product else 10.0

    return 0.0

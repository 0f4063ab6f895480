from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from .domain import CatalogEntry, PriceRecord
from .text_norm import normalize
from .validation import PRICE_TIERS, normalize_section, normalize_tier


# OTROS products tracked outside the daily stock sheet (sold by the unit / wholesale only).
STOCK_EXCLUDED_OTROS = (
    "CORNALITOS",
    "CALDO DE HUESOS",
    "GARRAS",
    "HUESO RECREATIVO",
    "HUESOS RECREATIVOS",
)
STOCK_SECTIONS = ("PERRO", "GATO", "OTROS")


def _sort_key(r: PriceRecord):
    created = r.created_at or datetime.min
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (r.effective_date, created)


@dataclass(frozen=True)
class CatalogSnapshot:
    """
    Immutable view of the price ledger.

    Resolver and matcher calls take a snapshot explicitly; a fresh one is obtained with
    `reload(store)` (or `load_catalog_snapshot`) after prices change.
    """

    records: tuple[PriceRecord, ...] = ()
    loaded_at: Optional[datetime] = field(default=None, compare=False)

    @classmethod
    def of(cls, records: Iterable[PriceRecord]) -> "CatalogSnapshot":
        return cls(records=tuple(records), loaded_at=datetime.now(timezone.utc))

    def reload(self, store) -> "CatalogSnapshot":
        return load_catalog_snapshot(store)

    def __len__(self) -> int:
        return len(self.records)

    def products(self, *, active_only: bool = True) -> list[CatalogEntry]:
        """Unique catalog identities, in first-seen order."""
        seen: dict[tuple, CatalogEntry] = {}
        for r in self.records:
            if active_only and not r.active:
                continue
            e = r.entry
            key = (e.section, e.product, e.weight)
            if key not in seen:
                seen[key] = e
        return list(seen.values())

    def find(
        self,
        *,
        section: str,
        product: str,
        tier: str,
        as_of: date,
        weight: Optional[str] = None,
        match_weight: bool = True,
    ) -> list[PriceRecord]:
        """
        Active records for one identity/tier effective on or before `as_of`.

        With `match_weight`, a `weight=None` request only matches records without a weight;
        otherwise weight is ignored entirely.
        """
        section = normalize_section(section)
        product = normalize(product)
        tier = normalize_tier(tier)
        out = []
        for r in self.records:
            if not r.active or r.tier != tier:
                continue
            if r.entry.section != section or r.entry.product != product:
                continue
            if r.effective_date is None or r.effective_date > as_of:
                continue
            if match_weight and (r.entry.weight or None) != (weight or None):
                continue
            out.append(r)
        return out

    def latest_prices(self, as_of: date) -> dict[CatalogEntry, dict[str, PriceRecord]]:
        """Applicable record per identity and tier as of a date."""
        out: dict[CatalogEntry, dict[str, PriceRecord]] = {}
        for r in self.records:
            if not r.active or r.effective_date is None or r.effective_date > as_of:
                continue
            per_tier = out.setdefault(r.entry, {})
            cur = per_tier.get(r.tier)
            if cur is None or _sort_key(r) > _sort_key(cur):
                per_tier[r.tier] = r
        return out

    def history(self, entry: CatalogEntry, tier: str) -> list[PriceRecord]:
        tier = normalize_tier(tier)
        rows = [r for r in self.records if r.entry == entry and r.tier == tier]
        rows.sort(key=_sort_key)
        return rows


def load_catalog_snapshot(store) -> CatalogSnapshot:
    rows = store.list_price_records()
    return CatalogSnapshot.of(PriceRecord.from_row(r) for r in rows)


def products_for_stock(snapshot: CatalogSnapshot, as_of: Optional[date] = None) -> list[CatalogEntry]:
    """Identities that get a row on the daily stock sheet."""
    out = []
    for e in snapshot.products():
        if as_of is not None and not any(
            r.entry == e and r.active and r.effective_date and r.effective_date <= as_of for r in snapshot.records
        ):
            continue
        if e.section not in STOCK_SECTIONS and "VACA" not in e.product:
            continue
        if e.section == "OTROS" and any(tok in e.product for tok in STOCK_EXCLUDED_OTROS):
            continue
        out.append(e)
    return out


def new_price_version(
    *,
    section: str,
    product: str,
    weight: Optional[str],
    tier: str,
    price,
    effective_date: date,
) -> PriceRecord:
    """
    Build the record for a price change. Historical rows are never updated; a change is a
    new row with a later effective date.
    """
    try:
        amount = Decimal(str(price))
    except (InvalidOperation, ValueError):
        raise ValueError(f"invalid price: {price!r}")
    if amount < 0:
        raise ValueError("price must be >= 0")
    tier = normalize_tier(tier)
    if tier not in PRICE_TIERS:
        raise ValueError(f"invalid price tier: {tier!r}")
    entry = CatalogEntry.of(section, product, weight)
    if not entry.product:
        raise ValueError("product is required")
    return PriceRecord(entry=entry, tier=tier, price=amount, effective_date=effective_date, active=True)

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from backend.app.catalog import CatalogSnapshot
from backend.app.domain import CatalogEntry, PriceRecord
from backend.app.price_resolver import (
    PRICE_NOT_FOUND,
    RESTRICTED_PRODUCT,
    PriceFailure,
    PriceResult,
    is_wholesale_only,
    resolve_price,
    select_tier,
)


def _rec(section, product, weight, tier, price, eff, created=None, active=True, rid=None):
    return PriceRecord(
        id=rid,
        entry=CatalogEntry.of(section, product, weight),
        tier=tier,
        price=Decimal(str(price)),
        effective_date=eff,
        active=active,
        created_at=created,
    )


def _resolve(snapshot, as_of, section="PERRO", product="POLLO", weight="5KG", buyer="RETAIL", payment="transfer"):
    return resolve_price(
        snapshot,
        section=section,
        product=product,
        weight=weight,
        buyer_type=buyer,
        payment_method=payment,
        as_of=as_of,
    )


@pytest.mark.parametrize(
    "buyer,payment,expected",
    [
        ("WHOLESALE", "cash", "WHOLESALE"),
        ("mayorista", None, "WHOLESALE"),
        ("RETAIL", "CASH", "CASH_RETAIL"),
        ("minorista", "bank-transfer", "TRANSFER_RETAIL"),
        (None, None, "TRANSFER_RETAIL"),
    ],
)
def test_select_tier(buyer, payment, expected):
    assert select_tier(buyer, payment) == expected


def test_temporal_resolution_picks_latest_effective_on_or_before():
    snap = CatalogSnapshot.of(
        [
            _rec("PERRO", "POLLO", "5KG", "TRANSFER_RETAIL", 100, date(2024, 1, 1)),
            _rec("PERRO", "POLLO", "5KG", "TRANSFER_RETAIL", 120, date(2024, 3, 1)),
        ]
    )
    assert _resolve(snap, date(2024, 2, 15)).price == Decimal("100")
    assert _resolve(snap, date(2024, 3, 15)).price == Decimal("120")

    missing = _resolve(snap, date(2023, 12, 1))
    assert isinstance(missing, PriceFailure)
    assert missing.code == PRICE_NOT_FOUND
    assert len(missing.tried_queries) == 2


def test_same_effective_date_breaks_tie_by_creation_time():
    eff = date(2024, 1, 1)
    snap = CatalogSnapshot.of(
        [
            _rec("PERRO", "POLLO", "5KG", "TRANSFER_RETAIL", 100, eff, datetime(2024, 1, 1, 9, tzinfo=timezone.utc), rid="a"),
            _rec("PERRO", "POLLO", "5KG", "TRANSFER_RETAIL", 105, eff, datetime(2024, 1, 1, 12, tzinfo=timezone.utc), rid="b"),
        ]
    )
    res = _resolve(snap, date(2024, 1, 2))
    assert res.record.id == "b"


def test_inactive_records_are_ignored():
    snap = CatalogSnapshot.of([_rec("PERRO", "POLLO", "5KG", "TRANSFER_RETAIL", 100, date(2024, 1, 1), active=False)])
    assert isinstance(_resolve(snap, date(2024, 2, 1)), PriceFailure)


def test_flexible_fallback_ignores_weight_once():
    snap = CatalogSnapshot.of([_rec("PERRO", "POLLO", None, "TRANSFER_RETAIL", 90, date(2024, 1, 1))])
    res = _resolve(snap, date(2024, 2, 1), weight="5KG")
    assert isinstance(res, PriceResult)
    assert res.price == Decimal("90")
    assert res.used_fallback is True

    weighted = CatalogSnapshot.of([_rec("PERRO", "POLLO", "5KG", "TRANSFER_RETAIL", 95, date(2024, 1, 1))])
    res = _resolve(weighted, date(2024, 2, 1), weight=None)
    assert res.price == Decimal("95")
    assert res.used_fallback is True


def test_fallback_does_not_cross_products():
    snap = CatalogSnapshot.of([_rec("PERRO", "POLLO CON VERDURAS", None, "TRANSFER_RETAIL", 90, date(2024, 1, 1))])
    res = _resolve(snap, date(2024, 2, 1))
    assert isinstance(res, PriceFailure)
    assert [q["match_weight"] for q in res.tried_queries] == [True, False]


def test_exact_weight_wins_over_weightless_record():
    snap = CatalogSnapshot.of(
        [
            _rec("PERRO", "POLLO", None, "TRANSFER_RETAIL", 80, date(2024, 1, 1)),
            _rec("PERRO", "POLLO", "5KG", "TRANSFER_RETAIL", 95, date(2023, 6, 1)),
        ]
    )
    res = _resolve(snap, date(2024, 2, 1))
    assert res.price == Decimal("95")
    assert res.used_fallback is False


def test_lookup_is_case_insensitive_and_accepts_aliases():
    snap = CatalogSnapshot.of([_rec("PERRO", "POLLO", "5KG", "CASH_RETAIL", 70, date(2024, 1, 1))])
    res = _resolve(snap, date(2024, 2, 1), section="dog", product=" pollo ", weight="5 kg", payment="cash")
    assert res.price == Decimal("70")
    assert res.tier == "CASH_RETAIL"


def test_raw_section_is_restricted_for_retail_buyers():
    snap = CatalogSnapshot.of([_rec("RAW", "HIGADO", None, "WHOLESALE", 50, date(2024, 1, 1))])
    res = _resolve(snap, date(2024, 2, 1), section="RAW", product="HIGADO", weight=None)
    assert isinstance(res, PriceFailure)
    assert res.code == RESTRICTED_PRODUCT

    ok = _resolve(snap, date(2024, 2, 1), section="RAW", product="HIGADO", weight=None, buyer="WHOLESALE")
    assert ok.price == Decimal("50")


def test_wholesale_only_products_force_wholesale_tier():
    assert is_wholesale_only("GARRAS DE POLLO")
    assert is_wholesale_only("CORNALITOS 200GRS")
    assert is_wholesale_only("CORNALITOS", "30GRS")
    assert not is_wholesale_only("CORNALITOS 100GRS")
    assert not is_wholesale_only("POLLO")

    snap = CatalogSnapshot.of([_rec("OTROS", "CALDO DE HUESOS", None, "WHOLESALE", 30, date(2024, 1, 1))])
    res = _resolve(snap, date(2024, 2, 1), section="OTROS", product="CALDO DE HUESOS", weight=None, payment="cash")
    assert res.tier == "WHOLESALE"
    assert res.price == Decimal("30")


def test_cornalitos_lookup_uses_weightless_record():
    snap = CatalogSnapshot.of(
        [
            _rec("OTROS", "CORNALITOS 200GRS", None, "WHOLESALE", 40, date(2024, 1, 1)),
            _rec("OTROS", "CORNALITOS 200GRS", "200GRS", "WHOLESALE", 99, date(2024, 1, 1)),
        ]
    )
    res = _resolve(snap, date(2024, 2, 1), section="OTROS", product="CORNALITOS 200GRS", weight="200GRS")
    assert res.price == Decimal("40")
    assert res.used_fallback is False

from datetime import date

import pytest

from backend.app.stock_reconcile import add_stock_row, reconcile_stock_for_date, stock_row_section, update_replenishment


D10 = date(2024, 6, 10)
D11 = date(2024, 6, 11)


def _prior_row(**over):
    row = {
        "location": "X",
        "section": "PERRO",
        "product": "POLLO",
        "weight": "5KG",
        "stock_date": D10,
        "opening_stock": 12,
        "replenishment": 0,
        "orders_today": 0,
        "closing_stock": 12,
    }
    row.update(over)
    return row


def _order(oid, day, *items, location="X"):
    return {
        "id": oid,
        "location": location,
        "delivery_date": day,
        "items": [{"name": name, "quantity": qty} for name, qty in items],
    }


def test_opening_is_carried_from_prior_day_and_today_orders_are_deducted(make_store):
    store = make_store(counters=[_prior_row()], orders=[_order("o1", "2024-06-11", ("POLLO 5KG", 2))])

    out = reconcile_stock_for_date(store, "X", D11)

    assert out["updated_count"] == 1
    assert out["carried_from_date"] == D10
    row = store.counter("X", "POLLO", "5KG", D11)
    assert row["opening_stock"] == 12
    assert row["orders_today"] == 2
    assert row["closing_stock"] == 10
    assert row["section"] == "PERRO"
    assert store.locks == [("X", D11)]
    assert store.list_orders_calls == 1


def test_reconcile_is_idempotent(make_store):
    store = make_store(counters=[_prior_row()], orders=[_order("o1", "2024-06-11", ("POLLO 5KG", 2))])

    reconcile_stock_for_date(store, "X", D11)
    first = {k: dict(v) for k, v in store.counters.items()}
    reconcile_stock_for_date(store, "X", D11)

    assert store.counters == first
    assert len(store.counters) == 2


def test_prior_closing_is_recomputed_not_trusted(make_store):
    # The stored closing_stock of the prior day is stale; it is never read.
    store = make_store(
        counters=[_prior_row(closing_stock=999)],
        orders=[
            _order("o0", "2024-06-10", ("POLLO 5KG", 3)),
            _order("o1", "2024-06-11", ("POLLO 5KG", 2)),
        ],
    )

    reconcile_stock_for_date(store, "X", D11)

    row = store.counter("X", "POLLO", "5KG", D11)
    assert row["opening_stock"] == 9
    assert row["closing_stock"] == 7


def test_retroactive_order_edit_is_corrected_on_rerun(make_store):
    store = make_store(counters=[_prior_row()], orders=[_order("o1", "2024-06-11", ("POLLO 5KG", 2))])
    reconcile_stock_for_date(store, "X", D11)

    store.orders.append(_order("late", "2024-06-10", ("POLLO 5KG", 1)))
    reconcile_stock_for_date(store, "X", D11)

    row = store.counter("X", "POLLO", "5KG", D11)
    assert row["opening_stock"] == 11
    assert row["closing_stock"] == 9


def test_manual_replenishment_survives_reconcile(make_store):
    store = make_store(
        counters=[
            _prior_row(),
            _prior_row(stock_date=D11, opening_stock=0, replenishment=5, closing_stock=5),
        ],
        orders=[_order("o1", "2024-06-11", ("POLLO 5KG", 2))],
    )

    reconcile_stock_for_date(store, "X", D11)

    row = store.counter("X", "POLLO", "5KG", D11)
    assert row["replenishment"] == 5
    assert row["closing_stock"] == 15


def test_no_prior_sheet_is_a_no_op(make_store):
    store = make_store(orders=[_order("o1", "2024-06-11", ("POLLO 5KG", 2))])

    out = reconcile_stock_for_date(store, "X", D11)

    assert out == {"updated_count": 0, "carried_from_date": None, "unmatched_items": 0}
    assert store.counters == {}
    assert store.upserts == 0


def test_orders_of_other_locations_and_days_are_ignored(make_store):
    store = make_store(
        counters=[_prior_row()],
        orders=[
            _order("o1", "2024-06-11", ("POLLO 5KG", 2), location="Y"),
            _order("o2", "2024-06-12", ("POLLO 5KG", 4)),
            {"id": "o3", "location": "X", "delivery_date": "2024-06-11", "items": []},
        ],
    )

    reconcile_stock_for_date(store, "X", D11)

    row = store.counter("X", "POLLO", "5KG", D11)
    assert row["orders_today"] == 0
    assert row["closing_stock"] == 12


def test_undelivered_order_counts_on_its_local_creation_day(make_store):
    # 01:30 UTC on the 12th is still the 11th in Buenos Aires (UTC-3).
    store = make_store(
        counters=[_prior_row()],
        orders=[
            {
                "id": "o1",
                "location": "X",
                "created_at": "2024-06-12T01:30:00Z",
                "items": [{"name": "POLLO 5KG", "quantity": 1}],
            }
        ],
    )

    reconcile_stock_for_date(store, "X", D11)

    assert store.counter("X", "POLLO", "5KG", D11)["orders_today"] == 1


def test_unmatched_items_are_counted(make_store):
    store = make_store(
        counters=[_prior_row()],
        orders=[_order("o1", "2024-06-11", ("POLLO 5KG", 2), ("PRODUCTO NUEVO", 1))],
    )

    out = reconcile_stock_for_date(store, "X", D11)

    assert out["unmatched_items"] == 1


def test_update_replenishment_recomputes_the_day(make_store):
    store = make_store(counters=[_prior_row()], orders=[_order("o1", "2024-06-11", ("POLLO 5KG", 2))])
    reconcile_stock_for_date(store, "X", D11)

    out = update_replenishment(store, "X", D11, product="pollo", weight="5 kg", value=4)

    assert out["found"] is True
    assert out["updated_count"] == 1
    row = store.counter("X", "POLLO", "5KG", D11)
    assert row["replenishment"] == 4
    assert row["closing_stock"] == 14


def test_update_replenishment_missing_row(make_store):
    store = make_store(counters=[_prior_row()])

    out = update_replenishment(store, "X", D11, product="VACA", weight=None, value=1)

    assert out["found"] is False
    assert store.upserts == 0


def test_update_replenishment_rejects_negative(make_store):
    store = make_store(counters=[_prior_row()])
    with pytest.raises(ValueError):
        update_replenishment(store, "X", D11, product="POLLO", weight="5KG", value=-1)


@pytest.mark.parametrize(
    "section,product,expected",
    [
        ("OTROS", "HUESOS CARNOSOS 5KG", "OTROS"),
        (None, "BOX GATO POLLO", "GATO"),
        (None, "BIG DOG VACA", "PERRO"),
        ("", "OTROS CALDO", "OTROS"),
        (None, "POLLO", "PERRO"),
    ],
)
def test_stock_row_section_fallback(section, product, expected):
    assert stock_row_section(section, product) == expected


def test_legacy_row_without_section_still_matches(make_store):
    store = make_store(
        counters=[_prior_row(section=None, product="GATO POLLO")],
        orders=[_order("o1", "2024-06-11", ("BOX GATO POLLO 5KG", 1))],
    )

    reconcile_stock_for_date(store, "X", D11)

    row = store.counter("X", "GATO POLLO", "5KG", D11)
    assert row["section"] == "GATO"
    assert row["orders_today"] == 1


def test_unknown_location_is_not_registered(make_store):
    store = make_store(counters=[_prior_row()])

    out = reconcile_stock_for_date(store, "typo", D11)

    assert out["carried_from_date"] is None
    assert "typo" not in store.registered
    assert store.list_orders_calls == 0


def _catalog(*rows):
    return [
        {
            "id": f"p-{i}",
            "section": section,
            "product": product,
            "weight": weight,
            "price_tier": "TRANSFER_RETAIL",
            "price": "10",
            "effective_date": "2024-01-01",
            "is_active": True,
        }
        for i, (section, product, weight) in enumerate(rows, start=1)
    ]


def test_add_stock_row_opens_a_new_location_sheet(make_store):
    store = make_store(
        prices=_catalog(("PERRO", "POLLO", "5KG")),
        orders=[_order("o1", "2024-06-11", ("POLLO 5KG", 2), location="NEW")],
    )

    out = add_stock_row(store, "NEW", D11, section="dog", product="pollo", weight="5 kg", opening_stock=10, replenishment=1)

    assert out["created"] is True
    assert "NEW" in store.registered
    row = store.counter("NEW", "POLLO", "5KG", D11)
    assert row["section"] == "PERRO"
    assert (row["opening_stock"], row["replenishment"], row["orders_today"], row["closing_stock"]) == (10, 1, 2, 9)

    again = add_stock_row(store, "NEW", D11, section="PERRO", product="POLLO", weight="5KG", opening_stock=99)
    assert again["created"] is False
    assert store.counter("NEW", "POLLO", "5KG", D11)["opening_stock"] == 10


@pytest.mark.parametrize(
    "section,product,weight",
    [
        ("PERRO", "CONEJO", "5KG"),
        ("OTROS", "CORNALITOS 200GRS", None),
        ("RAW", "HIGADO", None),
    ],
)
def test_add_stock_row_rejects_non_stock_products(make_store, section, product, weight):
    store = make_store(
        prices=_catalog(("PERRO", "POLLO", "5KG"), ("OTROS", "CORNALITOS 200GRS", None), ("RAW", "HIGADO", None))
    )
    with pytest.raises(ValueError):
        add_stock_row(store, "X", D11, section=section, product=product, weight=weight, opening_stock=1)
    assert store.counters == {}

"""
Plain value types shared by the catalog, matching and stock code.

Rows coming out of the store are dicts (psycopg `dict_row`); the `from_row` helpers
accept both the snake_case column names and the camelCase keys used by order documents.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from .text_norm import normalize, normalize_weight
from .validation import normalize_section, normalize_tier


def _as_date(v) -> Optional[date]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    return date.fromisoformat(str(v)[:10])


def _as_datetime(v) -> Optional[datetime]:
    if v is None or v == "":
        return None
    if isinstance(v, datetime):
        return v
    if isinstance(v, date):
        return datetime(v.year, v.month, v.day)
    raw = str(v).strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw)


def _as_int(v, default: int = 0) -> int:
    if v is None or v == "":
        return default
    try:
        return int(Decimal(str(v)))
    except Exception:
        return default


@dataclass(frozen=True)
class CatalogEntry:
    """Catalog identity: (section, product, weight)."""

    section: str
    product: str
    weight: Optional[str] = None

    @classmethod
    def of(cls, section: Optional[str], product: Optional[str], weight: Optional[str] = None) -> "CatalogEntry":
        return cls(section=normalize_section(section), product=normalize(product), weight=normalize_weight(weight))


@dataclass(frozen=True)
class PriceRecord:
    entry: CatalogEntry
    tier: str
    price: Decimal
    effective_date: date
    active: bool = True
    created_at: Optional[datetime] = None
    id: Optional[str] = None

    @classmethod
    def from_row(cls, r: dict) -> "PriceRecord":
        return cls(
            id=str(r["id"]) if r.get("id") is not None else None,
            entry=CatalogEntry.of(r.get("section"), r.get("product"), r.get("weight")),
            tier=normalize_tier(r.get("price_tier") or r.get("priceType")),
            price=Decimal(str(r.get("price") or 0)),
            effective_date=_as_date(r.get("effective_date") or r.get("effectiveDate")),
            active=bool(r.get("is_active", r.get("isActive", True))),
            created_at=_as_datetime(r.get("created_at") or r.get("createdAt")),
        )


@dataclass(frozen=True)
class OrderOption:
    name: str
    quantity: Optional[int] = None


@dataclass(frozen=True)
class OrderLineItem:
    name: str
    options: tuple[OrderOption, ...] = ()
    quantity: Optional[int] = None
    # Canonical "SECTION - PRODUCT - WEIGHT" descriptor when checkout stored one.
    full_name: Optional[str] = None

    @property
    def effective_quantity(self) -> int:
        if self.quantity:
            return int(self.quantity)
        if self.options and self.options[0].quantity:
            return int(self.options[0].quantity)
        return 1

    @classmethod
    def from_row(cls, r: dict) -> "OrderLineItem":
        opts = tuple(
            OrderOption(name=str(o.get("name") or ""), quantity=_as_int(o.get("quantity"), 0) or None)
            for o in (r.get("options") or [])
            if isinstance(o, dict)
        )
        return cls(
            name=str(r.get("name") or ""),
            options=opts,
            quantity=_as_int(r.get("quantity"), 0) or None,
            full_name=(r.get("full_name") or r.get("fullName") or None),
        )


@dataclass(frozen=True)
class Order:
    id: str
    items: tuple[OrderLineItem, ...] = ()
    location: Optional[str] = None
    delivery_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, r: dict) -> "Order":
        return cls(
            id=str(r.get("id") or r.get("_id") or ""),
            location=(r.get("location") or r.get("puntoEnvio") or None),
            delivery_date=_as_datetime(r.get("delivery_date") or r.get("deliveryDay")),
            created_at=_as_datetime(r.get("created_at") or r.get("createdAt")),
            items=tuple(OrderLineItem.from_row(i) for i in (r.get("items") or []) if isinstance(i, dict)),
        )


@dataclass(frozen=True)
class StockCounter:
    location: str
    entry: CatalogEntry
    date: date
    opening_stock: int = 0
    replenishment: int = 0
    orders_today: int = 0
    closing_stock: int = 0
    id: Optional[str] = None

    @property
    def key(self) -> tuple[str, str, Optional[str]]:
        return (self.location, self.entry.product, self.entry.weight)

    def recomputed(self, opening_stock: int, replenishment: int, orders_today: int) -> "StockCounter":
        return replace(
            self,
            opening_stock=opening_stock,
            replenishment=replenishment,
            orders_today=orders_today,
            closing_stock=opening_stock + replenishment - orders_today,
        )

    @classmethod
    def from_row(cls, r: dict) -> "StockCounter":
        return cls(
            id=str(r["id"]) if r.get("id") is not None else None,
            location=str(r.get("location") or r.get("puntoEnvio") or ""),
            entry=CatalogEntry(
                section=normalize_section(r.get("section")),
                product=normalize(r.get("product") or r.get("producto")),
                weight=normalize_weight(r.get("weight") or r.get("peso")),
            ),
            date=_as_date(r.get("stock_date") or r.get("fecha")),
            opening_stock=_as_int(r.get("opening_stock", r.get("stockInicial"))),
            replenishment=_as_int(r.get("replenishment", r.get("llevamos"))),
            orders_today=_as_int(r.get("orders_today", r.get("pedidosDelDia"))),
            closing_stock=_as_int(r.get("closing_stock", r.get("stockFinal"))),
        )

    def to_row(self) -> dict:
        return {
            "location": self.location,
            "section": self.entry.section or None,
            "product": self.entry.product,
            "weight": self.entry.weight,
            "stock_date": self.date,
            "opening_stock": self.opening_stock,
            "replenishment": self.replenishment,
            "orders_today": self.orders_today,
            "closing_stock": self.closing_stock,
        }

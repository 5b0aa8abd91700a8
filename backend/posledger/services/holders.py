# Overview: Registry of balance holder types the mutation protocol can lock and write.

"""
Balance holders

A holder is any row carrying a mutable integer balance. Each holder type
names its model, the columns forming its key, the balance fields the
protocol may write, and how its values read in user-facing messages.

Registered types:
- product_stock   InventoryStock.available_stock          quantity, >= 0
- store_stock     StoreInventory.available_stock (store_id, product_id)
- gift_card       GiftCard.current_balance_cents          money, >= 0
- cash_register   CashRegister cash_sales/cash_in/cash_out totals
- loyalty_points  Customer.loyalty_points                 points, >= 0
- credit_sale     CreditSale.balance_due_cents            money, >= 0
- account         Account.balance_cents                   money, signed
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..extensions import db
from ..models import (
    Account,
    CashRegister,
    CreditSale,
    Customer,
    GiftCard,
    InventoryStock,
    StoreInventory,
)
from ..money import format_cents
from .concurrency import lock_for_update

UNIT_MONEY = "money"
UNIT_QUANTITY = "quantity"
UNIT_POINTS = "points"


class UnknownHolderType(KeyError):
    """Raised when a HolderRef names a type that is not registered."""


@dataclass(frozen=True)
class HolderType:
    name: str
    model: Any
    key_columns: tuple[str, ...]
    fields: tuple[str, ...]
    label: str
    unit: str = UNIT_QUANTITY
    non_negative: bool = True
    status_field: str | None = None

    @property
    def default_field(self) -> str:
        return self.fields[0]

    def format(self, value: int) -> str:
        if self.unit == UNIT_MONEY:
            return format_cents(value)
        return str(value)

    def key_filter(self, key: tuple) -> dict:
        if len(key) != len(self.key_columns):
            raise ValueError(f"{self.name} key must have {len(self.key_columns)} part(s), got {key!r}")
        return dict(zip(self.key_columns, key))

    def fetch(self, key: tuple, *, lock: bool):
        query = db.session.query(self.model).filter_by(**self.key_filter(key))
        if lock:
            query = lock_for_update(query)
        return query.one_or_none()

    def keys(self) -> list[tuple]:
        cols = [getattr(self.model, c) for c in self.key_columns]
        return [tuple(row) for row in db.session.query(*cols).order_by(*cols).all()]


_REGISTRY: dict[str, HolderType] = {}


def register(holder_type: HolderType) -> HolderType:
    _REGISTRY[holder_type.name] = holder_type
    return holder_type


def get_holder_type(name: str) -> HolderType:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise UnknownHolderType(name) from None


def all_holder_types() -> list[HolderType]:
    return [_REGISTRY[name] for name in sorted(_REGISTRY)]


PRODUCT_STOCK = register(HolderType(
    name="product_stock",
    model=InventoryStock,
    key_columns=("product_id",),
    fields=("available_stock",),
    label="Product stock",
))

STORE_STOCK = register(HolderType(
    name="store_stock",
    model=StoreInventory,
    key_columns=("store_id", "product_id"),
    fields=("available_stock",),
    label="Store stock",
))

GIFT_CARD = register(HolderType(
    name="gift_card",
    model=GiftCard,
    key_columns=("id",),
    fields=("current_balance_cents",),
    label="Gift card",
    unit=UNIT_MONEY,
    status_field="status",
))

CASH_REGISTER = register(HolderType(
    name="cash_register",
    model=CashRegister,
    key_columns=("id",),
    fields=("cash_sales_total_cents", "total_cash_in_cents", "total_cash_out_cents"),
    label="Cash register",
    unit=UNIT_MONEY,
    status_field="status",
))

LOYALTY_POINTS = register(HolderType(
    name="loyalty_points",
    model=Customer,
    key_columns=("id",),
    fields=("loyalty_points",),
    label="Loyalty points",
    unit=UNIT_POINTS,
))

CREDIT_SALE = register(HolderType(
    name="credit_sale",
    model=CreditSale,
    key_columns=("id",),
    fields=("balance_due_cents",),
    label="Credit sale",
    unit=UNIT_MONEY,
    status_field="status",
))

ACCOUNT = register(HolderType(
    name="account",
    model=Account,
    key_columns=("id",),
    fields=("balance_cents",),
    label="Account",
    unit=UNIT_MONEY,
    non_negative=False,
))

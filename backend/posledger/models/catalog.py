from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z, utcnow


class Store(db.Model):
    """Physical store / warehouse location holding per-store stock."""
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    address = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Sellable product. Stock lives on the InventoryStock row, not here.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    barcode = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    stock = db.relationship("InventoryStock", uselist=False, back_populates="product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "available_stock": self.stock.available_stock if self.stock else 0,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryStock(db.Model):
    """
    Balance holder: sellable quantity for one product (never negative).

    Only the balance service writes available_stock.
    """
    __tablename__ = "inventory"

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), primary_key=True)
    available_stock = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product", back_populates="stock")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "available_stock": self.available_stock,
            "updated_at": to_utc_z(self.updated_at),
        }


class StoreInventory(db.Model):
    """Balance holder: quantity of one product held at one store."""
    __tablename__ = "store_inventory"

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), primary_key=True)
    available_stock = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("inventory", lazy=True))
    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_id": self.product_id,
            "available_stock": self.available_stock,
        }

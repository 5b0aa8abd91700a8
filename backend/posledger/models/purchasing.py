from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_iso_date, to_utc_z, utcnow

PO_STATUS_ORDERED = "ordered"
PO_STATUS_PARTIAL = "partial"
PO_STATUS_RECEIVED = "received"
PO_STATUS_CANCELLED = "cancelled"

PO_OPEN_STATUSES = (PO_STATUS_ORDERED, PO_STATUS_PARTIAL)


class Supplier(db.Model):
    """Vendor master data. Suppliers with orders are deactivated, not deleted."""
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    contact_person = db.Column(db.String(128), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)
    payment_terms = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "tax_id": self.tax_id,
            "payment_terms": self.payment_terms,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseOrder(db.Model):
    """
    Goods ordered from a supplier.

    LIFECYCLE: ordered -> partial -> received, or ordered/partial -> cancelled.
    Stock only moves when lines are received.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(32), nullable=False, unique=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=PO_STATUS_ORDERED, index=True)

    order_date = db.Column(db.Date, nullable=False)
    expected_date = db.Column(db.Date, nullable=True)
    received_date = db.Column(db.Date, nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    user = db.relationship("User")
    items = db.relationship("PurchaseOrderItem", back_populates="purchase_order", order_by="PurchaseOrderItem.id", lazy=True)

    def to_dict(self, *, include_items: bool = False) -> dict:
        d = {
            "id": self.id,
            "po_number": self.po_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier.name if self.supplier else None,
            "status": self.status,
            "order_date": to_iso_date(self.order_date),
            "expected_date": to_iso_date(self.expected_date),
            "received_date": to_iso_date(self.received_date),
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_by_name": self.user.name if self.user else None,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            d["items"] = [item.to_dict() for item in self.items]
        return d


class PurchaseOrderItem(db.Model):
    """One ordered product. quantity_received accumulates over partial receipts."""
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.UniqueConstraint("purchase_order_id", "product_id", name="uq_purchase_order_items_po_product"),
        db.CheckConstraint("quantity_received <= quantity_ordered", name="ck_purchase_order_items_received"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity_ordered = db.Column(db.Integer, nullable=False)
    quantity_received = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    purchase_order = db.relationship("PurchaseOrder", back_populates="items")
    product = db.relationship("Product")

    @property
    def quantity_outstanding(self) -> int:
        return self.quantity_ordered - self.quantity_received

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity_ordered": self.quantity_ordered,
            "quantity_received": self.quantity_received,
            "quantity_outstanding": self.quantity_outstanding,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
        }

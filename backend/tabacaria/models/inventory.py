from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import event
from sqlalchemy.ext.mutable import MutableDict, MutableList

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


PRODUCT_CATEGORIES = (
    "Essências",
    "Tabaco",
    "Acessórios",
    "Narguilés",
    "Carvão",
    "Bebidas",
    "Pod",
    "Outros",
)
DEFAULT_CATEGORY = "Outros"

# Suppliers predate the Pod category
SUPPLIER_CATEGORIES = tuple(c for c in PRODUCT_CATEGORIES if c != "Pod")

LEDGER_KINDS = ("in", "out", "adjustment", "sale")
REFERENCE_KINDS = ("sale", "purchase", "stock_adjustment")


class Supplier(db.Model):
    """
    Supplier master data.

    Soft-deleted (is_active=False) once any product references it.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    company_name = db.Column(db.String(255), nullable=True)
    document = db.Column(db.String(32), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    address = db.Column(MutableDict.as_mutable(db.JSON), nullable=False, default=dict)
    contact_person = db.Column(MutableDict.as_mutable(db.JSON), nullable=False, default=dict)
    categories = db.Column(MutableList.as_mutable(db.JSON), nullable=False, default=list)

    payment_terms = db.Column(db.String(255), nullable=True)
    min_order_value_cents = db.Column(db.Integer, nullable=False, default=0)
    observations = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "company_name": self.company_name,
            "document": self.document,
            "email": self.email,
            "phone": self.phone,
            "address": dict(self.address or {}),
            "contact_person": dict(self.contact_person or {}),
            "categories": list(self.categories or []),
            "payment_terms": self.payment_terms,
            "min_order_value_cents": self.min_order_value_cents,
            "observations": self.observations,
            "is_active": self.is_active,
            "last_purchase_at": to_utc_z(self.last_purchase_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_summary(self) -> dict:
        return {"id": self.id, "name": self.name}


class Product(db.Model):
    """
    Product master data.

    Stock is a mutable counter on the product row; every change to it is
    mirrored by exactly one InventoryTransaction.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(32), nullable=False, default=DEFAULT_CATEGORY)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=5)

    barcode = db.Column(db.String(64), nullable=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    expiry_date = db.Column(db.Date, nullable=True)

    images = db.Column(MutableList.as_mutable(db.JSON), nullable=False, default=list)
    flavors = db.Column(MutableList.as_mutable(db.JSON), nullable=False, default=list)
    attributes = db.Column(MutableDict.as_mutable(db.JSON), nullable=False, default=dict)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy="dynamic"))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def profit_margin(self) -> float:
        """Margin over the sale price, in percent."""
        if not self.cost_price_cents:
            return 100.0
        if not self.price_cents:
            return 0.0
        return round((self.price_cents - self.cost_price_cents) / self.price_cents * 100, 2)

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "barcode": self.barcode,
            "supplier_id": self.supplier_id,
            "supplier": self.supplier.to_summary() if self.supplier else None,
            "expiry_date": to_iso_date(self.expiry_date),
            "images": list(self.images or []),
            "flavors": list(self.flavors or []),
            "attributes": dict(self.attributes or {}),
            "is_active": self.is_active,
            "profit_margin": self.profit_margin,
            "is_low_stock": self.is_low_stock,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


@dataclass(frozen=True)
class LedgerReference:
    """The event that caused a stock movement, e.g. LedgerReference("sale", 12)."""
    kind: str
    id: int

    def __post_init__(self):
        if self.kind not in REFERENCE_KINDS:
            raise ValueError(f"unknown reference kind: {self.kind}")

    def to_dict(self) -> dict:
        return {"kind": self.kind, "id": self.id}


class InventoryTransaction(db.Model):
    """
    Append-only stock ledger.

    quantity is the signed effect on stock: new_stock - previous_stock.
    Rows are never updated; they are only removed together with a product
    that was never sold.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.CheckConstraint("new_stock - previous_stock = quantity", name="ck_invtx_quantity_delta"),
        db.Index("ix_invtx_product_created", "product_id", "created_at"),
        db.Index("ix_invtx_reference", "reference_kind", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    cost_price_cents = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    reference_kind = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("ledger_entries", lazy="dynamic", passive_deletes=True))
    user = db.relationship("User")

    @property
    def reference(self) -> LedgerReference | None:
        if self.reference_kind is None or self.reference_id is None:
            return None
        return LedgerReference(self.reference_kind, self.reference_id)

    @reference.setter
    def reference(self, value: LedgerReference | None) -> None:
        self.reference_kind = value.kind if value else None
        self.reference_id = value.id if value else None

    def to_dict(self) -> dict:
        ref = self.reference
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "cost_price_cents": self.cost_price_cents,
            "reason": self.reason,
            "reference": ref.to_dict() if ref else None,
            "user_id": self.user_id,
            "user": {"id": self.user.id, "name": self.user.name} if self.user else None,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(InventoryTransaction, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise ValueError("inventory transactions are append-only")

from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PAYMENT_METHODS = (
    "Dinheiro",
    "Cartão de crédito",
    "Cartão de débito",
    "Pix",
    "Transferência",
    "Outro",
)
DEFAULT_PAYMENT_METHOD = "Dinheiro"

PAYMENT_STATUSES = ("Pending", "Paid", "Partial", "Cancelled")
DEFAULT_PAYMENT_STATUS = "Paid"
CANCELLED = "Cancelled"


class Sale(db.Model):
    """
    Sale document.

    Line prices and costs are snapshots taken when the sale was recorded;
    later catalog edits never change a stored sale.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_status_created", "payment_status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number, e.g. "VENDA-000042"
    sale_number = db.Column(db.String(32), nullable=False)

    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=True, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    profit_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=False, default=DEFAULT_PAYMENT_METHOD, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=DEFAULT_PAYMENT_STATUS, index=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    client = db.relationship("Client", backref=db.backref("sales", lazy="dynamic"))
    seller = db.relationship("User")
    items = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_cancelled(self) -> bool:
        return self.payment_status == CANCELLED

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "client_id": self.client_id,
            "client": {"id": self.client.id, "name": self.client.name} if self.client else None,
            "seller_id": self.seller_id,
            "seller": {"id": self.seller.id, "name": self.seller.name} if self.seller else None,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "profit_cents": self.profit_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [line.to_dict() for line in self.items]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale, in the order they were submitted."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_sale_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # Not a hard FK: lines outlive hard-deleted products
    product_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "quantity": self.quantity,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
        }

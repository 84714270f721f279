from __future__ import annotations

from sqlalchemy.ext.mutable import MutableDict, MutableList

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


ADDRESS_FIELDS = ("street", "number", "complement", "neighborhood", "city", "state", "zip_code")


class Client(db.Model):
    """
    Shop customer.

    loyalty_points and total_purchased_cents are maintained by the sale
    workflow; both are floored at zero when a sale is cancelled.
    """
    __tablename__ = "clients"
    __table_args__ = (
        db.UniqueConstraint("document", name="uq_clients_document"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_clients_points_non_negative"),
        db.Index("ix_clients_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, index=True)
    phone = db.Column(db.String(32), nullable=True)
    document = db.Column(db.String(32), nullable=True)

    address = db.Column(MutableDict.as_mutable(db.JSON), nullable=False, default=dict)
    birthday = db.Column(db.Date, nullable=True)
    observations = db.Column(db.Text, nullable=True)

    # Free-form tags ("preferences") plus the favourites the shop tracks
    preferences = db.Column(MutableList.as_mutable(db.JSON), nullable=False, default=list)
    favorite_category = db.Column(db.String(32), nullable=True)
    favorite_product_ids = db.Column(MutableList.as_mutable(db.JSON), nullable=False, default=list)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_purchased_cents = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "document": self.document,
            "address": dict(self.address or {}),
            "birthday": to_iso_date(self.birthday),
            "observations": self.observations,
            "preferences": list(self.preferences or []),
            "favorite_category": self.favorite_category,
            "favorite_product_ids": list(self.favorite_product_ids or []),
            "loyalty_points": self.loyalty_points,
            "total_purchased_cents": self.total_purchased_cents,
            "last_purchase_at": to_utc_z(self.last_purchase_at),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

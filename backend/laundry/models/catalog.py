from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..utils.ids import generate_id


class Product(db.Model):
    """
    Product master data: a kind of textile piece the owner sends out.

    OWNERSHIP: Products are scoped to the authenticated owner via owner_id.
    Lookups always load by id and compare owner_id explicitly; a product
    owned by someone else is indistinguishable from a missing one.

    PRICE: Authoritative storage in cents (frontend may only format for display).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_owner_name", "owner_id", "name"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    owner_id = db.Column(db.String(128), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} owner_id={self.owner_id}>"

    def to_record(self):
        from ..services.reconciliation import ProductRecord

        return ProductRecord(
            id=self.id,
            name=self.name,
            category=self.category,
            price_cents=self.price_cents,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

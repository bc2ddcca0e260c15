from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z
from ..utils.ids import generate_id


class Shipment(db.Model):
    """
    A batch of pieces sent to the laundry on one day.

    LIFECYCLE:
    1. CREATED: Lines recorded, nothing returned yet (an initial returned
       quantity may be given at creation, clamped to quantity_sent)
    2. PARTIALLY_RETURNED: 0 < total returned < total sent
    3. FULLY_RETURNED: total returned == total sent
    4. Deleted: explicit delete, or the last line was stripped because its
       product was removed. There is no un-delete.

    The shipment row plus its lines is written as one unit. version_id
    guards that write: an UPDATE against a row another request changed
    since it was loaded raises StaleDataError instead of overwriting it.
    """
    __tablename__ = "shipments"
    __table_args__ = (
        db.Index("ix_shipments_owner_sent", "owner_id", "sent_at"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    owner_id = db.Column(db.String(128), nullable=False, index=True)

    # Calendar dates, no time component
    sent_at = db.Column(db.Date, nullable=False)
    expected_return_at = db.Column(db.Date, nullable=True)

    notes = db.Column(db.String(240), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "ShipmentLine",
        back_populates="shipment",
        order_by="ShipmentLine.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Shipment id={self.id} sent_at={self.sent_at} owner_id={self.owner_id} lines={len(self.lines)}>"

    @property
    def status(self) -> str:
        total_sent = sum(line.quantity_sent for line in self.lines)
        total_returned = sum(line.quantity_returned for line in self.lines)
        if total_returned == 0:
            return "CREATED"
        if total_returned < total_sent:
            return "PARTIALLY_RETURNED"
        return "FULLY_RETURNED"

    def to_record(self):
        from ..services.reconciliation import LineRecord, ShipmentRecord

        return ShipmentRecord(
            id=self.id,
            owner_id=self.owner_id,
            sent_at=self.sent_at,
            expected_return_at=self.expected_return_at,
            notes=self.notes,
            lines=[
                LineRecord(
                    id=line.id,
                    product_id=line.product_id,
                    quantity_sent=line.quantity_sent,
                    quantity_returned=line.quantity_returned,
                )
                for line in self.lines
            ],
            created_at=self.created_at,
            updated_at=self.updated_at,
            version_id=self.version_id,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "sent_at": to_iso_date(self.sent_at),
            "expected_return_at": to_iso_date(self.expected_return_at),
            "notes": self.notes,
            "status": self.status,
            "items": [line.to_dict() for line in self.lines],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ShipmentLine(db.Model):
    """
    One product on a shipment.

    INVARIANT: 0 <= quantity_returned <= quantity_sent. Pending is derived,
    never stored.

    product_id is not a foreign key: a line may outlive a lookup of its
    product, and views render it with a placeholder name.
    """
    __tablename__ = "shipment_lines"
    __table_args__ = (
        db.CheckConstraint("quantity_sent > 0", name="ck_shipment_lines_sent_positive"),
        db.CheckConstraint(
            "quantity_returned >= 0 AND quantity_returned <= quantity_sent",
            name="ck_shipment_lines_returned_range",
        ),
        db.Index("ix_shipment_lines_product", "product_id"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    shipment_id = db.Column(db.String(32), db.ForeignKey("shipments.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    product_id = db.Column(db.String(32), nullable=False)
    quantity_sent = db.Column(db.Integer, nullable=False)
    quantity_returned = db.Column(db.Integer, nullable=False, default=0)

    shipment = db.relationship("Shipment", back_populates="lines")

    @property
    def quantity_pending(self) -> int:
        return max(self.quantity_sent - self.quantity_returned, 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_sent": self.quantity_sent,
            "quantity_returned": self.quantity_returned,
            "quantity_pending": self.quantity_pending,
        }

# backend/laundry/services/shipment_store.py
"""
Shipment Store: owner-scoped shipment persistence.

A shipment row plus its lines is one document. Reads return ORM rows (for
CRUD responses) or engine records (for reconciliation); writes take records
and overwrite the stored document with them.

OWNERSHIP: Every read and write checks shipment.owner_id against the caller.
A mismatch is "not found", never a permission error.

CONCURRENCY: Shipments are versioned (version_id_col). save_shipments writes
onto the rows loaded earlier in the same session, so an UPDATE against a
row that changed in between raises StaleDataError; that is reported as
ConflictError and the whole batch is rolled back.
"""
from __future__ import annotations

from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Shipment, ShipmentLine
from ..time_utils import utcnow
from ..utils.ids import generate_id
from ..validation import ConflictError


class ShipmentError(Exception):
    """Raised for shipment business rule violations."""
    pass


def _owned(shipment: Shipment | None, owner_id: str) -> Shipment | None:
    if shipment is None or shipment.owner_id != owner_id:
        return None
    return shipment


# =============================================================================
# READS
# =============================================================================

def get_shipment(shipment_id: str, owner_id: str) -> Shipment | None:
    shipment = db.session.query(Shipment).filter(Shipment.id == shipment_id).first()
    return _owned(shipment, owner_id)


def list_shipments(owner_id: str) -> list[Shipment]:
    """Owner's shipments, newest sent_at first (display order)."""
    return (
        db.session.query(Shipment)
        .filter(Shipment.owner_id == owner_id)
        .order_by(Shipment.sent_at.desc(), Shipment.created_at.desc(), Shipment.id.asc())
        .all()
    )


def list_shipment_records(owner_id: str) -> list:
    return [s.to_record() for s in list_shipments(owner_id)]


def list_shipments_with_product(owner_id: str, product_id: str) -> list[Shipment]:
    return (
        db.session.query(Shipment)
        .join(ShipmentLine, ShipmentLine.shipment_id == Shipment.id)
        .filter(Shipment.owner_id == owner_id, ShipmentLine.product_id == product_id)
        .distinct()
        .all()
    )


# =============================================================================
# WRITES
# =============================================================================

def create_shipment(*, owner_id: str, meta: dict, items: list[dict]) -> Shipment:
    """
    Create a shipment from validated meta (dates, notes) and items.

    Initial quantity_returned is clamped to [0, quantity_sent].
    """
    if not items:
        raise ShipmentError("A shipment needs at least one item")

    now = utcnow()
    shipment = Shipment(
        id=generate_id(),
        owner_id=owner_id,
        sent_at=meta["sent_at"],
        expected_return_at=meta.get("expected_return_at"),
        notes=meta.get("notes"),
        created_at=now,
        updated_at=now,
    )
    for position, item in enumerate(items):
        shipment.lines.append(
            ShipmentLine(
                id=generate_id(),
                position=position,
                product_id=item["product_id"],
                quantity_sent=item["quantity_sent"],
                quantity_returned=min(max(item.get("quantity_returned", 0), 0), item["quantity_sent"]),
            )
        )

    db.session.add(shipment)
    db.session.commit()
    return shipment


def update_shipment_meta(*, shipment_id: str, owner_id: str, patch: dict) -> Shipment | None:
    shipment = get_shipment(shipment_id, owner_id)
    if not shipment:
        return None

    for key in ("sent_at", "expected_return_at", "notes"):
        if key in patch:
            setattr(shipment, key, patch[key])
    shipment.updated_at = utcnow()
    _commit()
    return shipment


def delete_shipment(shipment_id: str, owner_id: str) -> bool:
    shipment = get_shipment(shipment_id, owner_id)
    if not shipment:
        return False

    db.session.delete(shipment)
    _commit()
    return True


def _apply_record(row: Shipment, record) -> None:
    """Overwrite a shipment row and its lines with a record."""
    row.sent_at = record.sent_at
    row.expected_return_at = record.expected_return_at
    row.notes = record.notes
    row.updated_at = record.updated_at or utcnow()
    # Always UPDATE the shipment row so version_id is checked and bumped,
    # even when only lines changed.
    flag_modified(row, "updated_at")

    keep_ids = {line.id for line in record.lines}
    for line in list(row.lines):
        if line.id not in keep_ids:
            row.lines.remove(line)

    existing = {line.id: line for line in row.lines}
    for position, line_record in enumerate(record.lines):
        line = existing.get(line_record.id)
        if line is None:
            line = ShipmentLine(id=line_record.id)
            row.lines.append(line)
        line.position = position
        line.product_id = line_record.product_id
        line.quantity_sent = line_record.quantity_sent
        line.quantity_returned = line_record.quantity_returned


def save_shipments(owner_id: str, records: Iterable) -> int:
    """
    Persist records as full-document overwrites in one transaction.

    Either every record is written or none is. Records must belong to the
    owner and already exist.

    Returns:
        Number of shipments written

    Raises:
        ShipmentError: If a record is unknown or owned by someone else
        ConflictError: If a shipment changed since it was loaded
    """
    records = list(records)
    if not records:
        return 0

    try:
        for record in records:
            row = _owned(db.session.get(Shipment, record.id), owner_id)
            if row is None:
                raise ShipmentError(f"Shipment {record.id} not found")
            if record.version_id is not None and row.version_id != record.version_id:
                raise ConflictError(f"Shipment {record.id} was modified by another request")
            _apply_record(row, record)
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError("Shipment was modified by another request")
    except (ShipmentError, ConflictError, SQLAlchemyError):
        db.session.rollback()
        raise

    return len(records)


def strip_product(*, owner_id: str, product_id: str) -> tuple[int, int]:
    """
    Remove every line referencing product_id from the owner's shipments.

    Does not commit; the caller owns the transaction.

    Returns:
        (shipments updated, shipments deleted)
    """
    updated = 0
    deleted = 0
    now = utcnow()
    for shipment in list_shipments_with_product(owner_id, product_id):
        for line in [l for l in shipment.lines if l.product_id == product_id]:
            shipment.lines.remove(line)
        if not shipment.lines:
            db.session.delete(shipment)
            deleted += 1
        else:
            shipment.updated_at = now
            updated += 1
    db.session.flush()
    return updated, deleted


def _commit() -> None:
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError("Shipment was modified by another request")
    except SQLAlchemyError:
        db.session.rollback()
        raise

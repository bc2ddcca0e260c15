"""
Return Processing Service

WHY: The laundry hands pieces back in batches. Users record returns either
line by line on a shipment, or as "N pieces of product X came back", in
which case the quantity is spread over open shipments oldest first.

FLOW (every operation):
1. Load the owner's shipments (and the products they reference) once
2. Hand snapshots to the reconciliation engine
3. Persist only what the engine reports as changed, in one transaction
4. Re-read and return fresh views

OWNERSHIP: owner_id is always explicit. Shipments or products of another
owner behave exactly like missing ones.
"""
from __future__ import annotations

from flask import current_app

from . import catalog_store, shipment_store
from .reconciliation import (
    MODE_SET,
    LineUpdate,
    ProductReturnRequest,
    allocate_product_returns,
    apply_line_updates,
    build_balances,
    build_return_tickets,
    build_return_view,
)
from ..time_utils import utcnow


class ReturnError(Exception):
    """Raised for return operation errors."""
    pass


def _removed_label() -> str:
    return current_app.config.get("REMOVED_PRODUCT_LABEL", "Removed product")


def _referenced_product_ids(records) -> list[str]:
    return [line.product_id for record in records for line in record.lines]


# =============================================================================
# QUERIES
# =============================================================================

def list_return_views(owner_id: str, pending_only: bool = False) -> list[dict]:
    """Return view for every shipment, newest first."""
    records = shipment_store.list_shipment_records(owner_id)
    products = catalog_store.get_product_records_many(owner_id, _referenced_product_ids(records))
    views = [build_return_view(record, products, _removed_label()) for record in records]
    if pending_only:
        views = [view for view in views if view["total_pending"] > 0]
    return views


def get_return_view(shipment_id: str, owner_id: str) -> dict | None:
    shipment = shipment_store.get_shipment(shipment_id, owner_id)
    if not shipment:
        return None

    record = shipment.to_record()
    products = catalog_store.get_product_records_many(owner_id, _referenced_product_ids([record]))
    return build_return_view(record, products, _removed_label())


def get_balances(owner_id: str) -> list[dict]:
    records = shipment_store.list_shipment_records(owner_id)
    products = catalog_store.get_product_records_many(owner_id, _referenced_product_ids(records))
    return build_balances(records, products, _removed_label())


def get_return_tickets(owner_id: str, pending_only: bool = False) -> list[dict]:
    records = shipment_store.list_shipment_records(owner_id)
    products = catalog_store.get_product_records_many(owner_id, _referenced_product_ids(records))
    return build_return_tickets(records, products, _removed_label(), pending_only=pending_only)


# =============================================================================
# MUTATIONS
# =============================================================================

def update_line_returns(
    shipment_id: str,
    owner_id: str,
    updates: list[LineUpdate],
    mode: str = MODE_SET,
) -> dict | None:
    """
    Set or increment returned quantities on specific lines of one shipment.

    Unknown line ids are skipped and reported back as ignored_line_ids.

    Returns:
        The reloaded shipment dict plus "ignored_line_ids", or None if
        the shipment is not found (or not owned)

    Raises:
        ConflictError: If the shipment changed since it was loaded
    """
    shipment = shipment_store.get_shipment(shipment_id, owner_id)
    if not shipment:
        return None

    updated, ignored = apply_line_updates(shipment.to_record(), updates, mode)
    updated.updated_at = utcnow()
    shipment_store.save_shipments(owner_id, [updated])

    if ignored:
        current_app.logger.info(
            "Ignored unknown line ids on shipment %s: %s", shipment_id, ", ".join(ignored)
        )

    reloaded = shipment_store.get_shipment(shipment_id, owner_id)
    body = reloaded.to_dict()
    body["ignored_line_ids"] = ignored
    return body


def apply_product_returns(owner_id: str, requests: list[ProductReturnRequest]) -> dict:
    """
    Apply per-product return quantities across shipments, oldest first.

    Each request yields a result (requested/applied/remaining/allocations/
    warning). Requests that cannot be satisfied are results, not errors.
    All changed shipments are written in one transaction.

    Returns:
        {"results": [...], "tickets": [...]} with tickets re-derived after
        the write

    Raises:
        ReturnError: If no requests were given
        ConflictError: If a shipment changed concurrently (nothing written)
    """
    if not requests:
        raise ReturnError("At least one return request is required")

    records = shipment_store.list_shipment_records(owner_id)
    product_ids = _referenced_product_ids(records) + [r.product_id for r in requests]
    products = catalog_store.get_product_records_many(owner_id, product_ids)

    outcome = allocate_product_returns(records, products, requests, now=utcnow())
    written = 0
    if outcome.changed:
        written = shipment_store.save_shipments(owner_id, outcome.changed)

    current_app.logger.info(
        "Applied %d product return request(s) for owner %s: %d piece(s) credited across %d shipment(s)",
        len(requests),
        owner_id,
        sum(r.applied for r in outcome.results),
        written,
    )

    return {
        "results": [r.to_dict() for r in outcome.results],
        "tickets": get_return_tickets(owner_id),
    }

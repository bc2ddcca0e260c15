# Overview: Flask API routes for shipments and returns; parses input and returns JSON responses.

# backend/laundry/routes/shipments.py
"""
Shipment and Return API Routes

DESIGN:
- Shipment CRUD (dates, notes, lines)
- Return views per shipment, balances and return tickets per product
- Per-line return updates (set / increment)
- Per-product return entry, credited to the oldest shipments first

OWNERSHIP: Every route is scoped to g.owner_id. A shipment that does not
exist and a shipment owned by someone else both answer 404.
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..models import Shipment
from ..services import catalog_store, return_service, shipment_store
from ..services.return_service import ReturnError
from ..services.shipment_store import ShipmentError
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_shipment_meta,
    parse_line_updates,
    parse_product_return_requests,
    validate_payload,
    validate_shipment_items,
)
from ..decorators import require_auth


SHIPMENT_META_POLICY = ModelValidationPolicy(
    writable_fields={"sent_at", "expected_return_at", "notes"},
    required_on_create={"sent_at"},
)

shipments_bp = Blueprint("shipments", __name__, url_prefix="/api/shipments")


def _not_found():
    return jsonify({"error": "Shipment not found"}), 404


def _pending_only() -> bool:
    raw = request.args.get("pending_only", request.args.get("pendingOnly", "false"))
    return raw.lower() in ("1", "true", "yes")


def _require_owned_products(owner_id: str, items: list[dict]) -> None:
    product_ids = [item["product_id"] for item in items]
    owned = catalog_store.get_products_many(owner_id, product_ids)
    for index, item in enumerate(items):
        if item["product_id"] not in owned:
            field = f"items[{index}].product_id"
            raise ValidationError(f"{field} is not a known product", fields={field: "is not a known product"})


# =============================================================================
# SHIPMENT CRUD
# =============================================================================

@shipments_bp.get("")
@require_auth
def list_shipments_route():
    """List the caller's shipments, newest sent_at first."""
    shipments = shipment_store.list_shipments(g.owner_id)
    return jsonify({
        "items": [s.to_dict() for s in shipments],
        "count": len(shipments),
    }), 200


@shipments_bp.get("/<shipment_id>")
@require_auth
def get_shipment_route(shipment_id: str):
    shipment = shipment_store.get_shipment(shipment_id, g.owner_id)
    if not shipment:
        return _not_found()
    return jsonify(shipment.to_dict()), 200


@shipments_bp.post("")
@require_auth
def create_shipment_route():
    """
    Create a shipment.

    Request body:
    {
        "sent_at": "2024-01-05",
        "expected_return_at": "2024-01-12",   (optional)
        "notes": "Weekend batch",             (optional, max 240 chars)
        "items": [
            {"product_id": "...", "quantity_sent": 10, "quantity_returned": 0}
        ]
    }

    Returns:
        201: Shipment created
        400: Invalid input (field-level detail in "fields")
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    meta_payload = {k: v for k, v in payload.items() if k != "items"}
    try:
        meta = validate_payload(model=Shipment, payload=meta_payload, policy=SHIPMENT_META_POLICY, partial=False)
        enforce_rules_shipment_meta(meta)
        items = validate_shipment_items(payload.get("items"))
        _require_owned_products(g.owner_id, items)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    try:
        shipment = shipment_store.create_shipment(owner_id=g.owner_id, meta=meta, items=items)
    except ShipmentError as e:
        return jsonify({"error": str(e)}), 400
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create shipment")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(shipment.to_dict()), 201


@shipments_bp.patch("/<shipment_id>")
@require_auth
def update_shipment_route(shipment_id: str):
    """Update shipment dates and notes. Lines are not editable here."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    shipment = shipment_store.get_shipment(shipment_id, g.owner_id)
    if not shipment:
        return _not_found()

    try:
        patch = validate_payload(model=Shipment, payload=payload, policy=SHIPMENT_META_POLICY, partial=True)
        enforce_rules_shipment_meta(
            patch,
            sent_at=shipment.sent_at,
            expected_return_at=shipment.expected_return_at,
        )
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    try:
        updated = shipment_store.update_shipment_meta(shipment_id=shipment_id, owner_id=g.owner_id, patch=patch)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update shipment")
        return jsonify({"error": "Internal server error"}), 500

    if not updated:
        return _not_found()
    return jsonify(updated.to_dict()), 200


@shipments_bp.delete("/<shipment_id>")
@require_auth
def delete_shipment_route(shipment_id: str):
    try:
        deleted = shipment_store.delete_shipment(shipment_id, g.owner_id)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except SQLAlchemyError:
        current_app.logger.exception("Failed to delete shipment")
        return jsonify({"error": "Internal server error"}), 500

    if not deleted:
        return _not_found()
    return "", 204


# =============================================================================
# RETURN VIEWS
# =============================================================================

@shipments_bp.get("/returns")
@require_auth
def list_return_views_route():
    """
    Return view of every shipment.

    Query params:
    - pending_only (or pendingOnly): bool (optional) - only shipments with pieces still out
    """
    views = return_service.list_return_views(g.owner_id, pending_only=_pending_only())
    return jsonify({"items": views, "count": len(views)}), 200


@shipments_bp.get("/<shipment_id>/returns")
@require_auth
def get_return_view_route(shipment_id: str):
    view = return_service.get_return_view(shipment_id, g.owner_id)
    if view is None:
        return _not_found()
    return jsonify(view), 200


@shipments_bp.get("/balance")
@require_auth
def balance_route():
    """Per-product sent/returned/pending with movement history."""
    balances = return_service.get_balances(g.owner_id)
    return jsonify({"items": balances, "count": len(balances)}), 200


@shipments_bp.get("/returns/by-product")
@require_auth
def return_tickets_route():
    """
    Return tickets: per-product totals with contributing shipments.

    Query params:
    - pending_only (or pendingOnly): bool (optional)
    """
    tickets = return_service.get_return_tickets(g.owner_id, pending_only=_pending_only())
    return jsonify({"items": tickets, "count": len(tickets)}), 200


# =============================================================================
# RETURN UPDATES
# =============================================================================

@shipments_bp.post("/returns/by-product")
@require_auth
def apply_product_returns_route():
    """
    Record returned pieces per product; credited oldest shipment first.

    Request body:
    {
        "updates": [
            {"product_id": "...", "quantity": 7,
             "occurred_at": "2024-02-10",   (optional)
             "notes": "Friday pickup"}      (optional)
        ]
    }

    Returns:
        200: {"results": [...], "tickets": [...]}
             Requests that could not be fully applied carry remaining > 0
             and a warning; they are not errors.
        400: Invalid input
        409: A shipment changed concurrently; nothing was written
    """
    try:
        requests = parse_product_return_requests(request.get_json(silent=True))
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    try:
        outcome = return_service.apply_product_returns(g.owner_id, requests)
    except ReturnError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except SQLAlchemyError:
        current_app.logger.exception("Failed to apply product returns")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(outcome), 200


@shipments_bp.patch("/<shipment_id>/returns")
@require_auth
def update_line_returns_route(shipment_id: str):
    """
    Update returned quantities on specific lines.

    Request body:
    {
        "updates": [{"line_id": "...", "quantity_returned": 4}],
        "mode": "set"   (optional: "set" | "increment", default "set")
    }

    Returns:
        200: The updated shipment, plus "ignored_line_ids"
        400: Invalid input
        404: Shipment not found
        409: The shipment changed concurrently; nothing was written

    Values are clamped to [0, quantity_sent]. Unknown line ids are ignored
    and listed in "ignored_line_ids".
    """
    try:
        updates, mode = parse_line_updates(request.get_json(silent=True))
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    try:
        result = return_service.update_line_returns(shipment_id, g.owner_id, updates, mode)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update line returns")
        return jsonify({"error": "Internal server error"}), 500

    if result is None:
        return _not_found()
    return jsonify(result), 200

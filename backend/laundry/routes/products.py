# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/laundry/routes/products.py
"""
Product catalog routes.

OWNERSHIP: All product operations are scoped to the caller (g.owner_id,
set by @require_auth). Another owner's product answers 404.
"""
from flask import Blueprint, request, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..models import Product
from ..services import catalog_store
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
)
from ..decorators import require_auth

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "category", "price_cents"},
    required_on_create={"name", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """List the caller's products, ordered by name."""
    products = catalog_store.list_products(g.owner_id)
    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
    }


@products_bp.get("/<product_id>")
@require_auth
def get_product(product_id: str):
    product = catalog_store.get_product(product_id, g.owner_id)
    if not product:
        return {"error": "Product not found"}, 404
    return product.to_dict(), 200


@products_bp.post("")
@require_auth
def create_product_route():
    """
    Create a new product.

    Request body:
    {
        "name": "Bath towel",
        "category": "Towels",     (optional, max 120 chars)
        "price_cents": 350
    }
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return e.to_dict(), 400

    try:
        created = catalog_store.create_product(owner_id=g.owner_id, patch=patch)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return created, 201


@products_bp.put("/<product_id>")
@require_auth
def update_product_route(product_id: str):
    """Update a product (same fields as create; all optional)."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return e.to_dict(), 400

    try:
        updated = catalog_store.update_product(product_id=product_id, owner_id=g.owner_id, patch=patch)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to update product")
        return {"error": "Internal server error"}, 500

    if not updated:
        return {"error": "Product not found"}, 404

    return updated, 200


@products_bp.delete("/<product_id>")
@require_auth
def delete_product_route(product_id: str):
    """
    Delete a product.

    Lines referencing it are stripped from the caller's shipments; a
    shipment left without lines is deleted.
    """
    try:
        deleted = catalog_store.delete_product(product_id=product_id, owner_id=g.owner_id)
    except SQLAlchemyError:
        current_app.logger.exception("Failed to delete product")
        return {"error": "Internal server error"}, 500

    if not deleted:
        return {"error": "Product not found"}, 404

    return "", 204

# backend/laundry/services/catalog_store.py
"""
Catalog Store: owner-scoped product persistence.

OWNERSHIP: Every read loads by id and then compares owner_id explicitly.
A product owned by another owner is reported exactly like a missing one
(None / False / absent from a map) so existence never leaks across owners.

DELETION: Removing a product strips its lines from the owner's shipments;
a shipment left with no lines is deleted. Both happen in the same
transaction as the product delete.
"""
from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product
from . import shipment_store
from ..time_utils import utcnow

PRODUCT_MUTABLE_FIELDS = {"name", "category", "price_cents"}
DEFAULT_LOOKUP_CHUNK_SIZE = 10


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _owned(product: Product | None, owner_id: str) -> Product | None:
    if product is None or product.owner_id != owner_id:
        return None
    return product


def get_product(product_id: str, owner_id: str) -> Product | None:
    product = db.session.query(Product).filter(Product.id == product_id).first()
    return _owned(product, owner_id)


def list_products(owner_id: str) -> list[Product]:
    """All of the owner's products, ordered by name."""
    return (
        db.session.query(Product)
        .filter(Product.owner_id == owner_id)
        .order_by(Product.name.asc(), Product.id.asc())
        .all()
    )


def _chunks(ids: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


def get_products_many(owner_id: str, ids: Iterable[str]) -> dict[str, Product]:
    """
    Batched lookup: id -> Product for the ids the owner actually owns.

    The id list is de-duplicated and queried in chunks of
    PRODUCT_LOOKUP_CHUNK_SIZE; results are merged. Ids that are unknown or
    belong to another owner are simply absent from the result.
    """
    unique_ids = list(dict.fromkeys(i for i in ids if i))
    if not unique_ids:
        return {}

    chunk_size = current_app.config.get("PRODUCT_LOOKUP_CHUNK_SIZE", DEFAULT_LOOKUP_CHUNK_SIZE)
    products: dict[str, Product] = {}
    for chunk in _chunks(unique_ids, max(chunk_size, 1)):
        rows = db.session.query(Product).filter(Product.id.in_(chunk)).all()
        for product in rows:
            if _owned(product, owner_id) is not None:
                products[product.id] = product
    return products


def get_product_records_many(owner_id: str, ids: Iterable[str]) -> dict:
    """get_products_many, as engine records."""
    return {pid: p.to_record() for pid, p in get_products_many(owner_id, ids).items()}


def create_product(*, owner_id: str, patch: dict) -> dict:
    """Create product using a validated patch dict."""
    now = utcnow()
    p = Product(owner_id=owner_id, created_at=now, updated_at=now)
    apply_product_patch(p, patch)

    db.session.add(p)
    db.session.commit()
    return p.to_dict()


def update_product(*, product_id: str, owner_id: str, patch: dict) -> dict | None:
    """
    Update a product.

    Returns:
        Updated product dict, or None if not found (or not owned)
    """
    p = get_product(product_id, owner_id)
    if not p:
        return None

    apply_product_patch(p, patch)
    p.updated_at = utcnow()
    db.session.commit()
    return p.to_dict()


def delete_product(*, product_id: str, owner_id: str) -> bool:
    """
    Hard-delete a product and cascade into shipments.

    Returns:
        True if deleted, False if not found (or not owned)
    """
    p = get_product(product_id, owner_id)
    if not p:
        return False

    try:
        stripped, deleted = shipment_store.strip_product(owner_id=owner_id, product_id=product_id)
        db.session.delete(p)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Deleted product %s for owner %s (%d shipments updated, %d shipments removed)",
        product_id, owner_id, stripped, deleted,
    )
    return True

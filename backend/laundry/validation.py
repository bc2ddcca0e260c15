from __future__ import annotations
from datetime import date, datetime
from laundry.time_utils import parse_iso_date, parse_iso_datetime, to_utc_z

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from laundry.services.reconciliation import (
    LINE_UPDATE_MODES,
    MODE_SET,
    LineUpdate,
    ProductReturnRequest,
)


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MIN_PRODUCT_NAME_LENGTH = 2
MAX_RETURN_NOTES_LENGTH = 240


class ValidationError(ValueError):
    """400-level input problem, optionally with per-field detail."""

    def __init__(self, message: str, fields: dict[str, str] | None = None):
        super().__init__(message)
        self.fields = fields or {}

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.fields:
            body["fields"] = self.fields
        return body


class ConflictError(ValueError):
    """409-level conflict (e.g., shipment changed by another request)."""


def _field_error(field: str, message: str) -> ValidationError:
    return ValidationError(f"{field} {message}", fields={field: message})


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise _field_error(key, "must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise _field_error(key, "must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise _field_error(key, "must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise _field_error(key, "must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise _field_error(key, "must be an integer, not a decimal")
    raise _field_error(key, "must be an integer")


def _coerce_date(key: str, value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            d = parse_iso_date(value)
        except ValueError:
            raise _field_error(key, "must use the format YYYY-MM-DD")
        if d is None:
            raise _field_error(key, "must use the format YYYY-MM-DD")
        return d
    raise _field_error(key, "must use the format YYYY-MM-DD")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Calendar dates: YYYY-MM-DD only
    if isinstance(coltype, Date):
        return _coerce_date(col.key, value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise _field_error(col.key, "must be an ISO-8601 datetime")
            if dt is None:
                raise _field_error(col.key, "must be an ISO-8601 datetime")
            return dt
        raise _field_error(col.key, "must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise _field_error(col.key, "must be a string")
        return value.strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)

    Blank strings in nullable text columns become None.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                fields={f: "is required" for f in missing},
            )

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise _field_error(k, "is not allowed")
        if k not in cols:
            raise _field_error(k, "is unknown")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise _field_error(k, "cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and isinstance(val, str) and val == "":
            if not col.nullable:
                raise _field_error(k, "cannot be blank")
            val = None

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise _field_error(k, f"exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "name" in patch and patch["name"] is not None:
        if len(patch["name"]) < MIN_PRODUCT_NAME_LENGTH:
            raise _field_error("name", f"must have at least {MIN_PRODUCT_NAME_LENGTH} characters")

    if "price_cents" in patch:
        price = patch["price_cents"]
        if price is None or price <= 0:
            raise _field_error("price_cents", "must be > 0")
        if price > MAX_PRICE_CENTS:
            raise _field_error("price_cents", f"cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_shipment_meta(
    patch: dict,
    *,
    sent_at: date | None = None,
    expected_return_at: date | None = None,
) -> None:
    """sent_at / expected_return_at are the stored values a patch applies to."""
    sent = patch.get("sent_at", sent_at)
    expected = patch.get("expected_return_at", expected_return_at)
    if sent is not None and expected is not None and expected < sent:
        raise _field_error("expected_return_at", "cannot be before sent_at")


def validate_shipment_items(raw_items: Any) -> list[dict]:
    """
    Shipment lines on create: [{product_id, quantity_sent, quantity_returned?}].
    quantity_returned is clamped to quantity_sent later; here it only has
    to be a non-negative integer.
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise _field_error("items", "must contain at least one item")

    items: list[dict] = []
    for index, raw in enumerate(raw_items):
        prefix = f"items[{index}]"
        if not isinstance(raw, dict):
            raise _field_error(prefix, "must be an object")

        product_id = raw.get("product_id")
        if not isinstance(product_id, str) or not product_id.strip():
            raise _field_error(f"{prefix}.product_id", "is required")

        quantity_sent = _coerce_int(f"{prefix}.quantity_sent", raw.get("quantity_sent"))
        if quantity_sent <= 0:
            raise _field_error(f"{prefix}.quantity_sent", "must be > 0")

        quantity_returned = 0
        if raw.get("quantity_returned") is not None:
            quantity_returned = _coerce_int(f"{prefix}.quantity_returned", raw["quantity_returned"])
            if quantity_returned < 0:
                raise _field_error(f"{prefix}.quantity_returned", "must be >= 0")

        items.append({
            "product_id": product_id.strip(),
            "quantity_sent": quantity_sent,
            "quantity_returned": quantity_returned,
        })
    return items


def parse_line_updates(payload: Any) -> tuple[list[LineUpdate], str]:
    """Body of PATCH /shipments/<id>/returns -> (updates, mode)."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    mode = payload.get("mode") or MODE_SET
    if mode not in LINE_UPDATE_MODES:
        raise _field_error("mode", f"must be one of: {', '.join(LINE_UPDATE_MODES)}")

    raw_updates = payload.get("updates")
    if not isinstance(raw_updates, list) or not raw_updates:
        raise _field_error("updates", "must contain at least one update")

    updates: list[LineUpdate] = []
    for index, raw in enumerate(raw_updates):
        prefix = f"updates[{index}]"
        if not isinstance(raw, dict):
            raise _field_error(prefix, "must be an object")
        line_id = raw.get("line_id")
        if not isinstance(line_id, str) or not line_id.strip():
            raise _field_error(f"{prefix}.line_id", "is required")
        quantity = _coerce_int(f"{prefix}.quantity_returned", raw.get("quantity_returned"))
        if quantity < 0:
            raise _field_error(f"{prefix}.quantity_returned", "must be >= 0")
        updates.append(LineUpdate(line_id=line_id.strip(), quantity_returned=quantity))

    return updates, mode


def parse_product_return_requests(payload: Any) -> list[ProductReturnRequest]:
    """Body of POST /shipments/returns/by-product -> requests."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_updates = payload.get("updates")
    if not isinstance(raw_updates, list) or not raw_updates:
        raise _field_error("updates", "must contain at least one update")

    requests: list[ProductReturnRequest] = []
    for index, raw in enumerate(raw_updates):
        prefix = f"updates[{index}]"
        if not isinstance(raw, dict):
            raise _field_error(prefix, "must be an object")

        product_id = raw.get("product_id")
        if not isinstance(product_id, str) or not product_id.strip():
            raise _field_error(f"{prefix}.product_id", "is required")

        quantity = _coerce_int(f"{prefix}.quantity", raw.get("quantity"))
        if quantity <= 0:
            raise _field_error(f"{prefix}.quantity", "must be > 0")

        occurred_at = None
        if raw.get("occurred_at") is not None:
            if not isinstance(raw["occurred_at"], str):
                raise _field_error(f"{prefix}.occurred_at", "must be an ISO-8601 date or datetime")
            try:
                occurred_at = to_utc_z(parse_iso_datetime(raw["occurred_at"]))
            except ValueError:
                raise _field_error(f"{prefix}.occurred_at", "must be an ISO-8601 date or datetime")

        notes = raw.get("notes")
        if notes is not None:
            if not isinstance(notes, str):
                raise _field_error(f"{prefix}.notes", "must be a string")
            notes = notes.strip() or None
            if notes and len(notes) > MAX_RETURN_NOTES_LENGTH:
                raise _field_error(f"{prefix}.notes", f"exceeds max length {MAX_RETURN_NOTES_LENGTH}")

        requests.append(
            ProductReturnRequest(
                product_id=product_id.strip(),
                quantity=quantity,
                occurred_at=occurred_at,
                notes=notes,
            )
        )
    return requests

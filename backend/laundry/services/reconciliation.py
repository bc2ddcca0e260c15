# backend/laundry/services/reconciliation.py
"""
Return Reconciliation Engine

WHY: Pieces come back from the laundry in bulk and are usually counted per
product, not per shipment. This module decides how returned quantities are
credited to outstanding shipment lines and derives the read-only views the
dashboard shows (per-shipment returns, per-product balances, return tickets).

DESIGN PRINCIPLES:
- Pure computation: no database, no Flask. Callers load snapshots through
  the stores, hand them in, and persist whatever comes back.
- Snapshots in, working copy out: loaded records are never mutated. Each
  mutation works on a deep copy, and only records whose line quantities
  differ from the originals are returned for persistence.
- 0 <= quantity_returned <= quantity_sent holds on every line this module
  produces. Pending is always derived.
- FIFO: when returns are reported per product, the oldest shipment (by
  sent_at) with pending pieces of that product is credited first.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Mapping

from ..time_utils import parse_iso_datetime, to_iso_date, to_utc_z


class ReconciliationError(Exception):
    """Raised for reconciliation input errors."""
    pass


# =============================================================================
# CONSTANTS
# =============================================================================

MODE_SET = "set"
MODE_INCREMENT = "increment"
LINE_UPDATE_MODES = (MODE_SET, MODE_INCREMENT)

MOVEMENT_SENT = "sent"
MOVEMENT_RETURN = "return"

WARNING_NO_SHIPMENT = "No shipment found"
WARNING_PRODUCT_NOT_FOUND = "Product not found"
WARNING_NOTHING_PENDING = "No pending pieces for this product"
WARNING_INSUFFICIENT = "Insufficient pending balance"

DEFAULT_REMOVED_PRODUCT_LABEL = "Removed product"


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class ProductRecord:
    id: str
    name: str
    category: str | None = None
    price_cents: int = 0


@dataclass
class LineRecord:
    id: str
    product_id: str
    quantity_sent: int
    quantity_returned: int = 0

    @property
    def quantity_pending(self) -> int:
        return max(self.quantity_sent - self.quantity_returned, 0)


@dataclass
class ShipmentRecord:
    id: str
    owner_id: str
    sent_at: date
    lines: list[LineRecord] = field(default_factory=list)
    expected_return_at: date | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version_id: int | None = None


@dataclass(frozen=True)
class LineUpdate:
    line_id: str
    quantity_returned: int


@dataclass(frozen=True)
class ProductReturnRequest:
    product_id: str
    quantity: int
    # Normalized "YYYY-MM-DDTHH:MM:SSZ" or None for "now"
    occurred_at: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Allocation:
    shipment_id: str
    line_id: str
    applied: int
    pending_after: int

    def to_dict(self) -> dict:
        return {
            "shipment_id": self.shipment_id,
            "line_id": self.line_id,
            "applied": self.applied,
            "pending_after": self.pending_after,
        }


@dataclass
class ProductReturnResult:
    product_id: str
    requested: int
    applied: int = 0
    remaining: int = 0
    allocations: list[Allocation] = field(default_factory=list)
    warning: str | None = None
    occurred_at: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "requested": self.requested,
            "applied": self.applied,
            "remaining": self.remaining,
            "allocations": [a.to_dict() for a in self.allocations],
            "warning": self.warning,
            "occurred_at": self.occurred_at,
            "notes": self.notes,
        }


@dataclass
class AllocationOutcome:
    """Result of a product-level return batch: what to report, what to write."""
    results: list[ProductReturnResult]
    changed: list[ShipmentRecord]


# =============================================================================
# HELPERS
# =============================================================================

def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def fifo_order(shipments: Iterable[ShipmentRecord]) -> list[ShipmentRecord]:
    """
    Oldest shipment first. Ties on sent_at fall back to creation time and
    then id so the order is deterministic.
    """
    return sorted(
        shipments,
        key=lambda s: (s.sent_at, to_utc_z(s.created_at) or "", s.id),
    )


def later_timestamp(previous: datetime | None, candidate: str) -> str:
    """
    The later of two instants, compared as normalized ISO-8601 strings.

    Every timestamp in the system is rendered by to_utc_z, so string order
    is chronological order.
    """
    previous_iso = to_utc_z(previous) or ""
    return candidate if candidate > previous_iso else previous_iso


def _product_name(product_id: str, products_by_id: Mapping[str, ProductRecord], removed_label: str) -> str:
    product = products_by_id.get(product_id)
    return product.name if product is not None else removed_label


def _sort_key(item: dict) -> tuple:
    return (-item["pending"], item["product_name"].casefold(), item["product_id"])


def _return_date(shipment: ShipmentRecord) -> str | None:
    # Returns are not timestamped per line; the shipment's last update stands in.
    stamp = to_utc_z(shipment.updated_at)
    return stamp[:10] if stamp else None


# =============================================================================
# DERIVED VIEWS
# =============================================================================

def build_return_view(
    shipment: ShipmentRecord,
    products_by_id: Mapping[str, ProductRecord],
    removed_label: str = DEFAULT_REMOVED_PRODUCT_LABEL,
) -> dict:
    """One row per line with sent/returned/pending for a single shipment."""
    items = [
        {
            "line_id": line.id,
            "product_id": line.product_id,
            "product_name": _product_name(line.product_id, products_by_id, removed_label),
            "quantity_sent": line.quantity_sent,
            "quantity_returned": line.quantity_returned,
            "quantity_pending": line.quantity_pending,
        }
        for line in shipment.lines
    ]
    return {
        "shipment_id": shipment.id,
        "sent_at": to_iso_date(shipment.sent_at),
        "expected_return_at": to_iso_date(shipment.expected_return_at),
        "notes": shipment.notes,
        "items": items,
        "total_sent": sum(i["quantity_sent"] for i in items),
        "total_returned": sum(i["quantity_returned"] for i in items),
        "total_pending": sum(i["quantity_pending"] for i in items),
        "created_at": to_utc_z(shipment.created_at),
        "updated_at": to_utc_z(shipment.updated_at),
    }


def build_balances(
    shipments: Iterable[ShipmentRecord],
    products_by_id: Mapping[str, ProductRecord],
    removed_label: str = DEFAULT_REMOVED_PRODUCT_LABEL,
) -> list[dict]:
    """
    Per-product totals with a movement trail.

    Every line contributes a "sent" movement on the shipment's sent_at, and
    a "return" movement on the shipment's last-update date when anything
    was returned. Sorted by pending (desc), then product name.
    """
    balances: dict[str, dict] = {}

    for shipment in shipments:
        sent_date = to_iso_date(shipment.sent_at)
        return_date = _return_date(shipment)

        for line in shipment.lines:
            item = balances.get(line.product_id)
            if item is None:
                product = products_by_id.get(line.product_id)
                item = {
                    "product_id": line.product_id,
                    "product_name": _product_name(line.product_id, products_by_id, removed_label),
                    "category": product.category if product else None,
                    "total_sent": 0,
                    "total_returned": 0,
                    "pending": 0,
                    "last_sent_at": None,
                    "last_returned_at": None,
                    "movements": [],
                }
                balances[line.product_id] = item

            item["total_sent"] += line.quantity_sent
            item["total_returned"] += line.quantity_returned

            if item["last_sent_at"] is None or sent_date > item["last_sent_at"]:
                item["last_sent_at"] = sent_date
            item["movements"].append({
                "type": MOVEMENT_SENT,
                "date": sent_date,
                "shipment_id": shipment.id,
                "line_id": line.id,
                "quantity": line.quantity_sent,
            })

            if line.quantity_returned > 0:
                if return_date and (item["last_returned_at"] is None or return_date > item["last_returned_at"]):
                    item["last_returned_at"] = return_date
                item["movements"].append({
                    "type": MOVEMENT_RETURN,
                    "date": return_date,
                    "shipment_id": shipment.id,
                    "line_id": line.id,
                    "quantity": line.quantity_returned,
                })

    for item in balances.values():
        item["pending"] = max(item["total_sent"] - item["total_returned"], 0)
        # Stable: on the same date a send is listed before its return
        item["movements"].sort(key=lambda m: (m["date"] or "", 0 if m["type"] == MOVEMENT_SENT else 1))

    return sorted(balances.values(), key=_sort_key)


def build_return_tickets(
    shipments: Iterable[ShipmentRecord],
    products_by_id: Mapping[str, ProductRecord],
    removed_label: str = DEFAULT_REMOVED_PRODUCT_LABEL,
    pending_only: bool = False,
) -> list[dict]:
    """
    Per-product totals plus the shipments holding that product, oldest
    first (the order FIFO allocation will consume them in).

    pending_only drops tickets with nothing pending and, inside the
    remaining tickets, shipments with nothing pending.
    """
    tickets: dict[str, dict] = {}

    for shipment in fifo_order(shipments):
        per_product: dict[str, dict] = {}
        for line in shipment.lines:
            entry = per_product.get(line.product_id)
            if entry is None:
                entry = {
                    "shipment_id": shipment.id,
                    "sent_at": to_iso_date(shipment.sent_at),
                    "expected_return_at": to_iso_date(shipment.expected_return_at),
                    "notes": shipment.notes,
                    "line_ids": [],
                    "quantity_sent": 0,
                    "quantity_returned": 0,
                    "pending": 0,
                }
                per_product[line.product_id] = entry
            entry["line_ids"].append(line.id)
            entry["quantity_sent"] += line.quantity_sent
            entry["quantity_returned"] += line.quantity_returned
            entry["pending"] += line.quantity_pending

        for product_id, entry in per_product.items():
            ticket = tickets.get(product_id)
            if ticket is None:
                product = products_by_id.get(product_id)
                ticket = {
                    "product_id": product_id,
                    "product_name": _product_name(product_id, products_by_id, removed_label),
                    "category": product.category if product else None,
                    "total_sent": 0,
                    "total_returned": 0,
                    "pending": 0,
                    "shipments": [],
                }
                tickets[product_id] = ticket
            ticket["total_sent"] += entry["quantity_sent"]
            ticket["total_returned"] += entry["quantity_returned"]
            ticket["pending"] += entry["pending"]
            ticket["shipments"].append(entry)

    result = sorted(tickets.values(), key=_sort_key)
    if pending_only:
        result = [t for t in result if t["pending"] > 0]
        for ticket in result:
            ticket["shipments"] = [s for s in ticket["shipments"] if s["pending"] > 0]
    return result


# =============================================================================
# MUTATIONS
# =============================================================================

def apply_line_updates(
    shipment: ShipmentRecord,
    updates: Iterable[LineUpdate],
    mode: str = MODE_SET,
) -> tuple[ShipmentRecord, list[str]]:
    """
    Set or increment quantity_returned on individual lines.

    Returns a new record and the line ids that matched nothing. Updates are
    applied in order, so a repeated line id in "set" mode keeps the last
    value and in "increment" mode accumulates. Results are clamped to
    [0, quantity_sent]. Lines not mentioned are untouched.
    """
    if mode not in LINE_UPDATE_MODES:
        raise ReconciliationError(f"mode must be one of: {', '.join(LINE_UPDATE_MODES)}")

    working = copy.deepcopy(shipment)
    lines_by_id = {line.id: line for line in working.lines}
    ignored: list[str] = []

    for update in updates:
        line = lines_by_id.get(update.line_id)
        if line is None:
            if update.line_id not in ignored:
                ignored.append(update.line_id)
            continue

        if mode == MODE_INCREMENT:
            target = line.quantity_returned + update.quantity_returned
        else:
            target = update.quantity_returned
        line.quantity_returned = clamp(target, 0, line.quantity_sent)

    return working, ignored


def _line_quantities(shipment: ShipmentRecord) -> dict[str, int]:
    return {line.id: line.quantity_returned for line in shipment.lines}


def allocate_product_returns(
    shipments: Iterable[ShipmentRecord],
    products_by_id: Mapping[str, ProductRecord],
    requests: Iterable[ProductReturnRequest],
    now: datetime,
) -> AllocationOutcome:
    """
    Credit per-product return quantities to shipment lines, oldest first.

    Requests are processed in order against one shared working copy, so a
    later request for the same product sees what earlier ones consumed.
    Within a request, shipments are walked by fifo_order and lines in their
    stored order; each line with pending pieces of the product takes
    min(pending, remaining) until nothing remains.

    Unknown products and owners without shipments are reported per request
    with applied=0 and a warning; they never raise.

    Changed shipments get updated_at = the later of their previous
    updated_at and the latest occurred_at credited to them. It never
    moves backwards.
    """
    originals = list(shipments)
    working = [copy.deepcopy(s) for s in fifo_order(originals)]
    touched_at: dict[str, str] = {}
    now_iso = to_utc_z(now)

    results: list[ProductReturnResult] = []
    for request in requests:
        result = ProductReturnResult(
            product_id=request.product_id,
            requested=request.quantity,
            remaining=request.quantity,
            occurred_at=request.occurred_at,
            notes=request.notes,
        )
        results.append(result)

        if not working:
            result.warning = WARNING_NO_SHIPMENT
            continue
        if request.product_id not in products_by_id:
            result.warning = WARNING_PRODUCT_NOT_FOUND
            continue

        occurred_iso = request.occurred_at or now_iso
        for shipment in working:
            if result.remaining == 0:
                break
            for line in shipment.lines:
                if result.remaining == 0:
                    break
                if line.product_id != request.product_id:
                    continue
                pending = line.quantity_sent - line.quantity_returned
                if pending <= 0:
                    continue

                applied = min(pending, result.remaining)
                line.quantity_returned += applied
                result.remaining -= applied
                result.applied += applied
                result.allocations.append(
                    Allocation(
                        shipment_id=shipment.id,
                        line_id=line.id,
                        applied=applied,
                        pending_after=line.quantity_sent - line.quantity_returned,
                    )
                )
                previous = touched_at.get(shipment.id)
                touched_at[shipment.id] = occurred_iso if previous is None or occurred_iso > previous else previous

        if result.applied == 0:
            result.warning = WARNING_NOTHING_PENDING
        elif result.remaining > 0:
            result.warning = WARNING_INSUFFICIENT

    original_by_id = {s.id: s for s in originals}
    changed: list[ShipmentRecord] = []
    for shipment in working:
        if _line_quantities(shipment) == _line_quantities(original_by_id[shipment.id]):
            continue
        stamp = later_timestamp(shipment.updated_at, touched_at[shipment.id])
        # Previous stamp wins: keep the stored datetime (sub-second precision intact)
        if stamp != to_utc_z(shipment.updated_at):
            shipment.updated_at = parse_iso_datetime(stamp)
        changed.append(shipment)

    return AllocationOutcome(results=results, changed=changed)

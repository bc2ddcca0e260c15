# Overview: Pytest coverage for the return reconciliation engine (no database).

"""
Return Reconciliation Engine Tests

Covers:
- FIFO allocation across shipments (oldest first)
- Per-request warnings and their priority
- Per-line set / increment updates (clamping, idempotence, unknown ids)
- Balance and return ticket derivation (totals, movements, sort order)
"""

from datetime import date, datetime

import pytest

from laundry.services.reconciliation import (
    MODE_INCREMENT,
    MODE_SET,
    WARNING_INSUFFICIENT,
    WARNING_NO_SHIPMENT,
    WARNING_NOTHING_PENDING,
    WARNING_PRODUCT_NOT_FOUND,
    LineRecord,
    LineUpdate,
    ProductRecord,
    ProductReturnRequest,
    ReconciliationError,
    ShipmentRecord,
    allocate_product_returns,
    apply_line_updates,
    build_balances,
    build_return_tickets,
    build_return_view,
    fifo_order,
    later_timestamp,
)


NOW = datetime(2024, 3, 1, 12, 0, 0)

TOWEL = ProductRecord(id="towel", name="Towel", price_cents=300)
SHEET = ProductRecord(id="sheet", name="Sheet", price_cents=500)
APRON = ProductRecord(id="apron", name="apron", price_cents=200)
PRODUCTS = {p.id: p for p in (TOWEL, SHEET, APRON)}


def shipment(shipment_id, sent_at, *lines, updated_at=None):
    return ShipmentRecord(
        id=shipment_id,
        owner_id="owner",
        sent_at=date.fromisoformat(sent_at),
        lines=[
            LineRecord(id=f"{shipment_id}-{index}", product_id=pid, quantity_sent=sent, quantity_returned=returned)
            for index, (pid, sent, returned) in enumerate(lines)
        ],
        created_at=datetime(2024, 1, 1),
        updated_at=updated_at or datetime(2024, 1, 1),
        version_id=1,
    )


def line_by_id(record, line_id):
    return next(line for line in record.lines if line.id == line_id)


# =============================================================================
# FIFO ALLOCATION
# =============================================================================


class TestProductReturnAllocation:

    def test_single_shipment_partial_return(self):
        """10 sent, 4 returned by product -> applied 4, pending 6."""
        shipments = [shipment("A", "2024-01-01", ("towel", 10, 0))]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=4)], now=NOW
        )

        result = outcome.results[0]
        assert result.applied == 4
        assert result.remaining == 0
        assert result.warning is None
        assert len(outcome.changed) == 1
        assert outcome.changed[0].lines[0].quantity_returned == 4
        assert outcome.changed[0].lines[0].quantity_pending == 6

    def test_oldest_shipment_is_credited_first(self):
        shipments = [
            shipment("B", "2024-02-01", ("towel", 5, 0)),
            shipment("A", "2024-01-01", ("towel", 5, 0)),
        ]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=7)], now=NOW
        )

        result = outcome.results[0]
        assert [(a.shipment_id, a.applied, a.pending_after) for a in result.allocations] == [
            ("A", 5, 0),
            ("B", 2, 3),
        ]
        assert result.applied == 7
        assert result.remaining == 0

    def test_no_allocation_to_newer_shipment_while_older_has_pending(self):
        shipments = [
            shipment("A", "2024-01-01", ("towel", 3, 0)),
            shipment("B", "2024-01-05", ("towel", 3, 0)),
        ]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=3)], now=NOW
        )

        assert [a.shipment_id for a in outcome.results[0].allocations] == ["A"]
        assert [s.id for s in outcome.changed] == ["A"]

    def test_fully_returned_lines_are_skipped(self):
        shipments = [
            shipment("A", "2024-01-01", ("towel", 3, 3)),
            shipment("B", "2024-01-05", ("towel", 3, 1)),
        ]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=2)], now=NOW
        )

        allocation = outcome.results[0].allocations[0]
        assert (allocation.shipment_id, allocation.applied, allocation.pending_after) == ("B", 2, 0)

    def test_other_products_are_untouched(self):
        shipments = [shipment("A", "2024-01-01", ("sheet", 4, 0), ("towel", 4, 0))]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=4)], now=NOW
        )

        changed = outcome.changed[0]
        assert line_by_id(changed, "A-0").quantity_returned == 0
        assert line_by_id(changed, "A-1").quantity_returned == 4

    def test_insufficient_balance_leaves_remaining(self):
        shipments = [shipment("A", "2024-01-01", ("towel", 5, 2))]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=10)], now=NOW
        )

        result = outcome.results[0]
        assert result.applied == 3
        assert result.remaining == 7
        assert result.warning == WARNING_INSUFFICIENT

    def test_nothing_pending_warning(self):
        shipments = [shipment("A", "2024-01-01", ("towel", 5, 5))]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=1)], now=NOW
        )

        result = outcome.results[0]
        assert result.applied == 0
        assert result.remaining == 1
        assert result.warning == WARNING_NOTHING_PENDING
        assert outcome.changed == []

    def test_product_with_no_lines_reports_nothing_pending(self):
        shipments = [shipment("A", "2024-01-01", ("towel", 5, 0))]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="sheet", quantity=2)], now=NOW
        )

        assert outcome.results[0].warning == WARNING_NOTHING_PENDING

    def test_unknown_product(self):
        shipments = [shipment("A", "2024-01-01", ("towel", 5, 0))]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="ghost", quantity=2)], now=NOW
        )

        result = outcome.results[0]
        assert (result.applied, result.remaining, result.warning) == (0, 2, WARNING_PRODUCT_NOT_FOUND)
        assert outcome.changed == []

    def test_no_shipments_takes_priority_over_unknown_product(self):
        outcome = allocate_product_returns(
            [],
            PRODUCTS,
            [
                ProductReturnRequest(product_id="towel", quantity=3),
                ProductReturnRequest(product_id="ghost", quantity=1),
            ],
            now=NOW,
        )

        assert [(r.applied, r.remaining, r.warning) for r in outcome.results] == [
            (0, 3, WARNING_NO_SHIPMENT),
            (0, 1, WARNING_NO_SHIPMENT),
        ]
        assert outcome.changed == []

    def test_later_request_sees_earlier_allocation(self):
        shipments = [
            shipment("A", "2024-01-01", ("towel", 4, 0)),
            shipment("B", "2024-01-10", ("towel", 4, 0)),
        ]

        outcome = allocate_product_returns(
            shipments,
            PRODUCTS,
            [
                ProductReturnRequest(product_id="towel", quantity=3),
                ProductReturnRequest(product_id="towel", quantity=3),
            ],
            now=NOW,
        )

        first, second = outcome.results
        assert [(a.shipment_id, a.applied) for a in first.allocations] == [("A", 3)]
        assert [(a.shipment_id, a.applied) for a in second.allocations] == [("A", 1), ("B", 2)]

    def test_inputs_are_not_mutated(self):
        shipments = [shipment("A", "2024-01-01", ("towel", 4, 0))]

        allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=4)], now=NOW
        )

        assert shipments[0].lines[0].quantity_returned == 0

    def test_allocations_sum_to_requested_when_fully_applied(self):
        shipments = [
            shipment("A", "2024-01-01", ("towel", 2, 0), ("towel", 3, 1)),
            shipment("B", "2024-01-03", ("towel", 6, 0)),
        ]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=9)], now=NOW
        )

        result = outcome.results[0]
        assert result.remaining == 0
        assert sum(a.applied for a in result.allocations) == result.requested == 9
        for record in outcome.changed:
            for line in record.lines:
                assert 0 <= line.quantity_returned <= line.quantity_sent

    def test_updated_at_uses_later_of_previous_and_occurred_at(self):
        shipments = [
            shipment("A", "2024-01-01", ("towel", 4, 0), updated_at=datetime(2024, 2, 20, 8, 0, 0)),
            shipment("B", "2024-01-02", ("towel", 4, 0), updated_at=datetime(2024, 1, 2)),
        ]

        outcome = allocate_product_returns(
            shipments,
            PRODUCTS,
            [ProductReturnRequest(product_id="towel", quantity=6, occurred_at="2024-02-10T00:00:00Z")],
            now=NOW,
        )

        by_id = {s.id: s for s in outcome.changed}
        # A was updated after the return happened: keeps its own timestamp
        assert by_id["A"].updated_at == datetime(2024, 2, 20, 8, 0, 0)
        assert by_id["B"].updated_at == datetime(2024, 2, 10, 0, 0, 0)

    def test_updated_at_defaults_to_processing_time(self):
        shipments = [shipment("A", "2024-01-01", ("towel", 4, 0))]

        outcome = allocate_product_returns(
            shipments, PRODUCTS, [ProductReturnRequest(product_id="towel", quantity=1)], now=NOW
        )

        assert outcome.changed[0].updated_at == NOW

    def test_backdated_return_keeps_previous_updated_at(self):
        previous = datetime(2024, 6, 1, 12, 0, 0, 900000)
        shipments = [shipment("A", "2024-01-01", ("towel", 4, 0), updated_at=previous)]

        outcome = allocate_product_returns(
            shipments,
            PRODUCTS,
            [ProductReturnRequest(product_id="towel", quantity=2, occurred_at="2024-01-01T00:00:00Z")],
            now=NOW,
        )

        changed = outcome.changed[0]
        assert changed.lines[0].quantity_returned == 2
        # Sub-second precision survives; the stamp never moves backwards
        assert changed.updated_at == previous

    def test_return_within_same_second_keeps_previous_updated_at(self):
        previous = datetime(2024, 6, 1, 12, 0, 0, 500000)
        shipments = [shipment("A", "2024-01-01", ("towel", 4, 0), updated_at=previous)]

        outcome = allocate_product_returns(
            shipments,
            PRODUCTS,
            [ProductReturnRequest(product_id="towel", quantity=1, occurred_at="2024-06-01T12:00:00Z")],
            now=NOW,
        )

        assert outcome.changed[0].updated_at == previous


class TestFifoOrder:

    def test_ties_on_sent_at_are_deterministic(self):
        a = shipment("b-id", "2024-01-01", ("towel", 1, 0))
        b = shipment("a-id", "2024-01-01", ("towel", 1, 0))
        assert [s.id for s in fifo_order([a, b])] == ["a-id", "b-id"]

    def test_later_timestamp_compares_iso_strings(self):
        assert later_timestamp(datetime(2024, 1, 5), "2024-01-04T23:59:59Z") == "2024-01-05T00:00:00Z"
        assert later_timestamp(datetime(2024, 1, 5), "2024-01-06T00:00:00Z") == "2024-01-06T00:00:00Z"
        assert later_timestamp(None, "2024-01-06T00:00:00Z") == "2024-01-06T00:00:00Z"


# =============================================================================
# PER-LINE UPDATES
# =============================================================================


class TestLineUpdates:

    def test_set_mode_clamps_to_quantity_sent(self):
        record = shipment("A", "2024-01-01", ("towel", 5, 0))

        updated, ignored = apply_line_updates(record, [LineUpdate("A-0", 9)], MODE_SET)

        assert updated.lines[0].quantity_returned == 5
        assert ignored == []

    def test_increment_mode_adds_and_clamps(self):
        record = shipment("A", "2024-01-01", ("towel", 5, 2))

        updated, _ = apply_line_updates(record, [LineUpdate("A-0", 2)], MODE_INCREMENT)
        assert updated.lines[0].quantity_returned == 4

        updated, _ = apply_line_updates(updated, [LineUpdate("A-0", 10)], MODE_INCREMENT)
        assert updated.lines[0].quantity_returned == 5

    def test_set_is_idempotent(self):
        record = shipment("A", "2024-01-01", ("towel", 5, 0), ("sheet", 3, 0))
        updates = [LineUpdate("A-0", 2), LineUpdate("A-1", 3)]

        once, _ = apply_line_updates(record, updates, MODE_SET)
        twice, _ = apply_line_updates(once, updates, MODE_SET)

        assert [l.quantity_returned for l in once.lines] == [l.quantity_returned for l in twice.lines] == [2, 3]

    def test_unknown_line_ids_are_ignored_and_reported(self):
        record = shipment("A", "2024-01-01", ("towel", 5, 1), ("sheet", 3, 0))

        updated, ignored = apply_line_updates(
            record, [LineUpdate("nope", 2), LineUpdate("A-1", 1), LineUpdate("nope", 3)], MODE_SET
        )

        assert ignored == ["nope"]
        assert updated.lines[0].quantity_returned == 1
        assert updated.lines[1].quantity_returned == 1

    def test_unknown_mode_rejected(self):
        record = shipment("A", "2024-01-01", ("towel", 5, 0))
        with pytest.raises(ReconciliationError):
            apply_line_updates(record, [LineUpdate("A-0", 1)], "replace")

    def test_original_record_untouched(self):
        record = shipment("A", "2024-01-01", ("towel", 5, 0))
        apply_line_updates(record, [LineUpdate("A-0", 3)], MODE_SET)
        assert record.lines[0].quantity_returned == 0


# =============================================================================
# DERIVED VIEWS
# =============================================================================


class TestReturnView:

    def test_removed_product_placeholder(self):
        record = shipment("A", "2024-01-01", ("towel", 5, 2), ("gone", 1, 0))

        view = build_return_view(record, PRODUCTS, "Removed product")

        assert [i["product_name"] for i in view["items"]] == ["Towel", "Removed product"]
        assert view["items"][0]["quantity_pending"] == 3
        assert (view["total_sent"], view["total_returned"], view["total_pending"]) == (6, 2, 4)
        assert view["sent_at"] == "2024-01-01"


class TestBalances:

    def test_totals_sort_and_movements(self):
        shipments = [
            shipment("A", "2024-01-01", ("towel", 5, 5), ("sheet", 4, 1), updated_at=datetime(2024, 1, 8, 10)),
            shipment("B", "2024-01-10", ("sheet", 2, 0), ("apron", 6, 0)),
        ]

        balances = build_balances(shipments, PRODUCTS)

        # pending desc, then name (case-insensitive)
        assert [(b["product_id"], b["pending"]) for b in balances] == [
            ("apron", 6),
            ("sheet", 5),
            ("towel", 0),
        ]

        sheet = balances[1]
        assert (sheet["total_sent"], sheet["total_returned"]) == (6, 1)
        assert sheet["last_sent_at"] == "2024-01-10"
        assert sheet["last_returned_at"] == "2024-01-08"
        assert [(m["type"], m["date"], m["quantity"]) for m in sheet["movements"]] == [
            ("sent", "2024-01-01", 4),
            ("return", "2024-01-08", 1),
            ("sent", "2024-01-10", 2),
        ]

        apron = balances[0]
        assert apron["last_returned_at"] is None
        assert all(m["type"] == "sent" for m in apron["movements"])

    def test_name_breaks_pending_ties(self):
        shipments = [shipment("A", "2024-01-01", ("towel", 2, 0), ("sheet", 2, 0))]

        balances = build_balances(shipments, PRODUCTS)

        assert [b["product_name"] for b in balances] == ["Sheet", "Towel"]

    def test_returned_never_exceeds_sent(self):
        shipments = [
            shipment("A", "2024-01-01", ("towel", 5, 5)),
            shipment("B", "2024-01-02", ("towel", 3, 1), ("sheet", 1, 1)),
        ]
        for item in build_balances(shipments, PRODUCTS):
            assert item["total_returned"] <= item["total_sent"]
            assert item["pending"] == item["total_sent"] - item["total_returned"]


class TestReturnTickets:

    def test_groups_shipments_oldest_first(self):
        shipments = [
            shipment("B", "2024-02-01", ("towel", 5, 0)),
            shipment("A", "2024-01-01", ("towel", 2, 0), ("towel", 3, 1), ("sheet", 1, 1)),
        ]

        tickets = build_return_tickets(shipments, PRODUCTS)

        towel = tickets[0]
        assert towel["product_id"] == "towel"
        assert (towel["total_sent"], towel["total_returned"], towel["pending"]) == (10, 1, 9)
        assert [s["shipment_id"] for s in towel["shipments"]] == ["A", "B"]
        first = towel["shipments"][0]
        assert first["line_ids"] == ["A-0", "A-1"]
        assert (first["quantity_sent"], first["quantity_returned"], first["pending"]) == (5, 1, 4)

    def test_pending_only_filters_tickets_and_shipments(self):
        shipments = [
            shipment("A", "2024-01-01", ("towel", 2, 2), ("sheet", 1, 1)),
            shipment("B", "2024-02-01", ("towel", 5, 0)),
        ]

        tickets = build_return_tickets(shipments, PRODUCTS, pending_only=True)

        assert [t["product_id"] for t in tickets] == ["towel"]
        assert [s["shipment_id"] for s in tickets[0]["shipments"]] == ["B"]

# Overview: Service-layer operations for reporting; monthly totals and CSV export.

from __future__ import annotations

import csv
import io
from datetime import date
from decimal import Decimal

from flask import current_app

from . import catalog_store, shipment_store
from ..time_utils import month_key, parse_month_key, to_iso_date, utcnow


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


CSV_HEADERS = [
    "Sent date",
    "Items",
    "Quantity sent",
    "Quantity returned",
    "Missing",
    "Shipment cost",
    "Notes",
]


def _resolve_month(month: str | None) -> str:
    if not month:
        return month_key(utcnow().date())
    try:
        year, number = parse_month_key(month)
    except ValueError as exc:
        raise ReportError(str(exc))
    return month_key(date(year, number, 1))


def _shipments_in_month(owner_id: str, month: str):
    return [s for s in shipment_store.list_shipments(owner_id) if month_key(s.sent_at) == month]


def _shipment_totals(shipment, products: dict) -> dict:
    total_sent = 0
    total_returned = 0
    total_cost_cents = 0
    for line in shipment.lines:
        product = products.get(line.product_id)
        unit_price = product.price_cents if product else 0
        total_sent += line.quantity_sent
        total_returned += line.quantity_returned
        total_cost_cents += line.quantity_sent * unit_price
    return {
        "total_sent": total_sent,
        "total_returned": total_returned,
        "total_missing": max(total_sent - total_returned, 0),
        "total_cost_cents": total_cost_cents,
    }


def available_months(owner_id: str) -> list[str]:
    """Months that have at least one shipment, newest first."""
    months = {month_key(s.sent_at) for s in shipment_store.list_shipments(owner_id)}
    return sorted(months, reverse=True)


def monthly_report(*, owner_id: str, month: str | None = None) -> dict:
    """
    Totals for shipments sent in one month.

    missing = max(sent - returned, 0); cost = sum of quantity_sent x price.
    Lines whose product was removed count with price 0.
    """
    month = _resolve_month(month)
    shipments = _shipments_in_month(owner_id, month)
    product_ids = [line.product_id for s in shipments for line in s.lines]
    products = catalog_store.get_products_many(owner_id, product_ids)
    removed_label = current_app.config.get("REMOVED_PRODUCT_LABEL", "Removed product")

    breakdown: dict[str, dict] = {}
    daily: dict[str, dict] = {}
    totals = {"total_sent": 0, "total_returned": 0, "total_missing": 0, "total_cost_cents": 0}

    for shipment in shipments:
        shipment_totals = _shipment_totals(shipment, products)
        for key in totals:
            totals[key] += shipment_totals[key]

        for line in shipment.lines:
            product = products.get(line.product_id)
            row = breakdown.setdefault(line.product_id, {
                "product_id": line.product_id,
                "product_name": product.name if product else removed_label,
                "quantity_sent": 0,
                "quantity_returned": 0,
                "total_cost_cents": 0,
            })
            row["quantity_sent"] += line.quantity_sent
            row["quantity_returned"] += line.quantity_returned
            row["total_cost_cents"] += line.quantity_sent * (product.price_cents if product else 0)

        day = daily.setdefault(to_iso_date(shipment.sent_at), {"sent": 0, "returned": 0, "cost_cents": 0})
        day["sent"] += shipment_totals["total_sent"]
        day["returned"] += shipment_totals["total_returned"]
        day["cost_cents"] += shipment_totals["total_cost_cents"]

    return {
        "month": month,
        "shipment_count": len(shipments),
        **totals,
        "product_breakdown": sorted(breakdown.values(), key=lambda r: (r["product_name"].casefold(), r["product_id"])),
        "daily_totals": [
            {
                "date": day_key,
                "sent": value["sent"],
                "returned": value["returned"],
                "missing": max(value["sent"] - value["returned"], 0),
                "cost_cents": value["cost_cents"],
            }
            for day_key, value in sorted(daily.items())
        ],
    }


def monthly_report_csv(*, owner_id: str, month: str | None = None) -> tuple[str, str]:
    """
    One row per shipment sent in the month, oldest first.

    Returns:
        (filename, csv text) - ';' separated, every cell quoted
    """
    month = _resolve_month(month)
    shipments = sorted(_shipments_in_month(owner_id, month), key=lambda s: (s.sent_at, s.id))
    product_ids = [line.product_id for s in shipments for line in s.lines]
    products = catalog_store.get_products_many(owner_id, product_ids)
    removed_label = current_app.config.get("REMOVED_PRODUCT_LABEL", "Removed product")

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for shipment in shipments:
        totals = _shipment_totals(shipment, products)
        items = " | ".join(
            f"{products[line.product_id].name if line.product_id in products else removed_label} ({line.quantity_sent})"
            for line in shipment.lines
        )
        writer.writerow([
            to_iso_date(shipment.sent_at),
            items,
            str(totals["total_sent"]),
            str(totals["total_returned"]),
            str(totals["total_missing"]),
            f"{Decimal(totals['total_cost_cents']) / 100:.2f}",
            shipment.notes or "",
        ])

    return f"laundry-report-{month}.csv", buffer.getvalue()

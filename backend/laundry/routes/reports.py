from flask import Blueprint, Response, g, jsonify, request

from ..decorators import require_auth
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/months")
@require_auth
def months_route():
    months = reporting_service.available_months(g.owner_id)
    return jsonify({"items": months, "count": len(months)}), 200


@reports_bp.get("/monthly")
@require_auth
def monthly_report():
    month = request.args.get("month")
    try:
        report = reporting_service.monthly_report(owner_id=g.owner_id, month=month)
        return jsonify(report), 200
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400


@reports_bp.get("/monthly.csv")
@require_auth
def monthly_report_csv():
    month = request.args.get("month")
    try:
        filename, content = reporting_service.monthly_report_csv(owner_id=g.owner_id, month=month)
    except reporting_service.ReportError as exc:
        return jsonify({"error": str(exc)}), 400

    return Response(
        content,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

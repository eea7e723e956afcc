# Overview: Flask API routes for ledger operations; parses input and returns JSON responses.

# backend/backoffice/routes/ledger.py
from flask import Blueprint, request, jsonify

from ..errors import BackofficeError, ValidationError, error_response
from ..services import ledger_service
from ..validation import optional_int
from backoffice.time_utils import parse_iso_datetime


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _parse_dt(value: str | None, field: str):
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


@ledger_bp.get("")
def list_ledger():
    """
    Customer ledger entries, newest first.

    Query params:
    - customer_id: int
    - type: order | payment | credit_note | adjustment
    - from / to: ISO-8601 datetimes (inclusive)
    - q: text search on description and source id
    - page: int (default 1)
    - page_size: int (default 20, max 500)

    balance_cents is the sum over everything the filters select, not just
    the returned page.
    """
    try:
        result = ledger_service.list_entries(
            customer_id=optional_int(request.args.get("customer_id"), "customer_id"),
            type=request.args.get("type") or None,
            date_from=_parse_dt(request.args.get("from"), "from"),
            date_to=_parse_dt(request.args.get("to"), "to"),
            q=request.args.get("q") or None,
            page=optional_int(request.args.get("page"), "page") or 1,
            page_size=optional_int(request.args.get("page_size"), "page_size") or ledger_service.DEFAULT_PAGE_SIZE,
        )
        return jsonify(result), 200
    except BackofficeError as e:
        return error_response(e)

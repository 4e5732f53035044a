# backend/retailops/routes/accounting.py
"""
Accounting API routes.

Every request regenerates the journal, ledgers and income statement from all
source documents; nothing is cached or written.
"""
from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_context, require_role
from ..auth_context import ROLE_ADMIN, ROLE_MANAGER
from ..services import accounting_service, transaction_service
from ..services.transaction_service import TRANSACTION_TYPES
from ..validation import coerce_int
from ..errors import OperationError


accounting_bp = Blueprint("accounting", __name__, url_prefix="/api/accounting")
transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@accounting_bp.get("")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_accounting():
    """
    Returns:
        200: {"journalEntries": [...], "ledgerAccounts": {...},
              "incomeStatement": {...}, "skipped": [...]}
    """
    try:
        report = accounting_service.rebuild()
        return jsonify(report.to_dict()), 200
    except Exception:
        current_app.logger.exception("Failed to derive ledger")
        return jsonify({"error": "Internal server error"}), 500


@accounting_bp.get("/income-statement")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_income_statement():
    report = accounting_service.rebuild()
    return jsonify(report.income_statement.to_dict()), 200


@transactions_bp.get("")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_transactions():
    """Query params: type (sale | order | batch | return | exchange), sourceId."""
    txn_type = request.args.get("type") or None
    if txn_type and txn_type not in TRANSACTION_TYPES:
        return jsonify({"error": f"Unknown transaction type {txn_type}", "details": {"allowed": list(TRANSACTION_TYPES)}}), 400
    try:
        source_id = coerce_int(request.args.get("sourceId"), "sourceId", required=False)
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code
    records = transaction_service.list_transactions(type=txn_type, source_id=source_id)
    return jsonify([t.to_dict() for t in records]), 200

# backend/retailops/routes/dispatch.py
"""
Inter-outlet dispatch API routes: dispatch, admission, cancellation and
reconciliation.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_context, require_role
from ..errors import OperationError, ValidationError
from ..auth_context import ROLE_ADMIN, ROLE_MANAGER, ROLE_OUTLET
from ..services import transfer_service
from ..services.concurrency import commit_with_retry
from ..validation import PayloadPolicy, check_payload, coerce_int


dispatch_bp = Blueprint("inventory_dispatch", __name__, url_prefix="/api/inventory-dispatch")

DISPATCH_POLICY = PayloadPolicy(
    writable_fields={"fromStoreId", "toStoreId", "barcodes", "products"},
    required_on_create=frozenset({"fromStoreId"}),
)
ADMIT_POLICY = PayloadPolicy(writable_fields={"storeId", "barcode", "dispatchId"})
UPDATE_POLICY = PayloadPolicy(writable_fields={"id", "status"}, required_on_create=frozenset({"id", "status"}))

STOCK_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_OUTLET)


def _forbidden_store(store_id):
    """Outlet users act only for their own store."""
    ctx = g.auth_context
    if ctx.role != ROLE_OUTLET or ctx.store_id is None or store_id in (None, ""):
        return None
    if coerce_int(store_id, "storeId") != ctx.store_id:
        return jsonify({
            "error": "Permission denied",
            "details": {"storeId": store_id, "allowedStoreId": ctx.store_id},
        }), 403
    return None


@dispatch_bp.get("")
@require_context
def list_dispatches():
    """
    List dispatch records.

    Query params:
        fromStore: source store name
        toStore: destination store name
        status: in-transit | completed
    """
    status = request.args.get("status") or None
    if status and status not in transfer_service.DISPATCH_STATUSES:
        return jsonify({
            "error": f"Unknown dispatch status {status}",
            "details": {"allowed": list(transfer_service.DISPATCH_STATUSES)},
        }), 400
    records = transfer_service.list_dispatches(
        from_store=request.args.get("fromStore") or None,
        to_store=request.args.get("toStore") or None,
        status=status,
    )
    return jsonify([r.to_dict() for r in records]), 200


@dispatch_bp.post("")
@require_context
@require_role(*STOCK_ROLES)
def create_dispatch():
    """
    Dispatch units from one outlet to another (all-or-nothing).

    Request body:
    {
        "fromStoreId": int,
        "toStoreId": int,
        "barcodes": [str] (optional),
        "products": [{"productId": int, "quantity": int}] (optional)
    }

    Returns:
        201: {"dispatches": [...], "count": int}
        400: Invalid request
        404: Unknown store or barcode
        409: Insufficient stock (nothing dispatched)
    """
    try:
        data = check_payload(request.get_json(silent=True), DISPATCH_POLICY)
        denied = _forbidden_store(data.get("fromStoreId"))
        if denied:
            return denied

        records = transfer_service.dispatch_units(
            from_store_id=data.get("fromStoreId"),
            to_store_id=data.get("toStoreId"),
            barcodes=data.get("barcodes"),
            products=data.get("products"),
        )
        commit_with_retry()
        return jsonify({"dispatches": [r.to_dict() for r in records], "count": len(records)}), 201
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to dispatch inventory")
        return jsonify({"error": "Internal server error"}), 500


@dispatch_bp.put("")
@require_context
@require_role(*STOCK_ROLES)
def update_dispatch():
    """
    Update one dispatch record. Only {"status": "completed"} is accepted,
    which admits the unit at the record's destination.
    """
    try:
        data = check_payload(request.get_json(silent=True), UPDATE_POLICY)
        if data["status"] != transfer_service.DISPATCH_STATUS_COMPLETED:
            raise ValidationError(
                "Dispatch records can only be moved to completed",
                details={"field": "status", "allowed": [transfer_service.DISPATCH_STATUS_COMPLETED]},
            )
        current = transfer_service.get_dispatch(data["id"])
        denied = _forbidden_store(current.to_store_id)
        if denied:
            return denied

        record = transfer_service.admit_unit(store_id=current.to_store_id, dispatch_id=current.id)
        commit_with_retry()
        return jsonify(record.to_dict()), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update dispatch")
        return jsonify({"error": "Internal server error"}), 500


@dispatch_bp.delete("/<int:dispatch_id>")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def cancel_dispatch(dispatch_id: int):
    """Cancel an in-transit dispatch; the unit returns to its source outlet."""
    try:
        unit = transfer_service.cancel_dispatch(dispatch_id)
        commit_with_retry()
        return jsonify({"cancelled": dispatch_id, "unit": unit.to_dict()}), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel dispatch")
        return jsonify({"error": "Internal server error"}), 500


@dispatch_bp.post("/admit")
@require_context
@require_role(*STOCK_ROLES)
def admit():
    """
    Admit a dispatched unit at the receiving outlet.

    Request body:
    {
        "storeId": int,
        "barcode": str | "dispatchId": int
    }
    """
    try:
        data = check_payload(request.get_json(silent=True), ADMIT_POLICY)
        store_id = data.get("storeId", g.auth_context.store_id)
        denied = _forbidden_store(store_id)
        if denied:
            return denied

        record = transfer_service.admit_unit(
            store_id=store_id,
            barcode=data.get("barcode"),
            dispatch_id=data.get("dispatchId"),
        )
        commit_with_retry()
        return jsonify(record.to_dict()), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to admit dispatched unit")
        return jsonify({"error": "Internal server error"}), 500


@dispatch_bp.get("/upcoming")
@require_context
def upcoming():
    """In-transit records destined for ?storeId= (defaults to the caller's store)."""
    try:
        store_id = request.args.get("storeId") or g.auth_context.store_id
        records = transfer_service.list_upcoming(store_id)
        return jsonify([r.to_dict() for r in records]), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@dispatch_bp.get("/reconciliation")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def reconciliation():
    issues = transfer_service.find_inconsistencies()
    return jsonify({"issues": issues, "count": len(issues)}), 200


@dispatch_bp.get("/<int:dispatch_id>")
@require_context
def get_dispatch(dispatch_id: int):
    try:
        return jsonify(transfer_service.get_dispatch(dispatch_id).to_dict()), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code

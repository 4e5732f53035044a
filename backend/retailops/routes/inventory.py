# backend/retailops/routes/inventory.py
"""
Inventory unit API routes: listing, lookup, availability and direct updates.
"""
from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..decorators import require_context, require_role
from ..errors import OperationError, ValidationError
from ..auth_context import ROLE_ADMIN, ROLE_MANAGER
from ..services import inventory_service
from ..services.concurrency import commit_with_retry
from ..validation import PayloadPolicy, check_payload, coerce_int, coerce_datetime


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

UPDATE_POLICY = PayloadPolicy(
    writable_fields={"id", "status", "location", "admittedAt", "soldAt"},
    required_on_create=frozenset({"id", "status"}),
)


@inventory_bp.get("")
@require_context
def list_units():
    """
    List inventory units.

    Query params:
        status: available | in-transit | sold | defective
        location: store name
        productId: int
    """
    try:
        units = inventory_service.list_units(
            status=request.args.get("status") or None,
            location=request.args.get("location") or None,
            product_id=coerce_int(request.args.get("productId"), "productId", required=False),
        )
        return jsonify([u.to_dict() for u in units]), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.put("")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_unit():
    """
    Update one unit's status/location.

    Request body:
    {
        "id": int,
        "status": "available" | "sold" | "defective",
        "location": str (optional),
        "admittedAt": ISO-8601 (optional),
        "soldAt": ISO-8601 (optional, only with status=sold)
    }
    """
    try:
        data = check_payload(request.get_json(silent=True), UPDATE_POLICY)
        unit_id = coerce_int(data["id"], "id")
        status = data["status"]
        if status not in inventory_service.UNIT_STATUSES:
            raise ValidationError(
                f"Unknown inventory status {status!r}",
                details={"field": "status", "allowed": list(inventory_service.UNIT_STATUSES)},
            )
        admitted_at = coerce_datetime(data.get("admittedAt"), "admittedAt")
        sold_at = coerce_datetime(data.get("soldAt"), "soldAt")

        unit = inventory_service.apply_update(
            unit_id,
            status=status,
            location=data.get("location") or None,
            admitted_at=admitted_at,
            sold_at=sold_at,
        )
        commit_with_retry()
        return jsonify(unit.to_dict()), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update inventory unit")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/barcode/<path:barcode>")
@require_context
def get_by_barcode(barcode: str):
    try:
        unit = inventory_service.get_unit_by_barcode(barcode)
        payload = unit.to_dict()
        payload["sellable"] = inventory_service.is_sellable(unit)
        return jsonify(payload), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/available")
@require_context
def list_available():
    """
    Sellable units at an outlet.

    Query params:
        location: store name (required)
        productId: int (optional)
    """
    try:
        location = (request.args.get("location") or "").strip()
        if not location:
            raise ValidationError("location is required", details={"field": "location"})
        product_id = coerce_int(request.args.get("productId"), "productId", required=False)
        units = inventory_service.list_available(location, product_id)
        return jsonify({
            "location": location,
            "productId": product_id,
            "count": len(units),
            "units": [u.to_dict() for u in units],
        }), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/summary")
@require_context
def stock_summary():
    try:
        location = (request.args.get("location") or "").strip()
        if not location:
            raise ValidationError("location is required", details={"field": "location"})
        return jsonify(inventory_service.get_inventory_summary(location)), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code

# backend/retailops/routes/defects.py
"""
Defect and customer-return API routes.

Outlet defects accept multipart form data (optional image) or JSON; only the
image's file name is recorded, storage of the file itself is out of scope.
"""
from flask import Blueprint, request, jsonify, current_app, g
from werkzeug.utils import secure_filename

from ..extensions import db
from ..decorators import require_context, require_role
from ..errors import OperationError, ValidationError
from ..auth_context import ROLE_ADMIN, ROLE_MANAGER
from ..services import defect_service
from ..services.concurrency import commit_with_retry
from ..validation import PayloadPolicy, check_payload, coerce_bool


defects_bp = Blueprint("defects", __name__, url_prefix="/api/defects")

DEFECT_FIELDS = {"barcode", "store", "storeId", "returnReason", "image"}
RETURN_POLICY = PayloadPolicy(
    writable_fields={"orderId", "source", "barcodes", "returnReason", "storeId", "image"},
    required_on_create=frozenset({"orderId", "barcodes", "returnReason"}),
)
UPDATE_POLICY = PayloadPolicy(writable_fields={"status"}, required_on_create=frozenset({"status"}))


def _defect_payload() -> tuple[dict, str | None]:
    if request.mimetype and request.mimetype.startswith("multipart/"):
        data = {k: v for k, v in request.form.items()}
        upload = request.files.get("image")
        image = secure_filename(upload.filename) if upload and upload.filename else None
        return data, image or data.get("image")

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data, data.get("image")


@defects_bp.get("")
@require_context
def list_defects():
    """Query params: store (store name), status (pending | approved | sold)."""
    defects = defect_service.list_defects(
        store=request.args.get("store") or None,
        status=request.args.get("status") or None,
    )
    return jsonify([d.to_dict() for d in defects]), 200


@defects_bp.post("")
@require_context
def create_defect():
    """
    Record an outlet-identified defect.

    Fields (form or JSON):
        barcode: str
        store | storeId: outlet name or id (defaults to the caller's store)
        returnReason: str
        image: file (multipart) or file name
    """
    try:
        data, image = _defect_payload()
        unknown = sorted(k for k in data if k not in DEFECT_FIELDS)
        if unknown:
            raise ValidationError(f"Field not allowed: {', '.join(unknown)}", details={"fields": unknown})

        store_ref = data.get("storeId") or data.get("store") or g.auth_context.store_id
        defect = defect_service.create_outlet_defect(
            barcode=data.get("barcode"),
            store_ref=store_ref,
            return_reason=data.get("returnReason"),
            ctx=g.auth_context,
            image=image,
        )
        commit_with_retry()
        return jsonify(defect.to_dict()), 201
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create defect")
        return jsonify({"error": "Internal server error"}), 500


@defects_bp.get("/customer-orders")
@require_context
def customer_orders():
    """Query params: orderId and/or phone. Searches orders and sales."""
    try:
        results = defect_service.find_customer_orders(
            order_id=request.args.get("orderId") or None,
            phone=request.args.get("phone") or None,
        )
        return jsonify(results), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@defects_bp.post("/returns")
@require_context
def create_customer_return():
    """
    Record returned units from a historical order or sale.

    Request body:
    {
        "orderId": int,
        "source": "order" | "sale" (optional),
        "barcodes": [str],
        "returnReason": str,
        "storeId": int (optional, receiving outlet)
    }
    """
    try:
        data = check_payload(request.get_json(silent=True), RETURN_POLICY)
        defects = defect_service.create_customer_return(
            order_id=data["orderId"],
            barcodes=data["barcodes"] if isinstance(data["barcodes"], list) else [data["barcodes"]],
            return_reason=data["returnReason"],
            source=data.get("source"),
            store_ref=data.get("storeId"),
            ctx=g.auth_context,
            image=data.get("image"),
        )
        commit_with_retry()
        return jsonify([d.to_dict() for d in defects]), 201
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record customer return")
        return jsonify({"error": "Internal server error"}), 500


@defects_bp.get("/<int:defect_id>")
@require_context
def get_defect(defect_id: int):
    try:
        return jsonify(defect_service.get_defect(defect_id).to_dict()), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@defects_bp.put("/<int:defect_id>")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_defect(defect_id: int):
    """Only {"status": "approved"}; sold is reached through a sale."""
    try:
        data = check_payload(request.get_json(silent=True), UPDATE_POLICY)
        if data["status"] != defect_service.DEFECT_STATUS_APPROVED:
            raise ValidationError(
                "Defects can only be approved here; they are sold through a sale",
                details={"field": "status"},
            )
        defect = defect_service.approve_defect(defect_id)
        commit_with_retry()
        return jsonify(defect.to_dict()), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update defect")
        return jsonify({"error": "Internal server error"}), 500


@defects_bp.delete("/<int:defect_id>")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def remove_defect(defect_id: int):
    """Requires ?confirm=true."""
    try:
        defect_service.remove_defect(defect_id, confirm=coerce_bool(request.args.get("confirm")))
        commit_with_retry()
        return jsonify({"deleted": defect_id}), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to remove defect")
        return jsonify({"error": "Internal server error"}), 500

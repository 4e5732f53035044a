# backend/retailops/routes/sales.py
"""
POS sale and social-commerce order API routes.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..extensions import db
from ..decorators import require_context, require_role
from ..errors import OperationError, ValidationError
from ..auth_context import ROLE_ADMIN, ROLE_MANAGER
from ..services import sales_service, exchange_service
from ..services.catalog_service import resolve_store
from ..services.concurrency import commit_with_retry
from ..validation import PayloadPolicy, check_payload, coerce_bool, coerce_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")
orders_bp = Blueprint("social_orders", __name__, url_prefix="/api/social-orders")

RESERVE_POLICY = PayloadPolicy(
    writable_fields={"storeId", "productId", "quantity", "exclude"},
    required_on_create=frozenset({"productId", "quantity"}),
)
EXCHANGE_POLICY = PayloadPolicy(
    writable_fields={"orderId", "removedProducts", "replacementProducts"},
    required_on_create=frozenset({"orderId"}),
)


def _complete(kind: str):
    try:
        payload = request.get_json(silent=True)
        if kind == sales_service.DOCUMENT_SALE:
            document = sales_service.complete_sale(payload, ctx=g.auth_context)
        else:
            document = sales_service.complete_order(payload, ctx=g.auth_context)
        commit_with_retry()
        return jsonify(document.to_dict()), 201
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to complete %s", kind)
        return jsonify({"error": "Internal server error"}), 500


def _update(kind: str, document_id: int):
    try:
        document = sales_service.update_document(kind, document_id, request.get_json(silent=True))
        commit_with_retry()
        return jsonify(document.to_dict()), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update %s %s", kind, document_id)
        return jsonify({"error": "Internal server error"}), 500


def _delete(kind: str, document_id: int):
    try:
        confirm = coerce_bool(request.args.get("confirm"))
        if kind == sales_service.DOCUMENT_SALE:
            sales_service.delete_sale(document_id, confirm=confirm)
        else:
            sales_service.delete_order(document_id, confirm=confirm)
        commit_with_retry()
        return jsonify({"deleted": document_id}), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to delete %s %s", kind, document_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# POS SALES
# =============================================================================

@sales_bp.get("")
@require_context
def list_sales():
    """Query params: outlet (store name)."""
    records = sales_service.list_sales(outlet=request.args.get("outlet") or None)
    return jsonify([s.to_dict() for s in records]), 200


@sales_bp.post("")
@require_context
def create_sale():
    """
    Finalize a POS cart.

    Request body:
    {
        "storeId": int,
        "date": ISO-8601 (optional),
        "customer": {"name", "mobile", "address"},
        "items": [{"productId", "productName", "qty", "price", "discount",
                   "barcodes": [str]} | {..., "isDefective": true, "defectId", "barcode"}],
        "amounts": {"vatRate", "transportCost", ...},
        "payments": {"cash", "card", "bkash", "nagad", "transactionFee", ...}
    }

    Returns:
        201: Sale with canonical amounts/payments
        400: Invalid cart or amounts mismatch
        409: A reserved unit is no longer available
    """
    return _complete(sales_service.DOCUMENT_SALE)


@sales_bp.post("/reserve")
@require_context
def reserve():
    """
    Add-to-cart stock check.

    Request body: {"storeId": int, "productId": int, "quantity": int, "exclude": [barcode]}
    Returns the barcodes to hold in the cart, or 409 when short.
    """
    try:
        data = check_payload(request.get_json(silent=True), RESERVE_POLICY)
        store_ref = data.get("storeId") or g.auth_context.store_id
        if store_ref in (None, ""):
            raise ValidationError("Please select an outlet", details={"field": "storeId"})
        store = resolve_store(store_ref)
        product_id = coerce_int(data["productId"], "productId")
        exclude = data.get("exclude") or []
        if not isinstance(exclude, list):
            raise ValidationError("exclude must be a list of barcodes", details={"field": "exclude"})
        barcodes = sales_service.reserve_units(
            store.name,
            product_id,
            data["quantity"],
            exclude=frozenset(str(code).strip() for code in exclude),
        )
        return jsonify({"storeId": store.id, "productId": product_id, "barcodes": barcodes}), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/<int:sale_id>")
@require_context
def get_sale(sale_id: int):
    try:
        return jsonify(sales_service.get_sale(sale_id).to_dict()), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.put("/<int:sale_id>")
@require_context
def update_sale(sale_id: int):
    return _update(sales_service.DOCUMENT_SALE, sale_id)


@sales_bp.delete("/<int:sale_id>")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_sale(sale_id: int):
    """Requires ?confirm=true."""
    return _delete(sales_service.DOCUMENT_SALE, sale_id)


# =============================================================================
# SOCIAL-COMMERCE ORDERS
# =============================================================================

@orders_bp.get("")
@require_context
def list_orders():
    records = sales_service.list_orders(outlet=request.args.get("outlet") or None)
    return jsonify([o.to_dict() for o in records]), 200


@orders_bp.post("")
@require_context
def create_order():
    """
    Place a social-commerce order. Lines without barcodes are allocated
    from any outlet (or from storeId when given).
    """
    return _complete(sales_service.DOCUMENT_ORDER)


@orders_bp.post("/exchange")
@require_context
def exchange():
    """
    Exchange line items on an order.

    Request body:
    {
        "orderId": int,
        "removedProducts": [{"productId": line id or product id, "quantity": int}],
        "replacementProducts": [{"id": product id, "name", "price", "quantity", "amount", "batchId", "size"}]
    }

    Returns:
        200: {"order": {...}, "exchange": {...}, "difference": number}
    """
    try:
        data = check_payload(request.get_json(silent=True), EXCHANGE_POLICY)
        order, entry = exchange_service.process_exchange(
            order_id=data["orderId"],
            removed_products=data.get("removedProducts"),
            replacement_products=data.get("replacementProducts"),
            ctx=g.auth_context,
        )
        commit_with_retry()
        return jsonify({"order": order.to_dict(), "exchange": entry, "difference": entry["difference"]}), 200
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to process exchange")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_context
def get_order(order_id: int):
    try:
        return jsonify(sales_service.get_order(order_id).to_dict()), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.put("/<int:order_id>")
@require_context
def update_order(order_id: int):
    return _update(sales_service.DOCUMENT_ORDER, order_id)


@orders_bp.delete("/<int:order_id>")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_order(order_id: int):
    """Requires ?confirm=true."""
    return _delete(sales_service.DOCUMENT_ORDER, order_id)

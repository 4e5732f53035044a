# backend/retailops/routes/catalog.py
"""
Catalog API routes: stores, products and purchase batches.
"""
from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..decorators import require_context, require_role
from ..errors import OperationError
from ..auth_context import ROLE_ADMIN, ROLE_MANAGER
from ..services import catalog_service
from ..services.concurrency import commit_with_retry
from ..validation import PayloadPolicy, check_payload, coerce_bool


stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")
products_bp = Blueprint("products", __name__, url_prefix="/api/products")
batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")

STORE_POLICY = PayloadPolicy(writable_fields={"name", "code", "location"}, required_on_create=frozenset({"name"}))
PRODUCT_POLICY = PayloadPolicy(writable_fields={"name", "attributes"}, required_on_create=frozenset({"name"}))
BATCH_POLICY = PayloadPolicy(
    writable_fields={"productId", "costPrice", "sellingPrice", "quantity", "paid", "storeId"},
    required_on_create=frozenset({"productId", "costPrice", "sellingPrice", "quantity"}),
)


# =============================================================================
# STORES
# =============================================================================

@stores_bp.get("")
@require_context
def list_stores():
    return jsonify([s.to_dict() for s in catalog_service.list_stores()]), 200


@stores_bp.post("")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_store():
    try:
        data = check_payload(request.get_json(silent=True), STORE_POLICY)
        store = catalog_service.create_store(data.get("name"), code=data.get("code"), location=data.get("location"))
        commit_with_retry()
        return jsonify(store.to_dict()), 201
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create store")
        return jsonify({"error": "Internal server error"}), 500


@stores_bp.get("/<int:store_id>")
@require_context
def get_store(store_id: int):
    try:
        return jsonify(catalog_service.get_store(store_id).to_dict()), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# PRODUCTS
# =============================================================================

@products_bp.get("")
@require_context
def list_products():
    return jsonify([p.to_dict() for p in catalog_service.list_products()]), 200


@products_bp.post("")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_product():
    try:
        data = check_payload(request.get_json(silent=True), PRODUCT_POLICY)
        product = catalog_service.create_product(data.get("name"), attributes=data.get("attributes"))
        commit_with_retry()
        return jsonify(product.to_dict()), 201
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_context
def get_product(product_id: int):
    try:
        return jsonify(catalog_service.get_product(product_id).to_dict()), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code


# =============================================================================
# BATCHES
# =============================================================================

@batches_bp.get("")
@require_context
def list_batches():
    return jsonify([b.to_dict() for b in catalog_service.list_batches()]), 200


@batches_bp.post("")
@require_context
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_batch():
    """
    Record a purchase batch, optionally admitting its units at a store.

    Request body:
    {
        "productId": int,
        "costPrice": number,
        "sellingPrice": number,
        "quantity": int,
        "paid": bool (optional, default true),
        "storeId": int (optional)
    }
    """
    try:
        data = check_payload(request.get_json(silent=True), BATCH_POLICY)
        batch, units = catalog_service.create_batch(
            product_id=data["productId"],
            cost_price=data["costPrice"],
            selling_price=data["sellingPrice"],
            quantity=data["quantity"],
            paid=coerce_bool(data.get("paid"), default=True),
            store_id=data.get("storeId"),
        )
        commit_with_retry()
        return jsonify({"batch": batch.to_dict(), "units": [u.to_dict() for u in units]}), 201
    except OperationError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create batch")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.get("/<int:batch_id>")
@require_context
def get_batch(batch_id: int):
    try:
        return jsonify(catalog_service.get_batch(batch_id).to_dict()), 200
    except OperationError as e:
        return jsonify(e.to_dict()), e.status_code

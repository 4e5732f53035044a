# Overview: Stores, products and purchase batches that the inventory engine references.

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Store, Product, Batch
from ..validation import validate_attributes, require_text, coerce_int, coerce_money
from .inventory_service import create_unit
from .transaction_service import append_transaction

logger = logging.getLogger(__name__)


# =============================================================================
# STORES
# =============================================================================

def create_store(name: str, code: str | None = None, location: str | None = None) -> Store:
    name = require_text(name, "name", max_length=120)
    if db.session.query(Store).filter_by(name=name).first():
        raise ValidationError(f"Store {name} already exists", details={"field": "name"})
    if code and db.session.query(Store).filter_by(code=code).first():
        raise ValidationError(f"Store code {code} already exists", details={"field": "code"})

    store = Store(name=name, code=code or None, location=location)
    db.session.add(store)
    db.session.flush()
    return store


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFoundError(f"Store {store_id} not found", details={"storeId": store_id})
    return store


def resolve_store(store_ref) -> Store:
    """Accept a store id (int or digit string) or a store display name."""
    if store_ref is None or store_ref == "":
        raise ValidationError("store is required", details={"field": "store"})
    if isinstance(store_ref, int) and not isinstance(store_ref, bool):
        return get_store(store_ref)
    text = str(store_ref).strip()
    store = db.session.query(Store).filter_by(name=text).first()
    if store is not None:
        return store
    if text.isdigit():
        return get_store(int(text))
    raise NotFoundError(f"Store {text} not found", details={"store": text})


def list_stores() -> list[Store]:
    return db.session.query(Store).order_by(Store.id.asc()).all()


# =============================================================================
# PRODUCTS
# =============================================================================

def create_product(name: str, attributes: dict | None = None) -> Product:
    product = Product(
        name=require_text(name, "name", max_length=255),
        attributes=validate_attributes(attributes),
    )
    db.session.add(product)
    db.session.flush()
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"productId": product_id})
    return product


def list_products() -> list[Product]:
    return db.session.query(Product).order_by(Product.id.asc()).all()


# =============================================================================
# BATCHES
# =============================================================================

def create_batch(
    *,
    product_id,
    cost_price,
    selling_price,
    quantity,
    paid: bool = True,
    store_id: int | None = None,
) -> tuple[Batch, list]:
    """
    Record a purchase lot and, when a store is given, admit its units there.

    Units get barcodes "<base_code>-<n>" (n from 1) and inherit the batch
    prices through InventoryUnit.effective_*_price.
    """
    product = get_product(coerce_int(product_id, "productId"))
    cost = coerce_money(cost_price, "costPrice")
    selling = coerce_money(selling_price, "sellingPrice")
    qty = coerce_int(quantity, "quantity", minimum=1)

    store = get_store(coerce_int(store_id, "storeId")) if store_id not in (None, "") else None

    batch = Batch(
        product_id=product.id,
        cost_price=cost,
        selling_price=selling,
        quantity=qty,
        paid=bool(paid),
    )
    db.session.add(batch)
    db.session.flush()
    batch.base_code = f"BATCH{batch.id}"

    units = []
    if store is not None:
        for n in range(1, qty + 1):
            units.append(
                create_unit(
                    barcode=f"{batch.base_code}-{n}",
                    product_id=product.id,
                    batch_id=batch.id,
                    location=store.name,
                )
            )

    append_transaction(
        type="batch",
        source_id=batch.id,
        amount=cost * qty,
        description=f"Batch {batch.base_code} of {qty} x {product.name}",
        payload={"productId": product.id, "quantity": qty, "costPrice": cost, "paid": batch.paid},
    )
    db.session.flush()

    logger.info("batch %s created (%s units, admitted=%s)", batch.base_code, qty, len(units))
    return batch, units


def get_batch(batch_id: int) -> Batch:
    batch = db.session.get(Batch, batch_id)
    if batch is None:
        raise NotFoundError(f"Batch {batch_id} not found", details={"batchId": batch_id})
    return batch


def list_batches() -> list[Batch]:
    return db.session.query(Batch).order_by(Batch.id.asc()).all()

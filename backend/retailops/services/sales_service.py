"""
Sale processor: POS sales and social-commerce orders.

WHY: A finalized cart is the only place units leave stock as sold. The
processor re-verifies what the till composed (stock and amounts) before it
touches inventory, so a stale cart can never sell a unit twice.

LIFECYCLE (per document):
1. reserve_units(): add-to-cart stock check, returns the barcodes to hold
2. complete_sale() / complete_order():
   - re-verify every reserved barcode is still sellable
   - re-verify amounts and payments
   - mark units sold (soldAt = now), link resold defects
   - persist the document and append a FinancialTransaction
3. delete_sale() / delete_order(): explicit confirmation required
"""

from __future__ import annotations

import copy
import logging

from flask import current_app, has_app_context
from sqlalchemy.orm.attributes import flag_modified

from ..extensions import db
from ..errors import (
    ValidationError,
    InsufficientStockError,
    ConfirmationRequiredError,
)
from ..models import Sale, SocialOrder, Store
from ..time_utils import utcnow
from ..validation import coerce_int, coerce_money, coerce_bool, coerce_datetime
from ..auth_context import AuthContext
from .concurrency import run_with_retry, unit_locks, barcode_key, outlet_key, product_key
from . import inventory_service
from .inventory_service import UNIT_STATUS_SOLD
from .catalog_service import resolve_store, get_product
from .defect_service import mark_defect_sold
from .record_store import sales as sale_store, orders as order_store
from .transaction_service import append_transaction


logger = logging.getLogger(__name__)

DOCUMENT_SALE = "sale"
DOCUMENT_ORDER = "order"

# Money comparisons between till-composed and recomputed values
AMOUNT_TOLERANCE = 0.01

SALE_TENDERS = ("cash", "card", "bkash", "nagad")
ORDER_TENDERS = ("sslCommerz", "advance")


def _round(value: float) -> float:
    return round(float(value), 2)


def default_vat_rate() -> float:
    if has_app_context():
        return float(current_app.config.get("DEFAULT_VAT_RATE", 0))
    return 0.0


# =============================================================================
# AMOUNTS & PAYMENTS
# =============================================================================

def compute_amounts(items: list[dict], vat_rate=None, transport_cost=0) -> dict:
    """
    Canonical amounts for a cart.

    subtotal is already net of per-line discounts:
        vat   = subtotal * vatRate / 100
        total = subtotal + vat + transportCost
    """
    rate = default_vat_rate() if vat_rate is None else coerce_money(vat_rate, "vatRate")
    transport = coerce_money(transport_cost or 0, "transportCost")

    subtotal = _round(sum(float(item.get("amount") or 0) for item in items))
    total_discount = _round(sum(float(item.get("discount") or 0) for item in items))
    vat = _round(subtotal * rate / 100)

    return {
        "subtotal": subtotal,
        "totalDiscount": total_discount,
        "vat": vat,
        "vatRate": rate,
        "transportCost": transport,
        "total": _round(subtotal + vat + transport),
    }


def compute_sale_payments(
    total: float,
    *,
    cash=0,
    card=0,
    bkash=0,
    nagad=0,
    transaction_fee=0,
) -> dict:
    """POS payments: due = total - totalPaid - transactionFee."""
    tenders = {
        "cash": coerce_money(cash or 0, "payments.cash"),
        "card": coerce_money(card or 0, "payments.card"),
        "bkash": coerce_money(bkash or 0, "payments.bkash"),
        "nagad": coerce_money(nagad or 0, "payments.nagad"),
    }
    fee = coerce_money(transaction_fee or 0, "payments.transactionFee")
    total_paid = _round(sum(tenders.values()))
    return {
        **tenders,
        "transactionFee": fee,
        "totalPaid": total_paid,
        "due": _round(total - total_paid - fee),
    }


def compute_order_payments(
    total: float,
    *,
    ssl_commerz=0,
    advance=0,
    transaction_id: str | None = None,
) -> dict:
    """Order payments: due = total - totalPaid."""
    ssl = coerce_money(ssl_commerz or 0, "payments.sslCommerz")
    adv = coerce_money(advance or 0, "payments.advance")
    total_paid = _round(ssl + adv)
    return {
        "sslCommerz": ssl,
        "advance": adv,
        "transactionId": transaction_id or None,
        "totalPaid": total_paid,
        "due": _round(total - total_paid),
    }


def _check_matches(submitted: dict, computed: dict, keys: tuple[str, ...], prefix: str) -> None:
    for key in keys:
        if submitted.get(key) is None:
            continue
        try:
            received = float(submitted[key])
        except (TypeError, ValueError):
            raise ValidationError(f"{prefix}.{key} must be a number", details={"field": f"{prefix}.{key}"})
        if abs(received - float(computed[key])) > AMOUNT_TOLERANCE:
            raise ValidationError(
                f"{prefix}.{key} is {received:.2f} but should be {computed[key]:.2f}",
                details={"field": f"{prefix}.{key}", "received": received, "expected": computed[key]},
            )


def verify_amounts(submitted: dict | None, computed: dict) -> None:
    """Reject till-composed amounts that disagree with the recomputation."""
    _check_matches(submitted or {}, computed, ("subtotal", "vat", "transportCost", "total"), "amounts")


def verify_payments(submitted: dict | None, computed: dict) -> None:
    _check_matches(submitted or {}, computed, ("totalPaid", "due"), "payments")


def _payments_for(kind: str, total: float, submitted: dict) -> dict:
    if kind == DOCUMENT_SALE:
        tenders = {k: submitted.get(k) for k in SALE_TENDERS}
        # A bare totalPaid with no tender split is taken as cash
        if not any(tenders.values()) and submitted.get("totalPaid"):
            tenders["cash"] = submitted.get("totalPaid")
        return compute_sale_payments(
            total,
            transaction_fee=submitted.get("transactionFee"),
            **tenders,
        )

    ssl = submitted.get("sslCommerz")
    advance = submitted.get("advance")
    if not ssl and not advance and submitted.get("totalPaid"):
        advance = submitted.get("totalPaid")
    return compute_order_payments(
        total,
        ssl_commerz=ssl,
        advance=advance,
        transaction_id=submitted.get("transactionId"),
    )


# =============================================================================
# LINE ITEMS
# =============================================================================

def normalize_items(raw_items) -> list[dict]:
    """
    Validate cart lines and fill derived fields.

    Each line: productId, productName, qty, price, discount, amount and either
    barcodes[] (ordinary stock) or isDefective + defectId (+ barcode).
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Please add products to cart", details={"field": "items"})

    items: list[dict] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object", details={"field": f"items[{index}]"})

        product_id = coerce_int(raw.get("productId"), f"items[{index}].productId")
        qty = coerce_int(raw.get("qty", raw.get("quantity")), f"items[{index}].qty", minimum=1)
        price = coerce_money(raw.get("price"), f"items[{index}].price")
        discount = coerce_money(raw.get("discount") or 0, f"items[{index}].discount")
        amount = _round(price * qty - discount)
        if amount < 0:
            raise ValidationError(
                f"Discount on item {index + 1} exceeds its value",
                details={"field": f"items[{index}].discount"},
            )
        if raw.get("amount") is not None:
            _check_matches({"amount": raw.get("amount")}, {"amount": amount}, ("amount",), f"items[{index}]")

        item = {
            "productId": product_id,
            "productName": raw.get("productName") or get_product(product_id).name,
            "qty": qty,
            "price": price,
            "discount": discount,
            "amount": amount,
            "isDefective": coerce_bool(raw.get("isDefective")),
        }
        for passthrough in ("id", "batchId", "size"):
            if raw.get(passthrough) is not None:
                item[passthrough] = raw[passthrough]

        if item["isDefective"]:
            item["defectId"] = coerce_int(raw.get("defectId"), f"items[{index}].defectId")
            if qty != 1:
                raise ValidationError(
                    "A defective item is sold one unit at a time",
                    details={"field": f"items[{index}].qty"},
                )
            if raw.get("barcode"):
                item["barcode"] = str(raw["barcode"]).strip()
        else:
            barcodes = raw.get("barcodes")
            if barcodes is not None:
                if not isinstance(barcodes, list):
                    raise ValidationError("barcodes must be a list", details={"field": f"items[{index}].barcodes"})
                barcodes = [str(b).strip() for b in barcodes if str(b).strip()]
                if len(barcodes) != qty:
                    raise ValidationError(
                        f"Item {index + 1} reserves {len(barcodes)} barcode(s) for quantity {qty}",
                        details={"field": f"items[{index}].barcodes", "qty": qty, "barcodes": len(barcodes)},
                    )
            item["barcodes"] = barcodes
        items.append(item)

    seen: set[str] = set()
    for item in items:
        for code in item.get("barcodes") or []:
            if code in seen:
                raise ValidationError(f"Barcode {code} is reserved on more than one line", details={"barcode": code})
            seen.add(code)
    return items


# =============================================================================
# STOCK
# =============================================================================

def reserve_units(
    location: str | None,
    product_id: int,
    quantity: int,
    *,
    exclude: set[str] | frozenset = frozenset(),
) -> list[str]:
    """
    Add-to-cart stock check.

    Returns the barcodes that would be reserved (natural listing order) or
    raises InsufficientStockError. location None checks every outlet.
    """
    quantity = coerce_int(quantity, "quantity", minimum=1)
    candidates = [
        unit.barcode
        for unit in inventory_service.list_available(location, product_id)
        if unit.barcode not in exclude
    ]
    if len(candidates) < quantity:
        where = location or "any outlet"
        raise InsufficientStockError(
            f"Only {len(candidates)} units of product {product_id} available at {where}. Requested: {quantity}",
            details={
                "productId": product_id,
                "location": location,
                "requested": quantity,
                "available": len(candidates),
            },
        )
    return candidates[:quantity]


def _claim_units(items: list[dict], location: str | None) -> list:
    """
    Resolve and verify every unit a cart will sell.

    Lines without barcodes get units allocated in natural listing order.
    Raises InsufficientStockError naming each barcode that is no longer
    sellable; nothing is mutated.
    """
    unsellable: list[dict] = []
    claimed: list = []
    claimed_codes: set[str] = set()

    for item in items:
        if item["isDefective"] or not item.get("barcodes"):
            continue
        for code in item["barcodes"]:
            unit = inventory_service.find_by_barcode(code, lock=True)
            if unit is None or unit.product_id != item["productId"] or not inventory_service.is_sellable(unit, location):
                unsellable.append({
                    "barcode": code,
                    "productId": item["productId"],
                    "status": getattr(unit, "status", None),
                    "location": getattr(unit, "location", None),
                })
                continue
            claimed.append(unit)
            claimed_codes.add(code)

    if unsellable:
        raise InsufficientStockError(
            f"Barcode {unsellable[0]['barcode']} is no longer available for sale",
            details={"items": unsellable},
        )

    for item in items:
        if item["isDefective"] or item.get("barcodes"):
            continue
        codes = reserve_units(location, item["productId"], item["qty"], exclude=claimed_codes)
        item["barcodes"] = codes
        for code in codes:
            claimed.append(inventory_service.find_by_barcode(code, lock=True))
            claimed_codes.add(code)

    return claimed


# =============================================================================
# FINALIZATION
# =============================================================================

def _model_for(kind: str):
    return Sale if kind == DOCUMENT_SALE else SocialOrder


def _store_for(kind: str):
    return sale_store if kind == DOCUMENT_SALE else order_store


def _complete(kind: str, payload: dict, ctx: AuthContext | None):
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    store_ref = payload.get("storeId", payload.get("outletId", payload.get("outlet")))
    if kind == DOCUMENT_SALE and (store_ref is None or store_ref == ""):
        if ctx is not None and ctx.store_id is not None:
            store_ref = ctx.store_id
        else:
            raise ValidationError("Please select an outlet", details={"field": "storeId"})
    store: Store | None = resolve_store(store_ref) if store_ref not in (None, "") else None

    items = normalize_items(payload.get("items"))
    submitted_amounts = payload.get("amounts") or {}
    amounts = compute_amounts(
        items,
        vat_rate=submitted_amounts.get("vatRate", payload.get("vatRate")),
        transport_cost=submitted_amounts.get("transportCost", payload.get("transportCost")),
    )
    verify_amounts(submitted_amounts, amounts)

    submitted_payments = payload.get("payments") or {}
    payments = _payments_for(kind, amounts["total"], submitted_payments)
    verify_payments(submitted_payments, payments)

    occurred_at = coerce_datetime(payload.get("date"), "date") or utcnow()
    location = store.name if store is not None else None
    keys = [outlet_key(location)] if location else []
    for item in items:
        codes = item.get("barcodes") or []
        keys.extend(barcode_key(code) for code in codes)
        if not codes and not item["isDefective"]:
            # Allocated lines: callers picking from the same product pool queue up
            keys.append(product_key(item["productId"]))

    def _op():
        # Every attempt allocates into its own copy of the lines; a retried
        # attempt must not inherit barcodes picked by the rolled-back one.
        attempt_items = copy.deepcopy(items)
        with unit_locks.hold(*keys):
            return _complete_locked(attempt_items)

    def _complete_locked(items):
        units = _claim_units(items, location)

        model = _model_for(kind)
        document = model(
            date=occurred_at,
            store_id=store.id if store else None,
            outlet=location,
            sales_by=payload.get("salesBy") or (ctx.user_name if ctx else None),
            customer=payload.get("customer") or {},
            items=items,
            amounts=amounts,
            payments=payments,
            exchange_history=[],
        )
        if kind == DOCUMENT_ORDER:
            document.delivery_address = payload.get("deliveryAddress") or {}
        _store_for(kind).put(document)

        now = utcnow()
        for unit in units:
            inventory_service.set_status(unit.id, UNIT_STATUS_SOLD, timestamp_field="sold_at", at=now)

        for item in items:
            if item["isDefective"]:
                defect = mark_defect_sold(item["defectId"], document_id=document.id, source=kind, barcode=item.get("barcode"))
                item["barcode"] = defect.barcode
        flag_modified(document, "items")

        append_transaction(
            type=kind,
            source_id=document.id,
            amount=amounts["total"],
            occurred_at=occurred_at,
            description=f"{kind.capitalize()} {document.id}" + (f" at {location}" if location else ""),
            payload={
                "outlet": location,
                "total": amounts["total"],
                "totalPaid": payments["totalPaid"],
                "due": payments["due"],
                "units": len(units),
            },
        )
        db.session.flush()

        logger.info("%s %s completed: %s unit(s), total %.2f", kind, document.id, len(units), amounts["total"])
        return document

    return run_with_retry(_op)


def complete_sale(payload: dict, ctx: AuthContext | None = None) -> Sale:
    """
    Finalize a POS cart.

    Raises:
        ValidationError: missing outlet, bad lines, amounts/payments mismatch
        InsufficientStockError: a reserved unit is no longer sellable
        NotFoundError: unknown store, product or defect
    """
    return _complete(DOCUMENT_SALE, payload, ctx)


def complete_order(payload: dict, ctx: AuthContext | None = None) -> SocialOrder:
    """Finalize a social-commerce order; units are allocated from any outlet unless one is given."""
    return _complete(DOCUMENT_ORDER, payload, ctx)


# =============================================================================
# READ / UPDATE / DELETE
# =============================================================================

def get_sale(sale_id) -> Sale:
    return sale_store.get_by_id(coerce_int(sale_id, "id"))


def get_order(order_id) -> SocialOrder:
    return order_store.get_by_id(coerce_int(order_id, "id"))


def get_document(kind: str, document_id):
    return get_sale(document_id) if kind == DOCUMENT_SALE else get_order(document_id)


def list_sales(*, outlet: str | None = None) -> list[Sale]:
    records = sale_store.list_all()
    if outlet:
        records = [r for r in records if r.outlet == outlet]
    return records


def list_orders(*, outlet: str | None = None) -> list[SocialOrder]:
    records = order_store.list_all()
    if outlet:
        records = [r for r in records if r.outlet == outlet]
    return records


def update_document(kind: str, document_id, payload: dict):
    """
    Edit the non-inventory parts of a document: customer, delivery address,
    seller and payments (due recomputed). Lines and amounts change only
    through exchanges.
    """
    document = get_document(kind, document_id)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    allowed = {"customer", "salesBy", "payments"}
    if kind == DOCUMENT_ORDER:
        allowed.add("deliveryAddress")
    unknown = sorted(k for k in payload if k not in allowed | {"id"})
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}", details={"fields": unknown})

    if "customer" in payload:
        document.customer = payload["customer"] or {}
    if "deliveryAddress" in payload:
        document.delivery_address = payload["deliveryAddress"] or {}
    if "salesBy" in payload:
        document.sales_by = payload["salesBy"]
    if "payments" in payload:
        submitted = payload["payments"] or {}
        payments = _payments_for(kind, float((document.amounts or {}).get("total") or 0), submitted)
        verify_payments(submitted, payments)
        document.payments = payments

    db.session.flush()
    return document


def _delete(kind: str, document_id, confirm: bool) -> None:
    document = get_document(kind, document_id)
    if not confirm:
        raise ConfirmationRequiredError(
            f"Deleting {kind} {document.id} cannot be undone; resend with confirm=true",
            details={"id": document.id, "confirm": False},
        )
    _store_for(kind).delete(document.id)
    logger.warning("%s %s deleted by explicit confirmation", kind, document.id)


def delete_sale(sale_id, *, confirm: bool = False) -> None:
    _delete(DOCUMENT_SALE, sale_id, confirm)


def delete_order(order_id, *, confirm: bool = False) -> None:
    _delete(DOCUMENT_ORDER, order_id, confirm)

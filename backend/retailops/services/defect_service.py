# Overview: Defect and customer-return processing; pulls units out of sellable stock and links resales.

from __future__ import annotations

import logging

from ..extensions import db
from ..errors import ValidationError, NotFoundError, ConfirmationRequiredError
from ..models import DefectItem, Sale, SocialOrder
from ..time_utils import utcnow
from ..validation import coerce_int
from ..auth_context import AuthContext
from .concurrency import run_with_retry, unit_locks, barcode_key
from . import inventory_service
from .inventory_service import UNIT_STATUS_AVAILABLE, UNIT_STATUS_SOLD, UNIT_STATUS_DEFECTIVE
from .catalog_service import resolve_store
from .record_store import defects as defect_store
from .transaction_service import append_transaction
"""
Defect Invariants (authoritative)

- A barcode with an open (pending | approved) DefectItem is never sellable
  as ordinary stock; its unit is moved to status 'defective'.
- At most one open DefectItem per barcode.
- pending -> approved -> sold, or pending -> sold. sold is terminal and is
  reached only through a sale/order line carrying the defect id.
- Customer returns carry originalOrderId + originalSource and emit a
  'return' FinancialTransaction; outlet defects emit nothing financial.
"""

logger = logging.getLogger(__name__)

DEFECT_STATUS_PENDING = "pending"
DEFECT_STATUS_APPROVED = "approved"
DEFECT_STATUS_SOLD = "sold"

DEFECT_STATUSES = (DEFECT_STATUS_PENDING, DEFECT_STATUS_APPROVED, DEFECT_STATUS_SOLD)

SOURCE_SALE = "sale"
SOURCE_ORDER = "order"


def get_defect(defect_id) -> DefectItem:
    return defect_store.get_by_id(coerce_int(defect_id, "id"))


def list_defects(*, store: str | None = None, status: str | None = None) -> list[DefectItem]:
    records = defect_store.list_all()
    if store:
        records = [d for d in records if d.store == store]
    if status:
        records = [d for d in records if d.status == status]
    return records


def _open_defect_for(barcode: str) -> DefectItem | None:
    return (
        db.session.query(DefectItem)
        .filter(DefectItem.barcode == barcode, DefectItem.status != DEFECT_STATUS_SOLD)
        .first()
    )


def _require_reason(return_reason) -> str:
    reason = (return_reason or "").strip() if isinstance(return_reason, str) else ""
    if not reason:
        raise ValidationError("Please provide a return reason", details={"field": "returnReason"})
    return reason


# =============================================================================
# OUTLET-IDENTIFIED DEFECTS
# =============================================================================

def create_outlet_defect(
    *,
    barcode: str,
    store_ref,
    return_reason: str,
    ctx: AuthContext | None = None,
    image: str | None = None,
) -> DefectItem:
    """
    Pull a sellable unit at an outlet out of stock as defective.

    Raises:
        ValidationError: empty barcode/reason, unit not sellable at the outlet
        NotFoundError: unknown barcode or store
    """
    code = (barcode or "").strip()
    if not code:
        raise ValidationError("Barcode is required", details={"field": "barcode"})
    reason = _require_reason(return_reason)

    def _op():
        with unit_locks.hold(barcode_key(code)):
            store = resolve_store(store_ref)
            unit = inventory_service.get_unit_by_barcode(code, lock=True)
            if not inventory_service.is_sellable(unit, store.name):
                raise ValidationError(
                    f"Barcode {code} is not available at {store.name}",
                    details={"barcode": code, "status": unit.status, "location": unit.location},
                )

            defect = DefectItem(
                barcode=code,
                product_id=unit.product_id,
                product_name=unit.product.name if unit.product else None,
                status=DEFECT_STATUS_PENDING,
                added_by=ctx.user_name if ctx else None,
                added_at=utcnow(),
                selling_price=unit.effective_selling_price,
                cost_price=unit.effective_cost_price,
                return_reason=reason,
                store=store.name,
                image=image,
            )
            defect_store.put(defect)
            inventory_service.set_status(unit.id, UNIT_STATUS_DEFECTIVE)

            logger.info("defect %s recorded for %s at %s", defect.id, code, store.name)
            return defect

    return run_with_retry(_op)


# =============================================================================
# CUSTOMER RETURNS
# =============================================================================

def _customer_phone(document) -> str | None:
    customer = document.customer or {}
    return customer.get("phone") or customer.get("customerPhone") or customer.get("mobile")


def _line_barcodes(item: dict) -> list[str]:
    if item.get("barcodes"):
        return list(item["barcodes"])
    if item.get("barcode"):
        return [item["barcode"]]
    return []


def normalize_order(document, source: str) -> dict:
    customer = document.customer or {}
    return {
        "id": document.id,
        "source": source,
        "customerName": customer.get("name"),
        "customerPhone": _customer_phone(document),
        "total": (document.amounts or {}).get("total"),
        "date": document.to_dict()["date"],
        "products": [
            {
                "id": item.get("id"),
                "productId": item.get("productId"),
                "productName": item.get("productName"),
                "qty": item.get("qty"),
                "price": item.get("price"),
                "barcodes": _line_barcodes(item),
            }
            for item in document.items or []
        ],
    }


def find_customer_orders(*, order_id=None, phone: str | None = None) -> list[dict]:
    """
    Look up historical orders and sales by id or customer phone.

    Social orders match customer.phone / customer.customerPhone; POS sales
    match customer.mobile. Results span both collections, orders first.
    """
    if (order_id is None or order_id == "") and not (phone or "").strip():
        raise ValidationError("Enter an order id or a customer phone number", details={"fields": ["orderId", "phone"]})

    wanted_id = coerce_int(order_id, "orderId", required=False)
    wanted_phone = (phone or "").strip() or None

    def _matches(document) -> bool:
        if wanted_id is not None and document.id == wanted_id:
            return True
        return wanted_phone is not None and _customer_phone(document) == wanted_phone

    results = [
        normalize_order(o, SOURCE_ORDER)
        for o in db.session.query(SocialOrder).order_by(SocialOrder.id.asc()).all()
        if _matches(o)
    ]
    results.extend(
        normalize_order(s, SOURCE_SALE)
        for s in db.session.query(Sale).order_by(Sale.id.asc()).all()
        if _matches(s)
    )
    return results


def _resolve_document(order_id: int, source: str | None):
    if source not in (None, "", SOURCE_SALE, SOURCE_ORDER):
        raise ValidationError(f"Unknown order source {source}", details={"field": "source"})

    order = db.session.get(SocialOrder, order_id) if source in (None, "", SOURCE_ORDER) else None
    sale = db.session.get(Sale, order_id) if source in (None, "", SOURCE_SALE) else None

    if order is not None and sale is not None:
        raise ValidationError(
            f"Order {order_id} exists as both a sale and an order; specify the source",
            details={"field": "source", "orderId": order_id},
        )
    if order is not None:
        return order, SOURCE_ORDER
    if sale is not None:
        return sale, SOURCE_SALE
    raise NotFoundError(f"Order {order_id} not found", details={"orderId": order_id})


def create_customer_return(
    *,
    order_id,
    barcodes: list,
    return_reason: str,
    source: str | None = None,
    store_ref=None,
    ctx: AuthContext | None = None,
    image: str | None = None,
) -> list[DefectItem]:
    """
    Record returned units from a historical order or sale.

    Every barcode must belong to the matched document's lines and have no
    open defect. Returned units become 'defective' (at the receiving store
    when one is given) and each defect emits a 'return' transaction.
    """
    order_id = coerce_int(order_id, "orderId")
    reason = _require_reason(return_reason)
    codes = [str(b).strip() for b in barcodes or [] if str(b).strip()]
    if not codes:
        raise ValidationError("Select at least one barcode to return", details={"field": "barcodes"})
    if len(set(codes)) != len(codes):
        raise ValidationError("A barcode is selected more than once", details={"field": "barcodes"})

    def _op():
        with unit_locks.hold(*(barcode_key(c) for c in codes)):
            return _return_locked()

    def _return_locked():
        document, doc_source = _resolve_document(order_id, source)
        store = resolve_store(store_ref) if store_ref not in (None, "") else None

        line_for: dict[str, dict] = {}
        for item in document.items or []:
            for code in _line_barcodes(item):
                line_for[code] = item

        foreign = [c for c in codes if c not in line_for]
        if foreign:
            raise ValidationError(
                f"Barcode {foreign[0]} is not part of order {order_id}",
                details={"barcodes": foreign, "orderId": order_id},
            )
        already = [c for c in codes if _open_defect_for(c) is not None]
        if already:
            raise ValidationError(
                f"Barcode {already[0]} already has an open defect",
                details={"barcodes": already},
            )

        now = utcnow()
        created: list[DefectItem] = []
        for code in codes:
            item = line_for[code]
            unit = inventory_service.find_by_barcode(code, lock=True)
            qty = item.get("qty") or 1
            paid_price = round(float(item.get("amount", item.get("price") or 0)) / qty, 2)

            defect = DefectItem(
                barcode=code,
                product_id=item.get("productId") or (unit.product_id if unit else None),
                product_name=item.get("productName"),
                status=DEFECT_STATUS_PENDING,
                added_by=ctx.user_name if ctx else None,
                added_at=now,
                original_order_id=document.id,
                original_source=doc_source,
                customer_phone=_customer_phone(document),
                selling_price=item.get("price"),
                original_selling_price=paid_price,
                cost_price=unit.effective_cost_price if unit else None,
                return_reason=reason,
                store=store.name if store else document.outlet,
                image=image,
            )
            defect_store.put(defect)

            if unit is not None and unit.status == UNIT_STATUS_SOLD:
                inventory_service.set_status(
                    unit.id,
                    UNIT_STATUS_DEFECTIVE,
                    location_override=store.name if store else None,
                )
            elif unit is None:
                logger.warning("returned barcode %s has no inventory unit", code)

            append_transaction(
                type="return",
                source_id=defect.id,
                amount=paid_price,
                occurred_at=now,
                description=f"Return of {code} from {doc_source} {document.id}",
                payload={"orderId": document.id, "source": doc_source, "barcode": code},
            )
            created.append(defect)

        logger.info("customer return on %s %s: %s unit(s)", doc_source, document.id, len(created))
        return created

    return run_with_retry(_op)


# =============================================================================
# LIFECYCLE
# =============================================================================

def approve_defect(defect_id) -> DefectItem:
    defect = get_defect(defect_id)
    if defect.status != DEFECT_STATUS_PENDING:
        raise ValidationError(
            f"Cannot approve defect in {defect.status} status",
            details={"id": defect.id, "status": defect.status},
        )
    defect.status = DEFECT_STATUS_APPROVED
    db.session.flush()
    return defect


def mark_defect_sold(defect_id, *, document_id: int, source: str, barcode: str | None = None) -> DefectItem:
    """
    Close a defect resold through a sale or order line.

    Called by the sale processor inside its own transaction; the unit is not
    touched (it left sellable stock when the defect was opened).
    """
    defect = get_defect(defect_id)
    if not defect.is_open:
        raise ValidationError(
            f"Defect {defect.id} has already been sold",
            details={"defectId": defect.id, "saleId": defect.sale_id},
        )
    if barcode and barcode != defect.barcode:
        raise ValidationError(
            f"Barcode {barcode} does not match defect {defect.id}",
            details={"defectId": defect.id, "barcode": barcode},
        )

    defect.status = DEFECT_STATUS_SOLD
    defect.sale_id = document_id
    defect.sale_source = source
    defect.sold_at = utcnow()
    db.session.flush()
    return defect


def remove_defect(defect_id, *, confirm: bool = False) -> None:
    """
    Delete a defect record. Requires explicit confirmation.

    An open defect's unit goes back to available stock at the defect's store.
    """
    defect = get_defect(defect_id)
    if not confirm:
        raise ConfirmationRequiredError(
            f"Removing defect {defect.id} ({defect.barcode}) cannot be undone; resend with confirm=true",
            details={"id": defect.id, "confirm": False},
        )

    if defect.is_open:
        unit = inventory_service.find_by_barcode(defect.barcode, lock=True)
        if unit is not None and unit.status == UNIT_STATUS_DEFECTIVE:
            inventory_service.set_status(unit.id, UNIT_STATUS_AVAILABLE, location_override=defect.store or unit.location)

    defect_store.delete(defect.id)
    logger.warning("defect %s (%s) removed by explicit confirmation", defect.id, defect.barcode)

# Overview: Line-item exchanges on existing orders and sales, with the signed payment difference.

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.orm.attributes import flag_modified

from ..extensions import db
from ..errors import ValidationError
from ..time_utils import utcnow, to_utc_z
from ..validation import coerce_int, coerce_money
from ..auth_context import AuthContext
from .concurrency import run_with_retry, unit_locks, outlet_key, product_key
from . import inventory_service
from .inventory_service import UNIT_STATUS_SOLD
from .catalog_service import get_product
from .sales_service import DOCUMENT_ORDER, get_document, reserve_units
from .transaction_service import append_transaction
"""
Exchange Invariants (authoritative)

- originalAmount = sum(line price * removed qty)
- newSubtotal    = sum(replacement amounts)
- vatAmount      = newSubtotal * order vatRate / 100, rounded to whole units
- difference     = newSubtotal + vatAmount - originalAmount
  (> 0 customer owes, < 0 refund due, 0 nothing)
- Only the exchanged lines change; every other line is untouched.
- Replacement units are reserved and marked sold in the same transaction.
- amounts/payments keep the original sale; the difference lives in the
  appended exchangeHistory entry and the 'exchange' FinancialTransaction.
- Removed units are not restocked here; they come back as customer returns.
"""

logger = logging.getLogger(__name__)


def round_whole(value: float) -> int:
    """Half-up rounding to whole currency units."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _find_line(items: list[dict], ref) -> int | None:
    for index, item in enumerate(items):
        if item is None:
            continue
        if item.get("id") is not None and str(item.get("id")) == str(ref):
            return index
    for index, item in enumerate(items):
        if item is not None and str(item.get("productId")) == str(ref):
            return index
    return None


def _parse_removed(removed_products) -> list[tuple[object, int]]:
    if not isinstance(removed_products, list) or not removed_products:
        raise ValidationError("Please select at least one product to exchange", details={"field": "removedProducts"})
    parsed = []
    for index, entry in enumerate(removed_products):
        if not isinstance(entry, dict) or entry.get("productId") in (None, ""):
            raise ValidationError("Each removed product needs a productId", details={"field": f"removedProducts[{index}]"})
        qty = coerce_int(entry.get("quantity"), f"removedProducts[{index}].quantity", minimum=1)
        parsed.append((entry["productId"], qty))
    return parsed


def _parse_replacements(replacement_products) -> list[dict]:
    if not isinstance(replacement_products, list) or not replacement_products:
        raise ValidationError("Please select replacement products", details={"field": "replacementProducts"})
    parsed = []
    for index, entry in enumerate(replacement_products):
        if not isinstance(entry, dict):
            raise ValidationError("Each replacement must be an object", details={"field": f"replacementProducts[{index}]"})
        product_id = coerce_int(entry.get("productId", entry.get("id")), f"replacementProducts[{index}].id")
        qty = coerce_int(entry.get("quantity", entry.get("qty")), f"replacementProducts[{index}].quantity", minimum=1)
        price = coerce_money(entry.get("price"), f"replacementProducts[{index}].price")
        amount = round(price * qty, 2)
        if entry.get("amount") is not None and abs(float(entry["amount"]) - amount) > 0.01:
            raise ValidationError(
                f"replacementProducts[{index}].amount should be {amount:.2f}",
                details={"field": f"replacementProducts[{index}].amount", "expected": amount},
            )
        parsed.append({
            "productId": product_id,
            "productName": entry.get("name") or get_product(product_id).name,
            "qty": qty,
            "price": price,
            "amount": amount,
            "batchId": entry.get("batchId"),
            "size": entry.get("size"),
        })
    return parsed


def compute_exchange_totals(original_amount: float, new_subtotal: float, vat_rate: float) -> dict:
    vat_amount = round_whole(new_subtotal * vat_rate / 100)
    total_new = round(new_subtotal + vat_amount, 2)
    return {
        "originalAmount": round(original_amount, 2),
        "newSubtotal": round(new_subtotal, 2),
        "vatRate": vat_rate,
        "vatAmount": vat_amount,
        "totalNewAmount": total_new,
        "difference": round(total_new - original_amount, 2),
    }


def process_exchange(
    *,
    order_id,
    removed_products,
    replacement_products,
    source: str = DOCUMENT_ORDER,
    ctx: AuthContext | None = None,
):
    """
    Swap line items on an existing order (or sale).

    Returns:
        (document, history_entry)

    Raises:
        ValidationError: nothing selected, removing more than was ordered
        NotFoundError: unknown order or product
        InsufficientStockError: replacement stock short
    """
    removed = _parse_removed(removed_products)
    replacements = _parse_replacements(replacement_products)
    document_id = coerce_int(order_id, "orderId")

    def _op():
        document = get_document(source, document_id)
        keys = [outlet_key(document.outlet) if document.outlet else f"{source}:{document.id}"]
        keys.extend(product_key(r["productId"]) for r in replacements)
        with unit_locks.hold(*keys):
            return _exchange_locked(document)

    def _exchange_locked(document):
        items = [dict(item) for item in document.items or []]

        # Removed lines
        original_amount = 0.0
        removed_items = []
        for ref, qty in removed:
            index = _find_line(items, ref)
            if index is None:
                raise ValidationError(
                    f"Product {ref} is not on order {document.id}",
                    details={"productId": ref, "orderId": document.id},
                )
            line = items[index]
            ordered = int(line.get("qty") or 0)
            if qty > ordered:
                raise ValidationError(
                    f"Cannot exchange {qty} of {line.get('productName')}; only {ordered} ordered",
                    details={"productId": ref, "requested": qty, "ordered": ordered},
                )

            price = float(line.get("price") or 0)
            original_amount += price * qty

            barcodes = list(line.get("barcodes") or [])
            removed_codes = barcodes[len(barcodes) - qty:] if len(barcodes) >= qty else barcodes
            removed_items.append({
                "id": line.get("id"),
                "productId": line.get("productId"),
                "productName": line.get("productName"),
                "qty": qty,
                "price": price,
                "amount": round(price * qty, 2),
                "barcodes": removed_codes,
            })

            remaining = ordered - qty
            if remaining == 0:
                items[index] = None
                continue
            discount = float(line.get("discount") or 0)
            line["qty"] = remaining
            line["discount"] = round(discount * remaining / ordered, 2)
            line["amount"] = round(price * remaining - line["discount"], 2)
            if barcodes:
                line["barcodes"] = barcodes[: len(barcodes) - len(removed_codes)]
        items = [item for item in items if item is not None]

        # Replacement lines
        history = list(document.exchange_history or [])
        entry_id = f"EX-{document.id}-{len(history) + 1}"
        now = utcnow()
        claimed: set[str] = set()
        added_items = []
        for replacement in replacements:
            codes = reserve_units(document.outlet, replacement["productId"], replacement["qty"], exclude=claimed)
            claimed.update(codes)
            line = {
                "productId": replacement["productId"],
                "productName": replacement["productName"],
                "qty": replacement["qty"],
                "price": replacement["price"],
                "discount": 0.0,
                "amount": replacement["amount"],
                "isDefective": False,
                "barcodes": codes,
                "exchangeId": entry_id,
            }
            for optional in ("batchId", "size"):
                if replacement.get(optional) is not None:
                    line[optional] = replacement[optional]
            items.append(line)
            added_items.append(dict(line))

        for code in sorted(claimed):
            unit = inventory_service.find_by_barcode(code, lock=True)
            inventory_service.set_status(unit.id, UNIT_STATUS_SOLD, timestamp_field="sold_at", at=now)

        vat_rate = float((document.amounts or {}).get("vatRate") or 0)
        totals = compute_exchange_totals(
            original_amount,
            sum(item["amount"] for item in added_items),
            vat_rate,
        )
        entry = {
            "id": entry_id,
            "date": to_utc_z(now),
            "removedItems": removed_items,
            "addedItems": added_items,
            **totals,
            "processedBy": ctx.user_name if ctx else None,
        }
        history.append(entry)

        document.items = items
        document.exchange_history = history
        flag_modified(document, "items")
        flag_modified(document, "exchange_history")

        append_transaction(
            type="exchange",
            source_id=document.id,
            amount=totals["difference"],
            occurred_at=now,
            description=f"Exchange {entry_id} on {source} {document.id}",
            payload={"entryId": entry_id, "source": source},
        )
        db.session.flush()

        logger.info("exchange %s on %s %s: difference %.2f", entry_id, source, document.id, totals["difference"])
        return document, entry

    return run_with_retry(_op)

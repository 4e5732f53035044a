# backend/retailops/services/transfer_service.py
"""
Inter-outlet transfer engine.

WHY: Move individually barcoded units from one outlet to another, keeping
every unit in exactly one place: sellable at the source, in flight, or
sellable at the destination.

LIFECYCLE (per unit):
1. available at source
2. dispatch: DispatchRecord(in-transit) created, unit -> in-transit,
   location "In Transit to <destination>"
3. admission: unit -> available at destination, DispatchRecord -> completed
   (or cancellation: record removed, unit back to available at source)

RULES:
- A dispatch is all-or-nothing: any missing or short barcode/product rejects
  the whole request before anything is written.
- Product/quantity selection takes units in natural listing order (id
  ascending) and never picks the same unit twice in one dispatch.
- Dispatch records are written first, then unit mutations, inside one DB
  transaction committed by the caller.
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    InconsistentStateError,
    UpstreamUnavailableError,
)
from ..models import DispatchRecord, InventoryUnit, Store
from ..time_utils import utcnow
from ..validation import coerce_int
from .concurrency import lock_for_update, run_with_retry, unit_locks, barcode_key, outlet_key, product_key
from . import inventory_service
from .inventory_service import (
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_IN_TRANSIT,
    transit_location,
)


logger = logging.getLogger(__name__)

# Dispatch status constants
DISPATCH_STATUS_IN_TRANSIT = "in-transit"
DISPATCH_STATUS_COMPLETED = "completed"

DISPATCH_STATUSES = (DISPATCH_STATUS_IN_TRANSIT, DISPATCH_STATUS_COMPLETED)


def _get_store(store_id, field: str) -> Store:
    if store_id is None or store_id == "":
        raise ValidationError(f"{field} is required", details={"field": field})
    store_id = coerce_int(store_id, field)
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFoundError(f"Store {store_id} not found", details={field: store_id})
    return store


def _require_list(value, field: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list", details={"field": field})
    return value


def _normalize_barcodes(barcodes) -> list[str]:
    cleaned: list[str] = []
    seen: set[str] = set()
    duplicates: list[str] = []
    for raw in _require_list(barcodes, "barcodes"):
        code = str(raw or "").strip()
        if not code:
            raise ValidationError("Empty barcode in dispatch request", details={"field": "barcodes"})
        if code in seen:
            duplicates.append(code)
            continue
        seen.add(code)
        cleaned.append(code)
    if duplicates:
        raise ValidationError(
            f"Barcode {duplicates[0]} appears more than once in this dispatch",
            details={"barcodes": duplicates},
        )
    return cleaned


def _normalize_product_quantities(products) -> list[tuple[int, int]]:
    """Collapse [{productId, quantity}] into ordered (product_id, total_qty) pairs."""
    totals: dict[int, int] = {}
    for entry in _require_list(products, "products"):
        if not isinstance(entry, dict):
            raise ValidationError("Each product entry must be an object", details={"field": "products"})
        product_id = coerce_int(entry.get("productId", entry.get("product_id")), "productId")
        quantity = coerce_int(entry.get("quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError(
                f"Quantity for product {product_id} must be positive",
                details={"productId": product_id, "quantity": quantity},
            )
        totals[product_id] = totals.get(product_id, 0) + quantity
    return list(totals.items())


def _resolve_scanned_units(barcodes: list[str], source: Store) -> list[InventoryUnit]:
    units: list[InventoryUnit] = []
    missing: list[str] = []
    unavailable: list[dict] = []

    for code in barcodes:
        unit = inventory_service.find_by_barcode(code, lock=True)
        if unit is None:
            missing.append(code)
            continue
        if not inventory_service.is_sellable(unit, source.name):
            unavailable.append({"barcode": code, "status": unit.status, "location": unit.location})
            continue
        units.append(unit)

    if missing:
        raise NotFoundError(
            f"Barcode {missing[0]} not found",
            details={"barcodes": missing},
        )
    if unavailable:
        raise InsufficientStockError(
            f"Barcode {unavailable[0]['barcode']} is not available at {source.name}",
            details={"items": unavailable},
        )
    return units


def _select_units_for_products(
    product_quantities: list[tuple[int, int]],
    source: Store,
    claimed_ids: set[int],
) -> list[InventoryUnit]:
    selected: list[InventoryUnit] = []
    shortages: list[dict] = []

    for product_id, quantity in product_quantities:
        candidates = [
            unit
            for unit in inventory_service.list_available(source.name, product_id, lock=True)
            if unit.id not in claimed_ids
        ]
        if len(candidates) < quantity:
            shortages.append({
                "productId": product_id,
                "requested": quantity,
                "available": len(candidates),
            })
            continue
        for unit in candidates[:quantity]:
            claimed_ids.add(unit.id)
            selected.append(unit)

    if shortages:
        first = shortages[0]
        raise InsufficientStockError(
            f"Not enough stock for product {first['productId']}. "
            f"Available: {first['available']}, Requested: {first['requested']}",
            details={"items": shortages},
        )
    return selected


def dispatch_units(
    *,
    from_store_id,
    to_store_id,
    barcodes: list | None = None,
    products: list | None = None,
) -> list[DispatchRecord]:
    """
    Dispatch units from one outlet to another.

    Args:
        from_store_id: Source outlet
        to_store_id: Destination outlet
        barcodes: Scanned barcodes, each must be available at the source
        products: [{productId, quantity}] selections

    Returns:
        list[DispatchRecord]: one in-transit record per unit

    Raises:
        ValidationError: no destination, same outlet, empty request
        NotFoundError: unknown store or barcode
        InsufficientStockError: any barcode/product short (nothing written)
    """
    if to_store_id is None or to_store_id == "":
        raise ValidationError("Please select a destination outlet", details={"field": "toStoreId"})

    scanned = _normalize_barcodes(barcodes)
    selections = _normalize_product_quantities(products)
    if not scanned and not selections:
        raise ValidationError(
            "Scan items or select products with valid quantities to transfer",
            details={"fields": ["barcodes", "products"]},
        )

    def _op():
        source = _get_store(from_store_id, "fromStoreId")
        destination = _get_store(to_store_id, "toStoreId")
        if source.id == destination.id:
            raise ValidationError("Cannot transfer to the same outlet", details={"toStoreId": destination.id})

        keys = [outlet_key(source.name), *(barcode_key(c) for c in scanned), *(product_key(p) for p, _ in selections)]
        with unit_locks.hold(*keys):
            return _dispatch_locked(source, destination)

    def _dispatch_locked(source: Store, destination: Store) -> list[DispatchRecord]:
        units = _resolve_scanned_units(scanned, source)
        claimed = {unit.id for unit in units}
        units.extend(_select_units_for_products(selections, source, claimed))

        now = utcnow()
        records = [
            DispatchRecord(
                inventory_id=unit.id,
                product_id=unit.product_id,
                batch_id=unit.batch_id,
                barcode=unit.barcode,
                cost_price=unit.effective_cost_price,
                selling_price=unit.effective_selling_price,
                from_store=source.name,
                from_store_id=source.id,
                from_location=source.location,
                to_store=destination.name,
                to_store_id=destination.id,
                to_location=destination.location,
                status=DISPATCH_STATUS_IN_TRANSIT,
                dispatched_at=now,
            )
            for unit in units
        ]

        db.session.add_all(records)
        db.session.flush()

        in_flight = transit_location(destination.name)
        for unit in units:
            inventory_service.set_status(unit.id, UNIT_STATUS_IN_TRANSIT, location_override=in_flight)

        logger.info(
            "dispatched %s unit(s) from %s to %s",
            len(records), source.name, destination.name,
        )
        return records

    try:
        return run_with_retry(_op)
    except (OperationalError, StaleDataError):
        raise
    except SQLAlchemyError as exc:
        logger.exception("storage failure while dispatching from store %s", from_store_id)
        raise UpstreamUnavailableError(
            "Storage failure while dispatching; nothing was dispatched, please retry",
        ) from exc


def _find_upcoming_record(store: Store, *, barcode: str | None, dispatch_id) -> DispatchRecord | None:
    query = db.session.query(DispatchRecord).filter(
        DispatchRecord.status == DISPATCH_STATUS_IN_TRANSIT,
        DispatchRecord.to_store_id == store.id,
    )
    if dispatch_id is not None:
        query = query.filter(DispatchRecord.id == dispatch_id)
    else:
        query = query.filter(DispatchRecord.barcode == barcode)
    return lock_for_update(query.order_by(DispatchRecord.id.asc())).first()


def _unit_for_record(record: DispatchRecord) -> InventoryUnit:
    unit = db.session.query(InventoryUnit).filter_by(id=record.inventory_id)
    unit = lock_for_update(unit).first()
    if unit is None:
        logger.error(
            "dispatch %s references missing inventory unit %s (barcode %s)",
            record.id, record.inventory_id, record.barcode,
        )
        raise InconsistentStateError(
            f"Dispatch {record.id} has no matching inventory unit for barcode {record.barcode}",
            details={"dispatchId": record.id, "inventoryId": record.inventory_id, "barcode": record.barcode},
        )
    expected = transit_location(record.to_store)
    if unit.status != UNIT_STATUS_IN_TRANSIT or unit.location != expected or unit.barcode != record.barcode:
        logger.error(
            "dispatch %s / unit %s disagree: unit status=%s location=%s barcode=%s",
            record.id, unit.id, unit.status, unit.location, unit.barcode,
        )
        raise InconsistentStateError(
            f"Inventory unit for barcode {record.barcode} is not in transit to {record.to_store}",
            details={
                "dispatchId": record.id,
                "inventoryId": unit.id,
                "status": unit.status,
                "location": unit.location,
            },
        )
    return unit


def admit_unit(*, store_id, barcode: str | None = None, dispatch_id=None) -> DispatchRecord:
    """
    Admit one dispatched unit into the destination outlet's stock.

    Unit -> available at the store (admittedAt = now) and record -> completed
    (receivedAt = now), in the same DB transaction.

    Raises:
        ValidationError: neither barcode nor dispatch id given
        NotFoundError: nothing upcoming for this store matches
        InconsistentStateError: the record's unit is missing or not in transit
    """
    code = (barcode or "").strip()
    if dispatch_id is not None and dispatch_id != "":
        dispatch_id = coerce_int(dispatch_id, "dispatchId")
    else:
        dispatch_id = None
    if not code and dispatch_id is None:
        raise ValidationError("Barcode is required", details={"field": "barcode"})

    def _op():
        with unit_locks.hold(barcode_key(code) if code else f"dispatch:{dispatch_id}"):
            return _admit_locked()

    def _admit_locked():
        store = _get_store(store_id, "storeId")
        record = _find_upcoming_record(store, barcode=code or None, dispatch_id=dispatch_id)
        if record is None:
            label = f"Barcode {code}" if code else f"Dispatch {dispatch_id}"
            raise NotFoundError(
                f"{label} not found in upcoming stock for this store",
                details={"barcode": code or None, "dispatchId": dispatch_id, "storeId": store.id},
            )

        unit = _unit_for_record(record)
        now = utcnow()

        inventory_service.set_status(
            unit.id,
            UNIT_STATUS_AVAILABLE,
            location_override=store.name,
            timestamp_field="admitted_at",
            at=now,
        )
        record.status = DISPATCH_STATUS_COMPLETED
        record.received_at = now
        db.session.flush()

        logger.info("admitted %s into %s (dispatch %s)", record.barcode, store.name, record.id)
        return record

    return run_with_retry(_op)


def cancel_dispatch(dispatch_id) -> InventoryUnit:
    """
    Cancel an in-transit dispatch: the record is removed and the unit returns
    to available stock at the source outlet. Completed dispatches are final.
    """
    dispatch_id = coerce_int(dispatch_id, "id")

    def _op():
        record = lock_for_update(db.session.query(DispatchRecord).filter_by(id=dispatch_id)).first()
        if record is None:
            raise NotFoundError(f"Dispatch record {dispatch_id} not found", details={"id": dispatch_id})
        if record.status != DISPATCH_STATUS_IN_TRANSIT:
            raise ValidationError(
                f"Cannot cancel dispatch in {record.status} status",
                details={"id": dispatch_id, "status": record.status},
            )

        unit = _unit_for_record(record)
        inventory_service.set_status(unit.id, UNIT_STATUS_AVAILABLE, location_override=record.from_store)
        db.session.delete(record)
        db.session.flush()

        logger.info("cancelled dispatch %s; %s back at %s", dispatch_id, unit.barcode, record.from_store)
        return unit

    return run_with_retry(_op)


def get_dispatch(dispatch_id) -> DispatchRecord:
    dispatch_id = coerce_int(dispatch_id, "id")
    record = db.session.get(DispatchRecord, dispatch_id)
    if record is None:
        raise NotFoundError(f"Dispatch record {dispatch_id} not found", details={"id": dispatch_id})
    return record


def list_dispatches(
    *,
    from_store: str | None = None,
    to_store: str | None = None,
    status: str | None = None,
) -> list[DispatchRecord]:
    query = db.session.query(DispatchRecord)
    if from_store:
        query = query.filter(DispatchRecord.from_store == from_store)
    if to_store:
        query = query.filter(DispatchRecord.to_store == to_store)
    if status:
        query = query.filter(DispatchRecord.status == status)
    return query.order_by(DispatchRecord.id.asc()).all()


def list_upcoming(store_id) -> list[DispatchRecord]:
    """In-transit records destined for the store (its upcoming stock)."""
    store = _get_store(store_id, "storeId")
    return (
        db.session.query(DispatchRecord)
        .filter(
            DispatchRecord.status == DISPATCH_STATUS_IN_TRANSIT,
            DispatchRecord.to_store_id == store.id,
        )
        .order_by(DispatchRecord.id.asc())
        .all()
    )


def find_inconsistencies() -> list[dict]:
    """
    Report dispatch/unit disagreements for manual reconciliation.

    Nothing is repaired here; every finding is logged at ERROR.
    """
    issues: list[dict] = []

    open_records = list_dispatches(status=DISPATCH_STATUS_IN_TRANSIT)
    by_barcode: dict[str, list[DispatchRecord]] = {}
    for record in open_records:
        by_barcode.setdefault(record.barcode, []).append(record)

        unit = db.session.get(InventoryUnit, record.inventory_id)
        if unit is None:
            issues.append({
                "type": "missing-unit",
                "dispatchId": record.id,
                "inventoryId": record.inventory_id,
                "barcode": record.barcode,
            })
            continue
        expected = transit_location(record.to_store)
        if unit.status != UNIT_STATUS_IN_TRANSIT or unit.location != expected:
            issues.append({
                "type": "unit-not-in-transit",
                "dispatchId": record.id,
                "inventoryId": unit.id,
                "barcode": record.barcode,
                "status": unit.status,
                "location": unit.location,
                "expectedLocation": expected,
            })

    for code, records in by_barcode.items():
        if len(records) > 1:
            issues.append({
                "type": "duplicate-dispatch",
                "barcode": code,
                "dispatchIds": [r.id for r in records],
            })

    open_barcodes = set(by_barcode)
    for unit in inventory_service.list_units(status=UNIT_STATUS_IN_TRANSIT):
        if unit.barcode not in open_barcodes:
            issues.append({
                "type": "orphan-in-transit-unit",
                "inventoryId": unit.id,
                "barcode": unit.barcode,
                "location": unit.location,
            })

    for issue in issues:
        logger.error("inventory reconciliation: %s", issue)
    return issues

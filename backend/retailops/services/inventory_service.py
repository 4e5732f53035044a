# Overview: Service-layer operations for serialized inventory units; single owner of unit status and location.

# backend/retailops/services/inventory_service.py

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app, has_app_context
from sqlalchemy import exists, and_

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import InventoryUnit, DefectItem, DispatchRecord, Product, Batch
from ..time_utils import utcnow
from .concurrency import lock_for_update
"""
Inventory Unit Invariants (authoritative)

Unit model:
- One row per physical item; barcode is unique and immutable.
- status is exactly one of available | in-transit | sold | defective.
- location is a store name, or "In Transit to <store>" while in flight.

Sellable stock:
- Sellable stock at a location = units with status 'available' at that location
  whose barcode has no open (non-sold) DefectItem.
- in-transit, sold and defective units never count towards any outlet's stock.

Mutation:
- Every other component changes units only through set_status().
- set_status() does not enforce business rules; callers (transfer, sale,
  defect processors) validate before calling it.
- No internal retry: one call, at most one write.
"""

logger = logging.getLogger(__name__)

UNIT_STATUS_AVAILABLE = "available"
UNIT_STATUS_IN_TRANSIT = "in-transit"
UNIT_STATUS_SOLD = "sold"
UNIT_STATUS_DEFECTIVE = "defective"

UNIT_STATUSES = (
    UNIT_STATUS_AVAILABLE,
    UNIT_STATUS_IN_TRANSIT,
    UNIT_STATUS_SOLD,
    UNIT_STATUS_DEFECTIVE,
)

# Accepts both the column name and the API field name
TIMESTAMP_FIELDS = {
    "admitted_at": "admitted_at",
    "admittedAt": "admitted_at",
    "sold_at": "sold_at",
    "soldAt": "sold_at",
}

DEFAULT_TRANSIT_PREFIX = "In Transit to "


def transit_location(store_name: str) -> str:
    prefix = DEFAULT_TRANSIT_PREFIX
    if has_app_context():
        prefix = current_app.config.get("TRANSIT_LOCATION_PREFIX", DEFAULT_TRANSIT_PREFIX)
    return f"{prefix}{store_name}"


def _open_defect_clause():
    return exists().where(
        and_(
            DefectItem.barcode == InventoryUnit.barcode,
            DefectItem.status != "sold",
        )
    )


def find_by_barcode(barcode: str, *, lock: bool = False) -> InventoryUnit | None:
    """Exact barcode match; at most one unit can match."""
    if not barcode:
        return None
    query = db.session.query(InventoryUnit).filter(InventoryUnit.barcode == barcode.strip())
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_unit(unit_id: int, *, lock: bool = False) -> InventoryUnit:
    query = db.session.query(InventoryUnit).filter_by(id=unit_id)
    if lock:
        query = lock_for_update(query)
    unit = query.first()
    if unit is None:
        raise NotFoundError(f"Inventory unit {unit_id} not found", details={"id": unit_id})
    return unit


def get_unit_by_barcode(barcode: str, *, lock: bool = False) -> InventoryUnit:
    unit = find_by_barcode(barcode, lock=lock)
    if unit is None:
        raise NotFoundError(f"Barcode {barcode} not found", details={"barcode": barcode})
    return unit


def list_units(
    *,
    status: str | None = None,
    location: str | None = None,
    product_id: int | None = None,
) -> list[InventoryUnit]:
    query = db.session.query(InventoryUnit)
    if status:
        query = query.filter(InventoryUnit.status == status)
    if location:
        query = query.filter(InventoryUnit.location == location)
    if product_id is not None:
        query = query.filter(InventoryUnit.product_id == product_id)
    return query.order_by(InventoryUnit.id.asc()).all()


def list_available(
    location: str | None,
    product_id: int | None = None,
    *,
    lock: bool = False,
) -> list[InventoryUnit]:
    """
    Sellable units at a location (any outlet when location is None), in
    natural listing order (id ascending).

    The order is deterministic for a given snapshot so repeated selections
    over unchanged stock pick the same units.
    """
    query = db.session.query(InventoryUnit).filter(
        InventoryUnit.status == UNIT_STATUS_AVAILABLE,
        ~_open_defect_clause(),
    )
    if location is not None:
        query = query.filter(InventoryUnit.location == location)
    if product_id is not None:
        query = query.filter(InventoryUnit.product_id == product_id)
    query = query.order_by(InventoryUnit.id.asc())
    if lock:
        query = lock_for_update(query)
    return query.all()


def count_available(product_id: int, location: str) -> int:
    return (
        db.session.query(InventoryUnit)
        .filter(
            InventoryUnit.product_id == product_id,
            InventoryUnit.status == UNIT_STATUS_AVAILABLE,
            InventoryUnit.location == location,
            ~_open_defect_clause(),
        )
        .count()
    )


def count_available_anywhere(product_id: int) -> int:
    return (
        db.session.query(InventoryUnit)
        .filter(
            InventoryUnit.product_id == product_id,
            InventoryUnit.status == UNIT_STATUS_AVAILABLE,
            ~_open_defect_clause(),
        )
        .count()
    )


def has_open_defect(barcode: str) -> bool:
    return (
        db.session.query(DefectItem.id)
        .filter(DefectItem.barcode == barcode, DefectItem.status != "sold")
        .first()
        is not None
    )


def is_sellable(unit: InventoryUnit, location: str | None = None) -> bool:
    if unit.status != UNIT_STATUS_AVAILABLE:
        return False
    if location is not None and unit.location != location:
        return False
    return not has_open_defect(unit.barcode)


def set_status(
    unit_id: int,
    status: str,
    location_override: str | None = None,
    timestamp_field: str | None = None,
    *,
    at: datetime | None = None,
) -> InventoryUnit:
    """
    Transition a unit's status (and optionally its location).

    Does not validate business rules; callers do. Only guards the shape of
    the transition: known status, known timestamp field, and soldAt only on
    the move to sold.
    """
    if status not in UNIT_STATUSES:
        raise ValidationError(
            f"Unknown inventory status {status!r}",
            details={"field": "status", "allowed": list(UNIT_STATUSES)},
        )

    column = None
    if timestamp_field is not None:
        column = TIMESTAMP_FIELDS.get(timestamp_field)
        if column is None:
            raise ValidationError(
                f"Unknown timestamp field {timestamp_field!r}",
                details={"field": "timestampField"},
            )
        if column == "sold_at" and status != UNIT_STATUS_SOLD:
            raise ValidationError("soldAt can only be set on the transition to sold", details={"field": "soldAt"})

    unit = get_unit(unit_id, lock=True)
    previous = unit.status

    unit.status = status
    if location_override is not None:
        unit.location = location_override
    if column is not None:
        setattr(unit, column, at or utcnow())

    db.session.flush()
    logger.debug("unit %s (%s) %s -> %s at %s", unit.id, unit.barcode, previous, status, unit.location)
    return unit


def create_unit(
    *,
    barcode: str,
    product_id: int,
    location: str,
    batch_id: int | None = None,
    cost_price: float | None = None,
    selling_price: float | None = None,
    status: str = UNIT_STATUS_AVAILABLE,
) -> InventoryUnit:
    barcode = (barcode or "").strip()
    if not barcode:
        raise ValidationError("barcode is required", details={"field": "barcode"})
    if not location:
        raise ValidationError("location is required", details={"field": "location"})
    if status not in UNIT_STATUSES:
        raise ValidationError(f"Unknown inventory status {status!r}", details={"field": "status"})

    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found", details={"productId": product_id})
    if batch_id is not None and db.session.get(Batch, batch_id) is None:
        raise NotFoundError(f"Batch {batch_id} not found", details={"batchId": batch_id})

    if find_by_barcode(barcode) is not None:
        raise ValidationError(f"Barcode {barcode} already exists", details={"barcode": barcode})

    unit = InventoryUnit(
        barcode=barcode,
        product_id=product_id,
        batch_id=batch_id,
        cost_price=cost_price,
        selling_price=selling_price,
        location=location,
        status=status,
        admitted_at=utcnow() if status == UNIT_STATUS_AVAILABLE else None,
    )
    db.session.add(unit)
    db.session.flush()
    return unit


def get_inventory_summary(location: str) -> list[dict]:
    """Per-product sellable count at one outlet (stock-level display)."""
    counts: dict[int, int] = {}
    for unit in list_available(location):
        counts[unit.product_id] = counts.get(unit.product_id, 0) + 1
    return [
        {"productId": product_id, "location": location, "available": qty}
        for product_id, qty in sorted(counts.items())
    ]


def apply_update(
    unit_id: int,
    *,
    status: str,
    location: str | None = None,
    admitted_at: datetime | None = None,
    sold_at: datetime | None = None,
) -> InventoryUnit:
    """
    Direct status/location update (PUT /api/inventory).

    in-transit is refused both ways here: a unit only enters or leaves transit
    through a DispatchRecord (dispatch, admission, cancellation).
    """
    if status == UNIT_STATUS_IN_TRANSIT:
        raise ValidationError(
            "Units are put in transit by dispatching them, not by direct update",
            details={"field": "status", "id": unit_id},
        )
    if sold_at is not None and status != UNIT_STATUS_SOLD:
        raise ValidationError("soldAt can only be set on the transition to sold", details={"field": "soldAt"})

    timestamp_field, at = None, None
    if status == UNIT_STATUS_SOLD:
        timestamp_field, at = "sold_at", sold_at
    elif admitted_at is not None:
        timestamp_field, at = "admitted_at", admitted_at

    unit = get_unit(unit_id, lock=True)
    if unit.status == UNIT_STATUS_IN_TRANSIT or _has_open_dispatch(unit.id):
        raise ValidationError(
            f"Unit {unit.barcode} is in transit; admit it at the destination or cancel the dispatch",
            details={"field": "status", "id": unit.id, "barcode": unit.barcode, "currentStatus": unit.status},
        )

    return set_status(unit.id, status, location_override=location, timestamp_field=timestamp_field, at=at)


def _has_open_dispatch(unit_id: int) -> bool:
    # Dispatch records share the unit's "in-transit" status value
    return db.session.query(
        exists().where(
            and_(
                DispatchRecord.inventory_id == unit_id,
                DispatchRecord.status == UNIT_STATUS_IN_TRANSIT,
            )
        )
    ).scalar()

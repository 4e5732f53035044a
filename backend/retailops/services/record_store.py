# Overview: Generic per-collection persistence (list / get / put / delete) over SQLAlchemy models.

from __future__ import annotations

from typing import Generic, TypeVar

from ..extensions import db
from ..errors import NotFoundError
from ..models import (
    InventoryUnit,
    DispatchRecord,
    Sale,
    SocialOrder,
    Batch,
    DefectItem,
    FinancialTransaction,
)

"""
Record Store contract (authoritative)

- list_all() returns every record in natural (id) order.
- get_by_id(id) raises NotFoundError when absent.
- put(item) is an upsert; the id is assigned on flush when absent.
- delete(id) raises NotFoundError when absent.
- Filtering by store, status or date range is done by callers after list_all().
- The store flushes; committing is the caller's (route's) job.
"""

T = TypeVar("T")


class RecordStore(Generic[T]):
    def __init__(self, model: type[T], label: str):
        self.model = model
        self.label = label

    def list_all(self) -> list[T]:
        return db.session.query(self.model).order_by(self.model.id.asc()).all()

    def get_by_id(self, record_id) -> T:
        record = db.session.get(self.model, record_id)
        if record is None:
            raise NotFoundError(f"{self.label} {record_id} not found", details={"id": record_id})
        return record

    def find(self, record_id) -> T | None:
        return db.session.get(self.model, record_id)

    def put(self, item: T) -> T:
        db.session.add(item)
        db.session.flush()
        return item

    def delete(self, record_id) -> None:
        record = self.get_by_id(record_id)
        db.session.delete(record)
        db.session.flush()


inventory_units: RecordStore[InventoryUnit] = RecordStore(InventoryUnit, "Inventory unit")
dispatch_records: RecordStore[DispatchRecord] = RecordStore(DispatchRecord, "Dispatch record")
sales: RecordStore[Sale] = RecordStore(Sale, "Sale")
orders: RecordStore[SocialOrder] = RecordStore(SocialOrder, "Order")
batches: RecordStore[Batch] = RecordStore(Batch, "Batch")
defects: RecordStore[DefectItem] = RecordStore(DefectItem, "Defect")
transactions: RecordStore[FinancialTransaction] = RecordStore(FinancialTransaction, "Transaction")

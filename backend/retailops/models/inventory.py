from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryUnit(db.Model):
    """
    One physical, individually barcoded item.

    INVARIANTS:
    - barcode is unique and immutable; a barcode maps to exactly one row.
    - status is one of available | in-transit | sold | defective.
    - location is a store name, or "In Transit to <store>" while in flight.
    - sold_at is only set on the transition to sold.

    version_id enables optimistic locking: two requests that read the same
    unit cannot both flip its status.
    """
    __tablename__ = "inventory_units"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_inventory_units_barcode"),
        db.Index("ix_inventory_units_status_location", "status", "location"),
        db.Index("ix_inventory_units_product_location", "product_id", "location"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    barcode = db.Column(db.String(128), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True, index=True)

    cost_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    selling_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)

    location = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="available", index=True)

    admitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    batch = db.relationship("Batch")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def effective_cost_price(self):
        if self.batch is not None and self.batch.cost_price is not None:
            return self.batch.cost_price
        return self.cost_price

    @property
    def effective_selling_price(self):
        if self.batch is not None and self.batch.selling_price is not None:
            return self.batch.selling_price
        return self.selling_price

    def __repr__(self) -> str:
        return f"<InventoryUnit id={self.id} barcode={self.barcode!r} status={self.status} location={self.location!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "barcode": self.barcode,
            "productId": self.product_id,
            "batchId": self.batch_id,
            "costPrice": self.effective_cost_price,
            "sellingPrice": self.effective_selling_price,
            "location": self.location,
            "status": self.status,
            "admittedAt": to_utc_z(self.admitted_at),
            "soldAt": to_utc_z(self.sold_at),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class DispatchRecord(db.Model):
    """
    One outbound shipment leg of one unit.

    LIFECYCLE:
    1. in-transit: created together with the unit's flip to in-transit
    2. completed: reached only through admission at the destination

    An in-transit record always has exactly one matching unit with
    status in-transit and location "In Transit to <to_store>".
    """
    __tablename__ = "dispatch_records"
    __table_args__ = (
        db.Index("ix_dispatch_records_to_store_status", "to_store", "status"),
        db.Index("ix_dispatch_records_barcode_status", "barcode", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    inventory_id = db.Column(db.Integer, db.ForeignKey("inventory_units.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)
    barcode = db.Column(db.String(128), nullable=False)

    cost_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    selling_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)

    from_store = db.Column(db.String(120), nullable=False, index=True)
    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    from_location = db.Column(db.String(255), nullable=True)
    to_store = db.Column(db.String(120), nullable=False)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    to_location = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="in-transit", index=True)

    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=False)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    unit = db.relationship("InventoryUnit")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<DispatchRecord id={self.id} barcode={self.barcode!r} "
            f"{self.from_store!r}->{self.to_store!r} status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventoryId": self.inventory_id,
            "productId": self.product_id,
            "batchId": self.batch_id,
            "barcode": self.barcode,
            "costPrice": self.cost_price,
            "sellingPrice": self.selling_price,
            "fromStore": self.from_store,
            "fromStoreId": self.from_store_id,
            "fromLocation": self.from_location,
            "toStore": self.to_store,
            "toStoreId": self.to_store_id,
            "toLocation": self.to_location,
            "status": self.status,
            "dispatchedAt": to_utc_z(self.dispatched_at),
            "receivedAt": to_utc_z(self.received_at),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }

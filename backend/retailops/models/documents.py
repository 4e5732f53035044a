from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    Completed point-of-sale transaction.

    items, amounts and payments are stored as the JSON documents composed at
    the till (camelCase keys). exchange_history is append-only.

    AMOUNTS:   {subtotal, totalDiscount, vat, vatRate, transportCost, total}
    PAYMENTS:  {cash, card, bkash, nagad, transactionFee, totalPaid, due}
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_date", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    outlet = db.Column(db.String(120), nullable=True)
    sales_by = db.Column(db.String(120), nullable=True)

    customer = db.Column(db.JSON, nullable=False, default=dict)
    items = db.Column(db.JSON, nullable=False, default=list)
    amounts = db.Column(db.JSON, nullable=False, default=dict)
    payments = db.Column(db.JSON, nullable=False, default=dict)
    exchange_history = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Sale id={self.id} outlet={self.outlet!r} total={(self.amounts or {}).get('total')}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_utc_z(self.date),
            "storeId": self.store_id,
            "outlet": self.outlet,
            "salesBy": self.sales_by,
            "customer": self.customer or {},
            "items": self.items or [],
            "amounts": self.amounts or {},
            "payments": self.payments or {},
            "exchangeHistory": self.exchange_history or [],
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class SocialOrder(db.Model):
    """
    Social-commerce / e-commerce order.

    PAYMENTS: {sslCommerz, advance, transactionId, totalPaid, due}
    """
    __tablename__ = "social_orders"
    __table_args__ = (
        db.Index("ix_social_orders_date", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=True, index=True)
    outlet = db.Column(db.String(120), nullable=True)
    sales_by = db.Column(db.String(120), nullable=True)

    customer = db.Column(db.JSON, nullable=False, default=dict)
    delivery_address = db.Column(db.JSON, nullable=False, default=dict)
    items = db.Column(db.JSON, nullable=False, default=list)
    amounts = db.Column(db.JSON, nullable=False, default=dict)
    payments = db.Column(db.JSON, nullable=False, default=dict)
    exchange_history = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<SocialOrder id={self.id} total={(self.amounts or {}).get('total')}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": to_utc_z(self.date),
            "storeId": self.store_id,
            "outlet": self.outlet,
            "salesBy": self.sales_by,
            "customer": self.customer or {},
            "deliveryAddress": self.delivery_address or {},
            "items": self.items or [],
            "amounts": self.amounts or {},
            "payments": self.payments or {},
            "exchangeHistory": self.exchange_history or [],
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class DefectItem(db.Model):
    """
    A unit pulled out of normal sellable flow (damage or customer return).

    LIFECYCLE:
    1. pending: recorded at an outlet or from a customer return
    2. approved: optional manager sign-off
    3. sold: resold through POS or social commerce; sale_id links the sale

    A barcode with a defect that is not sold is never sellable as ordinary stock.
    """
    __tablename__ = "defect_items"
    __table_args__ = (
        db.Index("ix_defect_items_barcode_status", "barcode", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    barcode = db.Column(db.String(128), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    added_by = db.Column(db.String(120), nullable=True)
    added_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Customer-return provenance
    original_order_id = db.Column(db.Integer, nullable=True)
    original_source = db.Column(db.String(16), nullable=True)  # sale | order
    customer_phone = db.Column(db.String(32), nullable=True)

    selling_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    original_selling_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    cost_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)

    return_reason = db.Column(db.Text, nullable=True)
    store = db.Column(db.String(120), nullable=True, index=True)
    image = db.Column(db.String(255), nullable=True)

    # Resale linkage
    sale_id = db.Column(db.Integer, nullable=True)
    sale_source = db.Column(db.String(16), nullable=True)  # sale | order
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<DefectItem id={self.id} barcode={self.barcode!r} status={self.status}>"

    @property
    def is_open(self) -> bool:
        return self.status != "sold"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "barcode": self.barcode,
            "productId": self.product_id,
            "productName": self.product_name,
            "status": self.status,
            "addedBy": self.added_by,
            "addedAt": to_utc_z(self.added_at),
            "originalOrderId": self.original_order_id,
            "originalSource": self.original_source,
            "customerPhone": self.customer_phone,
            "sellingPrice": self.selling_price,
            "originalSellingPrice": self.original_selling_price,
            "costPrice": self.cost_price,
            "returnReason": self.return_reason,
            "store": self.store,
            "image": self.image,
            "saleId": self.sale_id,
            "saleSource": self.sale_source,
            "soldAt": to_utc_z(self.sold_at),
        }


class FinancialTransaction(db.Model):
    """
    Append-only record of every financial event emitted by the processors.

    - Written in the same DB transaction as the source event.
    - No updates or deletes.
    - The ledger projection reads the source collections, not this table.
    """
    __tablename__ = "financial_transactions"
    __table_args__ = (
        db.Index("ix_financial_transactions_type_source", "type", "source_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)  # sale | order | batch | return | exchange
    source_id = db.Column(db.Integer, nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<FinancialTransaction id={self.id} type={self.type} source_id={self.source_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "sourceId": self.source_id,
            "occurredAt": to_utc_z(self.occurred_at),
            "amount": self.amount,
            "description": self.description,
            "payload": self.payload,
            "createdAt": to_utc_z(self.created_at),
        }

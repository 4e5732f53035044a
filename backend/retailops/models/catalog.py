from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Store(db.Model):
    """
    Outlet. The display name is what inventory units carry as their location.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    # Street address shown on dispatch paperwork (fromLocation / toLocation)
    location = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "location": self.location,
            "createdAt": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Catalog entry.

    `attributes` is a string-keyed mapping of scalars or lists of scalars;
    mainImage, Image and Colour are reserved keys (see validation.validate_attributes).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    attributes = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "attributes": dict(self.attributes or {}),
            "createdAt": to_utc_z(self.created_at),
        }


class Batch(db.Model):
    """
    Purchase lot. Its prices override the prices of units created from it.
    """
    __tablename__ = "batches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    cost_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    selling_price = db.Column(db.Numeric(12, 2, asdecimal=False), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    base_code = db.Column(db.String(64), nullable=True, unique=True)
    # False means the purchase was taken on credit (Accounts Payable)
    paid = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))

    def __repr__(self) -> str:
        return f"<Batch id={self.id} product_id={self.product_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productId": self.product_id,
            "costPrice": self.cost_price,
            "sellingPrice": self.selling_price,
            "quantity": self.quantity,
            "baseCode": self.base_code,
            "paid": self.paid,
            "createdAt": to_utc_z(self.created_at),
        }

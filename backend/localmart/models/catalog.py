from __future__ import annotations

from ..extensions import db
from localmart.time_utils import to_utc_z


def _money(value):
    return str(value) if value is not None else None


class Store(db.Model):
    """A seller's shop front. Every product belongs to exactly one store."""
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    city = db.Column(db.String(120), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    seller = db.relationship("User", backref=db.backref("stores", lazy=True))

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "name": self.name,
            "city": self.city,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Catalog entry with the pricing and stock fields negotiation and
    ordering depend on.

    INVARIANTS:
    - discount_price < price when present
    - min_price <= effective price when present
    - stock >= 0 (also enforced in the database)
    - stock/total_sold only move through catalog_service.adjust_stock
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=False)
    discount_price = db.Column(db.Numeric(12, 2), nullable=True)
    min_price = db.Column(db.Numeric(12, 2), nullable=True)  # bargain floor
    is_bargainable = db.Column(db.Boolean, nullable=False, default=True)

    stock = db.Column(db.Integer, nullable=False, default=1)
    total_sold = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    store = db.relationship("Store", backref=db.backref("products", lazy=True))
    seller = db.relationship("User")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def effective_price(self):
        return self.discount_price if self.discount_price is not None else self.price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "store_id": self.store_id,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "price": _money(self.price),
            "discount_price": _money(self.discount_price),
            "effective_price": _money(self.effective_price),
            "min_price": _money(self.min_price),
            "is_bargainable": self.is_bargainable,
            "stock": self.stock,
            "total_sold": self.total_sold,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

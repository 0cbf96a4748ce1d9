# Overview: Service-layer operations for stores and products; owns stock mutation.

"""
Catalog Guard

Catalog Invariants (authoritative):
- effective price = discount_price if set, else price
- discount_price < price when present
- min_price <= effective price when present (bargain floor)
- stock >= 0 at all times; total_sold never negative
- Orders and cancellations move stock and total_sold only through
  adjust_stock(), a single conditional UPDATE. No read-modify-write, so
  concurrent orders against the same product can never oversell.
- A seller restock (update_product) sets stock directly through the ORM;
  the Product version column makes it fail with StaleDataError and retry
  rather than overwrite a concurrent adjust_stock.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import update

from ..extensions import db
from ..errors import Forbidden, NotFound, InsufficientStock, ValidationError
from ..models import Product, Store
from ..models.users import ROLE_SELLER
from ..validation import parse_money, clean_text, paginate
from .concurrency import run_with_retry


PRODUCT_MUTABLE_FIELDS = {
    "name",
    "description",
    "image_url",
    "price",
    "discount_price",
    "min_price",
    "is_bargainable",
    "stock",
    "is_active",
}


def effective_price(product: Product) -> Decimal:
    return product.discount_price if product.discount_price is not None else product.price


def get_product(product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or (require_active and not product.is_active):
        raise NotFound("Product not found or not available", details={"product_id": product_id})
    return product


def adjust_stock(product_id: int, delta: int, sold_delta: int) -> None:
    """
    Atomically move stock by `delta` and total_sold by `sold_delta`.

    Runs inside the caller's transaction (no commit). The WHERE clause is
    the guard: when the row would go negative no row matches and
    InsufficientStock is raised, leaving the caller to roll back.
    The version column is bumped so ORM writers holding a stale copy of
    the product fail with StaleDataError instead of overwriting stock.
    """
    stmt = (
        update(Product)
        .where(
            Product.id == product_id,
            Product.stock + delta >= 0,
            Product.total_sold + sold_delta >= 0,
        )
        .values(
            stock=Product.stock + delta,
            total_sold=Product.total_sold + sold_delta,
            version_id=Product.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise InsufficientStock(
            "Insufficient stock",
            details={"product_id": product_id, "requested_quantity": -delta},
        )

    cached = db.session.identity_map.get(db.session.identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached)


def _validate_pricing(price, discount_price, min_price) -> None:
    if discount_price is not None and discount_price >= price:
        raise ValidationError(
            "Discount price must be less than original price",
            details={"field": "discount_price"},
        )
    current = discount_price if discount_price is not None else price
    if min_price is not None and min_price > current:
        raise ValidationError(
            "Minimum price must be less than or equal to selling price",
            details={"field": "min_price"},
        )


def _require_seller(user) -> None:
    if user.role != ROLE_SELLER:
        raise Forbidden("Only sellers can manage stores and products")


def create_store(user, *, name: str, city: str | None = None) -> Store:
    _require_seller(user)
    store = Store(
        seller_id=user.id,
        name=clean_text(name, "name", max_length=120, required=True),
        city=clean_text(city, "city", max_length=120),
        is_active=True,
    )
    db.session.add(store)
    db.session.commit()
    return store


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFound("Store not found", details={"store_id": store_id})
    return store


def create_product(user, *, store_id: int, payload: dict) -> Product:
    """Create a product in one of the seller's own stores."""
    _require_seller(user)
    store = get_store(store_id)
    if store.seller_id != user.id:
        raise Forbidden("You do not own this store")

    price = parse_money(payload.get("price"), "price")
    discount_price = parse_money(payload.get("discount_price"), "discount_price", allow_none=True)
    min_price = parse_money(payload.get("min_price"), "min_price", allow_none=True)
    _validate_pricing(price, discount_price, min_price)

    stock = payload.get("stock", 1)
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        raise ValidationError("stock must be a non-negative integer", details={"field": "stock"})

    product = Product(
        seller_id=user.id,
        store_id=store.id,
        name=clean_text(payload.get("name"), "name", max_length=200, required=True),
        description=clean_text(payload.get("description"), "description", max_length=2000),
        image_url=clean_text(payload.get("image_url"), "image_url", max_length=512),
        price=price,
        discount_price=discount_price,
        min_price=min_price,
        is_bargainable=bool(payload.get("is_bargainable", True)),
        stock=stock,
        total_sold=0,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    return product


def update_product(user, product_id: int, patch: dict) -> Product:
    """
    Apply a seller's edit. Price edits never touch existing bargains,
    which keep their original_price snapshot.
    """
    _require_seller(user)

    def _op():
        product = get_product(product_id)
        if product.seller_id != user.id:
            raise Forbidden("You do not own this product")

        unknown = set(patch) - PRODUCT_MUTABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Fields not writable: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        price = parse_money(patch["price"], "price") if "price" in patch else product.price
        discount_price = (
            parse_money(patch["discount_price"], "discount_price", allow_none=True)
            if "discount_price" in patch else product.discount_price
        )
        min_price = (
            parse_money(patch["min_price"], "min_price", allow_none=True)
            if "min_price" in patch else product.min_price
        )
        _validate_pricing(price, discount_price, min_price)

        product.price = price
        product.discount_price = discount_price
        product.min_price = min_price

        if "stock" in patch:
            stock = patch["stock"]
            if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
                raise ValidationError("stock must be a non-negative integer", details={"field": "stock"})
            product.stock = stock
        if "name" in patch:
            product.name = clean_text(patch["name"], "name", max_length=200, required=True)
        if "description" in patch:
            product.description = clean_text(patch["description"], "description", max_length=2000)
        if "image_url" in patch:
            product.image_url = clean_text(patch["image_url"], "image_url", max_length=512)
        if "is_bargainable" in patch:
            product.is_bargainable = bool(patch["is_bargainable"])
        if "is_active" in patch:
            product.is_active = bool(patch["is_active"])

        db.session.commit()
        return product

    return run_with_retry(_op)


def list_products(
    *,
    store_id: int | None = None,
    seller_id: int | None = None,
    active_only: bool = True,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Product)
    if store_id is not None:
        query = query.filter(Product.store_id == store_id)
    if seller_id is not None:
        query = query.filter(Product.seller_id == seller_id)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    query = query.order_by(Product.name.asc(), Product.id.asc())

    result = paginate(query, page, per_page)
    result["items"] = [p.to_dict() for p in result["items"]]
    return result

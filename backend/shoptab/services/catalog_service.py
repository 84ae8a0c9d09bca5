# Overview: Read-only catalog collaborator; products and shop policy as frozen snapshots.

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..errors import NotFoundError
from ..models import Product, Shop


@dataclass(frozen=True)
class ProductSnapshot:
    id: int
    shop_id: int
    name: str
    image: str | None
    sku: str | None
    specifications: dict | None
    sale_price_cents: int
    discount_price_cents: int | None
    has_stock: bool
    is_active: bool


@dataclass(frozen=True)
class ShopPolicy:
    shop_id: int
    name: str
    owner_id: int
    has_stock_availability: bool
    is_delivery_available: bool
    delivery_fee_cents: int


def _snapshot(product: Product) -> ProductSnapshot:
    return ProductSnapshot(
        id=product.id,
        shop_id=product.shop_id,
        name=product.name,
        image=product.image,
        sku=product.sku,
        specifications=product.specifications,
        sale_price_cents=product.sale_price_cents,
        discount_price_cents=product.discount_price_cents,
        has_stock=bool(product.has_stock),
        is_active=product.is_active,
    )


def find_product(product_id: int) -> ProductSnapshot | None:
    product = db.session.get(Product, product_id)
    return _snapshot(product) if product else None


def get_product(product_id: int) -> ProductSnapshot:
    snapshot = find_product(product_id)
    if snapshot is None:
        raise NotFoundError("Product not found", {"product_id": product_id})
    return snapshot


def get_shop_policy(shop_id: int) -> ShopPolicy:
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise NotFoundError("Shop not found", {"shop_id": shop_id})
    return ShopPolicy(
        shop_id=shop.id,
        name=shop.name,
        owner_id=shop.owner_id,
        has_stock_availability=bool(shop.has_stock_availability),
        is_delivery_available=bool(shop.is_delivery_available),
        delivery_fee_cents=shop.delivery_fee_cents or 0,
    )

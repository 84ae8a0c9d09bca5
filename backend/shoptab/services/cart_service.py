# Overview: Cart aggregation; per-(customer, shop) carts with frozen product snapshots.

"""
Cart Service

- One ACTIVE cart per (user, shop), created lazily on first add
- Adding a product already in the cart increments its quantity
- Every mutation ends by recomputing aggregates from the item set and
  stamping last_activity_at
- Stock policy comes from the shop: when has_stock_availability is set,
  out-of-stock products hard-block the mutation
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, NotFoundError, PolicyViolationError, ValidationError
from ..models import Cart, CartItem
from ..models.cart import (
    CART_STATUS_ABANDONED,
    CART_STATUS_ACTIVE,
    VALID_CART_STATUSES,
)
from ..money import line_amount_cents
from ..validation import coerce_cents, coerce_choice, coerce_quantity
from shoptab.time_utils import utcnow
from . import catalog_service
from .authorization import AuthContext, ensure_cart_owner
from .concurrency import run_in_transaction

REASON_OUT_OF_STOCK = "Out of stock"
REASON_INACTIVE = "Product not available"
REASON_MISSING = "Product no longer available"

CART_SORT_FIELDS = {
    "last_activity_at": Cart.last_activity_at,
    "created_at": Cart.created_at,
    "updated_at": Cart.updated_at,
    "total_cents": Cart.total_cents,
    "total_items": Cart.total_items,
}


# =============================================================================
# Aggregates
# =============================================================================

def recalculate_item(item: CartItem) -> None:
    final_unit = item.final_unit_price_cents
    item.subtotal_cents = line_amount_cents(final_unit, item.quantity)
    item.discount_cents = max(0, line_amount_cents(item.unit_price_cents - final_unit, item.quantity))


def recalculate_cart(cart: Cart) -> Cart:
    """Derive every aggregate from the current item set."""
    subtotal = 0
    savings = 0
    quantity = Decimal("0")
    for item in cart.items:
        recalculate_item(item)
        subtotal += item.subtotal_cents
        savings += item.discount_cents
        quantity += Decimal(item.quantity)

    cart.subtotal_cents = subtotal
    cart.item_savings_cents = savings
    cart.total_items = len(cart.items)
    cart.total_quantity = quantity
    cart.total_cents = max(
        0,
        subtotal - (cart.discount_cents or 0) + (cart.delivery_fee_cents or 0) + (cart.tax_cents or 0),
    )
    cart.last_activity_at = utcnow()
    return cart


# =============================================================================
# Helpers
# =============================================================================

def _apply_snapshot(item: CartItem, product: catalog_service.ProductSnapshot) -> None:
    item.product_name = product.name
    item.product_image = product.image
    item.product_sku = product.sku or ""
    item.product_specs = product.specifications
    item.unit_price_cents = product.sale_price_cents
    item.unit_discount_price_cents = product.discount_price_cents


def _check_stock(policy: catalog_service.ShopPolicy, product: catalog_service.ProductSnapshot) -> None:
    if not product.is_active:
        raise PolicyViolationError(REASON_INACTIVE, {"product_id": product.id})
    if policy.has_stock_availability and not product.has_stock:
        raise PolicyViolationError(
            "This item is currently out of stock",
            {"product_id": product.id, "shop_id": policy.shop_id},
        )


def _load_cart(cart_id: int) -> Cart:
    cart = db.session.get(Cart, cart_id)
    if not cart:
        raise NotFoundError("Cart not found", {"cart_id": cart_id})
    return cart


def _load_owned_cart(ctx: AuthContext, cart_id: int) -> Cart:
    cart = _load_cart(cart_id)
    ensure_cart_owner(ctx, cart)
    return cart


def _require_active(cart: Cart) -> None:
    if not cart.is_active:
        raise ConflictError(
            f"Cart is {cart.status} and can no longer be changed",
            {"cart_id": cart.id, "status": cart.status},
        )


def _load_owned_item(ctx: AuthContext, item_id: int) -> CartItem:
    item = db.session.get(CartItem, item_id)
    if not item:
        raise NotFoundError("Cart item not found", {"item_id": item_id})
    ensure_cart_owner(ctx, item.cart)
    _require_active(item.cart)
    return item


def _find_active_cart(user_id: int, shop_id: int) -> Cart | None:
    return (
        db.session.query(Cart)
        .filter_by(user_id=user_id, shop_id=shop_id, status=CART_STATUS_ACTIVE)
        .first()
    )


def _get_or_create_active_cart(user_id: int, shop_id: int, session_id: str | None = None) -> Cart:
    cart = _find_active_cart(user_id, shop_id)
    if cart:
        if session_id:
            cart.session_id = session_id
        return cart

    cart = Cart(user_id=user_id, shop_id=shop_id, status=CART_STATUS_ACTIVE, session_id=session_id)
    try:
        with db.session.begin_nested():
            db.session.add(cart)
    except IntegrityError:
        # Another request created the active cart first
        cart = _find_active_cart(user_id, shop_id)
        if cart is None:
            raise
    return cart


# =============================================================================
# Mutations
# =============================================================================

def add_item(
    ctx: AuthContext,
    *,
    shop_id: int,
    product_id: int,
    quantity,
    notes: str | None = None,
    session_id: str | None = None,
) -> Cart:
    """Add a product to the caller's active cart for the shop."""
    qty = coerce_quantity(quantity)

    def _op():
        policy = catalog_service.get_shop_policy(shop_id)
        product = catalog_service.get_product(product_id)
        if product.shop_id != policy.shop_id:
            raise ValidationError(
                "Product does not belong to the specified shop",
                {"product_id": product_id, "shop_id": shop_id},
            )
        _check_stock(policy, product)

        cart = _get_or_create_active_cart(ctx.user_id, shop_id, session_id)
        item = next((i for i in cart.items if i.product_id == product_id), None)
        if item:
            item.quantity = Decimal(item.quantity) + qty
        else:
            item = CartItem(product_id=product_id, quantity=qty)
            cart.items.append(item)
        _apply_snapshot(item, product)
        item.is_available = True
        item.unavailable_reason = None
        if notes is not None:
            item.notes = notes

        recalculate_cart(cart)
        db.session.flush()
        return cart

    return run_in_transaction(_op, write_lock=True)


def update_item(ctx: AuthContext, item_id: int, *, quantity, notes: str | None = None) -> Cart:
    qty = coerce_quantity(quantity)

    def _op():
        item = _load_owned_item(ctx, item_id)
        cart = item.cart
        policy = catalog_service.get_shop_policy(cart.shop_id)
        product = catalog_service.find_product(item.product_id)
        if product is None:
            raise NotFoundError(REASON_MISSING, {"product_id": item.product_id})
        _check_stock(policy, product)

        item.quantity = qty
        _apply_snapshot(item, product)
        item.is_available = True
        item.unavailable_reason = None
        if notes is not None:
            item.notes = notes

        recalculate_cart(cart)
        return cart

    return run_in_transaction(_op)


def remove_item(ctx: AuthContext, item_id: int) -> Cart:
    def _op():
        item = _load_owned_item(ctx, item_id)
        cart = item.cart
        cart.items.remove(item)
        recalculate_cart(cart)
        return cart

    return run_in_transaction(_op)


def update_cart(
    ctx: AuthContext,
    cart_id: int,
    *,
    notes: str | None = None,
    delivery_fee_cents=None,
    tax_cents=None,
) -> Cart:
    """Cart-level fields; aggregates are recomputed afterwards."""
    fee = coerce_cents(delivery_fee_cents, "delivery_fee_cents") if delivery_fee_cents is not None else None
    tax = coerce_cents(tax_cents, "tax_cents") if tax_cents is not None else None

    def _op():
        cart = _load_owned_cart(ctx, cart_id)
        _require_active(cart)
        if notes is not None:
            cart.notes = notes
        if fee is not None:
            cart.delivery_fee_cents = fee
        if tax is not None:
            cart.tax_cents = tax
        recalculate_cart(cart)
        return cart

    return run_in_transaction(_op)


def clear(ctx: AuthContext, cart_id: int) -> Cart:
    def _op():
        cart = _load_owned_cart(ctx, cart_id)
        _require_active(cart)
        cart.items.clear()
        recalculate_cart(cart)
        return cart

    return run_in_transaction(_op)


def refresh(ctx: AuthContext, cart_id: int) -> Cart:
    """
    Re-pull the catalog snapshot for every item and flag the ones that can
    no longer be bought. Flagged items stay in the cart.
    """
    def _op():
        cart = _load_owned_cart(ctx, cart_id)
        _require_active(cart)
        policy = catalog_service.get_shop_policy(cart.shop_id)

        for item in cart.items:
            product = catalog_service.find_product(item.product_id)
            if product is None:
                item.is_available = False
                item.unavailable_reason = REASON_MISSING
                continue

            _apply_snapshot(item, product)
            if not product.is_active:
                item.is_available = False
                item.unavailable_reason = REASON_INACTIVE
            elif policy.has_stock_availability and not product.has_stock:
                item.is_available = False
                item.unavailable_reason = REASON_OUT_OF_STOCK
            else:
                item.is_available = True
                item.unavailable_reason = None

        recalculate_cart(cart)
        return cart

    return run_in_transaction(_op)


def abandon_cart(ctx: AuthContext, cart_id: int) -> Cart:
    def _op():
        cart = _load_owned_cart(ctx, cart_id)
        _require_active(cart)
        cart.status = CART_STATUS_ABANDONED
        cart.last_activity_at = utcnow()
        return cart

    return run_in_transaction(_op)


# =============================================================================
# Reads
# =============================================================================

def get_cart(ctx: AuthContext, cart_id: int) -> Cart:
    return _load_owned_cart(ctx, cart_id)


def get_active_cart_by_shop(ctx: AuthContext, shop_id: int) -> Cart | None:
    return _find_active_cart(ctx.user_id, shop_id)


def list_carts(
    ctx: AuthContext,
    *,
    status: str | None = None,
    shop_id: int | None = None,
    include_empty: bool = False,
    sort_by: str = "last_activity_at",
    sort_order: str = "desc",
) -> list[Cart]:
    query = db.session.query(Cart).filter(Cart.user_id == ctx.user_id)
    if status:
        query = query.filter(Cart.status == coerce_choice(status, "status", VALID_CART_STATUSES))
    if shop_id:
        query = query.filter(Cart.shop_id == shop_id)
    if not include_empty:
        query = query.filter(Cart.total_items > 0)

    column = CART_SORT_FIELDS.get(sort_by)
    if column is None:
        raise ValidationError(f"Invalid sort_by: {sort_by}", {"allowed": sorted(CART_SORT_FIELDS)})
    ordering = column.asc() if str(sort_order).lower() == "asc" else column.desc()
    return query.order_by(ordering, Cart.id.desc()).all()


def get_cart_stats(ctx: AuthContext) -> dict:
    """Counts by status plus item and value totals; admins see every cart."""
    base = db.session.query(Cart)
    if not ctx.is_admin:
        base = base.filter(Cart.user_id == ctx.user_id)

    by_status = {status: 0 for status in VALID_CART_STATUSES}
    rows = (
        base.with_entities(Cart.status, func.count(Cart.id))
        .group_by(Cart.status)
        .all()
    )
    for status, count in rows:
        by_status[status] = count

    total_items, total_value = base.with_entities(
        func.coalesce(func.sum(Cart.total_items), 0),
        func.coalesce(func.sum(Cart.total_cents), 0),
    ).one()

    return {
        "total_carts": sum(by_status.values()),
        "active_carts": by_status[CART_STATUS_ACTIVE],
        "abandoned_carts": by_status[CART_STATUS_ABANDONED],
        "total_items": int(total_items or 0),
        "total_value_cents": int(total_value or 0),
        "by_status": by_status,
    }

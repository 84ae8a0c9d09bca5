# Overview: Cart-to-order assembly, order pricing and order reads.

"""
Order Service

create_order_from_cart is a single transaction:
1. load the caller's ACTIVE cart with its items (empty carts are rejected)
2. validate fulfillment (delivery needs shop support, address and contact)
3. CREDIT needs a settlement phone up front
4. price from the cart item snapshots (the catalog is not re-read)
5. allocate the order number
6. freeze each cart item into an order item, record ORDER_PLACED
7. CREDIT: post the total to the (shop, phone) credit account
8. delete the cart
Notifications are queued and only go out after the commit.

recalculate_order is the one pricing function; amendments reuse it so a
freshly created and a just-amended order are priced identically.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Cart, Order, OrderItem, Shop
from ..models.orders import (
    ITEM_AVAILABLE,
    ITEM_UNAVAILABLE,
    ORDER_PLACED,
    ORDER_STATUSES,
    ORDER_TYPE_DELIVERY,
    ORDER_TYPE_PICKUP,
    ORDER_TYPES,
    PAYMENT_CASH_ON_DELIVERY,
    PAYMENT_CASH_ON_PICKUP,
    PAYMENT_CREDIT,
    PAYMENT_METHODS,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
)
from ..money import line_amount_cents
from ..validation import coerce_cents, coerce_choice, coerce_datetime
from shoptab.time_utils import utcnow
from . import audit_service, catalog_service, credit_service, notification_service
from .authorization import AuthContext, ensure_cart_owner, ensure_order_participant
from .concurrency import run_in_transaction
from .sequence_service import next_order_number

ORDER_SORT_FIELDS = {
    "created_at": Order.created_at,
    "updated_at": Order.updated_at,
    "total_cents": Order.total_cents,
    "status": Order.status,
    "order_number": Order.order_number,
}

DELIVERY_FIELDS = ("address", "landmark", "pincode", "city", "state", "contact_number", "notes")
PICKUP_FIELDS = ("date", "time", "notes")


# =============================================================================
# Pricing
# =============================================================================

def price_item(item: OrderItem) -> None:
    """subtotal at the final unit price; discount is the saving against list price."""
    gross = line_amount_cents(item.unit_price_cents, item.quantity)
    item.subtotal_cents = line_amount_cents(item.final_unit_price_cents, item.quantity)
    item.item_discount_cents = max(0, gross - item.subtotal_cents)


def recalculate_order(order: Order) -> Order:
    """
    total = subtotal - discount + extra_charges + delivery_fee + tax

    subtotal is the list-price sum and discount the per-item savings, both
    over items that count toward the total (not UNAVAILABLE or
    REMOVED_BY_SHOP).
    """
    subtotal = 0
    discount = 0
    count = 0
    quantity = Decimal("0")
    for item in order.items:
        price_item(item)
        if not item.counts_toward_total:
            continue
        subtotal += item.subtotal_cents + item.item_discount_cents
        discount += item.item_discount_cents
        count += 1
        quantity += Decimal(item.quantity)

    order.subtotal_cents = subtotal
    order.discount_cents = discount
    order.total_items = count
    order.total_quantity = quantity
    order.total_cents = (
        subtotal
        - discount
        + (order.extra_charges_cents or 0)
        + (order.delivery_fee_cents or 0)
        + (order.tax_cents or 0)
    )
    return order


def expected_total(order: Order) -> int:
    """Recompute the total from stored components without mutating anything."""
    return (
        order.subtotal_cents
        - order.discount_cents
        + order.extra_charges_cents
        + order.delivery_fee_cents
        + order.tax_cents
    )


# =============================================================================
# Creation
# =============================================================================

def _clean_details(payload, allowed: tuple[str, ...], label: str) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError(f"{label} must be an object")
    unknown = sorted(set(payload) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown {label} fields: {', '.join(unknown)}", {"fields": unknown})
    return {k: (str(v).strip() if v is not None else None) for k, v in payload.items()}


def _validate_fulfillment(order_type: str, pickup, delivery) -> tuple[dict, dict]:
    pickup_data = _clean_details(pickup, PICKUP_FIELDS, "pickup")
    delivery_data = _clean_details(delivery, DELIVERY_FIELDS, "delivery")

    if order_type == ORDER_TYPE_DELIVERY:
        if pickup_data:
            raise ValidationError("Pickup details are not allowed for home delivery")
        missing = [f for f in ("address", "contact_number") if not delivery_data.get(f)]
        if missing:
            raise ValidationError(
                "Delivery details are required for home delivery",
                {"missing": [f"delivery.{f}" for f in missing]},
            )
    else:
        if delivery_data:
            raise ValidationError("Delivery details are not allowed for shop pickup")
    return pickup_data, delivery_data


def _freeze_item(cart_item) -> OrderItem:
    return OrderItem(
        product_id=cart_item.product_id,
        product_name=cart_item.product_name,
        product_image=cart_item.product_image,
        product_sku=cart_item.product_sku or "",
        product_specs=cart_item.product_specs,
        quantity=cart_item.quantity,
        unit_price_cents=cart_item.unit_price_cents,
        unit_discount_price_cents=cart_item.unit_discount_price_cents,
        status=ITEM_AVAILABLE if cart_item.is_available else ITEM_UNAVAILABLE,
        unavailable_reason=None if cart_item.is_available else cart_item.unavailable_reason,
        is_added_by_shop=False,
        is_modified_by_shop=False,
        original_cart_item_id=cart_item.id,
        customer_notes=cart_item.notes,
    )


def create_order_from_cart(
    ctx: AuthContext,
    cart_id: int,
    *,
    order_type: str,
    payment_method: str | None = None,
    customer_phone: str | None = None,
    pickup: dict | None = None,
    delivery: dict | None = None,
    estimated_delivery_date: str | None = None,
    estimated_delivery_time: str | None = None,
    customer_notes: str | None = None,
) -> Order:
    order_type = coerce_choice(order_type, "order_type", ORDER_TYPES)
    if payment_method:
        payment_method = coerce_choice(payment_method, "payment_method", PAYMENT_METHODS)
    else:
        payment_method = PAYMENT_CASH_ON_DELIVERY if order_type == ORDER_TYPE_DELIVERY else PAYMENT_CASH_ON_PICKUP
    pickup_data, delivery_data = _validate_fulfillment(order_type, pickup, delivery)

    settlement_phone = customer_phone or ctx.phone
    if payment_method == PAYMENT_CREDIT:
        if not customer_phone:
            raise ValidationError(
                "Customer phone number is required for credit payments",
                {"field": "customer_phone"},
            )
        settlement_phone = credit_service.normalize_phone(customer_phone)

    def _op():
        cart = db.session.get(Cart, cart_id)
        if not cart:
            raise NotFoundError("Cart not found", {"cart_id": cart_id})
        ensure_cart_owner(ctx, cart)
        if not cart.is_active:
            raise ConflictError(f"Cart is {cart.status}", {"cart_id": cart.id, "status": cart.status})
        if cart.is_empty:
            raise ValidationError("Cart is empty", {"cart_id": cart.id})
        if not any(item.is_available for item in cart.items):
            raise ValidationError("No available items in cart", {"cart_id": cart.id})

        policy = catalog_service.get_shop_policy(cart.shop_id)
        if order_type == ORDER_TYPE_DELIVERY and not policy.is_delivery_available:
            raise ValidationError("This shop does not offer delivery service", {"shop_id": policy.shop_id})

        now = utcnow()
        order = Order(
            order_number=next_order_number(cart.shop_id, moment=now),
            user_id=ctx.user_id,
            shop_id=cart.shop_id,
            cart_id=cart.id,
            status=ORDER_PLACED,
            order_type=order_type,
            extra_charges_cents=0,
            delivery_fee_cents=policy.delivery_fee_cents if order_type == ORDER_TYPE_DELIVERY else 0,
            tax_cents=cart.tax_cents or 0,
            pickup_date=pickup_data.get("date"),
            pickup_time=pickup_data.get("time"),
            pickup_notes=pickup_data.get("notes"),
            delivery_address=delivery_data.get("address"),
            delivery_landmark=delivery_data.get("landmark"),
            delivery_pincode=delivery_data.get("pincode"),
            delivery_city=delivery_data.get("city"),
            delivery_state=delivery_data.get("state"),
            delivery_contact_number=delivery_data.get("contact_number"),
            delivery_notes=delivery_data.get("notes"),
            customer_phone=settlement_phone,
            payment_method=payment_method,
            payment_status=PAYMENT_PENDING,
            estimated_delivery_date=estimated_delivery_date,
            estimated_delivery_time=estimated_delivery_time,
            customer_notes=customer_notes if customer_notes is not None else cart.notes,
            confirmed_at=now,
            created_at=now,
        )
        for cart_item in cart.items:
            order.items.append(_freeze_item(cart_item))
        recalculate_order(order)

        db.session.add(order)
        db.session.flush()

        audit_service.append_status_change(
            order_id=order.id,
            from_status=None,
            to_status=ORDER_PLACED,
            actor_user_id=ctx.user_id,
            notes="Order placed",
        )

        if payment_method == PAYMENT_CREDIT:
            customer = order.user
            credit_service.post_order_credit(
                order,
                settlement_phone,
                actor_user_id=ctx.user_id,
                customer_name=customer.name if customer else None,
            )
            order.payment_status = PAYMENT_PAID
            order.payment_date = now

        db.session.delete(cart)
        db.session.flush()

        current_app.logger.info(
            "order created number=%s shop=%s user=%s total=%s method=%s",
            order.order_number, order.shop_id, order.user_id, order.total_cents, order.payment_method,
        )
        notification_service.enqueue(notification_service.new_order(order, policy.owner_id))
        return order

    return run_in_transaction(_op, write_lock=True)


# =============================================================================
# Reads
# =============================================================================

def load_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found", {"order_id": order_id})
    return order


def get_order(ctx: AuthContext, order_id: int) -> Order:
    order = load_order(order_id)
    ensure_order_participant(ctx, order)
    return order


def get_order_history(ctx: AuthContext, order_id: int) -> dict:
    order = get_order(ctx, order_id)
    return audit_service.get_order_history(order.id)


def get_item_history(ctx: AuthContext, order_id: int, item_id: int) -> list:
    order = get_order(ctx, order_id)
    if not any(item.id == item_id for item in order.items):
        raise NotFoundError("Order item not found", {"order_id": order_id, "item_id": item_id})
    return audit_service.get_item_modifications(item_id)


def _visible_orders(ctx: AuthContext):
    query = db.session.query(Order)
    if ctx.is_admin:
        return query
    if ctx.is_shop_owner:
        owned = db.session.query(Shop.id).filter(Shop.owner_id == ctx.user_id)
        return query.filter(or_(Order.shop_id.in_(owned), Order.user_id == ctx.user_id))
    return query.filter(Order.user_id == ctx.user_id)


def list_orders(
    ctx: AuthContext,
    *,
    status: str | None = None,
    order_type: str | None = None,
    payment_method: str | None = None,
    payment_status: str | None = None,
    shop_id: int | None = None,
    user_id: int | None = None,
    from_date=None,
    to_date=None,
    order_number: str | None = None,
    min_amount_cents=None,
    max_amount_cents=None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Order], int]:
    """Customers see their orders, shop owners their shops' orders, admins all."""
    query = _visible_orders(ctx)

    if status:
        query = query.filter(Order.status == coerce_choice(status, "status", ORDER_STATUSES))
    if order_type:
        query = query.filter(Order.order_type == coerce_choice(order_type, "order_type", ORDER_TYPES))
    if payment_method:
        query = query.filter(Order.payment_method == coerce_choice(payment_method, "payment_method", PAYMENT_METHODS))
    if payment_status:
        query = query.filter(Order.payment_status == coerce_choice(payment_status, "payment_status", PAYMENT_STATUSES))
    if shop_id:
        query = query.filter(Order.shop_id == shop_id)
    if user_id:
        query = query.filter(Order.user_id == user_id)

    start: datetime | None = coerce_datetime(from_date, "from_date")
    end: datetime | None = coerce_datetime(to_date, "to_date")
    if start:
        query = query.filter(Order.created_at >= start)
    if end:
        query = query.filter(Order.created_at <= end)

    if order_number:
        query = query.filter(Order.order_number.like(f"%{order_number.strip()}%"))
    if min_amount_cents is not None:
        query = query.filter(Order.total_cents >= coerce_cents(min_amount_cents, "min_amount_cents"))
    if max_amount_cents is not None:
        query = query.filter(Order.total_cents <= coerce_cents(max_amount_cents, "max_amount_cents"))

    column = ORDER_SORT_FIELDS.get(sort_by)
    if column is None:
        raise ValidationError(f"Invalid sort_by: {sort_by}", {"allowed": sorted(ORDER_SORT_FIELDS)})
    ordering = column.asc() if str(sort_order).lower() == "asc" else column.desc()

    page = max(1, int(page or 1))
    limit = min(max(1, int(limit or 20)), 100)

    total = query.count()
    rows = query.order_by(ordering, Order.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return rows, total

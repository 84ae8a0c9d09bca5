# Overview: Seller edits to a PROCESSING order (items and fees), each one audited.

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..errors import NotFoundError, PolicyViolationError, ValidationError
from ..models import Order, OrderItem
from ..models.audit import (
    ITEM_DISCOUNT_APPLIED,
    ITEM_PRICE_CHANGE,
    ITEM_QUANTITY_CHANGE,
    ITEM_STATUS_CHANGE,
    MOD_ADD_ITEM,
    MOD_CHANGE_FEES,
    MOD_REMOVE_ITEM,
    MOD_UPDATE_ITEM,
)
from ..models.cart import quantity_str
from ..models.orders import (
    ITEM_ADDED_BY_SHOP,
    ITEM_MODIFIED_BY_SHOP,
    ITEM_REMOVED_BY_SHOP,
    ITEM_UNAVAILABLE,
)
from ..validation import coerce_cents, coerce_quantity
from . import audit_service, catalog_service
from .authorization import AuthContext, ensure_order_seller
from .concurrency import run_in_transaction
from .order_lifecycle_service import ensure_modifiable
from .order_service import load_order, recalculate_order

FEE_FIELDS = ("delivery_fee_cents", "extra_charges_cents", "tax_cents")


def _load_for_edit(ctx: AuthContext, order_id: int) -> Order:
    order = load_order(order_id)
    ensure_order_seller(ctx, order)
    ensure_modifiable(order)
    return order


def _find_item(order: Order, item_id: int) -> OrderItem:
    item = next((i for i in order.items if i.id == item_id), None)
    if item is None:
        raise NotFoundError("Order item not found", {"order_id": order.id, "item_id": item_id})
    return item


def _item_state(item: OrderItem) -> dict:
    return {
        "quantity": quantity_str(item.quantity),
        "unit_price_cents": item.unit_price_cents,
        "unit_discount_price_cents": item.unit_discount_price_cents,
        "status": item.status,
    }


def _capture_original(item: OrderItem) -> None:
    # Baseline is taken once, before the first seller change
    if item.original_quantity is None:
        item.original_quantity = item.quantity
    if item.original_unit_price_cents is None:
        item.original_unit_price_cents = item.unit_price_cents


def _check_discount(unit_price: int, discount_price: int | None) -> None:
    if discount_price is not None and discount_price > unit_price:
        raise ValidationError(
            "discount price cannot exceed unit price",
            {"unit_price_cents": unit_price, "discount_price_cents": discount_price},
        )


def add_order_item(
    ctx: AuthContext,
    order_id: int,
    *,
    product_id: int,
    quantity,
    custom_unit_price_cents=None,
    custom_discount_price_cents=None,
    shop_notes: str | None = None,
    reason: str | None = None,
) -> Order:
    qty = coerce_quantity(quantity)
    unit_override = coerce_cents(custom_unit_price_cents, "custom_unit_price_cents") if custom_unit_price_cents is not None else None
    discount_override = (
        coerce_cents(custom_discount_price_cents, "custom_discount_price_cents")
        if custom_discount_price_cents is not None
        else None
    )

    def _op():
        order = _load_for_edit(ctx, order_id)
        product = catalog_service.get_product(product_id)
        if product.shop_id != order.shop_id:
            raise NotFoundError("Product not found in this shop", {"product_id": product_id, "shop_id": order.shop_id})

        unit_price = unit_override if unit_override is not None else product.sale_price_cents
        discount_price = discount_override if discount_override is not None else product.discount_price_cents
        _check_discount(unit_price, discount_price)

        item = OrderItem(
            product_id=product.id,
            product_name=product.name,
            product_image=product.image,
            product_sku=product.sku or "",
            product_specs=product.specifications,
            quantity=qty,
            unit_price_cents=unit_price,
            unit_discount_price_cents=discount_price,
            status=ITEM_ADDED_BY_SHOP,
            is_added_by_shop=True,
            shop_notes=shop_notes,
        )
        order.items.append(item)
        recalculate_order(order)
        order.has_shop_modifications = True
        db.session.flush()

        audit_service.append_order_modification(
            order_id=order.id,
            kind=MOD_ADD_ITEM,
            order_item_id=item.id,
            actor_user_id=ctx.user_id,
            new_value={
                "product_id": product.id,
                "product_name": product.name,
                **_item_state(item),
            },
            reason=reason,
        )
        return order

    return run_in_transaction(_op)


def update_order_item(
    ctx: AuthContext,
    order_id: int,
    item_id: int,
    *,
    quantity=None,
    unit_price_cents=None,
    discount_price_cents=None,
    unavailable_reason: str | None = None,
    shop_notes: str | None = None,
    reason: str | None = None,
) -> Order:
    """
    Change quantity, price or discount, or flag an item unavailable.

    Each changed attribute gets its own item-level audit row; the order gets
    one UPDATE_ITEM row with the before/after state.
    """
    qty = coerce_quantity(quantity) if quantity is not None else None
    unit_price = coerce_cents(unit_price_cents, "unit_price_cents") if unit_price_cents is not None else None
    discount_price = coerce_cents(discount_price_cents, "discount_price_cents") if discount_price_cents is not None else None
    if qty is None and unit_price is None and discount_price is None and not unavailable_reason and shop_notes is None:
        raise ValidationError("Nothing to update")

    def _op():
        order = _load_for_edit(ctx, order_id)
        item = _find_item(order, item_id)
        if item.status == ITEM_REMOVED_BY_SHOP:
            raise PolicyViolationError("Item has been removed from the order", {"item_id": item.id})

        before = _item_state(item)
        changes = []

        if qty is not None and Decimal(item.quantity) != qty:
            changes.append((ITEM_QUANTITY_CHANGE, quantity_str(item.quantity), quantity_str(qty)))
            _capture_original(item)
            item.quantity = qty

        if unit_price is not None and unit_price != item.unit_price_cents:
            changes.append((ITEM_PRICE_CHANGE, item.unit_price_cents, unit_price))
            _capture_original(item)
            item.unit_price_cents = unit_price

        if discount_price is not None and discount_price != item.unit_discount_price_cents:
            changes.append((ITEM_DISCOUNT_APPLIED, item.unit_discount_price_cents, discount_price))
            _capture_original(item)
            item.unit_discount_price_cents = discount_price

        _check_discount(item.unit_price_cents, item.unit_discount_price_cents)

        if unavailable_reason:
            if item.status != ITEM_UNAVAILABLE:
                changes.append((ITEM_STATUS_CHANGE, item.status, ITEM_UNAVAILABLE))
            item.status = ITEM_UNAVAILABLE
            item.unavailable_reason = unavailable_reason
        elif changes and item.status not in (ITEM_ADDED_BY_SHOP, ITEM_UNAVAILABLE):
            item.status = ITEM_MODIFIED_BY_SHOP

        if shop_notes is not None:
            item.shop_notes = shop_notes
        if changes:
            item.is_modified_by_shop = True

        recalculate_order(order)
        order.has_shop_modifications = True
        db.session.flush()

        for kind, old, new in changes:
            audit_service.append_item_modification(
                order_item_id=item.id,
                kind=kind,
                actor_user_id=ctx.user_id,
                old_value=old,
                new_value=new,
                reason=reason,
            )
        audit_service.append_order_modification(
            order_id=order.id,
            kind=MOD_UPDATE_ITEM,
            order_item_id=item.id,
            actor_user_id=ctx.user_id,
            old_value=before,
            new_value=_item_state(item),
            reason=reason,
            notes=shop_notes,
        )
        return order

    return run_in_transaction(_op)


def remove_order_item(ctx: AuthContext, order_id: int, item_id: int, *, reason: str | None = None) -> Order:
    """Soft removal: the row stays as REMOVED_BY_SHOP and drops out of the totals."""
    def _op():
        order = _load_for_edit(ctx, order_id)
        item = _find_item(order, item_id)
        if item.status == ITEM_REMOVED_BY_SHOP:
            raise PolicyViolationError("Item has already been removed", {"item_id": item.id})

        old_status = item.status
        item.status = ITEM_REMOVED_BY_SHOP
        item.is_modified_by_shop = True
        recalculate_order(order)
        order.has_shop_modifications = True
        db.session.flush()

        audit_service.append_item_modification(
            order_item_id=item.id,
            kind=ITEM_STATUS_CHANGE,
            actor_user_id=ctx.user_id,
            old_value=old_status,
            new_value=ITEM_REMOVED_BY_SHOP,
            reason=reason,
        )
        audit_service.append_order_modification(
            order_id=order.id,
            kind=MOD_REMOVE_ITEM,
            order_item_id=item.id,
            actor_user_id=ctx.user_id,
            old_value={"product_id": item.product_id, "product_name": item.product_name, "status": old_status},
            new_value={"status": ITEM_REMOVED_BY_SHOP},
            reason=reason,
        )
        return order

    return run_in_transaction(_op)


def update_order_fees(
    ctx: AuthContext,
    order_id: int,
    *,
    delivery_fee_cents=None,
    extra_charges_cents=None,
    tax_cents=None,
    shop_notes: str | None = None,
    estimated_delivery_date: str | None = None,
    estimated_delivery_time: str | None = None,
    reason: str | None = None,
) -> Order:
    requested = {
        "delivery_fee_cents": delivery_fee_cents,
        "extra_charges_cents": extra_charges_cents,
        "tax_cents": tax_cents,
    }
    fees = {k: coerce_cents(v, k) for k, v in requested.items() if v is not None}
    if not fees and shop_notes is None and not estimated_delivery_date and not estimated_delivery_time:
        raise ValidationError("Nothing to update")

    def _op():
        order = _load_for_edit(ctx, order_id)
        old = {field: getattr(order, field) for field in FEE_FIELDS}
        old["total_cents"] = order.total_cents

        for field, value in fees.items():
            setattr(order, field, value)
        if shop_notes is not None:
            order.shop_notes = shop_notes
        if estimated_delivery_date:
            order.estimated_delivery_date = estimated_delivery_date
        if estimated_delivery_time:
            order.estimated_delivery_time = estimated_delivery_time

        recalculate_order(order)
        order.has_shop_modifications = True

        new = {field: getattr(order, field) for field in FEE_FIELDS}
        new["total_cents"] = order.total_cents
        audit_service.append_order_modification(
            order_id=order.id,
            kind=MOD_CHANGE_FEES,
            actor_user_id=ctx.user_id,
            old_value=old,
            new_value=new,
            reason=reason,
            notes=shop_notes,
        )
        return order

    return run_in_transaction(_op)

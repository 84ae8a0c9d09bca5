# Overview: Order status state machine with audited transitions.

"""
Order lifecycle.

ORDER_PLACED -> PROCESSING -> PACKED -> DELIVERED, and any of the first
three may go to CANCELLED. The table is a strict allow-list: anything else
is rejected and the order is left untouched. REFUNDED is administrative
(mark_refunded) and never reachable through update_status.
"""

from __future__ import annotations

from flask import current_app

from ..errors import PolicyViolationError, ValidationError
from ..models import Order
from ..models.orders import (
    CANCELLED,
    DELIVERED,
    ORDER_PLACED,
    ORDER_STATUSES,
    PACKED,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
    PAYMENT_STATUSES,
    PROCESSING,
    REFUNDED,
)
from ..models.tenancy import ROLE_ADMIN
from ..validation import coerce_choice
from shoptab.time_utils import utcnow
from . import audit_service, notification_service
from .authorization import AuthContext, ensure_order_participant, ensure_order_seller, require_role
from .concurrency import run_in_transaction
from .order_service import load_order

TRANSITIONS: dict[str, tuple[str, ...]] = {
    ORDER_PLACED: (PROCESSING, CANCELLED),
    PROCESSING: (PACKED, CANCELLED),
    PACKED: (DELIVERED, CANCELLED),
    DELIVERED: (),
    CANCELLED: (),
    REFUNDED: (),
}

# Lifecycle timestamp stamped when the order enters the status
STATUS_TIMESTAMPS = {
    PROCESSING: "processing_started_at",
    PACKED: "packed_at",
    DELIVERED: "delivered_at",
    CANCELLED: "cancelled_at",
    REFUNDED: "refunded_at",
}

REFUNDABLE_STATUSES = (DELIVERED, CANCELLED)


def allowed_transitions(status: str) -> tuple[str, ...]:
    return TRANSITIONS.get(status, ())


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in allowed_transitions(from_status)


def can_be_modified(order: Order) -> bool:
    """Seller edits to items and fees are only allowed while PROCESSING."""
    return order.status == PROCESSING


def ensure_modifiable(order: Order) -> None:
    if not can_be_modified(order):
        raise PolicyViolationError(
            f"Order cannot be modified in status {order.status}",
            {"order_id": order.id, "status": order.status, "modifiable_in": [PROCESSING]},
        )


def _transition(order: Order, to_status: str, *, actor_user_id: int, notes: str | None = None) -> str:
    """Validate against the allow-list, apply, stamp and audit. Returns the old status."""
    from_status = order.status
    if not can_transition(from_status, to_status):
        raise PolicyViolationError(
            f"Invalid status transition from {from_status} to {to_status}",
            {
                "order_id": order.id,
                "from_status": from_status,
                "to_status": to_status,
                "allowed": list(allowed_transitions(from_status)),
            },
        )
    _apply_status(order, to_status, actor_user_id=actor_user_id, notes=notes)
    return from_status


def _apply_status(order: Order, to_status: str, *, actor_user_id: int, notes: str | None) -> None:
    from_status = order.status
    order.status = to_status
    stamp = STATUS_TIMESTAMPS.get(to_status)
    if stamp:
        setattr(order, stamp, utcnow())
    audit_service.append_status_change(
        order_id=order.id,
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        notes=notes,
    )
    current_app.logger.info("order %s status %s -> %s by user %s", order.order_number, from_status, to_status, actor_user_id)
    notification_service.enqueue(notification_service.order_status(order, from_status))


def update_status(
    ctx: AuthContext,
    order_id: int,
    *,
    status: str | None = None,
    payment_status: str | None = None,
    estimated_delivery_date: str | None = None,
    estimated_delivery_time: str | None = None,
    notes: str | None = None,
) -> Order:
    """Seller-side status update; other fields may ride along."""
    new_status = coerce_choice(status, "status", ORDER_STATUSES) if status else None
    new_payment_status = coerce_choice(payment_status, "payment_status", PAYMENT_STATUSES) if payment_status else None
    if not any([new_status, new_payment_status, estimated_delivery_date, estimated_delivery_time]):
        raise ValidationError("Nothing to update")

    def _op():
        order = load_order(order_id)
        ensure_order_seller(ctx, order)

        if new_status:
            _transition(order, new_status, actor_user_id=ctx.user_id, notes=notes)
        if new_payment_status:
            order.payment_status = new_payment_status
            if new_payment_status == PAYMENT_PAID and order.payment_date is None:
                order.payment_date = utcnow()
        if estimated_delivery_date:
            order.estimated_delivery_date = estimated_delivery_date
        if estimated_delivery_time:
            order.estimated_delivery_time = estimated_delivery_time
        return order

    return run_in_transaction(_op)


def cancel_order(ctx: AuthContext, order_id: int, *, reason: str | None = None) -> Order:
    """Customer (own order) or seller; only from a non-terminal status."""
    def _op():
        order = load_order(order_id)
        ensure_order_participant(ctx, order)
        if order.is_terminal:
            raise PolicyViolationError(
                "Order cannot be cancelled",
                {"order_id": order.id, "status": order.status},
            )
        _transition(order, CANCELLED, actor_user_id=ctx.user_id, notes=reason)
        order.cancellation_reason = reason
        return order

    return run_in_transaction(_op)


def mark_refunded(ctx: AuthContext, order_id: int, *, notes: str | None = None) -> Order:
    """Administrative: DELIVERED or CANCELLED -> REFUNDED."""
    require_role(ctx, ROLE_ADMIN)

    def _op():
        order = load_order(order_id)
        if order.status not in REFUNDABLE_STATUSES:
            raise PolicyViolationError(
                f"Only {' or '.join(REFUNDABLE_STATUSES)} orders can be refunded",
                {"order_id": order.id, "status": order.status},
            )
        _apply_status(order, REFUNDED, actor_user_id=ctx.user_id, notes=notes)
        order.payment_status = PAYMENT_REFUNDED
        return order

    return run_in_transaction(_op)

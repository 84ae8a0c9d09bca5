# Overview: Audited payment-method switches on live orders, including moves onto shop credit.

"""
Payment-method transitions.

Switching a live order's payment method is its own audited operation:
- not allowed once the order is DELIVERED, CANCELLED or REFUNDED
- into CREDIT: needs the customer's phone, an ACTIVE credit account for
  (shop, phone) and room under the limit for the order total; the switch
  checks headroom but does not post to the ledger
- away from CREDIT: logged only; an earlier credit posting is NOT reversed
  (credit given stands regardless of later method changes)
- on success the payment is reset to PENDING and must be settled again
"""

from __future__ import annotations

from flask import current_app

from ..errors import PolicyViolationError, ValidationError
from ..models import Order
from ..models.audit import MOD_PAYMENT_METHOD
from ..models.orders import PAYMENT_CREDIT, PAYMENT_METHODS, PAYMENT_PENDING, TERMINAL_STATUSES
from ..validation import coerce_choice
from . import audit_service, credit_service, notification_service
from .authorization import AuthContext, ensure_order_seller
from .concurrency import run_in_transaction
from .order_service import load_order

DEFAULT_REASON = "Payment method changed by shop owner"


def _check_credit_eligibility(order: Order) -> str:
    """Returns the settlement phone once the order may move onto credit."""
    phone = order.customer_phone or (order.user.phone if order.user else None)
    if not phone:
        raise ValidationError(
            "Customer phone number is required for credit payment",
            {"order_id": order.id},
        )
    phone = credit_service.normalize_phone(phone)

    account = credit_service.find_account_by_phone(order.shop_id, phone)
    if account is None:
        raise PolicyViolationError(
            "Customer does not have a credit account with this shop",
            {"order_id": order.id, "shop_id": order.shop_id, "customer_phone": phone},
        )
    if not account.is_active:
        raise PolicyViolationError(
            "Credit account is not active",
            {"credit_account_id": account.id, "status": account.status},
        )
    violation = credit_service.credit_limit_violation(account, order.total_cents)
    if violation:
        raise violation
    return phone


def update_payment_method(
    ctx: AuthContext,
    order_id: int,
    *,
    payment_method: str,
    reason: str | None = None,
    notes: str | None = None,
) -> Order:
    new_method = coerce_choice(payment_method, "payment_method", PAYMENT_METHODS)

    def _op():
        order = load_order(order_id)
        ensure_order_seller(ctx, order)

        if order.status in TERMINAL_STATUSES:
            raise PolicyViolationError(
                "Cannot change payment method for completed or cancelled orders",
                {"order_id": order.id, "status": order.status},
            )

        old_method = order.payment_method
        if old_method == new_method:
            raise ValidationError(
                f"Order already uses {new_method}",
                {"order_id": order.id, "payment_method": new_method},
            )

        if old_method == PAYMENT_CREDIT:
            current_app.logger.info(
                "order %s payment method CREDIT -> %s; existing credit posting left in place",
                order.order_number, new_method,
            )

        if new_method == PAYMENT_CREDIT:
            order.customer_phone = _check_credit_eligibility(order)

        order.payment_method = new_method
        order.payment_status = PAYMENT_PENDING
        order.payment_date = None
        order.payment_transaction_id = None

        audit_service.append_order_modification(
            order_id=order.id,
            kind=MOD_PAYMENT_METHOD,
            field="payment_method",
            actor_user_id=ctx.user_id,
            old_value=old_method,
            new_value=new_method,
            reason=reason or DEFAULT_REASON,
            notes=notes,
        )
        notification_service.enqueue(notification_service.payment_method_change(order, old_method))
        return order

    return run_in_transaction(_op)

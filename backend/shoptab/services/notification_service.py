# Overview: Best-effort notifications, queued in the session and dispatched after commit.

"""
Notification outbox.

Services call `enqueue()` while their transaction is open. Nothing is sent
until the session commits; a rollback drops whatever was queued. Sending
is delegated to a pluggable sender (push delivery is an external
collaborator) and a failing sender is logged and ignored, never surfaced
to the operation that produced the event.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app, has_app_context
from sqlalchemy import event
from sqlalchemy.orm import Session

from ..extensions import db
from ..models import User
from ..money import format_cents
from ..validation import phone_match_key, strip_phone

KIND_NEW_ORDER = "new_order"
KIND_ORDER_STATUS = "order_status"
KIND_CREDIT_ADDED = "credit_added"
KIND_PAYMENT_RECEIVED = "payment_received"
KIND_PAYMENT_METHOD_CHANGE = "payment_method_change"

_QUEUE_KEY = "shoptab.pending_notifications"
_SENDER_KEY = "shoptab.notification_sender"


@dataclass(frozen=True)
class Notification:
    kind: str
    recipient_user_id: int
    title: str
    body: str
    data: dict = field(default_factory=dict)


class LoggingNotificationSender:
    """Default sender: writes the notification to the app log."""

    def send(self, notification: Notification) -> None:
        current_app.logger.info(
            "notification kind=%s recipient=%s title=%r",
            notification.kind,
            notification.recipient_user_id,
            notification.title,
        )


def set_sender(app, sender) -> None:
    app.extensions[_SENDER_KEY] = sender


def get_sender(app):
    return app.extensions.get(_SENDER_KEY)


def enqueue(notification: Notification | None) -> None:
    if notification is None:
        return
    # The queue belongs to a transaction; its rollback must be able to drop it
    session = db.session()
    if not session.in_transaction():
        session.begin()
    session.info.setdefault(_QUEUE_KEY, []).append(notification)


def pending() -> list[Notification]:
    return list(db.session.info.get(_QUEUE_KEY, []))


def dispatch(notifications) -> int:
    """Send each notification; returns how many were delivered."""
    if not has_app_context():
        return 0
    app = current_app._get_current_object()
    if not app.config.get("NOTIFICATIONS_ENABLED", True):
        app.logger.debug("Notifications disabled; dropping %d event(s)", len(notifications))
        return 0

    sender = get_sender(app)
    if sender is None:
        return 0

    delivered = 0
    for notification in notifications:
        try:
            sender.send(notification)
            delivered += 1
        except Exception:
            app.logger.warning(
                "Notification %s to user %s failed",
                notification.kind,
                notification.recipient_user_id,
                exc_info=True,
            )
    return delivered


def _after_commit(session) -> None:
    # Savepoint releases also fire after_commit; wait for the outer commit
    if session.in_nested_transaction():
        return
    queued = session.info.pop(_QUEUE_KEY, None)
    if queued:
        dispatch(queued)


def _after_transaction_end(session, transaction) -> None:
    # Anything still queued when the outermost transaction ends was rolled back
    if transaction.parent is None:
        session.info.pop(_QUEUE_KEY, None)


def init_app(app, sender=None) -> None:
    set_sender(app, sender or LoggingNotificationSender())
    if not event.contains(Session, "after_commit", _after_commit):
        event.listen(Session, "after_commit", _after_commit)
    if not event.contains(Session, "after_transaction_end", _after_transaction_end):
        event.listen(Session, "after_transaction_end", _after_transaction_end)


# =============================================================================
# Typed payload builders
# =============================================================================

def _user_id_for_phone(phone: str | None) -> int | None:
    if not phone:
        return None
    # Profile phones may carry separators; tabs are keyed without them
    row = (
        db.session.query(User.id)
        .filter(phone_match_key(User.phone) == strip_phone(phone))
        .order_by(User.id.asc())
        .first()
    )
    return row.id if row else None


def new_order(order, shop_owner_id: int) -> Notification:
    return Notification(
        kind=KIND_NEW_ORDER,
        recipient_user_id=shop_owner_id,
        title="New order received",
        body=f"Order {order.order_number} for {format_cents(order.total_cents)}",
        data={
            "order_id": order.id,
            "order_number": order.order_number,
            "shop_id": order.shop_id,
            "total_cents": order.total_cents,
            "order_type": order.order_type,
        },
    )


def order_status(order, old_status: str) -> Notification:
    return Notification(
        kind=KIND_ORDER_STATUS,
        recipient_user_id=order.user_id,
        title="Order status updated",
        body=f"Order {order.order_number} is now {order.status}",
        data={
            "order_id": order.id,
            "order_number": order.order_number,
            "old_status": old_status,
            "new_status": order.status,
        },
    )


def credit_added(account, txn) -> Notification | None:
    recipient = _user_id_for_phone(account.customer_phone)
    if recipient is None:
        return None
    return Notification(
        kind=KIND_CREDIT_ADDED,
        recipient_user_id=recipient,
        title="Credit added",
        body=f"{format_cents(txn.amount_cents)} added to your tab; balance {format_cents(txn.balance_after_cents)}",
        data={
            "shop_id": account.shop_id,
            "credit_account_id": account.id,
            "transaction_id": txn.id,
            "amount_cents": txn.amount_cents,
            "balance_cents": txn.balance_after_cents,
            "order_id": txn.order_id,
        },
    )


def payment_received(account, txn) -> Notification | None:
    recipient = _user_id_for_phone(account.customer_phone)
    if recipient is None:
        return None
    return Notification(
        kind=KIND_PAYMENT_RECEIVED,
        recipient_user_id=recipient,
        title="Payment received",
        body=f"Payment of {format_cents(txn.amount_cents)} received; balance {format_cents(txn.balance_after_cents)}",
        data={
            "shop_id": account.shop_id,
            "credit_account_id": account.id,
            "transaction_id": txn.id,
            "amount_cents": txn.amount_cents,
            "balance_cents": txn.balance_after_cents,
        },
    )


def payment_method_change(order, old_method: str) -> Notification:
    return Notification(
        kind=KIND_PAYMENT_METHOD_CHANGE,
        recipient_user_id=order.user_id,
        title="Payment method changed",
        body=f"Order {order.order_number} payment method changed from {old_method} to {order.payment_method}",
        data={
            "order_id": order.id,
            "order_number": order.order_number,
            "old_method": old_method,
            "new_method": order.payment_method,
        },
    )

# Overview: Pytest coverage for the order status state machine.

"""
Order Lifecycle Tests

ORDER_PLACED -> PROCESSING -> PACKED -> DELIVERED, CANCELLED from any
non-terminal status, REFUNDED only administratively. Rejected transitions
leave the order and its history untouched.
"""

import pytest

from shoptab.errors import ForbiddenError, PolicyViolationError, ValidationError
from shoptab.models import OrderStatusHistory
from shoptab.models.orders import CANCELLED, DELIVERED, ORDER_PLACED, PACKED, PROCESSING, REFUNDED
from shoptab.services import order_lifecycle_service as lifecycle


def _history(db_session, order_id):
    return [
        (h.from_status, h.to_status)
        for h in db_session.query(OrderStatusHistory).filter_by(order_id=order_id).order_by(OrderStatusHistory.seq)
    ]


class TestTransitionTable:
    @pytest.mark.parametrize("from_status,to_status,allowed", [
        (ORDER_PLACED, PROCESSING, True),
        (ORDER_PLACED, CANCELLED, True),
        (ORDER_PLACED, DELIVERED, False),
        (ORDER_PLACED, PACKED, False),
        (PROCESSING, PACKED, True),
        (PACKED, DELIVERED, True),
        (PACKED, PROCESSING, False),
        (DELIVERED, CANCELLED, False),
        (CANCELLED, PROCESSING, False),
        (PROCESSING, REFUNDED, False),
    ])
    def test_can_transition(self, from_status, to_status, allowed):
        assert lifecycle.can_transition(from_status, to_status) is allowed


class TestUpdateStatus:
    def test_happy_path_stamps_and_audits(self, db_session, owner_ctx, placed_order):
        order_id = placed_order.id
        for status in (PROCESSING, PACKED, DELIVERED):
            order = lifecycle.update_status(owner_ctx, order_id, status=status)

        assert order.status == DELIVERED
        assert order.processing_started_at is not None
        assert order.packed_at is not None
        assert order.delivered_at is not None
        assert _history(db_session, order_id) == [
            (None, ORDER_PLACED),
            (ORDER_PLACED, PROCESSING),
            (PROCESSING, PACKED),
            (PACKED, DELIVERED),
        ]

    def test_skip_ahead_rejected_and_order_untouched(self, db_session, owner_ctx, placed_order):
        order_id = placed_order.id
        with pytest.raises(PolicyViolationError) as exc:
            lifecycle.update_status(owner_ctx, order_id, status=DELIVERED)

        assert exc.value.details["from_status"] == ORDER_PLACED
        assert exc.value.details["to_status"] == DELIVERED
        assert exc.value.details["allowed"] == [PROCESSING, CANCELLED]

        db_session.expire_all()
        assert placed_order.status == ORDER_PLACED
        assert placed_order.delivered_at is None
        assert _history(db_session, order_id) == [(None, ORDER_PLACED)]

    def test_refunded_not_reachable_through_update(self, db_session, owner_ctx, placed_order):
        lifecycle.update_status(owner_ctx, placed_order.id, status=CANCELLED)
        with pytest.raises(PolicyViolationError):
            lifecycle.update_status(owner_ctx, placed_order.id, status=REFUNDED)

    def test_customer_cannot_update_status(self, db_session, customer_ctx, placed_order):
        with pytest.raises(ForbiddenError):
            lifecycle.update_status(customer_ctx, placed_order.id, status=PROCESSING)

    def test_other_shop_owner_cannot_update_status(self, db_session, other_owner_ctx, placed_order):
        with pytest.raises(ForbiddenError):
            lifecycle.update_status(other_owner_ctx, placed_order.id, status=PROCESSING)

    def test_unknown_status_value(self, db_session, owner_ctx, placed_order):
        with pytest.raises(ValidationError):
            lifecycle.update_status(owner_ctx, placed_order.id, status="SHIPPED")

    def test_nothing_to_update(self, db_session, owner_ctx, placed_order):
        with pytest.raises(ValidationError):
            lifecycle.update_status(owner_ctx, placed_order.id)

    def test_payment_status_rides_along(self, db_session, owner_ctx, placed_order):
        order = lifecycle.update_status(owner_ctx, placed_order.id, status=PROCESSING, payment_status="PAID")

        assert order.payment_status == "PAID"
        assert order.payment_date is not None

    def test_status_change_notifies_customer(self, db_session, owner_ctx, customer, placed_order, notifications):
        notifications.sent.clear()
        lifecycle.update_status(owner_ctx, placed_order.id, status=PROCESSING)

        assert notifications.kinds() == ["order_status"]
        sent = notifications.sent[0]
        assert sent.recipient_user_id == customer.id
        assert sent.data["old_status"] == ORDER_PLACED
        assert sent.data["new_status"] == PROCESSING


class TestCancel:
    def test_customer_cancels_own_order(self, db_session, customer_ctx, placed_order):
        order = lifecycle.cancel_order(customer_ctx, placed_order.id, reason="Changed my mind")

        assert order.status == CANCELLED
        assert order.cancelled_at is not None
        assert order.cancellation_reason == "Changed my mind"

    def test_stranger_cannot_cancel(self, db_session, other_customer_ctx, placed_order):
        with pytest.raises(ForbiddenError):
            lifecycle.cancel_order(other_customer_ctx, placed_order.id)

    def test_cannot_cancel_delivered(self, db_session, owner_ctx, customer_ctx, placed_order):
        for status in (PROCESSING, PACKED, DELIVERED):
            lifecycle.update_status(owner_ctx, placed_order.id, status=status)

        with pytest.raises(PolicyViolationError):
            lifecycle.cancel_order(customer_ctx, placed_order.id)


class TestRefund:
    def test_admin_refunds_cancelled_order(self, db_session, admin_ctx, customer_ctx, placed_order):
        lifecycle.cancel_order(customer_ctx, placed_order.id)
        order = lifecycle.mark_refunded(admin_ctx, placed_order.id, notes="Goodwill")

        assert order.status == REFUNDED
        assert order.payment_status == "REFUNDED"
        assert order.refunded_at is not None

    def test_refund_requires_admin(self, db_session, owner_ctx, customer_ctx, placed_order):
        lifecycle.cancel_order(customer_ctx, placed_order.id)
        with pytest.raises(ForbiddenError):
            lifecycle.mark_refunded(owner_ctx, placed_order.id)

    def test_refund_of_open_order_rejected(self, db_session, admin_ctx, placed_order):
        with pytest.raises(PolicyViolationError):
            lifecycle.mark_refunded(admin_ctx, placed_order.id)


class TestModifiable:
    def test_only_processing_orders_are_modifiable(self, db_session, owner_ctx, placed_order):
        assert lifecycle.can_be_modified(placed_order) is False
        order = lifecycle.update_status(owner_ctx, placed_order.id, status=PROCESSING)
        assert lifecycle.can_be_modified(order) is True
        order = lifecycle.update_status(owner_ctx, placed_order.id, status=PACKED)
        assert lifecycle.can_be_modified(order) is False

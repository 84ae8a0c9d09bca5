# Overview: Pytest coverage for after-commit, best-effort notifications.

import logging

import pytest

from shoptab.errors import ValidationError
from shoptab.extensions import db
from shoptab.models import Order, User
from shoptab.models.tenancy import ROLE_CUSTOMER
from shoptab.services import cart_service, credit_service, notification_service, order_service
from shoptab.services.authorization import context_for_user
from shoptab.services.concurrency import run_in_transaction
from shoptab.services.notification_service import Notification


def _note(kind="test"):
    return Notification(kind=kind, recipient_user_id=1, title="t", body="b")


class TestDispatchTiming:
    def test_sent_only_after_commit(self, db_session, notifications):
        notification_service.enqueue(_note())
        assert notifications.sent == []
        assert len(notification_service.pending()) == 1

        db_session.commit()

        assert notifications.kinds() == ["test"]
        assert notification_service.pending() == []

    def test_rollback_drops_queue(self, db_session, notifications):
        notification_service.enqueue(_note())
        db_session.rollback()
        db_session.commit()

        assert notifications.sent == []
        assert notification_service.pending() == []

    def test_failed_operation_sends_nothing(self, db_session, notifications):
        def _op():
            notification_service.enqueue(_note())
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            run_in_transaction(_op)

        db_session.commit()
        assert notifications.sent == []

    def test_enqueue_none_is_ignored(self, db_session, notifications):
        notification_service.enqueue(None)
        assert notification_service.pending() == []

    def test_enqueue_outside_transaction_opens_one(self, db_session, notifications):
        db_session.commit()
        assert not db.session().in_transaction()

        notification_service.enqueue(_note())

        assert db.session().in_transaction()
        db_session.rollback()
        assert notification_service.pending() == []
        assert notifications.sent == []

    def test_checkout_dispatches_without_patching(self, db_session, notifications, customer_ctx, shop, rice, dal):
        cart_service.add_item(customer_ctx, shop_id=shop.id, product_id=rice.id, quantity=2)
        cart = cart_service.add_item(customer_ctx, shop_id=shop.id, product_id=dal.id, quantity=1)

        order = order_service.create_order_from_cart(customer_ctx, cart.id, order_type="SHOP_PICKUP")

        assert order.total_cents == 2500
        assert notifications.kinds() == ["new_order"]


class TestBestEffort:
    def test_sender_failure_does_not_fail_order(self, db_session, notifications, customer_ctx, filled_cart, caplog):
        notifications.fail = True
        cart_id = filled_cart.id

        with caplog.at_level(logging.WARNING):
            order = order_service.create_order_from_cart(customer_ctx, cart_id, order_type="SHOP_PICKUP")

        assert db_session.get(Order, order.id) is not None
        assert notifications.sent == []
        assert "new_order" in caplog.text

    def test_disabled_drops_events(self, app, db_session, notifications, customer_ctx, filled_cart, monkeypatch):
        monkeypatch.setitem(app.config, "NOTIFICATIONS_ENABLED", False)

        order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")

        assert notifications.sent == []

    def test_dispatch_counts_deliveries(self, db_session, notifications):
        assert notification_service.dispatch([_note(), _note()]) == 2
        notifications.fail = True
        assert notification_service.dispatch([_note()]) == 0


class TestPayloads:
    def test_new_order_goes_to_shop_owner(self, db_session, notifications, owner, customer_ctx, filled_cart):
        order = order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")

        assert notifications.kinds() == ["new_order"]
        sent = notifications.sent[0]
        assert sent.recipient_user_id == owner.id
        assert sent.data["order_number"] == order.order_number
        assert sent.data["total_cents"] == 2500

    def test_credit_order_notifies_customer_and_owner(self, db_session, notifications, customer, owner, customer_ctx, filled_cart):
        order_service.create_order_from_cart(
            customer_ctx, filled_cart.id, order_type="SHOP_PICKUP", payment_method="CREDIT", customer_phone=customer.phone
        )

        assert sorted(notifications.kinds()) == ["credit_added", "new_order"]
        by_kind = {n.kind: n for n in notifications.sent}
        assert by_kind["credit_added"].recipient_user_id == customer.id
        assert by_kind["credit_added"].data["balance_cents"] == 2500
        assert by_kind["new_order"].recipient_user_id == owner.id

    def test_payment_received(self, db_session, notifications, customer, owner_ctx, shop):
        account = credit_service.create_credit_account(owner_ctx, shop.id, customer_phone=customer.phone)
        credit_service.add_credit(owner_ctx, shop.id, account.id, amount_cents=1000)
        notifications.sent.clear()

        credit_service.add_payment(owner_ctx, shop.id, account.id, amount_cents=400)

        assert notifications.kinds() == ["payment_received"]
        assert notifications.sent[0].data["balance_cents"] == 600

    def test_credit_added_reaches_user_with_formatted_phone(self, db_session, notifications, shop, rice):
        user = User(name="Dana Customer", email="dana@example.com", phone="+1 555 000 3333", role=ROLE_CUSTOMER)
        db_session.add(user)
        db_session.commit()
        ctx = context_for_user(user)
        cart = cart_service.add_item(ctx, shop_id=shop.id, product_id=rice.id, quantity=1)

        order_service.create_order_from_cart(
            ctx, cart.id, order_type="SHOP_PICKUP", payment_method="CREDIT", customer_phone="+1 555 000 3333"
        )

        by_kind = {n.kind: n for n in notifications.sent}
        assert "credit_added" in by_kind
        assert by_kind["credit_added"].recipient_user_id == user.id
        assert by_kind["credit_added"].data["amount_cents"] == 1000

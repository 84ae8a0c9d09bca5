# Overview: Pytest coverage for cart-to-order assembly.

"""
Order Creation Tests

An order is assembled from the caller's ACTIVE cart in one transaction:
items frozen, totals computed, number allocated, ORDER_PLACED recorded,
CREDIT posted to the tab, cart deleted. Any failure leaves the cart intact.
"""

import pytest

from shoptab.errors import ConflictError, ForbiddenError, NotFoundError, PolicyViolationError, ValidationError
from shoptab.models import Cart, CreditAccount, CreditTransaction, Order, OrderStatusHistory, Product
from shoptab.models.orders import (
    ITEM_AVAILABLE,
    ITEM_UNAVAILABLE,
    ORDER_PLACED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
)
from shoptab.services import cart_service, credit_service, order_service
from shoptab.services.sequence_service import format_order_number
from shoptab.time_utils import order_date_key


class TestCreateFromCart:
    def test_pickup_order_totals_and_snapshot(self, db_session, customer_ctx, filled_cart, shop):
        cart_id = filled_cart.id
        order = order_service.create_order_from_cart(customer_ctx, cart_id, order_type="SHOP_PICKUP")

        assert order.status == ORDER_PLACED
        assert order.subtotal_cents == 2500
        assert order.discount_cents == 0
        assert order.delivery_fee_cents == 0
        assert order.total_cents == 2500
        assert order.total_items == 2
        assert order.payment_method == "CASH_ON_PICKUP"
        assert order.payment_status == PAYMENT_PENDING
        assert order.shop_id == shop.id
        assert order.user_id == customer_ctx.user_id
        assert order.confirmed_at is not None
        assert all(item.is_added_by_shop is False for item in order.items)
        assert [item.product_name for item in order.items] == ["Rice 1kg", "Dal 500g"]
        assert db_session.get(Cart, cart_id) is None

    def test_order_number_format(self, db_session, customer_ctx, filled_cart, shop):
        order = order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")

        expected_prefix = f"ORD{order_date_key()}{shop.id:03d}"
        assert order.order_number.startswith(expected_prefix)
        assert order.order_number == format_order_number("ORD", order_date_key(), shop.id, 1)

    def test_order_numbers_increase_per_shop_and_day(self, db_session, customer_ctx, shop, rice):
        numbers = []
        for _ in range(3):
            cart = cart_service.add_item(customer_ctx, shop_id=shop.id, product_id=rice.id, quantity=1)
            numbers.append(order_service.create_order_from_cart(customer_ctx, cart.id, order_type="SHOP_PICKUP").order_number)

        assert [n[-4:] for n in numbers] == ["0001", "0002", "0003"]
        assert len(set(numbers)) == 3

    def test_discounted_items_priced_from_snapshot(self, db_session, customer_ctx, shop, oil):
        cart = cart_service.add_item(customer_ctx, shop_id=shop.id, product_id=oil.id, quantity=2)
        order = order_service.create_order_from_cart(customer_ctx, cart.id, order_type="SHOP_PICKUP")

        assert order.subtotal_cents == 3600
        assert order.discount_cents == 400
        assert order.total_cents == 3200
        assert order.items[0].subtotal_cents == 3200
        assert order.items[0].item_discount_cents == 400

    def test_discount_price_above_list_is_not_a_negative_discount(self, db_session, customer_ctx, shop):
        product = Product(shop_id=shop.id, name="Ghee 500g", sku="GHEE-1", sale_price_cents=1000, discount_price_cents=1200)
        db_session.add(product)
        db_session.commit()
        cart = cart_service.add_item(customer_ctx, shop_id=shop.id, product_id=product.id, quantity=1)
        assert cart.total_cents == 1200

        order = order_service.create_order_from_cart(customer_ctx, cart.id, order_type="SHOP_PICKUP")

        assert order.items[0].item_discount_cents == 0
        assert order.discount_cents == 0
        assert order.subtotal_cents == 1200
        assert order.total_cents == 1200

    def test_catalog_changes_after_add_do_not_reprice(self, db_session, customer_ctx, filled_cart, rice):
        rice.sale_price_cents = 9900
        db_session.commit()

        order = order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")
        assert order.total_cents == 2500

    def test_status_history_records_placement(self, db_session, customer_ctx, filled_cart):
        order = order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")

        history = db_session.query(OrderStatusHistory).filter_by(order_id=order.id).all()
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == ORDER_PLACED
        assert history[0].seq == 1

    def test_unavailable_cart_items_are_carried_but_not_counted(self, db_session, customer_ctx, filled_cart, rice):
        rice.status = "INACTIVE"
        db_session.commit()
        cart_service.refresh(customer_ctx, filled_cart.id)

        order = order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")
        statuses = {item.product_name: item.status for item in order.items}

        assert statuses == {"Rice 1kg": ITEM_UNAVAILABLE, "Dal 500g": ITEM_AVAILABLE}
        assert order.total_cents == 500
        assert order.total_items == 1


class TestCreateRejections:
    def test_empty_cart(self, db_session, customer_ctx, filled_cart):
        cart_service.clear(customer_ctx, filled_cart.id)

        with pytest.raises(ValidationError):
            order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")
        assert db_session.query(Order).count() == 0

    def test_cart_of_another_customer(self, db_session, other_customer_ctx, filled_cart):
        with pytest.raises(ForbiddenError):
            order_service.create_order_from_cart(other_customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")
        assert db_session.get(Cart, filled_cart.id) is not None

    def test_unknown_cart(self, db_session, customer_ctx):
        with pytest.raises(NotFoundError):
            order_service.create_order_from_cart(customer_ctx, 424242, order_type="SHOP_PICKUP")

    def test_abandoned_cart(self, db_session, customer_ctx, filled_cart):
        cart_service.abandon_cart(customer_ctx, filled_cart.id)
        with pytest.raises(ConflictError):
            order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="SHOP_PICKUP")

    def test_invalid_order_type(self, db_session, customer_ctx, filled_cart):
        with pytest.raises(ValidationError):
            order_service.create_order_from_cart(customer_ctx, filled_cart.id, order_type="DRONE")

    def test_delivery_requires_address_and_contact(self, db_session, customer_ctx, filled_cart):
        with pytest.raises(ValidationError) as exc:
            order_service.create_order_from_cart(
                customer_ctx, filled_cart.id, order_type="HOME_DELIVERY", delivery={"address": "12 Lane"}
            )
        assert exc.value.details["missing"] == ["delivery.contact_number"]

    def test_pickup_with_delivery_details_rejected(self, db_session, customer_ctx, filled_cart):
        with pytest.raises(ValidationError):
            order_service.create_order_from_cart(
                customer_ctx,
                filled_cart.id,
                order_type="SHOP_PICKUP",
                delivery={"address": "12 Lane", "contact_number": "+15550001111"},
            )

    def test_delivery_not_offered_by_shop(self, db_session, customer_ctx, other_shop, foreign_product):
        cart = cart_service.add_item(customer_ctx, shop_id=other_shop.id, product_id=foreign_product.id, quantity=1)
        with pytest.raises(ValidationError):
            order_service.create_order_from_cart(
                customer_ctx,
                cart.id,
                order_type="HOME_DELIVERY",
                delivery={"address": "12 Lane", "contact_number": "+15550001111"},
            )
        assert db_session.get(Cart, cart.id) is not None

    def test_credit_requires_explicit_phone(self, db_session, customer_ctx, filled_cart):
        with pytest.raises(ValidationError):
            order_service.create_order_from_cart(
                customer_ctx, filled_cart.id, order_type="SHOP_PICKUP", payment_method="CREDIT"
            )


class TestDelivery:
    def test_delivery_order_uses_shop_fee(self, db_session, customer_ctx, filled_cart):
        order = order_service.create_order_from_cart(
            customer_ctx,
            filled_cart.id,
            order_type="HOME_DELIVERY",
            delivery={"address": "12 Lane", "contact_number": "+15550001111", "city": "Pune"},
        )

        assert order.delivery_fee_cents == 300
        assert order.total_cents == 2800
        assert order.payment_method == "CASH_ON_DELIVERY"
        assert order.to_dict()["delivery"]["city"] == "Pune"
        assert order.to_dict()["pickup"] is None


class TestCreditOrders:
    def test_credit_order_posts_to_new_tab(self, db_session, customer_ctx, filled_cart, shop):
        order = order_service.create_order_from_cart(
            customer_ctx,
            filled_cart.id,
            order_type="SHOP_PICKUP",
            payment_method="CREDIT",
            customer_phone="+1 555-000-1111",
        )

        assert order.payment_status == PAYMENT_PAID
        assert order.payment_date is not None
        assert order.customer_phone == "+15550001111"

        account = db_session.query(CreditAccount).filter_by(shop_id=shop.id, customer_phone="+15550001111").one()
        assert account.current_balance_cents == 2500
        txn = db_session.query(CreditTransaction).filter_by(order_id=order.id).one()
        assert txn.amount_cents == 2500
        assert txn.balance_after_cents == 2500
        assert txn.transaction_source == "ORDER"

    def test_credit_limit_blocks_whole_order(self, db_session, customer_ctx, owner_ctx, filled_cart, shop):
        credit_service.create_credit_account(
            owner_ctx, shop.id, customer_phone="+15550001111", credit_limit_cents=2000
        )

        with pytest.raises(PolicyViolationError) as exc:
            order_service.create_order_from_cart(
                customer_ctx,
                filled_cart.id,
                order_type="SHOP_PICKUP",
                payment_method="CREDIT",
                customer_phone="+15550001111",
            )

        assert exc.value.details["required"] == 2500
        assert exc.value.details["available"] == 2000
        assert db_session.query(Order).count() == 0
        assert db_session.get(Cart, filled_cart.id) is not None
        assert db_session.query(CreditTransaction).count() == 0


class TestReads:
    def test_participants_can_read(self, db_session, customer_ctx, owner_ctx, admin_ctx, placed_order):
        for ctx in (customer_ctx, owner_ctx, admin_ctx):
            assert order_service.get_order(ctx, placed_order.id).id == placed_order.id

    def test_strangers_cannot_read(self, db_session, other_customer_ctx, other_owner_ctx, placed_order):
        for ctx in (other_customer_ctx, other_owner_ctx):
            with pytest.raises(ForbiddenError):
                order_service.get_order(ctx, placed_order.id)

    def test_list_orders_is_scoped(self, db_session, customer_ctx, other_customer_ctx, owner_ctx, other_owner_ctx, placed_order):
        assert order_service.list_orders(customer_ctx)[1] == 1
        assert order_service.list_orders(owner_ctx)[1] == 1
        assert order_service.list_orders(other_customer_ctx)[1] == 0
        assert order_service.list_orders(other_owner_ctx)[1] == 0

    def test_list_orders_filters(self, db_session, owner_ctx, placed_order):
        rows, total = order_service.list_orders(owner_ctx, status="order_placed", min_amount_cents=2500)
        assert total == 1
        assert rows[0].id == placed_order.id

        _, total = order_service.list_orders(owner_ctx, max_amount_cents=2499)
        assert total == 0

    def test_list_orders_rejects_bad_filter(self, db_session, owner_ctx, placed_order):
        with pytest.raises(ValidationError):
            order_service.list_orders(owner_ctx, status="SHIPPED")

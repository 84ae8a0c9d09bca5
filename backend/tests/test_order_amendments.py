# Overview: Pytest coverage for seller edits to PROCESSING orders.

"""
Order Amendment Tests

While an order is PROCESSING the seller may add, change and remove items
and change fees. Totals are recomputed with the same pricing used at
creation; every change leaves an audit row.
"""

import pytest

from shoptab.errors import ForbiddenError, NotFoundError, PolicyViolationError, ValidationError
from shoptab.models import CreditAccount, CreditTransaction, OrderItemModification, OrderModification
from shoptab.models.audit import (
    ITEM_PRICE_CHANGE,
    ITEM_QUANTITY_CHANGE,
    ITEM_STATUS_CHANGE,
    MOD_ADD_ITEM,
    MOD_CHANGE_FEES,
    MOD_REMOVE_ITEM,
    MOD_UPDATE_ITEM,
)
from shoptab.models.orders import (
    ITEM_ADDED_BY_SHOP,
    ITEM_MODIFIED_BY_SHOP,
    ITEM_REMOVED_BY_SHOP,
    ITEM_UNAVAILABLE,
    PAYMENT_PAID,
    PROCESSING,
)
from shoptab.services import order_amendment_service as amendments
from shoptab.services import order_lifecycle_service, order_service


@pytest.fixture
def processing_order(owner_ctx, placed_order):
    return order_lifecycle_service.update_status(owner_ctx, placed_order.id, status=PROCESSING)


def _mods(db_session, order_id):
    return db_session.query(OrderModification).filter_by(order_id=order_id).order_by(OrderModification.seq).all()


def _line(order, name):
    return next(i for i in order.items if i.product_name == name)


class TestAddItem:
    def test_add_catalog_item(self, db_session, owner_ctx, processing_order, oil):
        order = amendments.add_order_item(owner_ctx, processing_order.id, product_id=oil.id, quantity=1, reason="Customer called")

        added = _line(order, "Oil 1L")
        assert added.is_added_by_shop is True
        assert added.status == ITEM_ADDED_BY_SHOP
        assert order.subtotal_cents == 2500 + 1800
        assert order.discount_cents == 200
        assert order.total_cents == 2500 + 1600
        assert order.has_shop_modifications is True

        mods = _mods(db_session, order.id)
        assert [m.kind for m in mods] == [MOD_ADD_ITEM]
        assert mods[0].order_item_id == added.id
        assert mods[0].reason == "Customer called"
        assert mods[0].to_dict()["new_value"]["product_id"] == oil.id

    def test_add_with_custom_price(self, db_session, owner_ctx, processing_order, oil):
        order = amendments.add_order_item(
            owner_ctx, processing_order.id, product_id=oil.id, quantity=2,
            custom_unit_price_cents=1500, custom_discount_price_cents=1400,
        )
        assert order.total_cents == 2500 + 2 * 1400

    def test_discount_above_price_rejected(self, db_session, owner_ctx, processing_order, oil):
        with pytest.raises(ValidationError):
            amendments.add_order_item(
                owner_ctx, processing_order.id, product_id=oil.id, quantity=1,
                custom_unit_price_cents=1000, custom_discount_price_cents=1200,
            )

    def test_product_from_another_shop(self, db_session, owner_ctx, processing_order, foreign_product):
        with pytest.raises(NotFoundError):
            amendments.add_order_item(owner_ctx, processing_order.id, product_id=foreign_product.id, quantity=1)

    def test_only_while_processing(self, db_session, owner_ctx, placed_order, oil):
        with pytest.raises(PolicyViolationError) as exc:
            amendments.add_order_item(owner_ctx, placed_order.id, product_id=oil.id, quantity=1)
        assert exc.value.details["modifiable_in"] == [PROCESSING]

    def test_customer_cannot_amend(self, db_session, customer_ctx, processing_order, oil):
        with pytest.raises(ForbiddenError):
            amendments.add_order_item(customer_ctx, processing_order.id, product_id=oil.id, quantity=1)


class TestUpdateItem:
    def test_quantity_change(self, db_session, owner_ctx, processing_order):
        rice_line = _line(processing_order, "Rice 1kg")
        order = amendments.update_order_item(owner_ctx, processing_order.id, rice_line.id, quantity=3)

        rice_line = _line(order, "Rice 1kg")
        assert order.total_cents == 3000 + 500
        assert rice_line.status == ITEM_MODIFIED_BY_SHOP
        assert rice_line.is_modified_by_shop is True
        assert rice_line.original_quantity == 2

        item_mods = db_session.query(OrderItemModification).filter_by(order_item_id=rice_line.id).all()
        assert [(m.kind, m.to_dict()["old_value"], m.to_dict()["new_value"]) for m in item_mods] == [
            (ITEM_QUANTITY_CHANGE, "2", "3"),
        ]
        assert [m.kind for m in _mods(db_session, order.id)] == [MOD_UPDATE_ITEM]

    def test_price_change_keeps_original_baseline(self, db_session, owner_ctx, processing_order):
        rice_line = _line(processing_order, "Rice 1kg")
        amendments.update_order_item(owner_ctx, processing_order.id, rice_line.id, unit_price_cents=900)
        order = amendments.update_order_item(owner_ctx, processing_order.id, rice_line.id, unit_price_cents=800)

        rice_line = _line(order, "Rice 1kg")
        assert rice_line.original_unit_price_cents == 1000
        assert order.total_cents == 2 * 800 + 500

        kinds = [
            m.kind for m in db_session.query(OrderItemModification)
            .filter_by(order_item_id=rice_line.id)
            .order_by(OrderItemModification.seq)
        ]
        assert kinds == [ITEM_PRICE_CHANGE, ITEM_PRICE_CHANGE]

    def test_mark_unavailable_drops_from_totals(self, db_session, owner_ctx, processing_order):
        dal_line = _line(processing_order, "Dal 500g")
        order = amendments.update_order_item(
            owner_ctx, processing_order.id, dal_line.id, unavailable_reason="Out of stock today"
        )

        dal_line = _line(order, "Dal 500g")
        assert dal_line.status == ITEM_UNAVAILABLE
        assert dal_line.unavailable_reason == "Out of stock today"
        assert order.total_cents == 2000
        assert order.total_items == 1

    def test_nothing_to_update(self, db_session, owner_ctx, processing_order):
        with pytest.raises(ValidationError):
            amendments.update_order_item(owner_ctx, processing_order.id, processing_order.items[0].id)

    def test_unknown_item(self, db_session, owner_ctx, processing_order):
        with pytest.raises(NotFoundError):
            amendments.update_order_item(owner_ctx, processing_order.id, 987654, quantity=1)


class TestRemoveItem:
    def test_soft_remove(self, db_session, owner_ctx, processing_order):
        dal_line = _line(processing_order, "Dal 500g")
        order = amendments.remove_order_item(owner_ctx, processing_order.id, dal_line.id, reason="Damaged")

        dal_line = _line(order, "Dal 500g")
        assert dal_line.status == ITEM_REMOVED_BY_SHOP
        assert len(order.items) == 2
        assert order.total_cents == 2000

        item_mods = db_session.query(OrderItemModification).filter_by(order_item_id=dal_line.id).all()
        assert [m.kind for m in item_mods] == [ITEM_STATUS_CHANGE]
        assert [m.kind for m in _mods(db_session, order.id)] == [MOD_REMOVE_ITEM]

    def test_remove_twice_rejected(self, db_session, owner_ctx, processing_order):
        dal_id = _line(processing_order, "Dal 500g").id
        amendments.remove_order_item(owner_ctx, processing_order.id, dal_id)
        with pytest.raises(PolicyViolationError):
            amendments.remove_order_item(owner_ctx, processing_order.id, dal_id)

    def test_removed_item_cannot_be_updated(self, db_session, owner_ctx, processing_order):
        dal_id = _line(processing_order, "Dal 500g").id
        amendments.remove_order_item(owner_ctx, processing_order.id, dal_id)
        with pytest.raises(PolicyViolationError):
            amendments.update_order_item(owner_ctx, processing_order.id, dal_id, quantity=2)


class TestFees:
    def test_fee_change_recomputes_total(self, db_session, owner_ctx, processing_order):
        order = amendments.update_order_fees(
            owner_ctx, processing_order.id,
            delivery_fee_cents=300, extra_charges_cents=150, tax_cents=100, reason="Packaging",
        )

        assert order.total_cents == 2500 + 300 + 150 + 100
        assert order.total_cents == order_service.expected_total(order)

        mods = _mods(db_session, order.id)
        assert [m.kind for m in mods] == [MOD_CHANGE_FEES]
        payload = mods[0].to_dict()
        assert payload["old_value"]["total_cents"] == 2500
        assert payload["new_value"]["total_cents"] == 3050

    def test_negative_fee_rejected(self, db_session, owner_ctx, processing_order):
        with pytest.raises(ValidationError):
            amendments.update_order_fees(owner_ctx, processing_order.id, tax_cents=-5)

    def test_fees_frozen_after_packing(self, db_session, owner_ctx, processing_order):
        order_lifecycle_service.update_status(owner_ctx, processing_order.id, status="PACKED")
        with pytest.raises(PolicyViolationError):
            amendments.update_order_fees(owner_ctx, processing_order.id, delivery_fee_cents=100)


class TestRepricingConsistency:
    def test_amended_order_prices_like_a_fresh_one(self, db_session, owner_ctx, processing_order, oil):
        order = amendments.add_order_item(owner_ctx, processing_order.id, product_id=oil.id, quantity=2)
        order = amendments.update_order_fees(owner_ctx, order.id, delivery_fee_cents=250)

        stored = (order.subtotal_cents, order.discount_cents, order.total_cents)
        order_service.recalculate_order(order)
        assert (order.subtotal_cents, order.discount_cents, order.total_cents) == stored
        assert order.total_cents == order_service.expected_total(order)
        db_session.rollback()


class TestCreditOrders:
    def test_amending_does_not_repost_to_tab(self, db_session, customer, customer_ctx, owner_ctx, filled_cart, oil):
        order = order_service.create_order_from_cart(
            customer_ctx, filled_cart.id, order_type="SHOP_PICKUP", payment_method="CREDIT", customer_phone=customer.phone
        )
        order_lifecycle_service.update_status(owner_ctx, order.id, status=PROCESSING)

        order = amendments.add_order_item(owner_ctx, order.id, product_id=oil.id, quantity=1)

        assert order.total_cents == 2500 + 1600
        assert order.payment_status == PAYMENT_PAID
        account = db_session.query(CreditAccount).filter_by(shop_id=order.shop_id).one()
        assert account.current_balance_cents == 2500
        assert db_session.query(CreditTransaction).filter_by(credit_account_id=account.id).count() == 1

from __future__ import annotations

from ..extensions import db
from shoptab.time_utils import to_utc_z
from .cart import quantity_str

# Order status lifecycle
ORDER_PLACED = "ORDER_PLACED"
PROCESSING = "PROCESSING"
PACKED = "PACKED"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"
REFUNDED = "REFUNDED"
ORDER_STATUSES = (ORDER_PLACED, PROCESSING, PACKED, DELIVERED, CANCELLED, REFUNDED)
TERMINAL_STATUSES = (DELIVERED, CANCELLED, REFUNDED)

ORDER_TYPE_PICKUP = "SHOP_PICKUP"
ORDER_TYPE_DELIVERY = "HOME_DELIVERY"
ORDER_TYPES = (ORDER_TYPE_PICKUP, ORDER_TYPE_DELIVERY)

PAYMENT_CASH_ON_DELIVERY = "CASH_ON_DELIVERY"
PAYMENT_CASH_ON_PICKUP = "CASH_ON_PICKUP"
PAYMENT_CREDIT = "CREDIT"
PAYMENT_METHODS = (
    PAYMENT_CASH_ON_DELIVERY,
    PAYMENT_CASH_ON_PICKUP,
    "ONLINE_PAYMENT",
    "UPI",
    "CARD",
    "WALLET",
    PAYMENT_CREDIT,
)

PAYMENT_PENDING = "PENDING"
PAYMENT_PAID = "PAID"
PAYMENT_REFUNDED = "REFUNDED"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, "FAILED", PAYMENT_REFUNDED, "PARTIALLY_REFUNDED")

# Order item statuses
ITEM_AVAILABLE = "AVAILABLE"
ITEM_UNAVAILABLE = "UNAVAILABLE"
ITEM_ADDED_BY_SHOP = "ADDED_BY_SHOP"
ITEM_REMOVED_BY_SHOP = "REMOVED_BY_SHOP"
ITEM_MODIFIED_BY_SHOP = "MODIFIED_BY_SHOP"
ITEM_STATUSES = (ITEM_AVAILABLE, ITEM_UNAVAILABLE, ITEM_ADDED_BY_SHOP, ITEM_REMOVED_BY_SHOP, ITEM_MODIFIED_BY_SHOP)
# Items in these statuses do not count toward order totals
EXCLUDED_ITEM_STATUSES = (ITEM_UNAVAILABLE, ITEM_REMOVED_BY_SHOP)


class Order(db.Model):
    """
    Placed purchase, created exactly once from a cart.

    Items are frozen snapshots; the seller may amend items and fees while the
    order is PROCESSING. Status and seller edits are audited in append-only
    tables (see models.audit). Totals are always recomputed server-side:
    total = subtotal - discount + extra_charges + delivery_fee + tax.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_shop_status_created", "shop_id", "status", "created_at"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    # Source cart id (the cart row itself is deleted at checkout)
    cart_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PLACED, index=True)
    order_type = db.Column(db.String(16), nullable=False)

    # Pricing (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    extra_charges_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)
    total_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    # Pickup details
    pickup_date = db.Column(db.String(10), nullable=True)
    pickup_time = db.Column(db.String(16), nullable=True)
    pickup_notes = db.Column(db.Text, nullable=True)

    # Delivery details
    delivery_address = db.Column(db.Text, nullable=True)
    delivery_landmark = db.Column(db.String(255), nullable=True)
    delivery_pincode = db.Column(db.String(10), nullable=True)
    delivery_city = db.Column(db.String(100), nullable=True)
    delivery_state = db.Column(db.String(100), nullable=True)
    delivery_contact_number = db.Column(db.String(20), nullable=True)
    delivery_notes = db.Column(db.Text, nullable=True)

    # Settlement phone (credit account key)
    customer_phone = db.Column(db.String(20), nullable=True, index=True)

    payment_method = db.Column(db.String(32), nullable=False, index=True)
    payment_status = db.Column(db.String(24), nullable=False, default=PAYMENT_PENDING, index=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_transaction_id = db.Column(db.String(255), nullable=True)

    # Lifecycle timestamps
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    packed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    estimated_delivery_date = db.Column(db.String(10), nullable=True)
    estimated_delivery_time = db.Column(db.String(16), nullable=True)

    customer_notes = db.Column(db.Text, nullable=True)
    shop_notes = db.Column(db.Text, nullable=True)

    has_shop_modifications = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    shop = db.relationship("Shop")
    user = db.relationship("User", foreign_keys=[user_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "shop_id": self.shop_id,
            "cart_id": self.cart_id,
            "status": self.status,
            "order_type": self.order_type,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "extra_charges_cents": self.extra_charges_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "total_items": self.total_items,
            "total_quantity": quantity_str(self.total_quantity),
            "pickup": {
                "date": self.pickup_date,
                "time": self.pickup_time,
                "notes": self.pickup_notes,
            } if self.order_type == ORDER_TYPE_PICKUP else None,
            "delivery": {
                "address": self.delivery_address,
                "landmark": self.delivery_landmark,
                "pincode": self.delivery_pincode,
                "city": self.delivery_city,
                "state": self.delivery_state,
                "contact_number": self.delivery_contact_number,
                "notes": self.delivery_notes,
            } if self.order_type == ORDER_TYPE_DELIVERY else None,
            "customer_phone": self.customer_phone,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "payment_date": to_utc_z(self.payment_date),
            "payment_transaction_id": self.payment_transaction_id,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "processing_started_at": to_utc_z(self.processing_started_at),
            "packed_at": to_utc_z(self.packed_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "refunded_at": to_utc_z(self.refunded_at),
            "cancellation_reason": self.cancellation_reason,
            "estimated_delivery_date": self.estimated_delivery_date,
            "estimated_delivery_time": self.estimated_delivery_time,
            "customer_notes": self.customer_notes,
            "shop_notes": self.shop_notes,
            "has_shop_modifications": self.has_shop_modifications,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Frozen product snapshot on an order; product_id survives product deletion as NULL."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_image = db.Column(db.Text, nullable=True)
    product_sku = db.Column(db.String(100), nullable=False, default="")
    product_specs = db.Column(db.JSON, nullable=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_discount_price_cents = db.Column(db.Integer, nullable=True)
    item_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(24), nullable=False, default=ITEM_AVAILABLE)
    unavailable_reason = db.Column(db.String(255), nullable=True)
    is_added_by_shop = db.Column(db.Boolean, nullable=False, default=False)
    is_modified_by_shop = db.Column(db.Boolean, nullable=False, default=False)

    # Pre-edit baseline, captured on first seller change
    original_cart_item_id = db.Column(db.Integer, nullable=True)
    original_quantity = db.Column(db.Numeric(12, 3), nullable=True)
    original_unit_price_cents = db.Column(db.Integer, nullable=True)

    customer_notes = db.Column(db.Text, nullable=True)
    shop_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    order = db.relationship("Order", back_populates="items")

    @property
    def final_unit_price_cents(self) -> int:
        if self.unit_discount_price_cents is not None:
            return self.unit_discount_price_cents
        return self.unit_price_cents

    @property
    def counts_toward_total(self) -> bool:
        return self.status not in EXCLUDED_ITEM_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "product_sku": self.product_sku,
            "product_specs": self.product_specs,
            "quantity": quantity_str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "unit_discount_price_cents": self.unit_discount_price_cents,
            "final_unit_price_cents": self.final_unit_price_cents,
            "item_discount_cents": self.item_discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "status": self.status,
            "unavailable_reason": self.unavailable_reason,
            "is_added_by_shop": self.is_added_by_shop,
            "is_modified_by_shop": self.is_modified_by_shop,
            "original_cart_item_id": self.original_cart_item_id,
            "original_quantity": quantity_str(self.original_quantity),
            "original_unit_price_cents": self.original_unit_price_cents,
            "customer_notes": self.customer_notes,
            "shop_notes": self.shop_notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderSequence(db.Model):
    """
    Per-(shop, day) order number counter.

    Allocation is an atomic UPDATE ... SET next_number = next_number + 1, so
    concurrent checkouts in the same shop never read the same value.
    """
    __tablename__ = "order_sequences"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "date_key", name="uq_order_sequences_shop_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    date_key = db.Column(db.String(6), nullable=False)  # YYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "date_key": self.date_key,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }

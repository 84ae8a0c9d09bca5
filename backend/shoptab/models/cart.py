from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

CART_STATUS_ACTIVE = "ACTIVE"
CART_STATUS_ABANDONED = "ABANDONED"
CART_STATUS_CHECKED_OUT = "CHECKED_OUT"
VALID_CART_STATUSES = (CART_STATUS_ACTIVE, CART_STATUS_ABANDONED, CART_STATUS_CHECKED_OUT)


def quantity_str(value) -> str | None:
    if value is None:
        return None
    return format(value.normalize(), "f") if hasattr(value, "normalize") else str(value)


class Cart(db.Model):
    """
    Mutable per-(customer, shop) staging area.

    Aggregates (subtotal, totals, counts) are derived from the item set and
    recomputed by the cart service after every mutation; nothing writes them
    directly. At most one ACTIVE cart exists per (user, shop), enforced by a
    partial unique index.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.Index(
            "uq_carts_active_user_shop",
            "user_id",
            "shop_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
        db.Index("ix_carts_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=CART_STATUS_ACTIVE, index=True)

    # Derived aggregates (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)  # cart-level discount
    item_savings_cents = db.Column(db.Integer, nullable=False, default=0)  # sum of per-item savings
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)
    total_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    session_id = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    items = db.relationship(
        "CartItem",
        back_populates="cart",
        order_by="CartItem.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    shop = db.relationship("Shop")

    @property
    def is_active(self) -> bool:
        return self.status == CART_STATUS_ACTIVE

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "shop_id": self.shop_id,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "item_savings_cents": self.item_savings_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "total_items": self.total_items,
            "total_quantity": quantity_str(self.total_quantity),
            "session_id": self.session_id,
            "notes": self.notes,
            "last_activity_at": to_utc_z(self.last_activity_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class CartItem(db.Model):
    """
    One product line in a cart with a frozen product snapshot.

    The snapshot (name, image, sku, specs, prices) is taken at add/update
    time and only refreshed by an explicit cart refresh.
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False, default=1)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    unit_discount_price_cents = db.Column(db.Integer, nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)  # savings vs unit price
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)

    # Product snapshot
    product_name = db.Column(db.String(255), nullable=False)
    product_image = db.Column(db.Text, nullable=True)
    product_sku = db.Column(db.String(100), nullable=False, default="")
    product_specs = db.Column(db.JSON, nullable=True)

    is_available = db.Column(db.Boolean, nullable=False, default=True)
    unavailable_reason = db.Column(db.String(255), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    cart = db.relationship("Cart", back_populates="items")

    @property
    def final_unit_price_cents(self) -> int:
        if self.unit_discount_price_cents is not None:
            return self.unit_discount_price_cents
        return self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "product_id": self.product_id,
            "quantity": quantity_str(self.quantity),
            "unit_price_cents": self.unit_price_cents,
            "unit_discount_price_cents": self.unit_discount_price_cents,
            "final_unit_price_cents": self.final_unit_price_cents,
            "discount_cents": self.discount_cents,
            "subtotal_cents": self.subtotal_cents,
            "product_name": self.product_name,
            "product_image": self.product_image,
            "product_sku": self.product_sku,
            "product_specs": self.product_specs,
            "is_available": self.is_available,
            "unavailable_reason": self.unavailable_reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

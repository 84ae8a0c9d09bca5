from __future__ import annotations

import json

from ..extensions import db
from shoptab.time_utils import to_utc_z

# Order-level modification kinds
MOD_ADD_ITEM = "ADD_ITEM"
MOD_REMOVE_ITEM = "REMOVE_ITEM"
MOD_UPDATE_ITEM = "UPDATE_ITEM"
MOD_CHANGE_FEES = "CHANGE_FEES"
MOD_PAYMENT_METHOD = "PAYMENT_METHOD"
ORDER_MODIFICATION_KINDS = (MOD_ADD_ITEM, MOD_REMOVE_ITEM, MOD_UPDATE_ITEM, MOD_CHANGE_FEES, MOD_PAYMENT_METHOD)

# Item-level modification kinds
ITEM_QUANTITY_CHANGE = "QUANTITY_CHANGE"
ITEM_PRICE_CHANGE = "PRICE_CHANGE"
ITEM_DISCOUNT_APPLIED = "DISCOUNT_APPLIED"
ITEM_STATUS_CHANGE = "STATUS_CHANGE"
ITEM_MODIFICATION_KINDS = (ITEM_QUANTITY_CHANGE, ITEM_PRICE_CHANGE, ITEM_DISCOUNT_APPLIED, ITEM_STATUS_CHANGE)


def _load(raw):
    if raw is None:
        return None
    return json.loads(raw)


class OrderStatusHistory(db.Model):
    """Append-only: one row per order status change, ordered by seq."""
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.UniqueConstraint("order_id", "seq", name="uq_order_status_history_order_seq"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    seq = db.Column(db.Integer, nullable=False)

    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    notes = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "seq": self.seq,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_user_id": self.actor_user_id,
            "notes": self.notes,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class OrderModification(db.Model):
    """
    Append-only seller edit log at order level.

    old_value/new_value hold JSON text so a fee change, an item snapshot or a
    payment method all fit the same row shape.
    """
    __tablename__ = "order_modifications"
    __table_args__ = (
        db.UniqueConstraint("order_id", "seq", name="uq_order_modifications_order_seq"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    seq = db.Column(db.Integer, nullable=False)

    kind = db.Column(db.String(24), nullable=False, index=True)
    field = db.Column(db.String(64), nullable=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "seq": self.seq,
            "kind": self.kind,
            "field": self.field,
            "order_item_id": self.order_item_id,
            "old_value": _load(self.old_value),
            "new_value": _load(self.new_value),
            "reason": self.reason,
            "notes": self.notes,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class OrderItemModification(db.Model):
    """Append-only per-item change log (quantity, price, discount, status)."""
    __tablename__ = "order_item_modifications"
    __table_args__ = (
        db.UniqueConstraint("order_item_id", "seq", name="uq_order_item_modifications_item_seq"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    seq = db.Column(db.Integer, nullable=False)

    kind = db.Column(db.String(24), nullable=False)
    old_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "seq": self.seq,
            "kind": self.kind,
            "old_value": _load(self.old_value),
            "new_value": _load(self.new_value),
            "reason": self.reason,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }

# Overview: Append-only audit trail for order status changes and seller edits.

"""
Order audit trail.

Rows are only ever inserted. Each parent (order or order item) has its own
dense `seq` numbering so history reads back in the order it was written,
with a unique (parent, seq) constraint backing it.
"""

from __future__ import annotations

import json

from sqlalchemy import func

from ..extensions import db
from ..models import OrderItem, OrderItemModification, OrderModification, OrderStatusHistory
from shoptab.time_utils import utcnow


def _dump(value):
    if value is None:
        return None
    return json.dumps(value, default=str, sort_keys=True)


def _next_seq(column, parent_column, parent_id: int) -> int:
    current = db.session.query(func.max(column)).filter(parent_column == parent_id).scalar()
    return (current or 0) + 1


def append_status_change(
    *,
    order_id: int,
    from_status: str | None,
    to_status: str,
    actor_user_id: int | None,
    notes: str | None = None,
) -> OrderStatusHistory:
    entry = OrderStatusHistory(
        order_id=order_id,
        seq=_next_seq(OrderStatusHistory.seq, OrderStatusHistory.order_id, order_id),
        from_status=from_status,
        to_status=to_status,
        actor_user_id=actor_user_id,
        notes=notes,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def append_order_modification(
    *,
    order_id: int,
    kind: str,
    actor_user_id: int | None,
    field: str | None = None,
    old_value=None,
    new_value=None,
    order_item_id: int | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> OrderModification:
    entry = OrderModification(
        order_id=order_id,
        seq=_next_seq(OrderModification.seq, OrderModification.order_id, order_id),
        kind=kind,
        field=field,
        order_item_id=order_item_id,
        old_value=_dump(old_value),
        new_value=_dump(new_value),
        reason=reason,
        notes=notes,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def append_item_modification(
    *,
    order_item_id: int,
    kind: str,
    actor_user_id: int | None,
    old_value=None,
    new_value=None,
    reason: str | None = None,
) -> OrderItemModification:
    entry = OrderItemModification(
        order_item_id=order_item_id,
        seq=_next_seq(OrderItemModification.seq, OrderItemModification.order_item_id, order_item_id),
        kind=kind,
        old_value=_dump(old_value),
        new_value=_dump(new_value),
        reason=reason,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def get_status_history(order_id: int) -> list[OrderStatusHistory]:
    return (
        db.session.query(OrderStatusHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.seq.asc())
        .all()
    )


def get_order_modifications(order_id: int) -> list[OrderModification]:
    return (
        db.session.query(OrderModification)
        .filter_by(order_id=order_id)
        .order_by(OrderModification.seq.asc())
        .all()
    )


def get_item_modifications(order_item_id: int) -> list[OrderItemModification]:
    return (
        db.session.query(OrderItemModification)
        .filter_by(order_item_id=order_item_id)
        .order_by(OrderItemModification.seq.asc())
        .all()
    )


def get_order_history(order_id: int) -> dict:
    """Full audit view of an order: status changes, order edits, item edits."""
    item_ids = [row.id for row in db.session.query(OrderItem.id).filter_by(order_id=order_id).all()]
    item_mods = []
    if item_ids:
        item_mods = (
            db.session.query(OrderItemModification)
            .filter(OrderItemModification.order_item_id.in_(item_ids))
            .order_by(OrderItemModification.order_item_id.asc(), OrderItemModification.seq.asc())
            .all()
        )
    return {
        "status_history": [e.to_dict() for e in get_status_history(order_id)],
        "modifications": [e.to_dict() for e in get_order_modifications(order_id)],
        "item_modifications": [e.to_dict() for e in item_mods],
    }

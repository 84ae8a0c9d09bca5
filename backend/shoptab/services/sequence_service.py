# Overview: Per-(shop, day) order number allocation.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ValidationError
from ..models import OrderSequence
from shoptab.time_utils import order_date_key


def format_order_number(prefix: str, date_key: str, shop_id: int, number: int) -> str:
    """ORD + YYMMDD + shop (3 digits) + daily sequence (4 digits)."""
    return f"{prefix}{date_key}{shop_id:03d}{number:04d}"


def _bump(shop_id: int, date_key: str) -> int | None:
    stmt = (
        update(OrderSequence)
        .where(OrderSequence.shop_id == shop_id, OrderSequence.date_key == date_key)
        .values(next_number=OrderSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(OrderSequence.next_number)
        .filter_by(shop_id=shop_id, date_key=date_key)
        .scalar()
    )
    return current - 1


def next_order_number(shop_id: int, *, moment: datetime | None = None) -> str:
    """
    Atomically allocate the next order number for a shop and day.

    Runs inside the caller's transaction. The counter row is bumped with a
    single UPDATE; the first order of the day inserts the row under a
    savepoint and falls back to the UPDATE if another writer won the insert.
    """
    if not shop_id:
        raise ValidationError("shop_id is required")

    date_key = order_date_key(moment)
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "ORD")

    number = _bump(shop_id, date_key)
    if number is None:
        try:
            with db.session.begin_nested():
                db.session.add(OrderSequence(shop_id=shop_id, date_key=date_key, next_number=2))
            number = 1
        except IntegrityError:
            number = _bump(shop_id, date_key)
            if number is None:
                raise

    return format_order_number(prefix, date_key, shop_id, number)

# Overview: Per-(shop, customer phone) credit ledger with limit enforcement.

"""
Credit Ledger Service

A shop extends credit ("a tab") to a customer identified by phone number.
Every posting is an immutable CreditTransaction carrying the balance right
after it, so the ledger can be replayed and verified.

CONCURRENCY:
- Postings lock the account row (SELECT ... FOR UPDATE; BEGIN IMMEDIATE on
  SQLite) before reading the balance, so two concurrent postings can never
  both read the same balance and lose an update
- version_id on the account is a second, optimistic guard
- Lock/stale conflicts are retried by run_with_retry

RULES:
- Amounts are positive integer cents
- CREDIT requires an ACTIVE account and, when credit_limit_cents > 0,
  balance + amount <= limit
- PAYMENT cannot exceed the current balance
- An order is posted to credit at most once
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, NotFoundError, PolicyViolationError, ValidationError
from ..models import CreditAccount, CreditTransaction, Order
from ..models.credit import (
    ACCOUNT_ACTIVE,
    ACCOUNT_STATUSES,
    SOURCE_MANUAL,
    SOURCE_ORDER,
    TRANSACTION_SOURCES,
    TRANSACTION_TYPES,
    TXN_CREDIT,
    TXN_PAYMENT,
)
from ..money import format_cents
from ..validation import coerce_cents, coerce_choice, strip_phone
from shoptab.time_utils import utcnow
from . import notification_service
from .authorization import AuthContext, ensure_shop_owner
from .concurrency import lock_for_update, run_in_transaction

_PHONE_RE = re.compile(r"^\+?[0-9]{6,15}$")

ACCOUNT_SORT_FIELDS = {
    "created_at": CreditAccount.created_at,
    "updated_at": CreditAccount.updated_at,
    "current_balance_cents": CreditAccount.current_balance_cents,
    "customer_nickname": CreditAccount.customer_nickname,
    "last_credit_at": CreditAccount.last_credit_at,
}

RECENT_TRANSACTIONS = 10


def normalize_phone(phone) -> str:
    """Strip separators; phones are the account key so must compare exactly."""
    cleaned = strip_phone(phone)
    if not _PHONE_RE.match(cleaned):
        raise ValidationError("customer_phone must be a valid phone number", {"field": "customer_phone"})
    return cleaned


def _order_clause(column, sort_order: str | None):
    return column.asc() if str(sort_order or "").lower() == "asc" else column.desc()


# =============================================================================
# Locked posting helpers (caller owns the transaction)
# =============================================================================

def lock_account(shop_id: int, account_id: int) -> CreditAccount:
    account = (
        lock_for_update(db.session.query(CreditAccount).filter_by(id=account_id, shop_id=shop_id))
        .populate_existing()
        .first()
    )
    if not account:
        raise NotFoundError("Credit account not found", {"shop_id": shop_id, "account_id": account_id})
    return account


def credit_limit_violation(account: CreditAccount, amount_cents: int) -> PolicyViolationError | None:
    """The error a credit of amount_cents would raise, or None if it fits."""
    if not account.has_limit:
        return None
    new_balance = account.current_balance_cents + amount_cents
    if new_balance <= account.credit_limit_cents:
        return None
    available = max(0, account.credit_limit_cents - account.current_balance_cents)
    return PolicyViolationError(
        f"Credit limit exceeded: available {format_cents(available)}, required {format_cents(amount_cents)}",
        {
            "credit_account_id": account.id,
            "required": amount_cents,
            "available": available,
            "shortfall": amount_cents - available,
            "credit_limit_cents": account.credit_limit_cents,
            "current_balance_cents": account.current_balance_cents,
        },
    )


def _post_credit_locked(
    account: CreditAccount,
    amount_cents: int,
    *,
    actor_user_id: int | None,
    remarks: str | None = None,
    order_id: int | None = None,
) -> CreditTransaction:
    if not account.is_active:
        raise PolicyViolationError(
            "Credit account is not active",
            {"credit_account_id": account.id, "status": account.status},
        )

    if order_id is not None:
        order = db.session.get(Order, order_id)
        if not order or order.shop_id != account.shop_id:
            raise NotFoundError("Order not found", {"order_id": order_id})
        existing = db.session.query(CreditTransaction.id).filter_by(order_id=order_id).first()
        if existing:
            raise ConflictError(
                "Credit has already been added for this order",
                {"order_id": order_id, "transaction_id": existing.id},
            )

    violation = credit_limit_violation(account, amount_cents)
    if violation:
        raise violation

    now = utcnow()
    account.total_credit_cents += amount_cents
    account.current_balance_cents = account.total_credit_cents - account.total_paid_cents
    account.last_credit_at = now

    txn = CreditTransaction(
        credit_account_id=account.id,
        transaction_type=TXN_CREDIT,
        transaction_source=SOURCE_ORDER if order_id is not None else SOURCE_MANUAL,
        amount_cents=amount_cents,
        remarks=remarks,
        order_id=order_id,
        balance_after_cents=account.current_balance_cents,
        created_by_user_id=actor_user_id,
        created_at=now,
    )
    db.session.add(txn)
    try:
        db.session.flush()
    except IntegrityError:
        raise ConflictError("Credit has already been added for this order", {"order_id": order_id})

    current_app.logger.info(
        "credit posted shop=%s account=%s amount=%s order=%s balance=%s",
        account.shop_id, account.id, amount_cents, order_id, account.current_balance_cents,
    )
    notification_service.enqueue(notification_service.credit_added(account, txn))
    return txn


def _post_payment_locked(
    account: CreditAccount,
    amount_cents: int,
    *,
    actor_user_id: int | None,
    remarks: str | None = None,
) -> CreditTransaction:
    if amount_cents > account.current_balance_cents:
        raise PolicyViolationError(
            "Payment amount cannot exceed current balance",
            {
                "credit_account_id": account.id,
                "amount_cents": amount_cents,
                "current_balance_cents": account.current_balance_cents,
            },
        )

    now = utcnow()
    account.total_paid_cents += amount_cents
    account.current_balance_cents = account.total_credit_cents - account.total_paid_cents
    account.last_payment_at = now

    txn = CreditTransaction(
        credit_account_id=account.id,
        transaction_type=TXN_PAYMENT,
        transaction_source=SOURCE_MANUAL,
        amount_cents=amount_cents,
        remarks=remarks,
        balance_after_cents=account.current_balance_cents,
        created_by_user_id=actor_user_id,
        created_at=now,
    )
    db.session.add(txn)
    db.session.flush()

    current_app.logger.info(
        "payment posted shop=%s account=%s amount=%s balance=%s",
        account.shop_id, account.id, amount_cents, account.current_balance_cents,
    )
    notification_service.enqueue(notification_service.payment_received(account, txn))
    return txn


def find_account_by_phone(shop_id: int, phone: str) -> CreditAccount | None:
    return (
        db.session.query(CreditAccount)
        .filter_by(shop_id=shop_id, customer_phone=normalize_phone(phone))
        .first()
    )


def post_order_credit(order: Order, phone: str, *, actor_user_id: int | None, customer_name: str | None = None) -> CreditTransaction:
    """
    Put an order on the (shop, phone) tab inside the caller's transaction.

    The account is created on first use. Any failure propagates so the
    order creation that called this rolls back with it.
    """
    phone = normalize_phone(phone)
    account = find_account_by_phone(order.shop_id, phone)
    if account is None:
        account = CreditAccount(
            shop_id=order.shop_id,
            customer_phone=phone,
            customer_nickname=customer_name or f"Customer-{phone}",
            customer_name=customer_name,
            notes=f"Auto-created for order {order.order_number}",
            status=ACCOUNT_ACTIVE,
        )
        db.session.add(account)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError("Credit account already exists for this customer", {"customer_phone": phone})

    account = lock_account(order.shop_id, account.id)
    return _post_credit_locked(
        account,
        order.total_cents,
        actor_user_id=actor_user_id,
        remarks=f"Order {order.order_number} - {order.total_items} items",
        order_id=order.id,
    )


# =============================================================================
# Accounts
# =============================================================================

def create_credit_account(
    ctx: AuthContext,
    shop_id: int,
    *,
    customer_phone: str,
    customer_nickname: str | None = None,
    customer_name: str | None = None,
    credit_limit_cents=0,
    notes: str | None = None,
) -> CreditAccount:
    phone = normalize_phone(customer_phone)
    limit = coerce_cents(credit_limit_cents or 0, "credit_limit_cents")

    def _op():
        ensure_shop_owner(ctx, shop_id)
        if find_account_by_phone(shop_id, phone):
            raise ConflictError(
                "Credit account already exists for this customer in this shop",
                {"shop_id": shop_id, "customer_phone": phone},
            )
        account = CreditAccount(
            shop_id=shop_id,
            customer_phone=phone,
            customer_nickname=customer_nickname,
            customer_name=customer_name,
            credit_limit_cents=limit,
            notes=notes,
            status=ACCOUNT_ACTIVE,
        )
        db.session.add(account)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(
                "Credit account already exists for this customer in this shop",
                {"shop_id": shop_id, "customer_phone": phone},
            )
        return account

    return run_in_transaction(_op)


def get_credit_account(ctx: AuthContext, shop_id: int, account_id: int) -> CreditAccount:
    ensure_shop_owner(ctx, shop_id)
    account = db.session.query(CreditAccount).filter_by(id=account_id, shop_id=shop_id).first()
    if not account:
        raise NotFoundError("Credit account not found", {"shop_id": shop_id, "account_id": account_id})
    return account


def get_credit_account_by_phone(ctx: AuthContext, shop_id: int, phone: str) -> CreditAccount:
    ensure_shop_owner(ctx, shop_id)
    account = find_account_by_phone(shop_id, phone)
    if not account:
        raise NotFoundError("Credit account not found for this customer", {"shop_id": shop_id})
    return account


def list_credit_accounts(
    ctx: AuthContext,
    shop_id: int,
    *,
    phone: str | None = None,
    nickname: str | None = None,
    status: str | None = None,
    sort_by: str = "updated_at",
    sort_order: str = "desc",
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[CreditAccount], int]:
    ensure_shop_owner(ctx, shop_id)
    query = db.session.query(CreditAccount).filter(CreditAccount.shop_id == shop_id)
    if phone:
        query = query.filter(CreditAccount.customer_phone.like(f"%{phone.strip()}%"))
    if nickname:
        query = query.filter(CreditAccount.customer_nickname.ilike(f"%{nickname.strip()}%"))
    if status:
        query = query.filter(CreditAccount.status == coerce_choice(status, "status", ACCOUNT_STATUSES))

    column = ACCOUNT_SORT_FIELDS.get(sort_by)
    if column is None:
        raise ValidationError(f"Invalid sort_by: {sort_by}", {"allowed": sorted(ACCOUNT_SORT_FIELDS)})

    total = query.count()
    rows = query.order_by(_order_clause(column, sort_order), CreditAccount.id.desc()).limit(limit).offset(offset).all()
    return rows, total


def update_credit_account(ctx: AuthContext, shop_id: int, account_id: int, **changes) -> CreditAccount:
    """Nickname, name, limit, status and notes; balances are never set directly."""
    patch = {}
    for key in ("customer_nickname", "customer_name", "notes"):
        if key in changes:
            patch[key] = changes[key]
    if changes.get("credit_limit_cents") is not None:
        patch["credit_limit_cents"] = coerce_cents(changes["credit_limit_cents"], "credit_limit_cents")
    if changes.get("status") is not None:
        patch["status"] = coerce_choice(changes["status"], "status", ACCOUNT_STATUSES)

    def _op():
        ensure_shop_owner(ctx, shop_id)
        account = lock_account(shop_id, account_id)
        for key, value in patch.items():
            setattr(account, key, value)
        return account

    return run_in_transaction(_op, write_lock=True)


# =============================================================================
# Postings
# =============================================================================

def add_credit(
    ctx: AuthContext,
    shop_id: int,
    account_id: int,
    *,
    amount_cents,
    remarks: str | None = None,
    order_id: int | None = None,
) -> CreditTransaction:
    amount = coerce_cents(amount_cents, "amount_cents", allow_zero=False)

    def _op():
        ensure_shop_owner(ctx, shop_id)
        account = lock_account(shop_id, account_id)
        return _post_credit_locked(
            account,
            amount,
            actor_user_id=ctx.user_id,
            remarks=remarks,
            order_id=order_id,
        )

    return run_in_transaction(_op, write_lock=True)


def add_payment(
    ctx: AuthContext,
    shop_id: int,
    account_id: int,
    *,
    amount_cents,
    remarks: str | None = None,
) -> CreditTransaction:
    amount = coerce_cents(amount_cents, "amount_cents", allow_zero=False)

    def _op():
        ensure_shop_owner(ctx, shop_id)
        account = lock_account(shop_id, account_id)
        return _post_payment_locked(account, amount, actor_user_id=ctx.user_id, remarks=remarks)

    return run_in_transaction(_op, write_lock=True)


# =============================================================================
# Reads
# =============================================================================

def list_transactions(
    ctx: AuthContext,
    shop_id: int,
    *,
    account_id: int | None = None,
    transaction_type: str | None = None,
    transaction_source: str | None = None,
    phone: str | None = None,
    sort_order: str = "desc",
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[CreditTransaction], int]:
    ensure_shop_owner(ctx, shop_id)
    query = (
        db.session.query(CreditTransaction)
        .join(CreditAccount, CreditAccount.id == CreditTransaction.credit_account_id)
        .filter(CreditAccount.shop_id == shop_id)
    )
    if account_id is not None:
        get_credit_account(ctx, shop_id, account_id)
        query = query.filter(CreditTransaction.credit_account_id == account_id)
    if transaction_type:
        query = query.filter(
            CreditTransaction.transaction_type == coerce_choice(transaction_type, "transaction_type", TRANSACTION_TYPES)
        )
    if transaction_source:
        query = query.filter(
            CreditTransaction.transaction_source == coerce_choice(transaction_source, "transaction_source", TRANSACTION_SOURCES)
        )
    if phone:
        query = query.filter(CreditAccount.customer_phone.like(f"%{phone.strip()}%"))

    total = query.count()
    rows = (
        query.order_by(_order_clause(CreditTransaction.created_at, sort_order), _order_clause(CreditTransaction.id, sort_order))
        .limit(limit)
        .offset(offset)
        .all()
    )
    return rows, total


def get_credit_summary(ctx: AuthContext, shop_id: int) -> dict:
    ensure_shop_owner(ctx, shop_id)
    stats = (
        db.session.query(
            func.count(CreditAccount.id),
            func.coalesce(func.sum(case((CreditAccount.status == ACCOUNT_ACTIVE, 1), else_=0)), 0),
            func.coalesce(func.sum(CreditAccount.total_credit_cents), 0),
            func.coalesce(func.sum(CreditAccount.total_paid_cents), 0),
            func.coalesce(func.sum(CreditAccount.current_balance_cents), 0),
        )
        .filter(CreditAccount.shop_id == shop_id)
        .one()
    )
    recent, _ = list_transactions(ctx, shop_id, limit=RECENT_TRANSACTIONS)
    return {
        "shop_id": shop_id,
        "total_accounts": int(stats[0] or 0),
        "active_accounts": int(stats[1] or 0),
        "total_credit_cents": int(stats[2] or 0),
        "total_paid_cents": int(stats[3] or 0),
        "total_outstanding_cents": int(stats[4] or 0),
        "recent_transactions": [t.to_dict() for t in recent],
    }


def list_customer_accounts(ctx: AuthContext) -> list[CreditAccount]:
    """The caller's tabs across every shop, keyed by their phone."""
    if not ctx.phone:
        return []
    return (
        db.session.query(CreditAccount)
        .filter(CreditAccount.customer_phone == normalize_phone(ctx.phone))
        .order_by(CreditAccount.updated_at.desc(), CreditAccount.id.desc())
        .all()
    )


def list_customer_transactions(ctx: AuthContext, shop_id: int | None = None) -> list[CreditTransaction]:
    if not ctx.phone:
        return []
    query = (
        db.session.query(CreditTransaction)
        .join(CreditAccount, CreditAccount.id == CreditTransaction.credit_account_id)
        .filter(CreditAccount.customer_phone == normalize_phone(ctx.phone))
    )
    if shop_id is not None:
        query = query.filter(CreditAccount.shop_id == shop_id)
    return query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc()).all()


def verify_ledger(account_id: int) -> dict:
    """
    Replay an account's transactions in order and compare against the
    stored running balances and account totals.
    """
    account = db.session.get(CreditAccount, account_id)
    if not account:
        raise NotFoundError("Credit account not found", {"account_id": account_id})

    txns = (
        db.session.query(CreditTransaction)
        .filter_by(credit_account_id=account_id)
        .order_by(CreditTransaction.id.asc())
        .all()
    )

    problems = []
    credit = paid = 0
    for txn in txns:
        if txn.transaction_type == TXN_CREDIT:
            credit += txn.amount_cents
        else:
            paid += txn.amount_cents
        balance = credit - paid
        if txn.balance_after_cents != balance:
            problems.append({
                "transaction_id": txn.id,
                "expected_balance_cents": balance,
                "recorded_balance_cents": txn.balance_after_cents,
            })

    for field, expected in (
        ("total_credit_cents", credit),
        ("total_paid_cents", paid),
        ("current_balance_cents", credit - paid),
    ):
        actual = getattr(account, field)
        if actual != expected:
            problems.append({"field": field, "expected": expected, "actual": actual})

    return {
        "credit_account_id": account.id,
        "transactions": len(txns),
        "ok": not problems,
        "problems": problems,
    }


def list_account_ids(shop_id: int | None = None) -> list[int]:
    query = db.session.query(CreditAccount.id)
    if shop_id is not None:
        query = query.filter(CreditAccount.shop_id == shop_id)
    return [row.id for row in query.order_by(CreditAccount.id.asc()).all()]

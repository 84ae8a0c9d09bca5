from __future__ import annotations

from ..extensions import db
from shoptab.time_utils import to_utc_z

ACCOUNT_ACTIVE = "ACTIVE"
ACCOUNT_SUSPENDED = "SUSPENDED"
ACCOUNT_CLOSED = "CLOSED"
ACCOUNT_STATUSES = (ACCOUNT_ACTIVE, ACCOUNT_SUSPENDED, ACCOUNT_CLOSED)

TXN_CREDIT = "CREDIT"
TXN_PAYMENT = "PAYMENT"
TRANSACTION_TYPES = (TXN_CREDIT, TXN_PAYMENT)

SOURCE_ORDER = "ORDER"
SOURCE_MANUAL = "MANUAL"
TRANSACTION_SOURCES = (SOURCE_ORDER, SOURCE_MANUAL)


class CreditAccount(db.Model):
    """
    Per-(shop, customer phone) running tab.

    The phone is the natural key so walk-in customers without a user record
    can still carry a balance. current_balance_cents is always
    total_credit_cents - total_paid_cents and, when credit_limit_cents > 0,
    never exceeds the limit after a posting (checked under the row lock, not
    by a DB constraint).
    """
    __tablename__ = "credit_accounts"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "customer_phone", name="uq_credit_accounts_shop_phone"),
        db.Index("ix_credit_accounts_shop_status", "shop_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    customer_phone = db.Column(db.String(20), nullable=False, index=True)
    customer_nickname = db.Column(db.String(100), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    total_credit_cents = db.Column(db.Integer, nullable=False, default=0)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)  # 0 = unlimited

    status = db.Column(db.String(16), nullable=False, default=ACCOUNT_ACTIVE, index=True)
    notes = db.Column(db.Text, nullable=True)

    last_credit_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_payment_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    shop = db.relationship("Shop", backref=db.backref("credit_accounts", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == ACCOUNT_ACTIVE

    @property
    def has_limit(self) -> bool:
        return self.credit_limit_cents > 0

    @property
    def available_credit_cents(self) -> int | None:
        """Headroom under the limit; None when the account is unlimited."""
        if not self.has_limit:
            return None
        return max(0, self.credit_limit_cents - self.current_balance_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "customer_phone": self.customer_phone,
            "customer_nickname": self.customer_nickname,
            "customer_name": self.customer_name,
            "total_credit_cents": self.total_credit_cents,
            "total_paid_cents": self.total_paid_cents,
            "current_balance_cents": self.current_balance_cents,
            "credit_limit_cents": self.credit_limit_cents,
            "available_credit_cents": self.available_credit_cents,
            "status": self.status,
            "notes": self.notes,
            "last_credit_at": to_utc_z(self.last_credit_at),
            "last_payment_at": to_utc_z(self.last_payment_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CreditTransaction(db.Model):
    """
    Immutable ledger posting.

    balance_after_cents snapshots the running balance so the ledger can be
    replayed and verified. order_id is UNIQUE: an order is posted to credit
    at most once.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_credit_transactions_order"),
        db.Index("ix_credit_transactions_account_created", "credit_account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_account_id = db.Column(db.Integer, db.ForeignKey("credit_accounts.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # CREDIT, PAYMENT
    transaction_source = db.Column(db.String(16), nullable=False, default=SOURCE_MANUAL)  # ORDER, MANUAL
    amount_cents = db.Column(db.Integer, nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    account = db.relationship("CreditAccount", backref=db.backref("transactions", lazy=True, order_by="CreditTransaction.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_account_id": self.credit_account_id,
            "transaction_type": self.transaction_type,
            "transaction_source": self.transaction_source,
            "amount_cents": self.amount_cents,
            "remarks": self.remarks,
            "order_id": self.order_id,
            "balance_after_cents": self.balance_after_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }

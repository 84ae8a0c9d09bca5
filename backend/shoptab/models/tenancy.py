from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

ROLE_CUSTOMER = "customer"
ROLE_SHOP_OWNER = "shop_owner"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_CUSTOMER, ROLE_SHOP_OWNER, ROLE_ADMIN)


class User(db.Model):
    """
    Marketplace user (customer, shop owner, or admin).

    Identity and OTP verification live in an external service; this row is
    the local record the core attributes actions to. `phone` is how a
    customer is matched to shop credit accounts.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("phone", name="uq_users_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(20), nullable=True, index=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Shop(db.Model):
    """
    Tenant: a shop owned by one user.

    Only the fields the transactional core reads are modelled here; shop
    CRUD belongs to the catalog service.
    """
    __tablename__ = "shops"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    contact_phone = db.Column(db.String(20), nullable=True)

    # Stock policy: True hard-blocks out-of-stock items, False lets them through
    has_stock_availability = db.Column(db.Boolean, nullable=False, default=False)
    is_delivery_available = db.Column(db.Boolean, nullable=False, default=True)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    owner = db.relationship("User", backref=db.backref("shops", lazy=True))

    def __repr__(self) -> str:
        return f"<Shop id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "contact_phone": self.contact_phone,
            "has_stock_availability": self.has_stock_availability,
            "is_delivery_available": self.is_delivery_available,
            "delivery_fee_cents": self.delivery_fee_cents,
        }


class Product(db.Model):
    """Catalog product; the core only ever copies snapshots of it."""
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_shop_status", "shop_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(100), nullable=True)
    image = db.Column(db.Text, nullable=True)
    specifications = db.Column(db.JSON, nullable=True)

    sale_price_cents = db.Column(db.Integer, nullable=False)
    discount_price_cents = db.Column(db.Integer, nullable=True)

    has_stock = db.Column(db.Boolean, nullable=False, default=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shop = db.relationship("Shop", backref=db.backref("products", lazy=True))

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "name": self.name,
            "sku": self.sku,
            "image": self.image,
            "specifications": self.specifications,
            "sale_price_cents": self.sale_price_cents,
            "discount_price_cents": self.discount_price_cents,
            "has_stock": self.has_stock,
            "status": self.status,
        }

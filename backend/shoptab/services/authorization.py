# Overview: Resolved actor context and ownership checks used by every core operation.

"""
Authorization context.

The caller's identity is resolved once (from a bearer session) into an
AuthContext before any core operation runs. Services receive it explicitly
and check ownership here instead of reading ad-hoc request fields.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..errors import ForbiddenError, NotFoundError
from ..models import Shop, User
from ..models.tenancy import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_SHOP_OWNER


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    role: str
    phone: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_shop_owner(self) -> bool:
        return self.role == ROLE_SHOP_OWNER

    @property
    def is_customer(self) -> bool:
        return self.role == ROLE_CUSTOMER


def context_for_user(user: User) -> AuthContext:
    return AuthContext(user_id=user.id, role=user.role, phone=user.phone)


def require_role(ctx: AuthContext, *roles: str) -> None:
    if ctx.is_admin or ctx.role in roles:
        return
    raise ForbiddenError("Role not permitted", {"role": ctx.role, "required": list(roles)})


def ensure_cart_owner(ctx: AuthContext, cart) -> None:
    if cart.user_id != ctx.user_id:
        raise ForbiddenError("Cart belongs to another user", {"cart_id": cart.id})


def ensure_shop_owner(ctx: AuthContext, shop_id: int) -> Shop:
    """Load the shop and require ctx to own it (admins pass)."""
    shop = db.session.get(Shop, shop_id)
    if not shop:
        raise NotFoundError("Shop not found", {"shop_id": shop_id})
    if ctx.is_admin:
        return shop
    if shop.owner_id != ctx.user_id:
        raise ForbiddenError("Not the owner of this shop", {"shop_id": shop_id})
    return shop


def is_order_participant(ctx: AuthContext, order) -> bool:
    if ctx.is_admin or order.user_id == ctx.user_id:
        return True
    shop = db.session.get(Shop, order.shop_id)
    return bool(shop and shop.owner_id == ctx.user_id)


def ensure_order_participant(ctx: AuthContext, order) -> None:
    if not is_order_participant(ctx, order):
        raise ForbiddenError("Not allowed to access this order", {"order_id": order.id})


def ensure_order_seller(ctx: AuthContext, order) -> None:
    ensure_shop_owner(ctx, order.shop_id)

# Overview: Flask API routes for carts; parses input and returns JSON responses.

"""
Cart API routes.

Every route acts on the caller's own carts; the resolved AuthContext is
passed to the cart service explicitly.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth
from ..errors import ShoptabError, ValidationError
from ..services import cart_service
from . import bool_arg, error_response, int_arg, json_body

carts_bp = Blueprint("carts", __name__, url_prefix="/api/carts")


@carts_bp.post("/items")
@require_auth
def add_item_route():
    """
    Add a product to the active cart for its shop.

    Request body:
    {
        "shop_id": 1,
        "product_id": 10,
        "quantity": 2,        (decimal allowed, must be > 0)
        "notes": "ripe ones", (optional)
        "session_id": "..."   (optional)
    }
    """
    try:
        data = json_body()
        if not data.get("shop_id") or not data.get("product_id"):
            raise ValidationError("shop_id and product_id are required")

        cart = cart_service.add_item(
            g.auth,
            shop_id=data["shop_id"],
            product_id=data["product_id"],
            quantity=data.get("quantity", 1),
            notes=data.get("notes"),
            session_id=data.get("session_id"),
        )
        return jsonify({"cart": cart.to_dict()}), 201
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add item to cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.patch("/items/<int:item_id>")
@require_auth
def update_item_route(item_id: int):
    try:
        data = json_body()
        cart = cart_service.update_item(
            g.auth,
            item_id,
            quantity=data.get("quantity"),
            notes=data.get("notes"),
        )
        return jsonify({"cart": cart.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.delete("/items/<int:item_id>")
@require_auth
def remove_item_route(item_id: int):
    try:
        cart = cart_service.remove_item(g.auth, item_id)
        return jsonify({"cart": cart.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.get("/")
@require_auth
def list_carts_route():
    """
    List the caller's carts.

    Query params: status, shop_id, include_empty, sort_by, sort_order
    """
    try:
        carts = cart_service.list_carts(
            g.auth,
            status=request.args.get("status"),
            shop_id=int_arg("shop_id"),
            include_empty=bool_arg("include_empty"),
            sort_by=request.args.get("sort_by", "last_activity_at"),
            sort_order=request.args.get("sort_order", "desc"),
        )
        return jsonify({"carts": [c.to_dict() for c in carts], "count": len(carts)}), 200
    except ShoptabError as e:
        return error_response(e)


@carts_bp.get("/stats")
@require_auth
def cart_stats_route():
    return jsonify(cart_service.get_cart_stats(g.auth)), 200


@carts_bp.get("/<int:cart_id>")
@require_auth
def get_cart_route(cart_id: int):
    try:
        cart = cart_service.get_cart(g.auth, cart_id)
        return jsonify({"cart": cart.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)


@carts_bp.get("/shop/<int:shop_id>")
@require_auth
def get_shop_cart_route(shop_id: int):
    cart = cart_service.get_active_cart_by_shop(g.auth, shop_id)
    return jsonify({"cart": cart.to_dict() if cart else None}), 200


@carts_bp.patch("/<int:cart_id>")
@require_auth
def update_cart_route(cart_id: int):
    try:
        data = json_body()
        cart = cart_service.update_cart(
            g.auth,
            cart_id,
            notes=data.get("notes"),
            delivery_fee_cents=data.get("delivery_fee_cents"),
            tax_cents=data.get("tax_cents"),
        )
        return jsonify({"cart": cart.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("/<int:cart_id>/clear")
@require_auth
def clear_cart_route(cart_id: int):
    try:
        cart = cart_service.clear(g.auth, cart_id)
        return jsonify({"cart": cart.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)


@carts_bp.post("/<int:cart_id>/refresh")
@require_auth
def refresh_cart_route(cart_id: int):
    try:
        cart = cart_service.refresh(g.auth, cart_id)
        return jsonify({"cart": cart.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refresh cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.post("/<int:cart_id>/abandon")
@require_auth
def abandon_cart_route(cart_id: int):
    try:
        cart = cart_service.abandon_cart(g.auth, cart_id)
        return jsonify({"cart": cart.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)

# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API routes.

- POST /api/orders                      create from cart (customer)
- GET  /api/orders                      list with filters
- GET  /api/orders/<id>                 order detail (participants)
- PATCH /api/orders/<id>/status         status transition (seller)
- PATCH /api/orders/<id>/payment-method payment method switch (seller)
- POST/PATCH/DELETE .../items           seller item edits (PROCESSING only)
- PATCH /api/orders/<id>/fees           seller fee edits (PROCESSING only)
- POST /api/orders/<id>/cancel          cancel (customer or seller)
- POST /api/orders/<id>/refund          administrative refund
- GET  /api/orders/<id>/history         audit trail
- GET  /api/orders/<id>/items/<item_id>/history  edits to one item
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import ShoptabError, ValidationError
from ..models.tenancy import ROLE_ADMIN, ROLE_SHOP_OWNER
from ..services import (
    order_amendment_service,
    order_lifecycle_service,
    order_service,
    payment_method_service,
)
from . import error_response, int_arg, json_body

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_response(order, status: int = 200):
    return jsonify({"order": order.to_dict()}), status


@orders_bp.post("/")
@require_auth
def create_order_route():
    """
    Place an order from a cart.

    Request body:
    {
        "cart_id": 12,
        "order_type": "SHOP_PICKUP" | "HOME_DELIVERY",
        "payment_method": "CASH_ON_PICKUP",            (optional)
        "customer_phone": "+15550001111",              (required for CREDIT)
        "pickup": {"date": "...", "time": "...", "notes": "..."},
        "delivery": {"address": "...", "contact_number": "...", ...},
        "estimated_delivery_date": "2024-10-17",       (optional)
        "estimated_delivery_time": "18:00",            (optional)
        "customer_notes": "..."                        (optional)
    }
    """
    try:
        data = json_body()
        if not data.get("cart_id") or not data.get("order_type"):
            raise ValidationError("cart_id and order_type are required")

        order = order_service.create_order_from_cart(
            g.auth,
            data["cart_id"],
            order_type=data["order_type"],
            payment_method=data.get("payment_method"),
            customer_phone=data.get("customer_phone"),
            pickup=data.get("pickup"),
            delivery=data.get("delivery"),
            estimated_delivery_date=data.get("estimated_delivery_date"),
            estimated_delivery_time=data.get("estimated_delivery_time"),
            customer_notes=data.get("customer_notes"),
        )
        return _order_response(order, 201)
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/")
@require_auth
def list_orders_route():
    """
    Query params: status, order_type, payment_method, payment_status,
    shop_id, user_id, from_date, to_date, order_number, min_amount_cents,
    max_amount_cents, sort_by, sort_order, page, limit
    """
    try:
        page = int_arg("page", 1)
        limit = int_arg("limit", 20)
        orders, total = order_service.list_orders(
            g.auth,
            status=request.args.get("status"),
            order_type=request.args.get("order_type"),
            payment_method=request.args.get("payment_method"),
            payment_status=request.args.get("payment_status"),
            shop_id=int_arg("shop_id"),
            user_id=int_arg("user_id"),
            from_date=request.args.get("from_date"),
            to_date=request.args.get("to_date"),
            order_number=request.args.get("order_number"),
            min_amount_cents=int_arg("min_amount_cents"),
            max_amount_cents=int_arg("max_amount_cents"),
            sort_by=request.args.get("sort_by", "created_at"),
            sort_order=request.args.get("sort_order", "desc"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "orders": [o.to_dict(include_items=False) for o in orders],
            "total": total,
            "page": page,
            "limit": limit,
        }), 200
    except ShoptabError as e:
        return error_response(e)


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order_route(order_id: int):
    try:
        return _order_response(order_service.get_order(g.auth, order_id))
    except ShoptabError as e:
        return error_response(e)


@orders_bp.get("/<int:order_id>/history")
@require_auth
def order_history_route(order_id: int):
    try:
        return jsonify(order_service.get_order_history(g.auth, order_id)), 200
    except ShoptabError as e:
        return error_response(e)


@orders_bp.get("/<int:order_id>/items/<int:item_id>/history")
@require_auth
def order_item_history_route(order_id: int, item_id: int):
    try:
        entries = order_service.get_item_history(g.auth, order_id, item_id)
        return jsonify({"item_modifications": [e.to_dict() for e in entries]}), 200
    except ShoptabError as e:
        return error_response(e)


@orders_bp.patch("/<int:order_id>/status")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def update_status_route(order_id: int):
    try:
        data = json_body()
        order = order_lifecycle_service.update_status(
            g.auth,
            order_id,
            status=data.get("status"),
            payment_status=data.get("payment_status"),
            estimated_delivery_date=data.get("estimated_delivery_date"),
            estimated_delivery_time=data.get("estimated_delivery_time"),
            notes=data.get("notes") or data.get("reason"),
        )
        return _order_response(order)
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/payment-method")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def update_payment_method_route(order_id: int):
    try:
        data = json_body()
        if not data.get("payment_method"):
            raise ValidationError("payment_method is required")
        order = payment_method_service.update_payment_method(
            g.auth,
            order_id,
            payment_method=data["payment_method"],
            reason=data.get("reason"),
            notes=data.get("notes"),
        )
        return _order_response(order)
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment method")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/items")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def add_order_item_route(order_id: int):
    try:
        data = json_body()
        if not data.get("product_id"):
            raise ValidationError("product_id is required")
        order = order_amendment_service.add_order_item(
            g.auth,
            order_id,
            product_id=data["product_id"],
            quantity=data.get("quantity", 1),
            custom_unit_price_cents=data.get("custom_unit_price_cents"),
            custom_discount_price_cents=data.get("custom_discount_price_cents"),
            shop_notes=data.get("shop_notes"),
            reason=data.get("reason"),
        )
        return _order_response(order, 201)
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def update_order_item_route(order_id: int, item_id: int):
    try:
        data = json_body()
        order = order_amendment_service.update_order_item(
            g.auth,
            order_id,
            item_id,
            quantity=data.get("quantity"),
            unit_price_cents=data.get("unit_price_cents"),
            discount_price_cents=data.get("discount_price_cents"),
            unavailable_reason=data.get("unavailable_reason"),
            shop_notes=data.get("shop_notes"),
            reason=data.get("reason"),
        )
        return _order_response(order)
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def remove_order_item_route(order_id: int, item_id: int):
    try:
        data = json_body()
        order = order_amendment_service.remove_order_item(g.auth, order_id, item_id, reason=data.get("reason"))
        return _order_response(order)
    except ShoptabError as e:
        return error_response(e)


@orders_bp.patch("/<int:order_id>/fees")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def update_fees_route(order_id: int):
    try:
        data = json_body()
        order = order_amendment_service.update_order_fees(
            g.auth,
            order_id,
            delivery_fee_cents=data.get("delivery_fee_cents"),
            extra_charges_cents=data.get("extra_charges_cents"),
            tax_cents=data.get("tax_cents"),
            shop_notes=data.get("shop_notes"),
            estimated_delivery_date=data.get("estimated_delivery_date"),
            estimated_delivery_time=data.get("estimated_delivery_time"),
            reason=data.get("reason"),
        )
        return _order_response(order)
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order fees")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order_route(order_id: int):
    try:
        data = json_body()
        order = order_lifecycle_service.cancel_order(g.auth, order_id, reason=data.get("reason"))
        return _order_response(order)
    except ShoptabError as e:
        return error_response(e)


@orders_bp.post("/<int:order_id>/refund")
@require_auth
@require_role(ROLE_ADMIN)
def refund_order_route(order_id: int):
    try:
        data = json_body()
        order = order_lifecycle_service.mark_refunded(g.auth, order_id, notes=data.get("notes"))
        return _order_response(order)
    except ShoptabError as e:
        return error_response(e)

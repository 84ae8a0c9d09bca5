# Overview: Flask API routes for shop credit accounts (running tabs) and postings.

"""
Credit (tab) API routes.

Shop side, under /api/shops/<shop_id>/credit:
- POST  /accounts                          open a tab
- GET   /accounts                          list tabs
- GET   /accounts/lookup?phone=            tab for a customer phone
- GET   /accounts/<id>                     tab detail
- PATCH /accounts/<id>                     nickname, name, limit, status, notes
- POST  /accounts/<id>/credit              post a manual credit
- POST  /accounts/<id>/payment             post a payment
- GET   /accounts/<id>/transactions        tab history
- GET   /transactions                      shop-wide history
- GET   /summary                           totals

Customer side, under /api/credit/me:
- GET /accounts       tabs keyed by the caller's phone
- GET /transactions   postings on those tabs
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..errors import ShoptabError, ValidationError
from ..models import CreditAccount
from ..models.tenancy import ROLE_SHOP_OWNER
from ..services import credit_service
from ..validation import ModelValidationPolicy, validate_payload
from . import error_response, int_arg, json_body

credit_bp = Blueprint("credit", __name__, url_prefix="/api/shops/<int:shop_id>/credit")
customer_credit_bp = Blueprint("customer_credit", __name__, url_prefix="/api/credit/me")

ACCOUNT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"customer_phone", "customer_nickname", "customer_name", "credit_limit_cents", "notes"},
    required_on_create={"customer_phone"},
)
ACCOUNT_PATCH_POLICY = ModelValidationPolicy(
    writable_fields={"customer_nickname", "customer_name", "credit_limit_cents", "status", "notes"},
)


def _page_args() -> tuple[int, int]:
    limit = int_arg("limit", 50)
    offset = int_arg("offset", 0)
    if limit < 1 or limit > 200:
        raise ValidationError("limit must be between 1 and 200")
    if offset < 0:
        raise ValidationError("offset must be >= 0")
    return limit, offset


@credit_bp.post("/accounts")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def create_account_route(shop_id: int):
    """
    Request body:
    {
        "customer_phone": "+15550001111",
        "customer_nickname": "Ravi",      (optional)
        "customer_name": "Ravi Kumar",    (optional)
        "credit_limit_cents": 10000,      (optional, 0 = unlimited)
        "notes": "..."                    (optional)
    }
    """
    try:
        patch = validate_payload(model=CreditAccount, payload=json_body(), policy=ACCOUNT_CREATE_POLICY, partial=False)
        account = credit_service.create_credit_account(g.auth, shop_id, **patch)
        return jsonify({"account": account.to_dict()}), 201
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create credit account")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.get("/accounts")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def list_accounts_route(shop_id: int):
    """Query params: phone, nickname, status, sort_by, sort_order, limit, offset"""
    try:
        limit, offset = _page_args()
        accounts, total = credit_service.list_credit_accounts(
            g.auth,
            shop_id,
            phone=request.args.get("phone"),
            nickname=request.args.get("nickname"),
            status=request.args.get("status"),
            sort_by=request.args.get("sort_by", "updated_at"),
            sort_order=request.args.get("sort_order", "desc"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "accounts": [a.to_dict() for a in accounts],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except ShoptabError as e:
        return error_response(e)


@credit_bp.get("/accounts/lookup")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def lookup_account_route(shop_id: int):
    """Query params: phone (separators allowed)"""
    try:
        phone = request.args.get("phone")
        if not phone:
            raise ValidationError("phone is required", {"field": "phone"})
        account = credit_service.get_credit_account_by_phone(g.auth, shop_id, phone)
        return jsonify({"account": account.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)


@credit_bp.get("/accounts/<int:account_id>")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def get_account_route(shop_id: int, account_id: int):
    try:
        account = credit_service.get_credit_account(g.auth, shop_id, account_id)
        return jsonify({"account": account.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)


@credit_bp.patch("/accounts/<int:account_id>")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def update_account_route(shop_id: int, account_id: int):
    try:
        patch = validate_payload(model=CreditAccount, payload=json_body(), policy=ACCOUNT_PATCH_POLICY, partial=True)
        if not patch:
            raise ValidationError("No changes provided")
        account = credit_service.update_credit_account(g.auth, shop_id, account_id, **patch)
        return jsonify({"account": account.to_dict()}), 200
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update credit account")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.post("/accounts/<int:account_id>/credit")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def add_credit_route(shop_id: int, account_id: int):
    """
    Request body:
    {
        "amount_cents": 2500,
        "remarks": "...",      (optional)
        "order_id": 17         (optional)
    }
    """
    try:
        data = json_body()
        if data.get("amount_cents") is None:
            raise ValidationError("amount_cents is required")
        txn = credit_service.add_credit(
            g.auth,
            shop_id,
            account_id,
            amount_cents=data["amount_cents"],
            remarks=data.get("remarks"),
            order_id=data.get("order_id"),
        )
        return jsonify({"transaction": txn.to_dict(), "account": txn.account.to_dict()}), 201
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post credit")
        return jsonify({"error": "Internal server error"}), 500


@credit_bp.post("/accounts/<int:account_id>/payment")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def add_payment_route(shop_id: int, account_id: int):
    try:
        data = json_body()
        if data.get("amount_cents") is None:
            raise ValidationError("amount_cents is required")
        txn = credit_service.add_payment(
            g.auth,
            shop_id,
            account_id,
            amount_cents=data["amount_cents"],
            remarks=data.get("remarks"),
        )
        return jsonify({"transaction": txn.to_dict(), "account": txn.account.to_dict()}), 201
    except ShoptabError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to post payment")
        return jsonify({"error": "Internal server error"}), 500


def _transactions_response(shop_id: int, account_id: int | None):
    limit, offset = _page_args()
    rows, total = credit_service.list_transactions(
        g.auth,
        shop_id,
        account_id=account_id,
        transaction_type=request.args.get("transaction_type"),
        transaction_source=request.args.get("transaction_source"),
        phone=request.args.get("phone"),
        sort_order=request.args.get("sort_order", "desc"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "transactions": [t.to_dict() for t in rows],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@credit_bp.get("/accounts/<int:account_id>/transactions")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def account_transactions_route(shop_id: int, account_id: int):
    try:
        return _transactions_response(shop_id, account_id)
    except ShoptabError as e:
        return error_response(e)


@credit_bp.get("/transactions")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def shop_transactions_route(shop_id: int):
    """Query params: transaction_type, transaction_source, phone, sort_order, limit, offset"""
    try:
        return _transactions_response(shop_id, None)
    except ShoptabError as e:
        return error_response(e)


@credit_bp.get("/summary")
@require_auth
@require_role(ROLE_SHOP_OWNER)
def summary_route(shop_id: int):
    try:
        return jsonify(credit_service.get_credit_summary(g.auth, shop_id)), 200
    except ShoptabError as e:
        return error_response(e)


@customer_credit_bp.get("/accounts")
@require_auth
def my_accounts_route():
    accounts = credit_service.list_customer_accounts(g.auth)
    return jsonify({"accounts": [a.to_dict() for a in accounts], "count": len(accounts)}), 200


@customer_credit_bp.get("/transactions")
@require_auth
def my_transactions_route():
    try:
        rows = credit_service.list_customer_transactions(g.auth, shop_id=int_arg("shop_id"))
        return jsonify({"transactions": [t.to_dict() for t in rows], "count": len(rows)}), 200
    except ShoptabError as e:
        return error_response(e)

import json
from functools import wraps
from flask import Blueprint, request, jsonify
from db import get_db
from schema import ShopSession
from services.rules import QuantityBreaksEngine
from services.shopify import ShopifyAdminClient

rules_bp = Blueprint("rules", __name__)

SHOP_HEADER = "X-Shopify-Shop-Domain"

ERROR_STATUS = {
    "ValidationError": 400,
    "RuleNotFound": 404,
    "RemoteMutationError": 422,
    "PersistenceError": 422,
    "ShopifyAPIError": 502,
    "ProjectionError": 207,
}


def require_shop(f):
    """
    Decorator that resolves the calling shop from the X-Shopify-Shop-Domain header.

    Looks up the shop's stored offline token and passes a ready
    QuantityBreaksEngine to the wrapped handler.

    Args:
        f: The route handler function to be protected.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        shop = request.headers.get(SHOP_HEADER)
        if not shop:
            return jsonify({"ok": False, "errors": [f"Missing {SHOP_HEADER} header"]}), 401
        db = next(get_db())
        try:
            shop_session = db.query(ShopSession).filter_by(shop=shop).first()
            if not shop_session:
                return jsonify({"ok": False, "errors": ["Shop is not installed"]}), 404
            client = ShopifyAdminClient(shop_session.shop, shop_session.access_token)
        finally:
            db.close()
        return f(*args, engine=QuantityBreaksEngine(client), **kwargs)
    return decorated


def _respond(result, success_status=200):
    """
    Serializes an OperationResult, mapping its failure kind to an HTTP status.
    """
    if result.ok:
        return jsonify(result.to_dict()), success_status
    return jsonify(result.to_dict()), ERROR_STATUS.get(result.error_type, 400)


def _json_body():
    """
    Returns the request JSON object, or an empty dict for missing or non-object bodies.
    """
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _json_list(value):
    """
    Accepts either a list or a JSON-encoded list (as sent by form posts).
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return []
    return value if isinstance(value, list) else []


@rules_bp.route("/rules", methods=["GET"])
@require_shop
def list_rules(engine):
    """
    Lists every quantity-break rule configured for the shop.
    ---
    Output (200):
        - rows (list): {title, handle, tierTitles}
    """
    return _respond(engine.list_rules())


@rules_bp.route("/rules", methods=["POST"])
@require_shop
def create_rule(engine):
    """
    Adds a discount tier, creating the rule when its title is new.
    ---
    Input (JSON):
        - title (str): Rule title
        - discountTitle (str): Title of the automatic discount for this tier
        - minimumQuantity (int): Quantity threshold (>= 1)
        - percentOff (int): Percentage off (1-100)
        - selectedProducts (list): Product GIDs or {id, ...} objects
    Output (201):
        - ok, nextHandle, nextTitle, nextStatus, nextTiers, nextProducts
    Errors:
        - 400: Validation failure
        - 422: Shopify rejected the discount or the settings write
        - 502: Shopify unreachable
    """
    data = _json_body()
    payload = {**data, "selectedProducts": _json_list(data.get("selectedProducts"))}
    return _respond(engine.create_rule(payload), success_status=201)


@rules_bp.route("/rules/<handle>", methods=["GET"])
@require_shop
def get_rule(engine, handle):
    """
    Returns a rule's settings with live product summaries.
    ---
    Errors:
        - 404: No rule with this handle
    """
    return _respond(engine.get_rule(handle))


@rules_bp.route("/rules/<handle>", methods=["PUT"])
@require_shop
def update_rule(engine, handle):
    """
    Saves a rule's settings and reconciles its Shopify discounts.
    ---
    Input (JSON):
        - title (str), status ('active' | 'inactive')
        - tiers (list): {title, min_quantity, percent_off, discount_id?}
        - products (list): Product GIDs or {id, ...} objects
    Output (200):
        - ok, nextHandle, nextTitle, nextStatus, nextTiers, nextProducts
    Errors:
        - 400: Validation failure
        - 404: No rule with this handle
        - 207: Saved, but some product tier metafields failed to update
    """
    data = _json_body()
    payload = {
        **data,
        "tiers": _json_list(data.get("tiers")),
        "products": _json_list(data.get("products")),
    }
    return _respond(engine.update_rule(handle, payload))


@rules_bp.route("/rules/<handle>", methods=["DELETE"])
@require_shop
def delete_rule(engine, handle):
    """
    Deletes a rule and all automatic discounts it owns.
    """
    return _respond(engine.delete_rule(handle))

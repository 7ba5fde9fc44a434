import json
import logging
from typing import Any, Dict, List

from config import config
from services.identifiers import normalize_product_ids, slugify

logger = logging.getLogger(__name__)

NAMESPACE = config.METAFIELD_NAMESPACE
KEY = config.METAFIELD_KEY
METAFIELD_TYPE = config.METAFIELD_TYPE


def empty_document() -> Dict[str, Any]:
    return {"discounts": []}


def decode_document(raw: Any) -> Dict[str, Any]:
    """
    Parses the shop-level metafield value into a configuration document.

    Any absent, unparsable or mis-shaped value yields an empty document;
    this never raises.

    Args:
        raw: The JSON string stored in the ``quantity_breaks.discounts`` metafield.

    Returns:
        A dict with a ``discounts`` list of rule dicts.
    """
    if not raw:
        return empty_document()

    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discount configuration metafield is not valid JSON; treating as empty.")
        return empty_document()

    if not isinstance(parsed, dict) or not isinstance(parsed.get("discounts"), list):
        return empty_document()
    return parsed


def encode_document(document: Dict[str, Any]) -> str:
    """Serializes a configuration document for the shop metafield."""
    return json.dumps({**document, "discounts": list(document.get("discounts") or [])})


def get_rule_product_ids(rule: Any) -> List[str]:
    """
    Resolves the products a rule targets.

    Uses the rule-level ``products`` list when it holds any valid ids; older
    documents stored products per tier, so otherwise the tiers' lists are
    merged in first-seen order.
    """
    if not isinstance(rule, dict):
        return []

    direct_ids = normalize_product_ids(rule.get("products"))
    if direct_ids:
        return direct_ids

    seen = set()
    tier_product_ids = []
    for tier in get_rule_tiers(rule):
        for product_id in normalize_product_ids(tier.get("products")):
            if product_id in seen:
                continue
            seen.add(product_id)
            tier_product_ids.append(product_id)
    return tier_product_ids


def get_rule_tiers(rule: Any) -> List[Dict[str, Any]]:
    if not isinstance(rule, dict) or not isinstance(rule.get("tiers"), list):
        return []
    return [tier for tier in rule["tiers"] if isinstance(tier, dict)]


def get_discount_ids(tiers: List[Dict[str, Any]]) -> List[str]:
    """Returns the non-empty remote discount references held by ``tiers``, in order."""
    return [
        tier["discount_id"]
        for tier in tiers
        if isinstance(tier.get("discount_id"), str) and tier["discount_id"]
    ]


def find_rule_index(discounts: List[Any], handle: str) -> int:
    # Slug collisions resolve to the first matching rule.
    for index, rule in enumerate(discounts):
        title = rule.get("title") if isinstance(rule, dict) else None
        if slugify(title or "") == handle:
            return index
    return -1

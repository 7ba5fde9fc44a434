import json
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Union

from config import config
from services.codec import KEY, METAFIELD_TYPE, NAMESPACE, get_rule_product_ids, get_rule_tiers
from services.errors import ShopifyAPIError
from services.identifiers import normalize_product_ids, parse_whole_number

logger = logging.getLogger(__name__)

Number = Union[int, float]


def _parse_percent(value: Any) -> Optional[Number]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def normalize_tier_for_projection(tier: Any) -> Optional[Dict[str, Number]]:
    """
    Extracts the storefront-facing part of a tier.

    Returns None for tiers without a positive whole ``min_quantity`` or with a
    ``percent_off`` outside 0-100; such tiers are skipped, not reported.
    """
    if not isinstance(tier, dict):
        return None

    min_quantity = parse_whole_number(tier.get("min_quantity"))
    percent_off = _parse_percent(tier.get("percent_off"))

    if min_quantity is None or min_quantity <= 0:
        return None
    if percent_off is None or percent_off < 0 or percent_off > 100:
        return None

    return {"min_quantity": min_quantity, "percent_off": percent_off}


def build_product_tier_projection(discounts: Any, product_id: str) -> List[Dict[str, Number]]:
    """
    Merges every rule targeting ``product_id`` into one ascending tier ladder.

    When several tiers share a threshold the highest ``percent_off`` wins.

    Args:
        discounts: The ``discounts`` list of a configuration document.
        product_id: Canonical product GID.

    Returns:
        A list of ``{"min_quantity", "percent_off"}`` dicts sorted by threshold.
    """
    by_min_quantity: Dict[int, Dict[str, Number]] = {}

    for rule in discounts if isinstance(discounts, list) else []:
        if product_id not in get_rule_product_ids(rule):
            continue

        for tier in get_rule_tiers(rule):
            normalized = normalize_tier_for_projection(tier)
            if normalized is None:
                continue

            existing = by_min_quantity.get(normalized["min_quantity"])
            if existing is None or normalized["percent_off"] > existing["percent_off"]:
                by_min_quantity[normalized["min_quantity"]] = normalized

    return [by_min_quantity[threshold] for threshold in sorted(by_min_quantity)]


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    for index in range(0, len(items), size):
        yield items[index:index + size]


def recompute_product_projections(client, discounts: Any, affected_product_ids: Any) -> List[str]:
    """
    Rewrites the per-product tier metafields for every affected product.

    Batches are sent sequentially; a failed batch is recorded and the
    remaining batches are still attempted.

    Args:
        client: Discount & metadata service (see ``services.shopify``).
        discounts: The ``discounts`` list of the freshly persisted document.
        affected_product_ids: Products whose projection may have changed.

    Returns:
        The error messages collected across all batches (empty on success).
    """
    product_ids = normalize_product_ids(affected_product_ids)
    if not product_ids:
        return []

    entries = []
    for product_id in product_ids:
        projected = build_product_tier_projection(discounts, product_id)
        entries.append({
            "ownerId": product_id,
            "namespace": NAMESPACE,
            "key": KEY,
            "type": METAFIELD_TYPE,
            "value": json.dumps(projected) if projected else "[]",
        })

    errors = []
    for batch in chunked(entries, config.METAFIELDS_BATCH_SIZE):
        try:
            user_errors = client.set_metadata(batch)
        except ShopifyAPIError as e:
            user_errors = e.messages
        if user_errors:
            logger.error(f"Projection batch of {len(batch)} products failed: {user_errors}")
            errors.extend(user_errors)

    logger.info(f"Recomputed tier projections for {len(product_ids)} products ({len(errors)} errors).")
    return errors

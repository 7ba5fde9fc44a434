from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def build_products_input(
    product_ids: List[str],
    added: Optional[List[str]] = None,
    removed: Optional[List[str]] = None,
    incremental: bool = False,
) -> Dict[str, List[str]]:
    """
    Builds the ``customerGets.items.products`` payload.

    Incremental payloads only name the products that entered or left the rule,
    so products attached to the discount outside this rule are left alone.
    """
    if not incremental:
        return {"productsToAdd": list(product_ids)}

    products_input = {}
    if added:
        products_input["productsToAdd"] = list(added)
    if removed:
        products_input["productsToRemove"] = list(removed)
    return products_input


def build_discount_input(
    title: str,
    min_quantity: int,
    percent_off: int,
    products_input: Dict[str, List[str]],
    starts_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Builds a ``DiscountAutomaticBasicInput`` for one quantity tier.

    The discount stacks with product, order and shipping discounts, requires
    at least ``min_quantity`` items and takes ``percent_off`` percent off the
    given products on one-time purchases only.

    Args:
        starts_at: Only set on create; updates keep the original start date.
    """
    discount_input = {
        "title": title,
        "combinesWith": {
            "productDiscounts": True,
            "orderDiscounts": True,
            "shippingDiscounts": True,
        },
        "minimumRequirement": {
            "quantity": {
                "greaterThanOrEqualToQuantity": str(min_quantity),
            },
        },
        "customerGets": {
            "value": {
                "percentage": percent_off / 100,
            },
            "items": {
                "products": products_input,
            },
            "appliesOnOneTimePurchase": True,
            "appliesOnSubscription": False,
        },
    }
    if starts_at is not None:
        discount_input["startsAt"] = starts_at.astimezone(timezone.utc).isoformat()
    return discount_input


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

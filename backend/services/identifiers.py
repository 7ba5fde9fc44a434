import re
from typing import Any, List, Optional

from config import config

PRODUCT_GID_PREFIX = config.PRODUCT_GID_PREFIX


def normalize_product_id(product: Any) -> str:
    """
    Reduces a product reference to its canonical GID form.

    Args:
        product: Either a GID string or a mapping carrying an ``id`` field
            (e.g. a resource-picker selection).

    Returns:
        The GID when it carries the Shopify product prefix, otherwise "".
    """
    if isinstance(product, str) and product.startswith(PRODUCT_GID_PREFIX):
        return product

    if isinstance(product, dict):
        product_id = product.get("id")
        if isinstance(product_id, str) and product_id.startswith(PRODUCT_GID_PREFIX):
            return product_id

    return ""


def normalize_product_ids(products: Any) -> List[str]:
    """
    Canonicalizes a heterogeneous collection of product references.

    Anything that is not a list or tuple is treated as empty. Invalid entries
    are dropped and duplicates removed, keeping first-seen order.
    """
    if not isinstance(products, (list, tuple)):
        return []

    seen = set()
    product_ids = []
    for product in products:
        product_id = normalize_product_id(product)
        if not product_id or product_id in seen:
            continue
        seen.add(product_id)
        product_ids.append(product_id)
    return product_ids


def parse_whole_number(value: Any) -> Optional[int]:
    """
    Reads an integer from a stored or submitted tier field.

    Accepts ints, integral floats and numeric strings ("5", " 10 ");
    returns None for anything else, including booleans.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and re.fullmatch(r"[+-]?\d+", value.strip()):
        try:
            return int(value.strip())
        except ValueError:
            # Digit strings past the interpreter's int conversion limit
            return None
    return None


def slugify(title: Any) -> str:
    """
    Derives the URL handle used to address a rule.

    "My Rule!! 2024" -> "my-rule-2024"
    """
    value = str(title or "").strip().lower()
    value = re.sub(r"[^a-z0-9\s-]", "", value)
    value = re.sub(r"\s+", "-", value)
    value = re.sub(r"-+", "-", value)
    return value

import logging
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

from services.codec import (
    KEY,
    METAFIELD_TYPE,
    NAMESPACE,
    decode_document,
    encode_document,
    find_rule_index,
    get_discount_ids,
    get_rule_product_ids,
    get_rule_tiers,
)
from services.discounts import build_discount_input, build_products_input, utc_now
from services.errors import (
    PersistenceError,
    ProjectionError,
    QuantityBreaksError,
    RemoteMutationError,
    RuleNotFound,
    ShopifyAPIError,
    ValidationError,
)
from services.identifiers import normalize_product_ids, parse_whole_number, slugify
from services.projection import recompute_product_projections

logger = logging.getLogger(__name__)

RULE_STATUSES = ("active", "inactive")


@dataclass
class OperationResult:
    """
    Response envelope shared by every engine operation.

    ``committed`` is True once the configuration document has been written,
    so a failed result with ``committed`` set means only the product
    projections are stale.
    """
    ok: bool
    errors: List[str] = field(default_factory=list)
    error_type: Optional[str] = None
    committed: bool = False
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        body = {"ok": self.ok}
        if self.errors:
            body["errors"] = list(self.errors)
        body.update(self.data)
        return body


def operation(f):
    """
    Converts engine exceptions raised inside ``f`` into a failed OperationResult.

    Nothing raised by the reconciliation steps escapes the operation boundary.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except QuantityBreaksError as e:
            logger.warning(f"{f.__name__} failed with {type(e).__name__}: {e.messages}")
            return OperationResult(ok=False, errors=e.messages, error_type=type(e).__name__)
    return decorated


def sort_tiers(tiers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Stable ascending sort by ``min_quantity``; unparsable thresholds sort last."""
    def threshold(tier):
        value = parse_whole_number(tier.get("min_quantity"))
        return (value is None, value or 0)
    return sorted(tiers, key=threshold)


def tier_display_title(tier: Dict[str, Any]) -> str:
    return tier.get("title") or tier.get("label") or "Untitled discount"


def parse_update_request(payload: Dict[str, Any]) -> Tuple[str, str, List[str], List[Dict[str, Any]]]:
    """
    Validates an update-rule request and returns (title, status, product_ids, tiers).

    Tiers come back trimmed, parsed and sorted ascending by threshold.

    Raises:
        ValidationError: On the first invalid field; tiers are named by position.
    """
    title = str(payload.get("title") or "").strip()
    status = str(payload.get("status") or "active").strip().lower()
    raw_tiers = payload.get("tiers") if isinstance(payload.get("tiers"), list) else []

    if not title:
        raise ValidationError(["Title is required."])
    if status not in RULE_STATUSES:
        raise ValidationError(["Status must be Active or Inactive."])

    product_ids = normalize_product_ids(payload.get("products"))
    if not product_ids:
        raise ValidationError(["At least one product is required for this rule."])

    if not raw_tiers:
        raise ValidationError(["At least one discount tier is required."])

    tiers = []
    for position, raw in enumerate(raw_tiers, start=1):
        raw = raw if isinstance(raw, dict) else {}
        tier = {
            **raw,
            "title": str(raw.get("title") or "").strip(),
            "min_quantity": parse_whole_number(raw.get("min_quantity")),
            "percent_off": parse_whole_number(raw.get("percent_off")),
        }
        if (
            not tier["title"]
            or tier["min_quantity"] is None
            or tier["min_quantity"] < 1
            or tier["percent_off"] is None
            or not 0 <= tier["percent_off"] <= 100
        ):
            raise ValidationError([
                f"Tier {position} must have a title, minimum quantity (>= 1), and percent discount (0-100)."
            ])
        tiers.append(tier)

    return title, status, product_ids, sort_tiers(tiers)


def parse_create_request(payload: Dict[str, Any]) -> Tuple[str, str, int, int, List[str]]:
    """
    Validates a create-rule request.

    Unlike updates, every problem with the form is reported at once.

    Returns:
        (title, discount_title, minimum_quantity, percent_off, product_ids)
    """
    title = str(payload.get("title") or "").strip()
    discount_title = str(payload.get("discountTitle") or "").strip()
    minimum_quantity = parse_whole_number(payload.get("minimumQuantity"))
    percent_off = parse_whole_number(payload.get("percentOff"))
    product_ids = normalize_product_ids(payload.get("selectedProducts"))

    errors = []
    if not title:
        errors.append("Title is required.")
    if not discount_title:
        errors.append("Discount title is required.")
    if minimum_quantity is None or minimum_quantity < 1:
        errors.append("Minimum product quantity must be a whole number greater than 0.")
    if percent_off is None or not 1 <= percent_off <= 100:
        errors.append("Percent off must be a whole number between 1 and 100.")
    if not product_ids:
        errors.append("Select at least one product.")

    if errors:
        raise ValidationError(errors)
    return title, discount_title, minimum_quantity, percent_off, product_ids


class QuantityBreaksEngine:
    """
    Reconciles quantity-break rules with Shopify automatic discounts.

    The shop-level ``quantity_breaks.discounts`` metafield is the source of
    truth. Each operation reads it, applies remote discount mutations one at a
    time, writes the whole document back and then refreshes the tier
    projections of every product the change touched.

    Remote mutations are not rolled back when a later step fails, and the
    read-modify-write of the document is last-write-wins.
    """

    def __init__(self, client):
        self.client = client

    # --- document storage ---

    def load_document(self) -> Tuple[str, Dict[str, Any]]:
        shop_id = self.client.get_shop_id()
        if not shop_id:
            raise ShopifyAPIError(["Unable to resolve the current shop."])
        raw = self.client.get_metadata(shop_id, NAMESPACE, KEY)
        return shop_id, decode_document(raw)

    def save_document(self, shop_id: str, document: Dict[str, Any]) -> None:
        entry = {
            "ownerId": shop_id,
            "namespace": NAMESPACE,
            "key": KEY,
            "type": METAFIELD_TYPE,
            "value": encode_document(document),
        }
        try:
            errors = self.client.set_metadata([entry])
        except ShopifyAPIError as e:
            logger.error(f"Saving discount configuration failed: {e.messages}")
            raise PersistenceError(e.messages) from e
        if errors:
            logger.error(f"Saving discount configuration rejected: {errors}")
            raise PersistenceError(errors)

    def _locate(self, discounts: List[Any], handle: str) -> Tuple[int, Dict[str, Any]]:
        index = find_rule_index(discounts, handle)
        if index < 0:
            raise RuleNotFound(["Rule not found."])
        rule = discounts[index]
        return index, rule if isinstance(rule, dict) else {}

    def _reproject(self, discounts: List[Any], product_ids: List[str]) -> List[str]:
        return recompute_product_projections(self.client, discounts, product_ids)

    def _finish(self, projection_errors: List[str], data: Dict[str, Any]) -> OperationResult:
        if projection_errors:
            return OperationResult(
                ok=False,
                errors=projection_errors,
                error_type=ProjectionError.__name__,
                committed=True,
                data=data,
            )
        return OperationResult(ok=True, committed=True, data=data)

    # --- remote discount steps ---

    def _create_discount(self, discount_input: Dict[str, Any]) -> str:
        result = self.client.create_automatic_discount(discount_input)
        if result.user_errors:
            raise RemoteMutationError(result.user_errors)
        if not result.id:
            raise RemoteMutationError(["Failed to create tier discount in Shopify."])
        logger.info(f"Created automatic discount {result.id} ({discount_input.get('title')})")
        return result.id

    def _update_discount(self, discount_id: str, discount_input: Dict[str, Any]) -> None:
        result = self.client.update_automatic_discount(discount_id, discount_input)
        if result.user_errors:
            raise RemoteMutationError(result.user_errors)
        logger.info(f"Updated automatic discount {discount_id}")

    def _delete_discount(self, discount_id: str) -> None:
        result = self.client.delete_automatic_discount(discount_id)
        if result.user_errors:
            raise RemoteMutationError(result.user_errors)
        logger.info(f"Deleted automatic discount {discount_id}")

    def _apply_status(self, discount_id: str, status: str) -> None:
        # Best effort: failures are logged, never surfaced.
        try:
            if status == "inactive":
                errors = self.client.deactivate_automatic_discount(discount_id)
            else:
                errors = self.client.activate_automatic_discount(discount_id)
        except ShopifyAPIError as e:
            errors = e.messages
        if errors:
            logger.warning(f"Setting discount {discount_id} {status} failed: {errors}")

    def _product_summaries(self, product_ids: List[str]) -> List[Dict[str, str]]:
        try:
            return self.client.get_product_summaries(product_ids)
        except ShopifyAPIError as e:
            logger.warning(f"Product summary lookup failed: {e.messages}")
            return [{"id": pid, "title": pid, "imageUrl": ""} for pid in product_ids]

    # --- read operations ---

    @operation
    def list_rules(self) -> OperationResult:
        """
        Lists every rule for the index page.

        Returns:
            ``rows`` of ``{title, handle, tierTitles}`` in document order.
        """
        _, document = self.load_document()
        rows = []
        for rule in document["discounts"]:
            rule = rule if isinstance(rule, dict) else {}
            title = rule.get("title") or "Untitled"
            rows.append({
                "title": title,
                "handle": slugify(title),
                "tierTitles": [tier_display_title(tier) for tier in get_rule_tiers(rule)],
            })
        return OperationResult(ok=True, data={"rows": rows})

    @operation
    def get_rule(self, handle: str) -> OperationResult:
        _, document = self.load_document()
        _, rule = self._locate(document["discounts"], handle)
        products = self._product_summaries(get_rule_product_ids(rule))
        return OperationResult(ok=True, data={
            "handle": handle,
            "title": rule.get("title") or "Untitled",
            "status": "inactive" if rule.get("status") == "inactive" else "active",
            "tiers": get_rule_tiers(rule),
            "products": products,
        })

    # --- mutations ---

    @operation
    def create_rule(self, payload: Dict[str, Any]) -> OperationResult:
        """
        Adds one tier, creating its rule when no rule has this title yet.

        The new tier gets its own automatic discount. Appending to an existing
        rule replaces that rule's product set with the submitted one; if the
        rule is inactive the fresh discount is deactivated straight away.

        Args:
            payload: ``{title, discountTitle, minimumQuantity, percentOff, selectedProducts}``.
        """
        title, discount_title, minimum_quantity, percent_off, product_ids = parse_create_request(payload)
        shop_id, document = self.load_document()
        discounts = list(document["discounts"])

        discount_id = self._create_discount(build_discount_input(
            discount_title,
            minimum_quantity,
            percent_off,
            build_products_input(product_ids),
            starts_at=utc_now(),
        ))
        new_tier = {
            "min_quantity": minimum_quantity,
            "percent_off": percent_off,
            "title": discount_title,
            "discount_id": discount_id,
        }

        existing_index = next(
            (i for i, rule in enumerate(discounts) if isinstance(rule, dict) and rule.get("title") == title),
            -1,
        )
        if existing_index >= 0:
            rule = discounts[existing_index]
            previous_product_ids = get_rule_product_ids(rule)
            status = rule.get("status") or "active"
            if status == "inactive":
                self._apply_status(discount_id, "inactive")
            discounts[existing_index] = {
                **rule,
                "title": title,
                "products": product_ids,
                "status": status,
                "tiers": sort_tiers(get_rule_tiers(rule) + [new_tier]),
            }
            next_rule = discounts[existing_index]
        else:
            previous_product_ids = []
            next_rule = {
                "title": title,
                "products": product_ids,
                "status": "active",
                "tiers": [new_tier],
            }
            discounts.append(next_rule)

        self.save_document(shop_id, {**document, "discounts": discounts})
        logger.info(f"Saved rule '{title}' with {len(next_rule['tiers'])} tiers")

        affected = normalize_product_ids(previous_product_ids + product_ids)
        projection_errors = self._reproject(discounts, affected)
        return self._finish(projection_errors, {
            "nextHandle": slugify(title),
            "nextTitle": title,
            "nextStatus": next_rule["status"],
            "nextTiers": next_rule["tiers"],
            "nextProducts": product_ids,
        })

    @operation
    def update_rule(self, handle: str, payload: Dict[str, Any]) -> OperationResult:
        """
        Replaces a rule's title, status, products and tiers.

        Tiers without a ``discount_id`` get a new automatic discount, tiers
        whose fields or product set changed are updated in place, and
        discounts whose tier was removed are deleted. Any rejection aborts
        before the document is written; mutations already applied stay.

        Args:
            handle: Slug of the rule's current title.
            payload: ``{title, status, tiers, products}``.

        Returns:
            The saved state plus ``nextHandle`` derived from the new title.
        """
        title, status, product_ids, tiers = parse_update_request(payload)
        shop_id, document = self.load_document()
        discounts = list(document["discounts"])
        rule_index, rule = self._locate(discounts, handle)

        previous_tiers = get_rule_tiers(rule)
        previous_product_ids = get_rule_product_ids(rule)
        added = [pid for pid in product_ids if pid not in previous_product_ids]
        removed = [pid for pid in previous_product_ids if pid not in product_ids]
        products_changed = bool(added or removed)

        previous_discount_ids = get_discount_ids(previous_tiers)
        previous_by_discount_id = {tier["discount_id"]: tier for tier in previous_tiers
                                   if tier.get("discount_id") in previous_discount_ids}

        reconciled = []
        for tier in tiers:
            discount_id = tier.get("discount_id") if isinstance(tier.get("discount_id"), str) else ""
            previous = previous_by_discount_id.get(discount_id) if discount_id else None
            tier_changed = (
                previous is None
                or str(previous.get("title") or "").strip() != tier["title"]
                or parse_whole_number(previous.get("min_quantity")) != tier["min_quantity"]
                or parse_whole_number(previous.get("percent_off")) != tier["percent_off"]
            )

            if discount_id and not tier_changed and not products_changed:
                reconciled.append(tier)
                continue

            incremental = bool(discount_id) and products_changed
            discount_input = build_discount_input(
                tier["title"],
                tier["min_quantity"],
                tier["percent_off"],
                build_products_input(product_ids, added, removed, incremental=incremental),
                starts_at=None if discount_id else utc_now(),
            )

            if discount_id:
                self._update_discount(discount_id, discount_input)
                reconciled.append(tier)
            else:
                reconciled.append({**tier, "discount_id": self._create_discount(discount_input)})

        next_tiers = sort_tiers(reconciled)
        next_discount_ids = get_discount_ids(next_tiers)

        for discount_id in previous_discount_ids:
            if discount_id not in next_discount_ids:
                self._delete_discount(discount_id)

        for discount_id in next_discount_ids:
            self._apply_status(discount_id, status)

        discounts[rule_index] = {
            **rule,
            "title": title,
            "status": status,
            "products": product_ids,
            "tiers": next_tiers,
        }
        self.save_document(shop_id, {**document, "discounts": discounts})
        logger.info(f"Saved rule '{title}' ({status}) with {len(next_tiers)} tiers")

        affected = normalize_product_ids(previous_product_ids + product_ids)
        projection_errors = self._reproject(discounts, affected)
        return self._finish(projection_errors, {
            "nextHandle": slugify(title),
            "nextTitle": title,
            "nextStatus": status,
            "nextTiers": next_tiers,
            "nextProducts": self._product_summaries(product_ids),
        })

    @operation
    def delete_rule(self, handle: str) -> OperationResult:
        """
        Deletes a rule together with every automatic discount it owns.

        A failed discount delete leaves the document untouched.
        """
        shop_id, document = self.load_document()
        discounts = list(document["discounts"])
        rule_index, rule = self._locate(discounts, handle)

        affected = get_rule_product_ids(rule)
        for discount_id in get_discount_ids(get_rule_tiers(rule)):
            self._delete_discount(discount_id)

        del discounts[rule_index]
        self.save_document(shop_id, {**document, "discounts": discounts})
        logger.info(f"Deleted rule '{handle}'")

        projection_errors = self._reproject(discounts, affected)
        return self._finish(projection_errors, {"deletedHandle": handle})

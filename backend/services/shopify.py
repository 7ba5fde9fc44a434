import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from config import config
from services.errors import ShopifyAPIError

logger = logging.getLogger(__name__)

SHOP_ID_QUERY = """
query QuantityBreaksShopId {
  shop {
    id
  }
}
"""

METAFIELD_QUERY = """
query QuantityBreaksMetafield($ownerId: ID!, $namespace: String!, $key: String!) {
  node(id: $ownerId) {
    ... on HasMetafields {
      metafield(namespace: $namespace, key: $key) {
        value
      }
    }
  }
}
"""

METAFIELDS_SET_MUTATION = """
mutation QuantityBreaksSetMetafields($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    userErrors {
      field
      message
    }
  }
}
"""

PRODUCT_SUMMARIES_QUERY = """
query QuantityBreakProductSummaries($ids: [ID!]!) {
  nodes(ids: $ids) {
    ... on Product {
      id
      title
      featuredImage {
        url
      }
    }
  }
}
"""

DISCOUNT_CREATE_MUTATION = """
mutation CreateTierAutomaticDiscount($automaticBasicDiscount: DiscountAutomaticBasicInput!) {
  discountAutomaticBasicCreate(automaticBasicDiscount: $automaticBasicDiscount) {
    automaticDiscountNode {
      id
    }
    userErrors {
      field
      message
    }
  }
}
"""

DISCOUNT_UPDATE_MUTATION = """
mutation UpdateTierAutomaticDiscount($id: ID!, $automaticBasicDiscount: DiscountAutomaticBasicInput!) {
  discountAutomaticBasicUpdate(id: $id, automaticBasicDiscount: $automaticBasicDiscount) {
    automaticDiscountNode {
      id
    }
    userErrors {
      field
      message
    }
  }
}
"""

DISCOUNT_ACTIVATE_MUTATION = """
mutation SetRuleDiscountActive($id: ID!) {
  discountAutomaticActivate(id: $id) {
    userErrors {
      field
      message
    }
  }
}
"""

DISCOUNT_DEACTIVATE_MUTATION = """
mutation SetRuleDiscountInactive($id: ID!) {
  discountAutomaticDeactivate(id: $id) {
    userErrors {
      field
      message
    }
  }
}
"""

DISCOUNT_DELETE_MUTATION = """
mutation DeleteTierDiscount($id: ID!) {
  discountAutomaticDelete(id: $id) {
    deletedAutomaticDiscountId
    userErrors {
      field
      message
    }
  }
}
"""


@dataclass
class MutationResult:
    """
    Outcome of a discount mutation: the affected node id, or the user errors
    Shopify reported instead.
    """
    id: Optional[str] = None
    user_errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.user_errors


def _user_error_messages(payload: Optional[Dict[str, Any]]) -> List[str]:
    errors = (payload or {}).get("userErrors") or []
    return [e.get("message") or "Unknown error" for e in errors]


class ShopifyAdminClient:
    """
    Thin wrapper around the Shopify Admin GraphQL API exposing the discount
    and metafield operations the quantity-breaks engine needs.

    Transport failures (network errors, non-2xx responses, top-level GraphQL
    errors) raise ShopifyAPIError. Business rejections come back as
    ``userErrors`` and are returned to the caller untouched.
    """

    def __init__(self, shop_domain: str, access_token: str, api_version: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        if not shop_domain or not access_token:
            raise ValueError("shop_domain and access_token are required")
        self.shop_domain = shop_domain
        self.api_version = api_version or config.SHOPIFY_API_VERSION
        self.timeout = timeout or config.SHOPIFY_REQUEST_TIMEOUT
        self._session = session or requests.Session()
        self._session.headers.update({
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
        })

    @property
    def endpoint(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Executes a GraphQL document and returns its ``data`` object.

        Raises:
            ShopifyAPIError: On network failure, HTTP error status or GraphQL errors.
        """
        try:
            response = self._session.post(
                self.endpoint,
                json={"query": query, "variables": variables or {}},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as e:
            logger.error(f"Shopify request to {self.shop_domain} failed: {e}")
            raise ShopifyAPIError([f"Shopify API request failed: {e}"]) from e
        except ValueError as e:
            raise ShopifyAPIError(["Shopify API returned an invalid response."]) from e

        if not isinstance(body, dict):
            raise ShopifyAPIError(["Shopify API returned an invalid response."])
        if body.get("errors"):
            messages = [err.get("message", str(err)) if isinstance(err, dict) else str(err)
                        for err in body["errors"]]
            logger.error(f"Shopify GraphQL errors from {self.shop_domain}: {messages}")
            raise ShopifyAPIError(messages)
        return body.get("data") or {}

    # --- shop & metafields ---

    def get_shop_id(self) -> Optional[str]:
        data = self.graphql(SHOP_ID_QUERY)
        return (data.get("shop") or {}).get("id")

    def get_metadata(self, owner_id: str, namespace: str, key: str) -> Optional[str]:
        """Returns the raw metafield value for ``owner_id`` or None when unset."""
        data = self.graphql(METAFIELD_QUERY, {"ownerId": owner_id, "namespace": namespace, "key": key})
        metafield = (data.get("node") or {}).get("metafield") or {}
        return metafield.get("value")

    def set_metadata(self, entries: List[Dict[str, Any]]) -> List[str]:
        """
        Writes up to 25 metafields in one ``metafieldsSet`` call.

        Args:
            entries: ``MetafieldsSetInput`` dicts (ownerId, namespace, key, type, value).

        Returns:
            User error messages, empty on success.
        """
        if len(entries) > config.METAFIELDS_BATCH_SIZE:
            raise ValueError(f"metafieldsSet accepts at most {config.METAFIELDS_BATCH_SIZE} entries")
        data = self.graphql(METAFIELDS_SET_MUTATION, {"metafields": entries})
        return _user_error_messages(data.get("metafieldsSet"))

    # --- products ---

    def get_product_summaries(self, product_ids: List[str]) -> List[Dict[str, str]]:
        """
        Looks up display data for products, preserving the input order.

        Products Shopify no longer returns fall back to their id as title.
        """
        if not product_ids:
            return []

        data = self.graphql(PRODUCT_SUMMARIES_QUERY, {"ids": list(product_ids)})
        nodes = data.get("nodes") if isinstance(data.get("nodes"), list) else []
        by_id = {}
        for node in nodes:
            if not node or not node.get("id"):
                continue
            by_id[node["id"]] = {
                "id": node["id"],
                "title": node.get("title") or "",
                "imageUrl": (node.get("featuredImage") or {}).get("url") or "",
            }
        return [by_id.get(pid, {"id": pid, "title": pid, "imageUrl": ""}) for pid in product_ids]

    # --- automatic discounts ---

    def create_automatic_discount(self, discount_input: Dict[str, Any]) -> MutationResult:
        data = self.graphql(DISCOUNT_CREATE_MUTATION, {"automaticBasicDiscount": discount_input})
        payload = data.get("discountAutomaticBasicCreate") or {}
        node = payload.get("automaticDiscountNode") or {}
        return MutationResult(id=node.get("id"), user_errors=_user_error_messages(payload))

    def update_automatic_discount(self, discount_id: str, discount_input: Dict[str, Any]) -> MutationResult:
        data = self.graphql(
            DISCOUNT_UPDATE_MUTATION,
            {"id": discount_id, "automaticBasicDiscount": discount_input},
        )
        payload = data.get("discountAutomaticBasicUpdate") or {}
        node = payload.get("automaticDiscountNode") or {}
        return MutationResult(id=node.get("id"), user_errors=_user_error_messages(payload))

    def activate_automatic_discount(self, discount_id: str) -> List[str]:
        data = self.graphql(DISCOUNT_ACTIVATE_MUTATION, {"id": discount_id})
        return _user_error_messages(data.get("discountAutomaticActivate"))

    def deactivate_automatic_discount(self, discount_id: str) -> List[str]:
        data = self.graphql(DISCOUNT_DEACTIVATE_MUTATION, {"id": discount_id})
        return _user_error_messages(data.get("discountAutomaticDeactivate"))

    def delete_automatic_discount(self, discount_id: str) -> MutationResult:
        data = self.graphql(DISCOUNT_DELETE_MUTATION, {"id": discount_id})
        payload = data.get("discountAutomaticDelete") or {}
        return MutationResult(
            id=payload.get("deletedAutomaticDiscountId"),
            user_errors=_user_error_messages(payload),
        )

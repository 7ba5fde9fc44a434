from typing import Iterable, List, Optional


class QuantityBreaksError(Exception):
    """
    Base class for failures raised while reconciling quantity-break rules.

    Each error carries the human-readable messages that are returned to the
    caller in the ``errors`` field of an operation result.
    """

    default_message = "Quantity breaks operation failed."

    def __init__(self, messages: Optional[Iterable[str]] = None):
        self.messages: List[str] = [str(m) for m in (messages or [])] or [self.default_message]
        super().__init__("; ".join(self.messages))


class ValidationError(QuantityBreaksError):
    default_message = "Invalid input."


class RuleNotFound(QuantityBreaksError):
    default_message = "Rule not found."


class RemoteMutationError(QuantityBreaksError):
    default_message = "Shopify rejected the discount change."


class PersistenceError(QuantityBreaksError):
    default_message = "Failed to save quantity break settings."


class ProjectionError(QuantityBreaksError):
    default_message = "Failed to update product discount tiers."


class ShopifyAPIError(QuantityBreaksError):
    """Transport-level failure: HTTP error, network error or top-level GraphQL errors."""

    default_message = "Shopify API request failed."

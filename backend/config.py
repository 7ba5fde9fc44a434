import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class AppConfig:
    # Shopify Admin API
    SHOPIFY_API_VERSION: str = field(default_factory=lambda: os.environ.get("SHOPIFY_API_VERSION", "2025-10"))
    SHOPIFY_REQUEST_TIMEOUT: float = field(
        default_factory=lambda: float(os.environ.get("SHOPIFY_REQUEST_TIMEOUT", "30"))
    )

    # Storage
    DATABASE_URL: str = field(default_factory=lambda: os.environ.get("DATABASE_URL", "sqlite:///quantity_breaks.db"))

    # Metafield layout shared by the shop document and product projections
    METAFIELD_NAMESPACE: str = "quantity_breaks"
    METAFIELD_KEY: str = "discounts"
    METAFIELD_TYPE: str = "json"
    METAFIELDS_BATCH_SIZE: int = 25

    PRODUCT_GID_PREFIX: str = "gid://shopify/Product/"

    PORT: int = field(default_factory=lambda: int(os.environ.get("PORT", "8000")))


config = AppConfig()

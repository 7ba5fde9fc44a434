import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from base import Base
from config import config

logger = logging.getLogger(__name__)

engine = create_engine(config.DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def init_db() -> None:
    """
    Creates the shop session table when it does not exist yet.
    """
    import schema
    Base.metadata.create_all(bind=engine)

def get_db():
    """
    Dependency for generating a new SQLAlchemy session.

    Yields:
        An active database session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def save_shop_session(db, shop: str, access_token: str, scope: Optional[str] = None):
    """
    Stores or replaces the offline access token for a shop.

    Args:
        db: SQLAlchemy database session.
        shop: The shop's myshopify domain (e.g. 'example.myshopify.com').
        access_token: Offline Admin API access token.
        scope: Comma-separated granted scopes, if known.

    Returns:
        The persisted ShopSession instance.
    """
    from schema import ShopSession
    shop_session = db.query(ShopSession).filter_by(shop=shop).first()
    if shop_session is None:
        shop_session = ShopSession(shop=shop)
        db.add(shop_session)
    shop_session.access_token = access_token
    shop_session.scope = scope
    shop_session.installed_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(f"Stored offline session for {shop}")
    return shop_session

if __name__ == "__main__":
    init_db()

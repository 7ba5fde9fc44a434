from sqlalchemy import Column, String, DateTime
from base import Base


class ShopSession(Base):
    """Offline Admin API credentials for an installed shop."""
    __tablename__ = 'shop_sessions'
    shop = Column(String, primary_key=True)
    access_token = Column(String, nullable=False)
    scope = Column(String)
    installed_at = Column(DateTime)

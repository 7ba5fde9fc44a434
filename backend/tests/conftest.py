import pytest
from unittest.mock import patch
from flask import Flask
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from base import Base
from db import save_shop_session
from routes.rules import rules_bp
from helpers import FakeShopifyClient, SHOP
import schema

@pytest.fixture
def engine():
    """In-memory SQLite DB for fast testing."""
    _engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(_engine)
    yield _engine
    Base.metadata.drop_all(_engine)

@pytest.fixture
def db_session(engine):
    """Provides a transactional database session."""
    TestSession = sessionmaker(bind=engine)
    s = TestSession()
    try:
        yield s
    finally:
        s.close()

@pytest.fixture
def fake_shopify():
    """Recording Shopify double; seed ``fake_shopify.metafields`` to preload a document."""
    return FakeShopifyClient()

@pytest.fixture
def app(engine, db_session, fake_shopify):
    """Provides a Flask app with the rules blueprint, an installed shop and a fake Admin API."""
    TestSession = sessionmaker(bind=engine)

    def mock_get_db():
        s = TestSession()
        try:
            yield s
        finally:
            s.close()

    save_shop_session(db_session, SHOP, "shpat_test_token", "write_discounts,read_products")

    flask_app = Flask(__name__)
    flask_app.register_blueprint(rules_bp, url_prefix="/api/v1")
    flask_app.config["TESTING"] = True

    with patch("routes.rules.get_db", mock_get_db), \
         patch("routes.rules.ShopifyAdminClient", return_value=fake_shopify):
        yield flask_app

@pytest.fixture
def client(app):
    """Provides a Flask test client."""
    return app.test_client()

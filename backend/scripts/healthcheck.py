import os
import sys
import requests
from dotenv import load_dotenv

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

def print_status(check_name: str, status: bool, details: str = ""):
    """
    Renders the status of a health system check to the console.

    Args:
        check_name: Human-readable identifier for the check.
        status: Boolean indicating success or failure.
        details: Optional supplementary information (e.g., file paths, masked keys).
    """
    color = "\033[92m[OK]\033[0m" if status else "\033[91m[FAIL]\033[0m"
    print(f"{color} {check_name:<30} {details}")

def run_healthcheck():
    """
    Coordinates a verification of the backend environment.

    Validates environment variables, the shop session table and Admin API
    access for every registered shop.
    """
    print("\n=== Quantity Breaks Health Verification ===\n")

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    env_path = os.path.join(base_dir, ".env")

    # 1. Check .env file
    has_env = os.path.exists(env_path)
    print_status(".env file exists", has_env, env_path)
    if has_env:
        load_dotenv(env_path)

    # Imported after .env is loaded so config sees the overrides
    from config import config
    from db import init_db, get_db
    from schema import ShopSession
    from services.errors import ShopifyAPIError
    from services.shopify import ShopifyAdminClient

    # 2. Check essential env vars
    print_status("SHOPIFY_API_VERSION", True, config.SHOPIFY_API_VERSION)
    print_status("DATABASE_URL", bool(os.environ.get("DATABASE_URL")), config.DATABASE_URL)

    # 3. Check Database
    try:
        init_db()
        db = next(get_db())
        shops = db.query(ShopSession).all()
        db.close()
        print_status("Shop sessions table", True, f"{len(shops)} shops registered")
    except Exception as e:
        print_status("Shop sessions table", False, str(e))
        sys.exit(1)

    # 4. Verify Admin API access per shop
    for shop_session in shops:
        token = shop_session.access_token
        masked = f"{token[:5]}...{token[-4:]}" if len(token) > 10 else "***"
        try:
            client = ShopifyAdminClient(shop_session.shop, token)
            shop_id = client.get_shop_id()
            print_status(f"Admin API: {shop_session.shop}", bool(shop_id), f"{shop_id} ({masked})")
        except (ShopifyAPIError, requests.RequestException) as e:
            print_status(f"Admin API: {shop_session.shop}", False, str(e))

    print("\nHealth check completed.")

if __name__ == "__main__":
    run_healthcheck()

#!/usr/bin/env python3
import os
import sys
import argparse

# Add the parent directory to sys.path to allow imports from the backend
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from db import init_db, get_db, save_shop_session
from schema import ShopSession

def main():
    """
    CLI utility for storing a shop's offline Admin API token.

    The token is normally obtained by the app's OAuth install flow; this
    registers it so the rules API can act on the shop's behalf.
    """
    parser = argparse.ArgumentParser(description="Register or list installed shops.")
    parser.add_argument("shop", nargs="?", help="Shop domain, e.g. example.myshopify.com")
    parser.add_argument("--token", default=os.environ.get("SHOPIFY_ACCESS_TOKEN"), help="Offline access token")
    parser.add_argument("--scope", default=os.environ.get("SCOPES"), help="Granted scopes")
    args = parser.parse_args()

    init_db()
    db = next(get_db())
    try:
        if not args.shop:
            for shop_session in db.query(ShopSession).order_by(ShopSession.shop).all():
                print(shop_session.to_dict(exclude=("access_token",)))
            return

        if not args.token:
            print("An access token is required (--token or SHOPIFY_ACCESS_TOKEN).")
            sys.exit(1)

        save_shop_session(db, args.shop, args.token, args.scope)
        print(f"Registered {args.shop}.")
    finally:
        db.close()

if __name__ == "__main__":
    main()

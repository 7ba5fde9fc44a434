import json
from services.shopify import MutationResult

SHOP = "example.myshopify.com"
SHOP_ID = "gid://shopify/Shop/1"
P1 = "gid://shopify/Product/1"
P2 = "gid://shopify/Product/2"
P3 = "gid://shopify/Product/3"


class FakeShopifyClient:
    """
    In-memory stand-in for ShopifyAdminClient.

    Records every call in ``calls`` as (method, args) tuples and keeps
    metafields in ``metafields`` keyed by (owner_id, namespace, key).
    Set ``fail[method]`` to a list of messages to make that method report
    user errors, or ``fail_ids[method][discount_id]`` to fail a single
    discount. ``fail["set_shop_metadata"]`` targets the shop document write,
    ``fail["set_metadata"]`` the product projection writes.
    """

    def __init__(self, document=None):
        self.calls = []
        self.metafields = {}
        self.fail = {}
        self.fail_ids = {}
        self._next_discount = 100
        if document is not None:
            self.seed(document)

    def seed(self, document):
        self.metafields[(SHOP_ID, "quantity_breaks", "discounts")] = json.dumps(document)

    def _errors(self, method, discount_id=None):
        if discount_id is not None and discount_id in self.fail_ids.get(method, {}):
            return list(self.fail_ids[method][discount_id])
        return list(self.fail.get(method, []))

    # --- helpers for assertions ---

    def document(self):
        return json.loads(self.metafields[(SHOP_ID, "quantity_breaks", "discounts")])

    def projection(self, product_id):
        raw = self.metafields.get((product_id, "quantity_breaks", "discounts"))
        return json.loads(raw) if raw is not None else None

    def called(self, method):
        return [args for name, args in self.calls if name == method]

    # --- service interface ---

    def get_shop_id(self):
        self.calls.append(("get_shop_id", ()))
        return SHOP_ID

    def get_metadata(self, owner_id, namespace, key):
        self.calls.append(("get_metadata", (owner_id, namespace, key)))
        return self.metafields.get((owner_id, namespace, key))

    def set_metadata(self, entries):
        self.calls.append(("set_metadata", (entries,)))
        owners = [e["ownerId"] for e in entries]
        method = "set_shop_metadata" if SHOP_ID in owners else "set_metadata"
        errors = self._errors(method)
        if errors:
            return errors
        for entry in entries:
            self.metafields[(entry["ownerId"], entry["namespace"], entry["key"])] = entry["value"]
        return []

    def get_product_summaries(self, product_ids):
        self.calls.append(("get_product_summaries", (list(product_ids),)))
        return [{"id": pid, "title": f"Product {pid.rsplit('/', 1)[-1]}", "imageUrl": ""} for pid in product_ids]

    def create_automatic_discount(self, discount_input):
        self.calls.append(("create_automatic_discount", (discount_input,)))
        errors = self._errors("create_automatic_discount")
        if errors:
            return MutationResult(user_errors=errors)
        self._next_discount += 1
        return MutationResult(id=f"gid://shopify/DiscountAutomaticNode/{self._next_discount}")

    def update_automatic_discount(self, discount_id, discount_input):
        self.calls.append(("update_automatic_discount", (discount_id, discount_input)))
        errors = self._errors("update_automatic_discount", discount_id)
        return MutationResult(id=None if errors else discount_id, user_errors=errors)

    def activate_automatic_discount(self, discount_id):
        self.calls.append(("activate_automatic_discount", (discount_id,)))
        return self._errors("activate_automatic_discount", discount_id)

    def deactivate_automatic_discount(self, discount_id):
        self.calls.append(("deactivate_automatic_discount", (discount_id,)))
        return self._errors("deactivate_automatic_discount", discount_id)

    def delete_automatic_discount(self, discount_id):
        self.calls.append(("delete_automatic_discount", (discount_id,)))
        errors = self._errors("delete_automatic_discount", discount_id)
        return MutationResult(id=None if errors else discount_id, user_errors=errors)


def make_tier(title, min_quantity, percent_off, discount_id=""):
    return {"title": title, "min_quantity": min_quantity, "percent_off": percent_off, "discount_id": discount_id}


def make_rule(title, products, tiers, status="active"):
    return {"title": title, "status": status, "products": list(products), "tiers": list(tiers)}

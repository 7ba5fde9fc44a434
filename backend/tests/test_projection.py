import json
from services.projection import build_product_tier_projection, normalize_tier_for_projection, recompute_product_projections
from helpers import FakeShopifyClient, P1, P2, P3, make_rule, make_tier


def _discounts():
    return [
        make_rule("Socks", [P1, P2], [make_tier("5+", 5, 10), make_tier("10+", 10, 15)]),
        make_rule("Bundle", [P2], [make_tier("5+ bundle", 5, 20), make_tier("2+", 2, 5)]),
        make_rule("Other", [P3], [make_tier("3+", 3, 50)]),
    ]


# --- normalize_tier_for_projection ---

def test_tier_validation_rules():
    assert normalize_tier_for_projection({"min_quantity": 0, "percent_off": 10}) is None
    assert normalize_tier_for_projection({"min_quantity": 3, "percent_off": 101}) is None
    assert normalize_tier_for_projection({"min_quantity": 3, "percent_off": -1}) is None
    assert normalize_tier_for_projection({"min_quantity": "x", "percent_off": 10}) is None
    assert normalize_tier_for_projection({"min_quantity": 3, "percent_off": 10}) == {"min_quantity": 3, "percent_off": 10}


def test_tier_accepts_string_fields_and_fractional_percent():
    assert normalize_tier_for_projection({"min_quantity": "4", "percent_off": "12.5"}) == {"min_quantity": 4, "percent_off": 12.5}
    assert normalize_tier_for_projection({"min_quantity": 4, "percent_off": "0"}) == {"min_quantity": 4, "percent_off": 0}


# --- build_product_tier_projection ---

def test_projection_single_rule():
    assert build_product_tier_projection(_discounts(), P1) == [
        {"min_quantity": 5, "percent_off": 10},
        {"min_quantity": 10, "percent_off": 15},
    ]


def test_projection_merges_rules_keeping_best_discount_per_threshold():
    assert build_product_tier_projection(_discounts(), P2) == [
        {"min_quantity": 2, "percent_off": 5},
        {"min_quantity": 5, "percent_off": 20},
        {"min_quantity": 10, "percent_off": 15},
    ]


def test_projection_is_strictly_ascending_with_max_percent():
    discounts = [
        make_rule("A", [P1], [make_tier("a", 7, 5), make_tier("b", 3, 30), make_tier("c", 7, 12)]),
        make_rule("B", [P1], [make_tier("d", 3, 25), make_tier("e", 1, 1), make_tier("f", 7, 9)]),
    ]
    projection = build_product_tier_projection(discounts, P1)
    thresholds = [t["min_quantity"] for t in projection]
    assert thresholds == sorted(set(thresholds))
    assert {t["min_quantity"]: t["percent_off"] for t in projection} == {1: 1, 3: 30, 7: 12}


def test_projection_skips_invalid_tiers():
    discounts = [make_rule("A", [P1], [make_tier("bad", 0, 10), make_tier("also bad", 2, 150), make_tier("ok", 2, 10)])]
    assert build_product_tier_projection(discounts, P1) == [{"min_quantity": 2, "percent_off": 10}]


def test_projection_for_untargeted_product_is_empty():
    assert build_product_tier_projection(_discounts(), "gid://shopify/Product/999") == []


def test_projection_uses_legacy_tier_products():
    legacy = {"title": "Legacy", "tiers": [{"min_quantity": 4, "percent_off": 8, "products": [P3]}]}
    assert build_product_tier_projection([legacy], P3) == [{"min_quantity": 4, "percent_off": 8}]


def test_projection_tolerates_malformed_document():
    assert build_product_tier_projection(None, P1) == []
    assert build_product_tier_projection(["junk", {"tiers": "nope", "products": [P1]}], P1) == []


# --- recompute_product_projections ---

def test_recompute_writes_projection_per_product():
    fake = FakeShopifyClient()
    errors = recompute_product_projections(fake, _discounts(), [P1, P2, "bogus"])
    assert errors == []
    assert fake.projection(P1) == [{"min_quantity": 5, "percent_off": 10}, {"min_quantity": 10, "percent_off": 15}]
    entries = fake.called("set_metadata")[0][0]
    assert [e["ownerId"] for e in entries] == [P1, P2]
    assert all(e["namespace"] == "quantity_breaks" and e["key"] == "discounts" and e["type"] == "json" for e in entries)


def test_recompute_writes_empty_array_for_products_without_tiers():
    fake = FakeShopifyClient()
    recompute_product_projections(fake, [], [P1])
    entry = fake.called("set_metadata")[0][0][0]
    assert entry["value"] == "[]"


def test_recompute_no_products_makes_no_calls():
    fake = FakeShopifyClient()
    assert recompute_product_projections(fake, _discounts(), []) == []
    assert fake.calls == []


def test_recompute_batches_at_most_25_and_continues_after_failure():
    fake = FakeShopifyClient()
    products = [f"gid://shopify/Product/{i}" for i in range(1, 61)]
    discounts = [make_rule("All", products, [make_tier("2+", 2, 10)])]

    batch_results = iter([[], ["Owner not found"], []])
    original = fake.set_metadata

    def flaky(entries):
        errors = next(batch_results)
        if errors:
            fake.calls.append(("set_metadata", (entries,)))
            return errors
        return original(entries)

    fake.set_metadata = flaky
    errors = recompute_product_projections(fake, discounts, products)

    sizes = [len(args[0]) for args in fake.called("set_metadata")]
    assert sizes == [25, 25, 10]
    assert errors == ["Owner not found"]
    assert json.loads(fake.metafields[(products[-1], "quantity_breaks", "discounts")]) == [{"min_quantity": 2, "percent_off": 10}]

"""Stock aggregation tests."""

import random

from stockwatch.stock import aggregate, is_out_of_stock, product_stock


def _product(*quantities):
    return {"variants": [{"inventory_quantity": q} for q in quantities]}


# ── Per-product stock ──

def test_negative_and_positive_sum_is_out_of_stock():
    # -3 + 2 = -1 <= 0
    assert is_out_of_stock(_product(-3, 2))


def test_zero_is_out_of_stock():
    assert is_out_of_stock(_product(0))


def test_one_is_in_stock():
    assert not is_out_of_stock(_product(1))


def test_missing_quantity_counts_as_zero():
    product = {"variants": [{"id": 1}, {"inventory_quantity": None}, {"inventory_quantity": 4}]}
    assert product_stock(product) == 4


def test_product_without_variants_is_out_of_stock():
    assert is_out_of_stock({"variants": []})
    assert is_out_of_stock({})


# ── Brand snapshot ──

def test_acme_scenario():
    products = [_product(0), _product(-2), _product(5)]
    snap = aggregate("Acme", products)
    assert snap.brand == "Acme"
    assert snap.total_products == 3
    assert snap.out_of_stock_products == 2
    assert snap.in_stock_products == 1
    assert snap.all_out_of_stock is False


def test_all_depleted():
    snap = aggregate("Acme", [_product(0), _product(-1, 1)])
    assert snap.all_out_of_stock is True
    assert snap.in_stock_products == 0


def test_empty_brand_is_not_all_out_of_stock():
    snap = aggregate("Ghost", [])
    assert snap.total_products == 0
    assert snap.all_out_of_stock is False


def test_counts_always_add_up():
    rng = random.Random(1234)
    for _ in range(200):
        products = [
            _product(*[rng.randint(-5, 5) for _ in range(rng.randint(0, 4))])
            for _ in range(rng.randint(0, 8))
        ]
        snap = aggregate("X", products)
        assert snap.out_of_stock_products + snap.in_stock_products == snap.total_products
        assert snap.all_out_of_stock == (snap.total_products > 0 and snap.in_stock_products == 0)


def test_to_dict():
    snap = aggregate("Acme", [_product(1)])
    assert snap.to_dict() == {
        "brand": "Acme",
        "total_products": 1,
        "out_of_stock_products": 0,
        "in_stock_products": 1,
        "all_out_of_stock": False,
    }

"""Brand-level stock aggregation.

Reduces a vendor's product list to counts and a single "fully depleted"
flag. Pure: no I/O.
"""

from dataclasses import dataclass, asdict


@dataclass(frozen=True)
class BrandStockSnapshot:
    brand: str
    total_products: int
    out_of_stock_products: int
    in_stock_products: int
    all_out_of_stock: bool

    def to_dict(self) -> dict:
        return asdict(self)


def _quantity(variant: dict) -> int:
    qty = variant.get("inventory_quantity")
    if qty is None:
        return 0
    try:
        return int(qty)
    except (TypeError, ValueError):
        return 0


def product_stock(product: dict) -> int:
    """Sum of inventory_quantity across variants. Negative (oversold) counts."""
    return sum(_quantity(v) for v in product.get("variants") or [])


def is_out_of_stock(product: dict) -> bool:
    return product_stock(product) <= 0


def aggregate(brand: str, products: list[dict]) -> BrandStockSnapshot:
    """Build a snapshot. An empty brand is never all-out-of-stock."""
    total = len(products)
    oos = sum(1 for p in products if is_out_of_stock(p))
    return BrandStockSnapshot(
        brand=brand,
        total_products=total,
        out_of_stock_products=oos,
        in_stock_products=total - oos,
        all_out_of_stock=total > 0 and oos == total,
    )

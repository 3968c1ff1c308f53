"""
Cache key naming for Farmline.

Publisher, worker and API all build cache keys through these functions so
they never disagree on a key's shape.
"""

import json
from typing import Any, Mapping, Optional

PRODUCTS_LIST_PATTERN = "products:list:*"


def product_key(product_id: str) -> str:
    return f"product:{product_id}"


def products_list_key(filters: Optional[Mapping[str, Any]] = None) -> str:
    """Key for a cached product listing; filters are serialized as compact JSON."""
    if filters is None:
        return "products:list:all"
    return f"products:list:{json.dumps(filters, separators=(',', ':'), ensure_ascii=False)}"


def farmer_products_key(farmer_id: str) -> str:
    return f"farmer:{farmer_id}:products"


def user_orders_key(user_id: str) -> str:
    return f"user:{user_id}:orders"


def farmer_orders_key(farmer_id: str) -> str:
    return f"farmer:{farmer_id}:orders"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def user_cart_key(user_id: str) -> str:
    return f"user:{user_id}:cart"


def farmer_ratings_key(farmer_id: str) -> str:
    return f"farmer:{farmer_id}:ratings"

"""Map source product payloads onto catalog item columns."""

from typing import Any

from catalog_sync.timeutils import parse_timestamp


def transform_product(product: dict[str, Any]) -> dict[str, Any]:
    """Transform a fetched product into ``CatalogItem`` column values.

    Raises ``ValueError`` when the payload has no id.
    """
    item_id = str(product.get("id") or "").strip()
    if not item_id:
        raise ValueError("Product payload has no id")

    variants = [
        {
            "variant_id": str(variant["id"]),
            "price": variant.get("price"),
            "sku": variant.get("sku") or "",
            "compare_at_price": variant.get("compare_at_price"),
            "inventory_quantity": variant.get("inventory_quantity"),
            "inventory_item_id": variant.get("inventory_item_id"),
        }
        for variant in product.get("variants") or []
    ]

    return {
        "item_id": item_id,
        "title": product.get("title") or "",
        "description": product.get("description"),
        "handle": product.get("handle") or "",
        "category": product.get("product_type") or None,
        "vendor": product.get("vendor") or None,
        "tags": sorted({str(tag) for tag in product.get("tags") or []}),
        "variants": variants,
        "source_created_at": parse_timestamp(product.get("created_at")),
        "source_updated_at": parse_timestamp(product.get("updated_at")),
    }

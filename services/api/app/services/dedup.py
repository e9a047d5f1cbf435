"""Normalization helpers for catalog identity and dedup.

Attribute identity:
- Option/attribute maps are compared after lower-casing and trimming keys and values
  ({"Color": "Red "} == {"color": "red"}); blank entries are dropped.
- Inside one master product the normalized map is the dedup key when no
  GTIN/MPN is available.

Identifiers:
- Barcodes/SKUs are trimmed; empty strings count as missing.

Slugs and SKUs:
- Product slugs are slugified title/handle + short random suffix (globally unique).
- Internal SKUs are derived from the owning product and staging variant ids.
"""

from collections.abc import Mapping
import re
from typing import Any
from uuid import uuid4


def normalize_identifier(value: Any) -> str | None:
    """Trim a barcode/SKU; return None when missing or blank."""
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def normalize_attributes(raw: Mapping[str, Any] | None) -> dict[str, str]:
    """Lower-case and trim attribute keys and values, dropping blank entries.

    Example:
        >>> normalize_attributes({"Color": " Red", "Size": ""})
        {"color": "red"}
    """
    if not raw:
        return {}
    out: dict[str, str] = {}
    for k, v in raw.items():
        key = str(k).strip().lower()
        value = "" if v is None else str(v).strip().lower()
        if key and value:
            out[key] = value
    return out


def slugify(value: str) -> str:
    """URL-safe slug: lowercase, hyphens for whitespace/punctuation."""
    return _normalize(value)


def generate_slug(title: str) -> str:
    """Slug for a new master product.

    Format: {slugified title}-{8 hex chars}
    """
    base = slugify(title)[:200] or "product"
    return f"{base}-{uuid4().hex[:8]}"


def compute_internal_sku(product_id: int, staging_variant_id: int) -> str:
    """Internal SKU for a master variant created from a staging variant.

    Format: P{product_id}-SV{staging_variant_id}
    """
    return f"P{product_id}-SV{staging_variant_id}"


def _normalize(value: str) -> str:
    """Normalize string for use in keys and slugs.

    - Lowercase
    - Replace whitespace/underscores/punctuation with hyphens
    - Remove other special characters
    - Collapse multiple hyphens
    """
    if not value:
        return ""

    result = value.lower().strip()
    result = re.sub(r"[\s_/.,&+]+", "-", result)
    result = re.sub(r"[^a-z0-9-]", "", result)
    result = re.sub(r"-+", "-", result)
    return result.strip("-")

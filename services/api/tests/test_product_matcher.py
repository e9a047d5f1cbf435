import pytest

from app.models import StagingProduct, StagingVariant
from app.services.product_matcher import (
    REASON_BARCODE_MATCH,
    REASON_NO_MATCH,
    REASON_TITLE_SIMILARITY,
    suggest_master_product,
)
from app.stores.postgres import get_session


def _staging(title: str, barcodes: list[str | None]) -> tuple[StagingProduct, list[StagingVariant]]:
    staging = StagingProduct(id=1, merchant_id=1, external_product_id="P1", raw_title=title)
    variants = [
        StagingVariant(id=i + 1, staging_product_id=1, external_variant_id=str(i + 1), raw_barcode=b)
        for i, b in enumerate(barcodes)
    ]
    return staging, variants


@pytest.mark.asyncio
async def test_barcode_match_wins_over_title(catalog):
    await catalog.product("Completely Different Title")
    by_barcode = await catalog.product("Zenith Sandal")
    await catalog.variant(by_barcode.id, internal_sku="Z-1", gtin="0001")
    await catalog.product("Acme Trail Runner")

    staging, variants = _staging("Acme Trail Runner", [None, "0001"])
    async with get_session() as session:
        suggestion = await suggest_master_product(session, staging, variants)
    assert suggestion.master_product_id == by_barcode.id
    assert suggestion.confidence == 100
    assert suggestion.reason == REASON_BARCODE_MATCH
    assert suggestion.matched_gtin == "0001"


@pytest.mark.asyncio
async def test_title_above_threshold_is_suggested(catalog):
    product = await catalog.product("Acme Trail Runner")

    staging, variants = _staging("Acme Trail Runner Shoes", [None])
    async with get_session() as session:
        suggestion = await suggest_master_product(session, staging, variants)
    assert suggestion.master_product_id == product.id
    assert suggestion.confidence == 85
    assert suggestion.reason == REASON_TITLE_SIMILARITY


@pytest.mark.asyncio
async def test_title_at_or_below_threshold_is_not_suggested(catalog):
    await catalog.product("Acme Trail")

    # "acme trail" vs "acme runner trail": 20/27 ~ 0.74
    staging, variants = _staging("Acme Trail Runner", ["9999"])
    async with get_session() as session:
        suggestion = await suggest_master_product(session, staging, variants)
    assert suggestion.master_product_id is None
    assert suggestion.confidence == 0
    assert suggestion.reason == REASON_NO_MATCH

"""Product matcher.

Suggests an existing master product for a staging product:
1. Any staging variant barcode equal to an active GTIN -> that variant's
   product, confidence 100 (reason BARCODE_MATCH).
2. Otherwise the best title over settings.title_suggest_threshold (0.8) ->
   confidence round(score * 100) (reason TITLE_SIMILARITY).
3. Otherwise unsuggested, confidence 0 (reason NO_MATCH).

Also runs the variant matcher over all variants of a staging product for the
admin review screen.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.models import MasterVariant, StagingProduct, StagingVariant
from app.services.identifier_index import list_active_variants, lookup_first_gtin
from app.services.taxonomy import resolve_brand_id
from app.services.title_similarity import find_best_title_match
from app.services.variant_matcher import (
    VariantMatchResult,
    VariantMatchSummary,
    VariantMatcher,
    summarize,
)
from app.settings import get_settings

REASON_BARCODE_MATCH = "BARCODE_MATCH"
REASON_TITLE_SIMILARITY = "TITLE_SIMILARITY"
REASON_NO_MATCH = "NO_MATCH"


@dataclass(frozen=True)
class ProductSuggestion:
    master_product_id: int | None
    confidence: int
    reason: str
    matched_gtin: str | None = None
    title_score: float | None = None


@dataclass
class VariantMatchReport:
    staging_product_id: int
    target_product_id: int | None
    brand_id: int | None
    results: list[VariantMatchResult] = field(default_factory=list)
    target_variants: list[MasterVariant] = field(default_factory=list)

    @property
    def summary(self) -> VariantMatchSummary:
        return summarize(self.results)


async def suggest_master_product(
    session: AsyncSession,
    staging: StagingProduct,
    variants: Sequence[StagingVariant],
) -> ProductSuggestion:
    """Compute the master product suggestion for one staging product."""
    hit = await lookup_first_gtin(session, (sv.raw_barcode for sv in variants))
    if hit is not None:
        return ProductSuggestion(
            master_product_id=hit.product_id,
            confidence=100,
            reason=REASON_BARCODE_MATCH,
            matched_gtin=hit.gtin,
        )

    match = await find_best_title_match(session, staging.raw_title)
    if match is not None and match.score > get_settings().title_suggest_threshold:
        return ProductSuggestion(
            master_product_id=match.product_id,
            confidence=int(round(match.score * 100)),
            reason=REASON_TITLE_SIMILARITY,
            title_score=match.score,
        )

    return ProductSuggestion(master_product_id=None, confidence=0, reason=REASON_NO_MATCH)


async def match_staging_variants(
    session: AsyncSession,
    staging: StagingProduct,
    variants: Sequence[StagingVariant],
    *,
    target_product_id: int | None,
    explicit: Mapping[int, MasterVariant | None] | None = None,
) -> VariantMatchReport:
    """Run the variant matcher for every staging variant (read-only preview)."""
    brand_id = staging.matched_brand_id
    if brand_id is None:
        brand_id = await resolve_brand_id(session, staging.raw_vendor)

    target_variants: list[MasterVariant] = []
    if target_product_id is not None:
        target_variants = await list_active_variants(session, target_product_id)

    matcher = VariantMatcher(
        session,
        target_product_id=target_product_id,
        target_variants=list(target_variants),
        brand_id=brand_id,
    )
    report = VariantMatchReport(
        staging_product_id=staging.id,
        target_product_id=target_product_id,
        brand_id=brand_id,
        target_variants=target_variants,
    )
    for sv in variants:
        report.results.append(await matcher.match(sv, explicit=explicit))
    return report

"""Variant matcher.

Matches one staging variant against a target master product's variants (or,
with no target, against the whole catalog). Strategies run in strict priority
order and the first hit wins:

1. manual           explicit admin mapping (incl. "create new")      100
2. gtin_exact       barcode == GTIN of a target variant                100
3. gtin_global      barcode == any active GTIN                         100  (+warning if other product)
4. mpn_brand        raw SKU == MPN under the resolved vendor brand      95
5. attribute_exact  normalized option map == target variant attributes  base - penalty
6. none             caller creates a new master variant                  0

The matcher only reads. Results carry the strategy tag, the matched variant
(or None), the confidence and an optional warning.

Attribute confidence:
- Equality is decided on normalized maps (lower-cased, trimmed). Extra or
  missing keys are no match at all, so they never reach the penalty.
- For every key pair that only lines up after normalization ("Color" vs
  "color"), the score drops by settings.attribute_match_key_penalty: the two
  feeds spell the option differently, so the pairing rests on folding rather
  than on identical data and an admin should look at it more closely.
- An empty option map matches a variant whose map is also empty (the
  product's single default variant).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import enum
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models import MasterProduct, MasterVariant, StagingVariant
from app.services.dedup import normalize_attributes, normalize_identifier
from app.services.identifier_index import lookup_by_gtin, lookup_by_mpn_and_brand
from app.settings import get_settings

logger = logging.getLogger("uvicorn.error")


class MatchStrategy(str, enum.Enum):
    MANUAL = "manual"
    GTIN_EXACT = "gtin_exact"
    GTIN_GLOBAL = "gtin_global"
    MPN_BRAND = "mpn_brand"
    ATTRIBUTE_EXACT = "attribute_exact"
    NONE = "none"


@dataclass
class VariantMatchResult:
    staging_variant_id: int
    strategy: MatchStrategy
    matched_variant: MasterVariant | None
    confidence: int
    warning: str | None = None

    @property
    def is_match(self) -> bool:
        return self.matched_variant is not None


@dataclass
class VariantMatchSummary:
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    warnings: int = 0
    by_strategy: dict[str, int] = field(default_factory=dict)


def summarize(results: Sequence[VariantMatchResult]) -> VariantMatchSummary:
    summary = VariantMatchSummary(total=len(results))
    for r in results:
        if r.is_match:
            summary.matched += 1
        else:
            summary.unmatched += 1
        if r.warning:
            summary.warnings += 1
        summary.by_strategy[r.strategy.value] = summary.by_strategy.get(r.strategy.value, 0) + 1
    return summary


def variant_attribute_key(variant: MasterVariant) -> dict[str, str]:
    """Normalized attribute map of a master variant (its dedup key within a product)."""
    return variant.normalized_attributes or normalize_attributes(variant.attributes)


def attribute_match_confidence(
    staging_options: Mapping[str, Any] | None,
    candidate_attributes: Mapping[str, Any] | None,
) -> int:
    """Confidence for an attribute_exact hit (assumes normalized maps are equal)."""
    settings = get_settings()
    staged = {str(k).strip().lower(): str(k).strip() for k in (staging_options or {})}
    existing = {str(k).strip().lower(): str(k).strip() for k in (candidate_attributes or {})}
    folded_pairs = sum(
        1 for key, raw in staged.items() if key in existing and existing[key] != raw
    )
    confidence = settings.attribute_match_base_confidence - folded_pairs * settings.attribute_match_key_penalty
    return max(confidence, 0)


class VariantMatcher:
    """Match staging variants against one target product (or unscoped).

    Args:
        session: Session used for read-only index lookups.
        target_product_id: Master product being merged into, or None for unscoped mode.
        target_variants: Active variants of the target product, oldest first.
            Callers may append variants created mid-merge so later staging
            variants with the same attributes reuse them.
        brand_id: Brand resolved from the staging product's vendor (scopes MPN lookups).
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        target_product_id: int | None,
        target_variants: list[MasterVariant] | None = None,
        brand_id: int | None = None,
    ) -> None:
        self.session = session
        self.target_product_id = target_product_id
        self.target_variants = target_variants if target_variants is not None else []
        self.brand_id = brand_id
        self._product_titles: dict[int, str] = {}

    async def match(
        self,
        staging_variant: StagingVariant,
        *,
        explicit: Mapping[int, MasterVariant | None] | None = None,
    ) -> VariantMatchResult:
        sv_id = staging_variant.id

        # 1) Explicit admin mapping (None means "create new")
        if explicit is not None and sv_id in explicit:
            return VariantMatchResult(
                staging_variant_id=sv_id,
                strategy=MatchStrategy.MANUAL,
                matched_variant=explicit[sv_id],
                confidence=100,
            )

        barcode = normalize_identifier(staging_variant.raw_barcode)

        # 2) GTIN among the target's variants
        if barcode and self.target_product_id is not None:
            for mv in self.target_variants:
                if mv.gtin == barcode:
                    return VariantMatchResult(
                        staging_variant_id=sv_id,
                        strategy=MatchStrategy.GTIN_EXACT,
                        matched_variant=mv,
                        confidence=100,
                    )

        # 3) GTIN anywhere in the catalog
        if barcode:
            hit = await lookup_by_gtin(self.session, barcode)
            if hit is not None:
                warning = None
                if self.target_product_id is not None and hit.product_id != self.target_product_id:
                    title = await self._product_title(hit.product_id)
                    warning = f'GTIN {barcode} found in different product: "{title}" (ID: {hit.product_id})'
                    logger.warning(
                        f"[variant_match] gtin_global cross-product staging_variant_id={sv_id} "
                        f"gtin={barcode} target_product_id={self.target_product_id} "
                        f"owner_product_id={hit.product_id}"
                    )
                return VariantMatchResult(
                    staging_variant_id=sv_id,
                    strategy=MatchStrategy.GTIN_GLOBAL,
                    matched_variant=hit,
                    confidence=100,
                    warning=warning,
                )

        # 4) MPN under the vendor's brand
        sku = normalize_identifier(staging_variant.raw_sku)
        if sku and self.brand_id is not None:
            hit = await lookup_by_mpn_and_brand(self.session, sku, self.brand_id)
            if hit is not None:
                return VariantMatchResult(
                    staging_variant_id=sv_id,
                    strategy=MatchStrategy.MPN_BRAND,
                    matched_variant=hit,
                    confidence=95,
                )

        # 5) Exact normalized attribute map among the target's variants.
        #    An empty map is an identity too: it is the product's default variant.
        options = staging_variant.raw_options
        wanted = normalize_attributes(options)
        if self.target_product_id is not None:
            for mv in self.target_variants:
                if variant_attribute_key(mv) == wanted:
                    return VariantMatchResult(
                        staging_variant_id=sv_id,
                        strategy=MatchStrategy.ATTRIBUTE_EXACT,
                        matched_variant=mv,
                        confidence=attribute_match_confidence(options, mv.attributes),
                    )

        return VariantMatchResult(
            staging_variant_id=sv_id,
            strategy=MatchStrategy.NONE,
            matched_variant=None,
            confidence=0,
        )

    async def _product_title(self, product_id: int) -> str:
        if product_id not in self._product_titles:
            product = await self.session.get(MasterProduct, product_id)
            self._product_titles[product_id] = product.title if product else ""
        return self._product_titles[product_id]

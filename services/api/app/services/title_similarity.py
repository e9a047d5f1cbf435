"""Title similarity scorer.

Scores a staged product title against active master product titles with
rapidfuzz token-sort ratio on normalized text (0.0-1.0).

Rules:
- Candidates must score above the floor (settings.title_similarity_floor, 0.4).
- Best = highest score; ties go to the lowest master product id.

The candidate list is a snapshot of active master products. It may be served
from Redis (best effort) and is invalidated when a merge creates a product.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import re

from rapidfuzz import fuzz
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import MasterProduct, ProductStatus
from app.settings import get_settings
from app.stores.redis import get_catalog_titles_cache, invalidate_catalog_titles_cache, set_catalog_titles_cache

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class TitleCandidate:
    product_id: int
    title: str


@dataclass(frozen=True)
class TitleMatch:
    product_id: int
    score: float


def normalize_title(title: str | None) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    s = (title or "").lower()
    s = re.sub(r"[^\w\s]+", " ", s)
    return re.sub(r"\s+", " ", s).strip()


def title_similarity(a: str | None, b: str | None) -> float:
    """Similarity of two titles in [0, 1]."""
    na, nb = normalize_title(a), normalize_title(b)
    if not na or not nb:
        return 0.0
    return fuzz.token_sort_ratio(na, nb) / 100.0


def best_title_match(
    title: str | None,
    candidates: Iterable[TitleCandidate],
    *,
    floor: float | None = None,
) -> TitleMatch | None:
    """Pick the best candidate scoring above `floor`."""
    if floor is None:
        floor = get_settings().title_similarity_floor

    best: TitleMatch | None = None
    for c in candidates:
        score = title_similarity(title, c.title)
        if score <= floor:
            continue
        if (
            best is None
            or score > best.score
            or (score == best.score and c.product_id < best.product_id)
        ):
            best = TitleMatch(product_id=c.product_id, score=score)
    return best


async def load_title_candidates(session: AsyncSession) -> list[TitleCandidate]:
    """Active master product titles, from the Redis snapshot when available."""
    try:
        cached = await get_catalog_titles_cache()
    except (RuntimeError, RedisError):
        cached = None
    if cached is not None:
        return [TitleCandidate(product_id=int(pid), title=str(t)) for pid, t in cached]

    res = await session.execute(
        select(MasterProduct.id, MasterProduct.title)
        .where(MasterProduct.status == ProductStatus.ACTIVE)
        .order_by(MasterProduct.id.asc())
    )
    rows = [TitleCandidate(product_id=pid, title=title) for pid, title in res.all()]

    ttl = get_settings().catalog_cache_ttl_seconds
    if ttl > 0:
        try:
            await set_catalog_titles_cache([[c.product_id, c.title] for c in rows], ttl=ttl)
        except RuntimeError:
            pass
        except RedisError as e:
            logger.warning(f"[title_similarity] cache write failed: {e}")
    return rows


async def find_best_title_match(session: AsyncSession, title: str | None) -> TitleMatch | None:
    candidates = await load_title_candidates(session)
    return best_title_match(title, candidates)


async def invalidate_title_candidates() -> None:
    """Forget the cached title snapshot (call after master catalog writes)."""
    try:
        await invalidate_catalog_titles_cache()
    except RuntimeError:
        pass
    except RedisError as e:
        logger.warning(f"[title_similarity] cache invalidation failed: {e}")

"""Margin & pricing calculator.

settlement = listed * (1 - margin / 100), rounded half-up to a whole minor unit.

Rule lookup picks the single active, currently valid rule with the most
specific scope for the merchant:
  brand+category > brand-only > category-only > merchant-only
No rule -> settlement equals listed (zero margin).

Writes (create/update) enforce "at most one active rule per scope at any time"
while holding a row lock on the merchant.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import enum
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import Brand, Category, MarginRule, Merchant

logger = logging.getLogger("uvicorn.error")

_HUNDRED = Decimal(100)


class _Unset(enum.Enum):
    """Marks a partial-update argument that was not supplied (None clears the field)."""

    UNSET = "UNSET"


_UNSET = _Unset.UNSET


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _windows_overlap(
    a_from: datetime,
    a_to: datetime | None,
    b_from: datetime,
    b_to: datetime | None,
) -> bool:
    a_from, b_from = _as_utc(a_from), _as_utc(b_from)
    a_ends_after_b_starts = a_to is None or _as_utc(a_to) > b_from
    b_ends_after_a_starts = b_to is None or _as_utc(b_to) > a_from
    return a_ends_after_b_starts and b_ends_after_a_starts


def rule_is_current(rule: MarginRule, at: datetime) -> bool:
    at = _as_utc(at)
    if not rule.is_active or _as_utc(rule.valid_from) > at:
        return False
    return rule.valid_to is None or _as_utc(rule.valid_to) > at


def apply_margin(listed_price_minor: int, margin_percentage: Decimal | float | int | str) -> int:
    """Apply a margin percentage to a listed price in minor units.

    Example:
        >>> apply_margin(10000, Decimal("5"))
        9500
    """
    margin = Decimal(str(margin_percentage))
    settlement = Decimal(listed_price_minor) * (_HUNDRED - margin) / _HUNDRED
    return int(settlement.quantize(Decimal(1), rounding=ROUND_HALF_UP))


async def find_applicable_margin_rule(
    session: AsyncSession,
    merchant_id: int,
    brand_id: int | None = None,
    category_id: int | None = None,
    *,
    at: datetime | None = None,
) -> MarginRule | None:
    """Most specific active rule for (merchant, brand, category) valid at `at`."""
    at = at or datetime.now(timezone.utc)
    res = await session.execute(
        select(MarginRule)
        .where(MarginRule.merchant_id == merchant_id, MarginRule.is_active.is_(True))
        .order_by(MarginRule.id.asc())
    )
    current = [r for r in res.scalars().all() if rule_is_current(r, at)]

    scopes: list[tuple[int | None, int | None]] = []
    if brand_id is not None and category_id is not None:
        scopes.append((brand_id, category_id))
    if brand_id is not None:
        scopes.append((brand_id, None))
    if category_id is not None:
        scopes.append((None, category_id))
    scopes.append((None, None))

    for scope in scopes:
        for rule in current:
            if (rule.brand_id, rule.category_id) == scope:
                return rule
    return None


async def compute_settlement_price(
    session: AsyncSession,
    listed_price_minor: int,
    merchant_id: int,
    brand_id: int | None = None,
    category_id: int | None = None,
) -> int:
    """Settlement price (minor units) after the applicable margin."""
    rule = await find_applicable_margin_rule(session, merchant_id, brand_id, category_id)
    if rule is None:
        return int(listed_price_minor)
    return apply_margin(listed_price_minor, rule.margin_percentage)


# ============================================================
# Margin rule administration
# ============================================================


def _parse_margin(value: Any) -> Decimal:
    try:
        margin = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(
            "Margin percentage must be a number",
            entity="margin_rule",
            field="margin_percentage",
            expected="number between 0 and 100",
            actual=str(value),
        ) from None
    if margin < 0 or margin > 100:
        raise ValidationError(
            "Margin percentage must be between 0 and 100",
            entity="margin_rule",
            field="margin_percentage",
            expected="0..100",
            actual=str(margin),
        )
    return margin.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


async def _lock_merchant(session: AsyncSession, merchant_id: int) -> Merchant:
    res = await session.execute(select(Merchant).where(Merchant.id == merchant_id).with_for_update())
    merchant = res.scalar_one_or_none()
    if merchant is None:
        raise NotFoundError("Merchant not found", entity="merchant", entity_id=merchant_id)
    return merchant


async def _ensure_scope_exists(session: AsyncSession, brand_id: int | None, category_id: int | None) -> None:
    if brand_id is not None and await session.get(Brand, brand_id) is None:
        raise NotFoundError("Brand not found", entity="brand", entity_id=brand_id, field="brand_id")
    if category_id is not None and await session.get(Category, category_id) is None:
        raise NotFoundError("Category not found", entity="category", entity_id=category_id, field="category_id")


async def _ensure_no_overlapping_rule(
    session: AsyncSession,
    *,
    merchant_id: int,
    brand_id: int | None,
    category_id: int | None,
    valid_from: datetime,
    valid_to: datetime | None,
    exclude_rule_id: int | None = None,
) -> None:
    res = await session.execute(
        select(MarginRule).where(
            MarginRule.merchant_id == merchant_id,
            MarginRule.is_active.is_(True),
        )
    )
    for other in res.scalars().all():
        if other.id == exclude_rule_id:
            continue
        if (other.brand_id, other.category_id) != (brand_id, category_id):
            continue
        if _windows_overlap(valid_from, valid_to, other.valid_from, other.valid_to):
            raise ConflictError(
                "An active margin rule already exists for this scope",
                entity="margin_rule",
                entity_id=other.id,
                extra={"merchant_id": merchant_id, "brand_id": brand_id, "category_id": category_id},
            )


def _check_window(valid_from: datetime, valid_to: datetime | None) -> None:
    if valid_to is not None and _as_utc(valid_to) <= _as_utc(valid_from):
        raise ValidationError(
            "valid_to must be after valid_from",
            entity="margin_rule",
            field="valid_to",
            expected=f"> {valid_from.isoformat()}",
            actual=valid_to.isoformat(),
        )


async def create_margin_rule(
    session: AsyncSession,
    *,
    merchant_id: int,
    margin_percentage: Any,
    brand_id: int | None = None,
    category_id: int | None = None,
    valid_from: datetime | None = None,
    valid_to: datetime | None = None,
) -> MarginRule:
    margin = _parse_margin(margin_percentage)
    valid_from = _as_utc(valid_from) if valid_from else datetime.now(timezone.utc)
    valid_to = _as_utc(valid_to) if valid_to else None
    _check_window(valid_from, valid_to)

    await _lock_merchant(session, merchant_id)
    await _ensure_scope_exists(session, brand_id, category_id)
    await _ensure_no_overlapping_rule(
        session,
        merchant_id=merchant_id,
        brand_id=brand_id,
        category_id=category_id,
        valid_from=valid_from,
        valid_to=valid_to,
    )

    rule = MarginRule(
        merchant_id=merchant_id,
        brand_id=brand_id,
        category_id=category_id,
        margin_percentage=margin,
        valid_from=valid_from,
        valid_to=valid_to,
        is_active=True,
    )
    session.add(rule)
    await session.flush()
    logger.info(
        f"[margins] created rule_id={rule.id} merchant_id={merchant_id} "
        f"brand_id={brand_id} category_id={category_id} margin={margin}"
    )
    return rule


async def update_margin_rule(
    session: AsyncSession,
    rule_id: int,
    *,
    margin_percentage: Decimal | str | float | _Unset = _UNSET,
    valid_to: datetime | None | _Unset = _UNSET,
    is_active: bool | None = None,
) -> MarginRule:
    """Partially update a rule; re-checks scope uniqueness when the rule stays/becomes active."""
    rule = await session.get(MarginRule, rule_id)
    if rule is None:
        raise NotFoundError("Margin rule not found", entity="margin_rule", entity_id=rule_id)

    await _lock_merchant(session, rule.merchant_id)

    if margin_percentage is not _UNSET:
        rule.margin_percentage = _parse_margin(margin_percentage)
    if valid_to is not _UNSET:
        new_to = _as_utc(valid_to) if valid_to else None
        _check_window(rule.valid_from, new_to)
        rule.valid_to = new_to
    if is_active is not None:
        rule.is_active = is_active

    if rule.is_active:
        await _ensure_no_overlapping_rule(
            session,
            merchant_id=rule.merchant_id,
            brand_id=rule.brand_id,
            category_id=rule.category_id,
            valid_from=rule.valid_from,
            valid_to=rule.valid_to,
            exclude_rule_id=rule.id,
        )
    await session.flush()
    return rule


async def list_margin_rules(
    session: AsyncSession,
    *,
    merchant_id: int | None = None,
    active_only: bool = False,
) -> list[MarginRule]:
    stmt = select(MarginRule).order_by(MarginRule.merchant_id.asc(), MarginRule.id.asc())
    if merchant_id is not None:
        stmt = stmt.where(MarginRule.merchant_id == merchant_id)
    if active_only:
        stmt = stmt.where(MarginRule.is_active.is_(True))
    res = await session.execute(stmt)
    return list(res.scalars().all())

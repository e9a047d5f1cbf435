"""Tests for the margin & pricing calculator and margin rule administration."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.errors import ConflictError, NotFoundError, ValidationError
from app.services.pricing import (
    apply_margin,
    compute_settlement_price,
    create_margin_rule,
    find_applicable_margin_rule,
    list_margin_rules,
    update_margin_rule,
)
from app.stores.postgres import get_session


def test_apply_margin_five_percent():
    assert apply_margin(10000, Decimal("5")) == 9500


def test_apply_margin_rounds_half_up():
    assert apply_margin(1001, Decimal("50")) == 501  # 500.5
    assert apply_margin(999, "12.5") == 874  # 874.125
    assert apply_margin(10000, 0) == 10000


@pytest.mark.asyncio
async def test_no_rule_means_settlement_equals_listed(catalog):
    merchant = await catalog.merchant()
    async with get_session() as session:
        assert await compute_settlement_price(session, 12345, merchant.id) == 12345


@pytest.mark.asyncio
async def test_merchant_wide_rule(catalog):
    merchant = await catalog.merchant()
    async with get_session() as session:
        await create_margin_rule(session, merchant_id=merchant.id, margin_percentage="5")
    async with get_session() as session:
        assert await compute_settlement_price(session, 10000, merchant.id) == 9500


@pytest.mark.asyncio
async def test_most_specific_scope_wins(catalog):
    merchant = await catalog.merchant()
    brand = await catalog.brand("Acme")
    category = await catalog.category("Shoes")
    other_category = await catalog.category("Bags")

    async with get_session() as session:
        await create_margin_rule(session, merchant_id=merchant.id, margin_percentage="5")
        await create_margin_rule(session, merchant_id=merchant.id, brand_id=brand.id, margin_percentage="10")
        await create_margin_rule(session, merchant_id=merchant.id, category_id=category.id, margin_percentage="15")
        await create_margin_rule(
            session,
            merchant_id=merchant.id,
            brand_id=brand.id,
            category_id=category.id,
            margin_percentage="20",
        )

    async with get_session() as session:
        assert await compute_settlement_price(session, 10000, merchant.id, brand.id, category.id) == 8000
        assert await compute_settlement_price(session, 10000, merchant.id, brand.id, other_category.id) == 9000
        assert await compute_settlement_price(session, 10000, merchant.id, None, category.id) == 8500
        assert await compute_settlement_price(session, 10000, merchant.id, None, other_category.id) == 9500
        assert await compute_settlement_price(session, 10000, merchant.id) == 9500


@pytest.mark.asyncio
async def test_expired_and_inactive_rules_are_ignored(catalog):
    merchant = await catalog.merchant()
    now = datetime.now(timezone.utc)
    async with get_session() as session:
        await create_margin_rule(
            session,
            merchant_id=merchant.id,
            margin_percentage="30",
            valid_from=now - timedelta(days=10),
            valid_to=now - timedelta(days=1),
        )
        rule = await create_margin_rule(session, merchant_id=merchant.id, margin_percentage="5")
        await update_margin_rule(session, rule.id, is_active=False)

    async with get_session() as session:
        assert await find_applicable_margin_rule(session, merchant.id) is None
        assert await compute_settlement_price(session, 10000, merchant.id) == 10000


@pytest.mark.asyncio
async def test_overlapping_rule_for_same_scope_conflicts(catalog):
    merchant = await catalog.merchant()
    async with get_session() as session:
        await create_margin_rule(session, merchant_id=merchant.id, margin_percentage="5")

    with pytest.raises(ConflictError):
        async with get_session() as session:
            await create_margin_rule(session, merchant_id=merchant.id, margin_percentage="7")

    async with get_session() as session:
        rules = await list_margin_rules(session, merchant_id=merchant.id)
    assert [r.margin_percentage for r in rules] == [Decimal("5.00")]


@pytest.mark.asyncio
async def test_future_window_after_current_rule_ends_is_allowed(catalog):
    merchant = await catalog.merchant()
    now = datetime.now(timezone.utc)
    async with get_session() as session:
        await create_margin_rule(
            session,
            merchant_id=merchant.id,
            margin_percentage="5",
            valid_to=now + timedelta(days=30),
        )
        await create_margin_rule(
            session,
            merchant_id=merchant.id,
            margin_percentage="8",
            valid_from=now + timedelta(days=30),
        )

    async with get_session() as session:
        rules = await list_margin_rules(session, merchant_id=merchant.id, active_only=True)
        assert len(rules) == 2
        assert await compute_settlement_price(session, 10000, merchant.id) == 9500


@pytest.mark.asyncio
async def test_partial_update_leaves_omitted_fields_alone(catalog):
    merchant = await catalog.merchant()
    until = datetime.now(timezone.utc) + timedelta(days=30)
    async with get_session() as session:
        rule = await create_margin_rule(session, merchant_id=merchant.id, margin_percentage="5", valid_to=until)

    async with get_session() as session:
        await update_margin_rule(session, rule.id, margin_percentage="7")
    async with get_session() as session:
        (reloaded,) = await list_margin_rules(session, merchant_id=merchant.id)
        assert reloaded.margin_percentage == Decimal("7.00")
        assert reloaded.valid_to is not None
        assert reloaded.is_active is True

    async with get_session() as session:
        await update_margin_rule(session, rule.id, valid_to=None)
    async with get_session() as session:
        (reloaded,) = await list_margin_rules(session, merchant_id=merchant.id)
        assert reloaded.valid_to is None
        assert reloaded.margin_percentage == Decimal("7.00")


@pytest.mark.asyncio
async def test_reactivating_overlapping_rule_conflicts(catalog):
    merchant = await catalog.merchant()
    async with get_session() as session:
        old = await create_margin_rule(session, merchant_id=merchant.id, margin_percentage="5")
        await update_margin_rule(session, old.id, is_active=False)
        await create_margin_rule(session, merchant_id=merchant.id, margin_percentage="6")

    with pytest.raises(ConflictError):
        async with get_session() as session:
            await update_margin_rule(session, old.id, is_active=True)


@pytest.mark.asyncio
@pytest.mark.parametrize("margin", ["-1", "100.01", "abc"])
async def test_margin_must_be_a_percentage(catalog, margin):
    merchant = await catalog.merchant()
    with pytest.raises(ValidationError):
        async with get_session() as session:
            await create_margin_rule(session, merchant_id=merchant.id, margin_percentage=margin)


@pytest.mark.asyncio
async def test_window_and_scope_validation(catalog):
    merchant = await catalog.merchant()
    now = datetime.now(timezone.utc)

    with pytest.raises(ValidationError):
        async with get_session() as session:
            await create_margin_rule(
                session,
                merchant_id=merchant.id,
                margin_percentage="5",
                valid_from=now,
                valid_to=now - timedelta(hours=1),
            )

    with pytest.raises(NotFoundError):
        async with get_session() as session:
            await create_margin_rule(session, merchant_id=merchant.id, brand_id=999, margin_percentage="5")

    with pytest.raises(NotFoundError):
        async with get_session() as session:
            await create_margin_rule(session, merchant_id=999, margin_percentage="5")

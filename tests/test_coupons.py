from datetime import timedelta

import pytest

from coupons import CouponFailure, CouponRejected, redeem_coupon, validate_coupon
from schemas import Coupon

pytestmark = pytest.mark.anyio


def coupon_input(owner, **overrides):
    data = {"user_id": owner.id, "code": "WELCOME", "discount_type": "percentage", "discount_value": 10}
    data.update(overrides)
    return data


async def rejection(storage, code, user_id, now=None):
    with pytest.raises(CouponRejected) as info:
        await validate_coupon(storage, code, user_id, now=now)
    return info.value.reason


async def test_used_count_always_starts_at_zero(storage, owner):
    coupon = await storage.create_coupon(coupon_input(owner, used_count=7))

    assert coupon.used_count == 0
    assert coupon.is_active is True


async def test_create_from_a_stored_coupon_resets_identity_and_usage(storage, owner):
    source = await storage.create_coupon(coupon_input(owner))
    copied = Coupon(**{**source.model_dump(), "code": "COPY", "used_count": 7})

    coupon = await storage.create_coupon(copied)

    assert coupon.used_count == 0
    assert coupon.id != source.id
    assert coupon.created_at > source.created_at


async def test_usage_limit_scenario(storage, owner):
    coupon = await storage.create_coupon(coupon_input(owner, usage_limit=1))

    assert (await validate_coupon(storage, "WELCOME", owner.id)).id == coupon.id

    await storage.update_coupon(coupon.id, {"used_count": 1})

    assert await rejection(storage, "WELCOME", owner.id) is CouponFailure.LIMIT_REACHED


async def test_unknown_code(storage, owner):
    assert await rejection(storage, "NOPE", owner.id) is CouponFailure.NOT_FOUND


async def test_inactive_wins_over_expired(storage, owner, clock):
    await storage.create_coupon(coupon_input(owner, is_active=False, expires_at=clock.now - timedelta(days=1)))

    assert await rejection(storage, "WELCOME", owner.id, now=clock.now) is CouponFailure.INACTIVE


async def test_limit_wins_over_expired(storage, owner, clock):
    coupon = await storage.create_coupon(coupon_input(owner, usage_limit=1, expires_at=clock.now - timedelta(days=1)))
    await storage.update_coupon(coupon.id, {"used_count": 1})

    assert await rejection(storage, "WELCOME", owner.id, now=clock.now) is CouponFailure.LIMIT_REACHED


async def test_expiry(storage, owner, clock):
    expires = clock.now + timedelta(hours=1)
    await storage.create_coupon(coupon_input(owner, expires_at=expires))

    assert (await validate_coupon(storage, "WELCOME", owner.id, now=expires - timedelta(minutes=1))).code == "WELCOME"
    assert await rejection(storage, "WELCOME", owner.id, now=expires + timedelta(minutes=1)) is CouponFailure.EXPIRED


async def test_codes_are_unique_per_owner_only(storage, owner):
    other = await storage.create_user({"email": "other@example.com", "password": "x"})
    mine = await storage.create_coupon(coupon_input(owner, code="SAVE10"))
    theirs = await storage.create_coupon(coupon_input(other, code="SAVE10", discount_type="fixed"))

    assert (await storage.get_coupon_by_code("SAVE10", owner.id)).id == mine.id
    assert (await storage.get_coupon_by_code("SAVE10", other.id)).id == theirs.id
    assert await storage.get_coupon_by_code("SAVE10", "someone-else") is None


async def test_redeem_increments_used_count(storage, owner):
    coupon = await storage.create_coupon(coupon_input(owner, usage_limit=2))

    coupon = await redeem_coupon(storage, coupon)
    assert coupon.used_count == 1
    coupon = await redeem_coupon(storage, coupon)
    assert coupon.used_count == 2

    assert await rejection(storage, "WELCOME", owner.id) is CouponFailure.LIMIT_REACHED


async def test_coupons_listing_and_delete(storage, owner):
    first = await storage.create_coupon(coupon_input(owner, code="A"))
    second = await storage.create_coupon(coupon_input(owner, code="B"))

    assert [c.id for c in await storage.get_coupons(owner.id)] == [second.id, first.id]
    assert await storage.delete_coupon(first.id) is True
    assert await storage.get_coupon(first.id) is None
    assert await storage.delete_coupon(first.id) is False


async def test_rejection_messages():
    assert str(CouponRejected(CouponFailure.NOT_FOUND)) == "Coupon not found"
    assert CouponRejected(CouponFailure.EXPIRED).message == "Coupon has expired"


async def test_coupons_filtered_by_active_flag(storage, owner):
    live = await storage.create_coupon(coupon_input(owner, code="LIVE"))
    paused = await storage.create_coupon(coupon_input(owner, code="PAUSED", is_active=False))

    assert [c.id for c in await storage.get_coupons(owner.id, active=True)] == [live.id]
    assert [c.id for c in await storage.get_coupons(owner.id, active=False)] == [paused.id]
    assert len(await storage.get_coupons(owner.id)) == 2

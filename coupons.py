"""Coupon rules, evaluated the same way whichever backend is in use."""

from datetime import datetime
from enum import Enum
from typing import Optional

from schemas import Coupon, utc_now


class CouponFailure(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    LIMIT_REACHED = "limit_reached"
    EXPIRED = "expired"


MESSAGES = {
    CouponFailure.NOT_FOUND: "Coupon not found",
    CouponFailure.INACTIVE: "Coupon is inactive",
    CouponFailure.LIMIT_REACHED: "Coupon usage limit reached",
    CouponFailure.EXPIRED: "Coupon has expired",
}


class CouponRejected(Exception):
    def __init__(self, reason: CouponFailure):
        self.reason = reason
        super().__init__(MESSAGES[reason])

    @property
    def message(self) -> str:
        return MESSAGES[self.reason]


async def validate_coupon(storage, code: str, user_id: str, now: Optional[datetime] = None) -> Coupon:
    """Return the owner's coupon for ``code`` or raise CouponRejected.

    Checks run in a fixed order (not found, inactive, limit, expired) so a
    coupon failing several rules always reports the first one.
    """
    coupon = await storage.get_coupon_by_code(code, user_id)
    if coupon is None:
        raise CouponRejected(CouponFailure.NOT_FOUND)
    if not coupon.is_active:
        raise CouponRejected(CouponFailure.INACTIVE)
    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponRejected(CouponFailure.LIMIT_REACHED)
    if coupon.expires_at is not None and coupon.expires_at < (now or utc_now()):
        raise CouponRejected(CouponFailure.EXPIRED)
    return coupon


async def redeem_coupon(storage, coupon: Coupon) -> Optional[Coupon]:
    # read-modify-write; concurrent redemptions can overshoot usage_limit
    return await storage.update_coupon(coupon.id, {"used_count": coupon.used_count + 1})

"""Coupon evaluation and redemption."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from models.coupon import DiscountType
from utils.coupons import drop_user_redemption_hold, evaluate_coupon, redeem_coupon, release_coupon
from utils.errors import CouponError, StateConflictError


async def test_fixed_coupon(db, make_coupon):
    await make_coupon(code="SAVE50", value=50)
    result = await evaluate_coupon(db, code=" save50 ", subtotal=1000)
    assert result.code == "SAVE50"
    assert result.discount == Decimal("50")
    assert result.wallet_cashback == 0


async def test_percentage_coupon_respects_cap(db, make_coupon):
    await make_coupon(code="TEN", discount_type="percentage", value=10, maxDiscount=75)
    capped = await evaluate_coupon(db, code="TEN", subtotal=1200)
    uncapped = await evaluate_coupon(db, code="TEN", subtotal=400)
    assert capped.discount == Decimal("75")
    assert uncapped.discount == Decimal("40")


async def test_wallet_coupon_is_cashback_only(db, make_coupon):
    await make_coupon(code="WALLET100", discount_type="wallet", value=100)
    result = await evaluate_coupon(db, code="WALLET100", subtotal=800)
    assert result.discount_type == DiscountType.WALLET
    assert result.discount == 0
    assert result.wallet_cashback == Decimal("100")


@pytest.mark.parametrize(
    "fields,reason,message",
    [
        ({"isActive": False}, CouponError.INVALID, "Invalid coupon code"),
        (
            {"expiryDate": datetime.utcnow() - timedelta(days=1)},
            CouponError.EXPIRED,
            "Coupon has expired",
        ),
        (
            {"usageLimit": 5, "usedCount": 5},
            CouponError.USAGE_LIMIT_EXCEEDED,
            "Coupon usage limit exceeded",
        ),
        (
            {"minOrderAmount": 1500},
            CouponError.MINIMUM_NOT_MET,
            "Minimum order amount of ₹1500 required for this coupon",
        ),
    ],
)
async def test_rejections(db, make_coupon, fields, reason, message):
    await make_coupon(code="CAKE", **fields)
    with pytest.raises(CouponError) as exc:
        await evaluate_coupon(db, code="CAKE", subtotal=1000)
    assert exc.value.reason == reason
    assert exc.value.message == message


async def test_unknown_code(db):
    with pytest.raises(CouponError) as exc:
        await evaluate_coupon(db, code="NOPE", subtotal=1000)
    assert exc.value.reason == CouponError.INVALID


async def test_per_user_limit_counts_live_orders_only(db, make_coupon, make_user, make_order):
    await make_coupon(code="ONCE", usageLimitPerUser=1)
    user = await make_user()

    await make_order(user, couponCode="ONCE", orderStatus="Cancelled")
    await make_order(user, couponCode="ONCE", paymentStatus="Failed")
    result = await evaluate_coupon(db, code="ONCE", subtotal=900, user_id=user["_id"])
    assert result.code == "ONCE"

    await make_order(user, couponCode="ONCE")
    with pytest.raises(CouponError) as exc:
        await evaluate_coupon(db, code="ONCE", subtotal=900, user_id=user["_id"])
    assert exc.value.reason == CouponError.PER_USER_LIMIT_EXCEEDED
    assert "maximum 1 time(s)" in exc.value.message


async def test_concurrent_redemptions_never_exceed_limit(db, make_coupon):
    coupon = await make_coupon(code="LAST3", usageLimit=3)
    result = await evaluate_coupon(db, code="LAST3", subtotal=1000)

    outcomes = await asyncio.gather(
        *(redeem_coupon(db, result) for _ in range(8)),
        return_exceptions=True,
    )

    won = [o for o in outcomes if o is None]
    lost = [o for o in outcomes if isinstance(o, CouponError)]
    assert len(won) == 3
    assert len(lost) == 5
    stored = await db.coupons.find_one({"_id": coupon["_id"]})
    assert stored["usedCount"] == 3


async def test_release_gives_the_use_back(db, make_coupon):
    coupon = await make_coupon(code="BACK", usageLimit=1)
    result = await evaluate_coupon(db, code="BACK", subtotal=1000)

    await redeem_coupon(db, result)
    await release_coupon(db, result)

    stored = await db.coupons.find_one({"_id": coupon["_id"]})
    assert stored["usedCount"] == 0
    await redeem_coupon(db, result)


async def test_same_user_cannot_race_a_per_user_limit(db, make_user, make_coupon):
    user = await make_user()
    coupon = await make_coupon(code="ONCE", usageLimitPerUser=1)
    result = await evaluate_coupon(db, code="ONCE", subtotal=900, user_id=user["_id"])
    assert result.per_user_limit == 1

    outcomes = await asyncio.gather(
        redeem_coupon(db, result, user["_id"]),
        redeem_coupon(db, result, user["_id"]),
        return_exceptions=True,
    )

    assert sum(o is None for o in outcomes) == 1
    assert sum(isinstance(o, StateConflictError) for o in outcomes) == 1
    assert (await db.coupons.find_one({"_id": coupon["_id"]}))["usedCount"] == 1


async def test_per_user_count_is_read_again_under_hold(db, make_user, make_coupon, make_order):
    user = await make_user()
    coupon = await make_coupon(code="ONCE", usageLimitPerUser=1)
    result = await evaluate_coupon(db, code="ONCE", subtotal=900, user_id=user["_id"])

    await redeem_coupon(db, result, user["_id"])
    await make_order(user, couponCode="ONCE")
    await drop_user_redemption_hold(db, result, user["_id"])

    with pytest.raises(CouponError) as exc:
        await redeem_coupon(db, result, user["_id"])
    assert exc.value.reason == CouponError.PER_USER_LIMIT_EXCEEDED
    assert (await db.coupons.find_one({"_id": coupon["_id"]}))["usedCount"] == 1
    assert await db.coupon_holds.count_documents({}) == 0


async def test_abandoned_hold_is_taken_over(db, make_user, make_coupon):
    user = await make_user()
    await make_coupon(code="ONCE", usageLimitPerUser=1)
    result = await evaluate_coupon(db, code="ONCE", subtotal=900, user_id=user["_id"])
    await db.coupon_holds.insert_one({
        "_id": f"ONCE:{user['_id']}",
        "created_at": datetime.utcnow() - timedelta(minutes=5),
    })

    await redeem_coupon(db, result, user["_id"])

    await release_coupon(db, result, user["_id"])
    assert await db.coupon_holds.count_documents({}) == 0

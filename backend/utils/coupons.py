import logging
from datetime import datetime
from decimal import Decimal

from pymongo.errors import DuplicateKeyError

from config.constants import COUPON_HOLD_STALE_SECONDS
from models.coupon import CouponResult, DiscountType
from models.order import OrderStatus, PaymentStatus
from utils.errors import CouponError, StateConflictError
from utils.money import ZERO, round_money, to_decimal, to_number

logger = logging.getLogger(__name__)


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def compute_coupon_value(coupon: dict, subtotal) -> tuple[Decimal, Decimal]:
    """
    Returns (discount, wallet_cashback) for a coupon that already passed
    validation.
    """
    discount_type = coupon.get("discountType")
    value = to_decimal(coupon.get("discountValue"))

    if discount_type == DiscountType.WALLET.value:
        return ZERO, round_money(value)

    if discount_type == DiscountType.PERCENTAGE.value:
        discount = round_money(to_decimal(subtotal) * value / 100)
        max_discount = coupon.get("maxDiscount")
        if max_discount is not None:
            discount = min(discount, round_money(max_discount))
        return discount, ZERO

    return round_money(value), ZERO


async def count_user_redemptions(db, user_id, code: str) -> int:
    # cancelled and failed orders give the use back
    return await db.orders.count_documents({
        "user": user_id,
        "couponCode": code,
        "orderStatus": {"$ne": OrderStatus.CANCELLED.value},
        "paymentStatus": {"$ne": PaymentStatus.FAILED.value},
    })


async def evaluate_coupon(
    db,
    *,
    code: str,
    subtotal,
    user_id=None,
    now: datetime | None = None,
) -> CouponResult:
    """
    Run the coupon checks in order; each failure has its own reason.
    Read-only: redemption is a separate step.
    """
    now = now or datetime.utcnow()
    code = normalize_code(code)

    coupon = await db.coupons.find_one({"code": code}) if code else None
    if not coupon or not coupon.get("isActive", True):
        raise CouponError(CouponError.INVALID, "Invalid coupon code")

    expiry = coupon.get("expiryDate")
    if expiry is not None and expiry < now:
        raise CouponError(CouponError.EXPIRED, "Coupon has expired")

    usage_limit = coupon.get("usageLimit")
    if usage_limit is not None and coupon.get("usedCount", 0) >= usage_limit:
        raise CouponError(CouponError.USAGE_LIMIT_EXCEEDED, "Coupon usage limit exceeded")

    min_order = to_decimal(coupon.get("minOrderAmount") or 0)
    if to_decimal(subtotal) < min_order:
        raise CouponError(
            CouponError.MINIMUM_NOT_MET,
            f"Minimum order amount of ₹{to_number(min_order)} required for this coupon",
        )

    per_user = coupon.get("usageLimitPerUser")
    if per_user is not None and user_id is not None:
        used = await count_user_redemptions(db, user_id, code)
        if used >= per_user:
            raise CouponError(
                CouponError.PER_USER_LIMIT_EXCEEDED,
                f"You have already used this coupon maximum {per_user} time(s)",
            )

    discount, cashback = compute_coupon_value(coupon, subtotal)

    return CouponResult(
        coupon_id=coupon["_id"],
        code=code,
        discount_type=DiscountType(coupon.get("discountType", DiscountType.FIXED.value)),
        discount=discount,
        wallet_cashback=cashback,
        per_user_limit=per_user,
    )


async def hold_user_redemption(db, result: CouponResult, user_id) -> None:
    """
    Keep one checkout per user in flight on a per-user-limited coupon.

    The per-user count is read from orders, so two checkouts by the same
    user could both see room for one more use. The hold lives until the
    order is written (or the checkout is undone) and the count is read
    again once it is taken.
    """
    hold_id = f"{result.code}:{user_id}"
    now = datetime.utcnow()

    try:
        await db.coupon_holds.insert_one({"_id": hold_id, "created_at": now})
    except DuplicateKeyError:
        held = await db.coupon_holds.find_one({"_id": hold_id})
        created_at = (held or {}).get("created_at")
        if created_at and (now - created_at).total_seconds() <= COUPON_HOLD_STALE_SECONDS:
            raise StateConflictError("Another checkout with this coupon is in progress")
        # abandoned by a checkout that never finished
        logger.warning("COUPON_HOLD_TAKEN_OVER code=%s user=%s", result.code, user_id)
        await db.coupon_holds.replace_one({"_id": hold_id}, {"_id": hold_id, "created_at": now})

    used = await count_user_redemptions(db, user_id, result.code)
    if used >= result.per_user_limit:
        await db.coupon_holds.delete_one({"_id": hold_id})
        raise CouponError(
            CouponError.PER_USER_LIMIT_EXCEEDED,
            f"You have already used this coupon maximum {result.per_user_limit} time(s)",
        )


async def drop_user_redemption_hold(db, result: CouponResult, user_id) -> None:
    await db.coupon_holds.delete_one({"_id": f"{result.code}:{user_id}"})


async def redeem_coupon(db, result: CouponResult, user_id=None) -> None:
    """
    Count one use. The limit is part of the update filter, so two
    checkouts racing for the last use cannot both get it.
    """
    coupon = await db.coupons.find_one({"_id": result.coupon_id}, {"usageLimit": 1})
    if not coupon:
        raise CouponError(CouponError.INVALID, "Invalid coupon code")

    held = result.per_user_limit is not None and user_id is not None
    if held:
        await hold_user_redemption(db, result, user_id)

    query = {"_id": result.coupon_id, "isActive": {"$ne": False}}
    usage_limit = coupon.get("usageLimit")
    if usage_limit is not None:
        query["$or"] = [
            {"usedCount": {"$lt": usage_limit}},
            {"usedCount": {"$exists": False}},
        ]

    res = await db.coupons.update_one(query, {"$inc": {"usedCount": 1}})
    if res.modified_count == 0:
        if held:
            await drop_user_redemption_hold(db, result, user_id)
        logger.info("COUPON_REDEEM_LOST code=%s", result.code)
        raise CouponError(CouponError.USAGE_LIMIT_EXCEEDED, "Coupon usage limit exceeded")


async def release_coupon(db, result: CouponResult, user_id=None) -> None:
    """
    Undo a redemption whose checkout failed further down.
    """
    await db.coupons.update_one(
        {"_id": result.coupon_id, "usedCount": {"$gt": 0}},
        {"$inc": {"usedCount": -1}},
    )
    if result.per_user_limit is not None and user_id is not None:
        await drop_user_redemption_hold(db, result, user_id)
    logger.warning("COUPON_REDEMPTION_RELEASED code=%s", result.code)

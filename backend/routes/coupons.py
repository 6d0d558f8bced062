from fastapi import APIRouter, Depends

from database import get_db
from models.cart import CartSnapshot
from models.coupon import CouponValidateRequest
from utils.coupons import evaluate_coupon
from utils.money import to_number
from utils.pricing import cart_totals
from utils.security import get_current_user

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.post("/validate")
async def validate_coupon(
    data: CouponValidateRequest,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    # preview only: usedCount is not touched here
    subtotal = data.orderAmount
    if subtotal is None:
        cart = CartSnapshot.from_document(await db.carts.find_one({"user": user["_id"]}))
        _, _, subtotal = cart_totals(cart)

    result = await evaluate_coupon(db, code=data.code, subtotal=subtotal, user_id=user["_id"])

    return {
        "success": True,
        "message": "Coupon applied successfully",
        "coupon": {
            "code": result.code,
            "discountType": result.discount_type.value,
            "discount": to_number(result.discount),
            "walletCashback": to_number(result.wallet_cashback),
        },
    }

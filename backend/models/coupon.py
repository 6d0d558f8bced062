from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    WALLET = "wallet"


class CouponResult(BaseModel):
    """
    Outcome of a successful coupon evaluation.
    Wallet coupons never carry a discount, discount coupons never carry cashback.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    coupon_id: Any
    code: str
    discount_type: DiscountType
    discount: Decimal = Decimal("0")
    wallet_cashback: Decimal = Decimal("0")
    per_user_limit: Optional[int] = None


class CouponValidateRequest(BaseModel):
    code: str
    orderAmount: Optional[float] = None

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends

from config.env import RAZORPAY_KEY_ID
from database import get_db
from models.order import PaymentQuoteRequest
from utils.checkout import quote_for_payment
from utils.money import to_number
from utils.razorpay import RAZORPAY_CURRENCY, amount_to_paise, create_razorpay_order
from utils.security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["Payment"])


@router.post("/create-order")
async def create_payment_order(
    data: PaymentQuoteRequest,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    """
    Price the cart exactly as checkout will and open a gateway order for
    the payable amount. Nothing is reserved or debited here.
    """
    quote = await quote_for_payment(db, user, data)
    amount_paise = amount_to_paise(quote.payable)

    razorpay_order = await asyncio.to_thread(
        create_razorpay_order,
        amount_paise=amount_paise,
        receipt=f"rcpt_{str(user['_id'])[-8:]}_{int(datetime.utcnow().timestamp())}"[:40],
        notes={"user_id": str(user["_id"])},
    )
    logger.info("PAYMENT_ORDER_CREATED user=%s razorpay_order=%s", user["_id"], razorpay_order.get("id"))

    return {
        "success": True,
        "key_id": RAZORPAY_KEY_ID,
        "razorpay_order_id": razorpay_order.get("id"),
        "amount": razorpay_order.get("amount", amount_paise),
        "currency": razorpay_order.get("currency", RAZORPAY_CURRENCY),
        "quote": {
            "subtotal": to_number(quote.subtotal),
            "discount": to_number(quote.discount),
            "deliveryCharge": to_number(quote.delivery_charge),
            "walletUsed": to_number(quote.wallet_used),
            "walletCashback": to_number(quote.wallet_cashback),
            "total": to_number(quote.total),
            "payable": to_number(quote.payable),
        },
    }

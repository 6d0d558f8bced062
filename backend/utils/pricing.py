from decimal import Decimal

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel

from config.constants import DEFAULT_DELIVERY_FEE, FREE_DELIVERY_THRESHOLD
from models.cart import CartSnapshot
from models.coupon import CouponResult
from utils.money import ZERO, round_money, to_decimal, to_number

# ======================================================
# PRICING ENGINE
# ======================================================
# Pure: cart snapshot + coupon + delivery fee + wallet -> quote.
# The wallet debit and coupon counter bump happen in checkout,
# once, after the quote is final.
# ======================================================


class PriceQuote(BaseModel):
    items_total: Decimal
    addons_total: Decimal
    subtotal: Decimal
    discount: Decimal = ZERO
    wallet_cashback: Decimal = ZERO
    delivery_charge: Decimal = ZERO
    total: Decimal
    wallet_used: Decimal = ZERO

    @property
    def payable(self) -> Decimal:
        return self.total - self.wallet_used

    def as_order_fields(self) -> dict:
        return {
            "subtotal": to_number(self.subtotal),
            "discount": to_number(self.discount),
            "deliveryCharge": to_number(self.delivery_charge),
            "walletUsed": to_number(self.wallet_used),
            "walletCashback": to_number(self.wallet_cashback),
            "totalAmount": to_number(self.payable),
        }


def cart_totals(cart: CartSnapshot) -> tuple[Decimal, Decimal, Decimal]:
    items_total = sum(
        (to_decimal(i.selectedPrice) * i.quantity for i in cart.items), ZERO
    )
    addons_total = sum(
        (to_decimal(a.price) * a.quantity for a in cart.addons), ZERO
    )
    items_total = round_money(items_total)
    addons_total = round_money(addons_total)
    return items_total, addons_total, items_total + addons_total


def fallback_delivery_fee(subtotal) -> Decimal:
    if to_decimal(subtotal) >= FREE_DELIVERY_THRESHOLD:
        return ZERO
    return Decimal(DEFAULT_DELIVERY_FEE)


async def resolve_delivery_fee(db, location_id: str | None, subtotal) -> Decimal:
    """
    Fee of the chosen delivery location.
    Unknown, malformed or inactive locations fall back to the policy default.
    """
    if not location_id:
        return fallback_delivery_fee(subtotal)

    try:
        oid = ObjectId(location_id)
    except (InvalidId, TypeError):
        return fallback_delivery_fee(subtotal)

    location = await db.deliverylocations.find_one({"_id": oid})
    if not location or location.get("isActive") is False:
        return fallback_delivery_fee(subtotal)

    return round_money(location.get("fee") or 0)


def resolve_wallet_use(total, requested, balance) -> Decimal:
    """
    walletUsed = min(requested, balance, total), never negative.
    """
    amount = min(to_decimal(requested), to_decimal(balance), to_decimal(total))
    return round_money(amount) if amount > ZERO else ZERO


def price_cart(
    cart: CartSnapshot,
    *,
    coupon: CouponResult | None = None,
    delivery_fee=ZERO,
) -> PriceQuote:
    items_total, addons_total, subtotal = cart_totals(cart)

    discount = ZERO
    wallet_cashback = ZERO
    if coupon:
        # a fixed coupon can never push the order below zero
        discount = min(round_money(coupon.discount), subtotal)
        wallet_cashback = round_money(coupon.wallet_cashback)

    delivery_charge = round_money(delivery_fee)
    total = subtotal - discount + delivery_charge

    return PriceQuote(
        items_total=items_total,
        addons_total=addons_total,
        subtotal=subtotal,
        discount=discount,
        wallet_cashback=wallet_cashback,
        delivery_charge=delivery_charge,
        total=total,
    )


def apply_wallet(quote: PriceQuote, wallet_used) -> PriceQuote:
    wallet_used = round_money(wallet_used)
    if wallet_used < ZERO or wallet_used > quote.total:
        raise ValueError("walletUsed must be between 0 and the order total")
    return quote.model_copy(update={"wallet_used": wallet_used})


def requested_wallet_amount(use_wallet: bool, wallet_used, total) -> Decimal:
    """
    useWallet without an amount asks for as much as the order allows.
    """
    if not use_wallet:
        return ZERO
    if wallet_used is None:
        return to_decimal(total)
    return to_decimal(wallet_used)

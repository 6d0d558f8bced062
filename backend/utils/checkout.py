import logging
from datetime import datetime, timedelta

from bson import ObjectId
from bson.errors import InvalidId

from config.constants import DEFAULT_DELIVERY_DAYS
from models.cart import CartSnapshot
from models.order import (
    CreateOrderRequest,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    StoreSnapshot,
)
from utils.coupons import drop_user_redemption_hold, evaluate_coupon, redeem_coupon, release_coupon
from utils.errors import ValidationError
from utils.mail import schedule_order_confirmation
from utils.money import ZERO, to_number
from utils.order_timeline import try_record_order_event
from utils.otp import generate_otp
from utils.pricing import (
    PriceQuote,
    apply_wallet,
    price_cart,
    requested_wallet_amount,
    resolve_delivery_fee,
    resolve_wallet_use,
)
from utils.razorpay import assert_payment_verified
from utils.wallet_service import (
    create_cashback_request,
    debit_wallet,
    get_wallet_balance,
    reverse_wallet_debit,
)

logger = logging.getLogger(__name__)


# ======================================================
# HELPERS
# ======================================================

def _as_object_id(value):
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


async def clear_cart(db, cart_doc: dict | None) -> None:
    if not cart_doc:
        return
    await db.carts.update_one(
        {"_id": cart_doc["_id"]},
        {"$set": {"items": [], "addons": [], "updatedAt": datetime.utcnow()}},
    )


async def load_cart(db, user_id) -> tuple[dict | None, CartSnapshot]:
    cart_doc = await db.carts.find_one({"user": user_id})
    cart = CartSnapshot.from_document(cart_doc)
    if cart.is_empty:
        raise ValidationError("Cart is empty")
    return cart_doc, cart


async def resolve_store(db, cart: CartSnapshot) -> tuple[ObjectId | None, StoreSnapshot | None]:
    """
    Store of the first cart product that has one; all items of an order
    come from the same store.
    """
    ids = [oid for oid in (_as_object_id(i.product) for i in cart.items) if oid]
    if not ids:
        return None, None

    products = {
        p["_id"]: p
        async for p in db.products.find({"_id": {"$in": ids}}, {"storeId": 1})
    }

    store_id = None
    for oid in ids:
        product = products.get(oid)
        if product and product.get("storeId"):
            store_id = product["storeId"]
            break

    if store_id is None:
        return None, None

    store = await db.stores.find_one({"_id": store_id})
    if not store:
        logger.warning("STORE_SNAPSHOT_MISSING store=%s", store_id)
        return store_id, None

    snapshot = StoreSnapshot(
        name=store.get("name"),
        address=store.get("address"),
        phone=store.get("phone") or "",
    )
    return store_id, snapshot


async def quote_checkout(
    db,
    user: dict,
    cart: CartSnapshot,
    *,
    coupon_code: str | None,
    location_id: str | None,
    use_wallet: bool,
    wallet_used,
):
    coupon = None
    subtotal = price_cart(cart).subtotal
    if coupon_code:
        coupon = await evaluate_coupon(db, code=coupon_code, subtotal=subtotal, user_id=user["_id"])

    delivery_fee = await resolve_delivery_fee(db, location_id, subtotal)
    quote = price_cart(cart, coupon=coupon, delivery_fee=delivery_fee)

    if use_wallet:
        balance = await get_wallet_balance(db, user["_id"])
        requested = requested_wallet_amount(use_wallet, wallet_used, quote.total)
        quote = apply_wallet(quote, resolve_wallet_use(quote.total, requested, balance))

    return quote, coupon


def build_order_document(
    *,
    order_id: ObjectId,
    user: dict,
    body: CreateOrderRequest,
    cart: CartSnapshot,
    quote: PriceQuote,
    coupon,
    store_id,
    store_snapshot: StoreSnapshot | None,
    now: datetime,
) -> dict:
    online = body.paymentMethod == PaymentMethod.ONLINE.value

    order = {
        "_id": order_id,
        "user": user["_id"],
        "items": [
            {
                "product": _as_object_id(item.product) or item.product,
                "name": item.name,
                "price": item.selectedPrice,
                "image": item.image,
                "quantity": item.quantity,
                "weight": item.weight,
            }
            for item in cart.items
        ],
        "addons": [
            {
                "addon": addon.addon,
                "name": addon.name,
                "price": addon.price,
                "quantity": addon.quantity,
            }
            for addon in cart.addons
        ],
        "shippingAddress": body.shippingAddress.model_dump(),
        **quote.as_order_fields(),
        "couponCode": coupon.code if coupon else None,
        "paymentMethod": body.paymentMethod,
        "paymentStatus": PaymentStatus.PAID.value if online else PaymentStatus.PENDING.value,
        "orderStatus": OrderStatus.PUNCHED.value,
        "otp": generate_otp(),
        "deliveryDate": body.deliveryDate or now + timedelta(days=DEFAULT_DELIVERY_DAYS),
        "orderNotes": body.orderNotes,
        "occasion": body.occasion,
        "occasionName": body.occasionName,
        "cakeMessage": body.cakeMessage,
        "deliveryAgent": None,
        "createdAt": now,
        "updatedAt": now,
    }

    if store_id is not None:
        order["storeId"] = store_id
        order["storeSnapshot"] = (store_snapshot or StoreSnapshot()).model_dump()

    if online:
        order["paymentDetails"] = body.paymentDetails.model_dump()

    return order


# ======================================================
# PLACE ORDER (unit of work)
# ======================================================

async def place_order(db, user: dict, body: CreateOrderRequest) -> dict:
    """
    Turn the user's cart into an order.

    Everything that can be checked is checked before the first write.
    After that, each side effect is undone if a later step fails, so a
    failed checkout leaves the coupon counter and wallet as they were.
    """
    if not body.shippingAddress or not body.shippingAddress.is_complete():
        raise ValidationError("Complete shipping address is required")

    online = body.paymentMethod == PaymentMethod.ONLINE.value
    if online and (not body.paymentDetails or not body.paymentDetails.is_complete()):
        raise ValidationError("Payment details missing for online payment")

    cart_doc, cart = await load_cart(db, user["_id"])

    if online:
        assert_payment_verified(body.paymentDetails)

    quote, coupon = await quote_checkout(
        db,
        user,
        cart,
        coupon_code=body.couponCode,
        location_id=body.locationId,
        use_wallet=body.useWallet,
        wallet_used=body.walletUsed,
    )

    store_id, store_snapshot = await resolve_store(db, cart)

    now = datetime.utcnow()
    order_id = ObjectId()
    coupon_redeemed = False
    wallet_debited = False

    try:
        if coupon:
            await redeem_coupon(db, coupon, user["_id"])
            coupon_redeemed = True

        if quote.wallet_used > ZERO:
            # online payments were captured for the quoted wallet split
            debited = await debit_wallet(
                db, user["_id"], quote.wallet_used, order_id=order_id, allow_partial=not online
            )
            wallet_debited = debited > ZERO
            if debited != quote.wallet_used:
                quote = apply_wallet(quote, debited)

        order = build_order_document(
            order_id=order_id,
            user=user,
            body=body,
            cart=cart,
            quote=quote,
            coupon=coupon,
            store_id=store_id,
            store_snapshot=store_snapshot,
            now=now,
        )
        await db.orders.insert_one(order)
    except Exception:
        if wallet_debited:
            await reverse_wallet_debit(db, user["_id"], quote.wallet_used, order_id=order_id)
        if coupon_redeemed:
            await release_coupon(db, coupon, user["_id"])
        logger.warning("CHECKOUT_ROLLED_BACK user=%s order=%s", user["_id"], order_id)
        raise

    if coupon and coupon.wallet_cashback > ZERO:
        try:
            await create_cashback_request(
                db,
                user_id=user["_id"],
                order_id=order_id,
                coupon_code=coupon.code,
                amount=coupon.wallet_cashback,
            )
        except Exception:
            # the order stands; admin can credit the cashback by hand
            logger.exception("CASHBACK_REQUEST_FAILED order=%s", order_id)

    if coupon and coupon.per_user_limit is not None:
        try:
            await drop_user_redemption_hold(db, coupon, user["_id"])
        except Exception:
            # a leftover hold goes stale on its own
            logger.exception("COUPON_HOLD_DROP_FAILED order=%s", order_id)

    try:
        await clear_cart(db, cart_doc)
    except Exception:
        # the order stands; a leftover cart is only cosmetic
        logger.exception("CART_CLEAR_FAILED order=%s user=%s", order_id, user["_id"])

    logger.info(
        "ORDER_CREATED order=%s user=%s method=%s total=%s wallet=%s",
        order_id, user["_id"], order["paymentMethod"], order["totalAmount"], to_number(quote.wallet_used),
    )

    await try_record_order_event(
        db,
        order_id=order_id,
        event="ORDER_CREATED",
        actor_role=user.get("role"),
        actor_id=user["_id"],
        to_status=order["orderStatus"],
        metadata={
            "paymentMethod": order["paymentMethod"],
            "totalAmount": order["totalAmount"],
            "couponCode": order.get("couponCode"),
        },
    )

    schedule_order_confirmation(order, user)
    return order


# ======================================================
# PAYMENT QUOTE (no side effects)
# ======================================================

async def quote_for_payment(db, user: dict, body) -> PriceQuote:
    _, cart = await load_cart(db, user["_id"])
    quote, _ = await quote_checkout(
        db,
        user,
        cart,
        coupon_code=body.couponCode,
        location_id=body.locationId,
        use_wallet=body.useWallet,
        wallet_used=body.walletUsed,
    )
    if quote.payable <= ZERO:
        raise ValidationError("Nothing to pay online for this order")
    return quote

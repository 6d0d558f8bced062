import logging
from datetime import datetime
from typing import NamedTuple

from pymongo import ReturnDocument

from models.order import OrderEvent, OrderStatus, PaymentStatus
from models.user import Role
from utils.errors import AuthorizationError, InvalidOTPError, StateConflictError, ValidationError
from utils.guards import vendor_owns_order
from utils.order_timeline import try_record_order_event
from utils.otp import verify_otp

logger = logging.getLogger(__name__)

# ======================================================
# ORDER STATE MACHINE
# ======================================================
# punched -> preparing your cake -> Awaiting Agent
#         -> Out for Delivery -> Delivered
# Cancelled is only reached through the cancellation workflow.
# verify_payment touches paymentStatus and leaves orderStatus alone.
# ======================================================


class Transition(NamedTuple):
    source: OrderStatus
    target: OrderStatus
    roles: frozenset


TRANSITIONS = {
    OrderEvent.VERIFY_ORDER: Transition(
        OrderStatus.PUNCHED,
        OrderStatus.PREPARING,
        frozenset({Role.ADMIN.value}),
    ),
    OrderEvent.MARK_OUT_FOR_DELIVERY: Transition(
        OrderStatus.PREPARING,
        OrderStatus.AWAITING_AGENT,
        frozenset({Role.VENDOR.value, Role.ADMIN.value}),
    ),
    OrderEvent.ACCEPT: Transition(
        OrderStatus.AWAITING_AGENT,
        OrderStatus.OUT_FOR_DELIVERY,
        frozenset({Role.DELIVERY_AGENT.value, Role.ADMIN.value}),
    ),
    OrderEvent.VERIFY_OTP: Transition(
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        frozenset({Role.DELIVERY_AGENT.value, Role.ADMIN.value}),
    ),
}

VERIFY_PAYMENT_ROLES = frozenset({Role.ADMIN.value})

SUCCESS_MESSAGES = {
    OrderEvent.VERIFY_PAYMENT: "Payment verified",
    OrderEvent.VERIFY_ORDER: "Order verified",
    OrderEvent.MARK_OUT_FOR_DELIVERY: "Order is ready for pickup",
    OrderEvent.ACCEPT: "Delivery accepted. Order is now out for delivery.",
    OrderEvent.VERIFY_OTP: "Order delivered successfully!",
}


def event_for_status(current: str, target: str) -> OrderEvent:
    """
    Map a requested target status onto the one event that gets there
    from `current`.
    """
    for event, transition in TRANSITIONS.items():
        if transition.source.value == current and transition.target.value == target:
            return event

    if target == OrderStatus.CANCELLED.value:
        raise ValidationError("Orders are cancelled through a cancellation request")
    raise StateConflictError(f"Cannot move order from {current} to {target}")


def _assert_role(event: OrderEvent, user: dict, allowed) -> None:
    if user.get("role") not in allowed:
        raise AuthorizationError(f"Your role cannot perform {event.value}")


async def _assert_actor(db, event: OrderEvent, order: dict, user: dict) -> None:
    role = user.get("role")

    if role == Role.VENDOR.value:
        store = None
        if order.get("storeId") is not None:
            store = await db.stores.find_one({"_id": order["storeId"]})
        if not vendor_owns_order(user, order, store):
            raise AuthorizationError("This order does not belong to your store")

    if role == Role.DELIVERY_AGENT.value and event == OrderEvent.VERIFY_OTP:
        if order.get("deliveryAgent") != user["_id"]:
            raise AuthorizationError("This delivery is assigned to another agent")


async def _verify_payment(db, order: dict, user: dict) -> dict:
    _assert_role(OrderEvent.VERIFY_PAYMENT, user, VERIFY_PAYMENT_ROLES)

    if order.get("orderStatus") == OrderStatus.CANCELLED.value:
        raise StateConflictError("Cannot verify payment of a cancelled order")
    if order.get("paymentStatus") == PaymentStatus.PAID.value:
        raise StateConflictError("Payment is already verified")

    updated = await db.orders.find_one_and_update(
        {
            "_id": order["_id"],
            "orderStatus": {"$ne": OrderStatus.CANCELLED.value},
            "paymentStatus": {"$ne": PaymentStatus.PAID.value},
        },
        {"$set": {"paymentStatus": PaymentStatus.PAID.value, "updatedAt": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise StateConflictError("Order changed while verifying payment, please refresh")

    logger.info("ORDER_PAYMENT_VERIFIED order=%s by=%s", order["_id"], user["_id"])
    await try_record_order_event(
        db,
        order_id=order["_id"],
        event=OrderEvent.VERIFY_PAYMENT.value,
        actor_role=user.get("role"),
        actor_id=user["_id"],
        from_status=order.get("orderStatus"),
        to_status=updated.get("orderStatus"),
        metadata={"paymentStatus": PaymentStatus.PAID.value},
    )
    return updated


async def apply_event(db, order: dict, event: OrderEvent, user: dict, *, otp: str | None = None) -> dict:
    """
    Run one lifecycle event against `order` on behalf of `user`.

    The write is filtered on the status the order was read in, so of two
    actors racing on the same order exactly one wins; the other gets a
    StateConflictError.
    """
    event = OrderEvent(event)

    if event == OrderEvent.VERIFY_PAYMENT:
        return await _verify_payment(db, order, user)

    transition = TRANSITIONS[event]
    _assert_role(event, user, transition.roles)
    await _assert_actor(db, event, order, user)

    current = order.get("orderStatus")

    if event == OrderEvent.VERIFY_OTP:
        if current == OrderStatus.DELIVERED.value:
            raise StateConflictError("Order is already delivered")
        if current != transition.source.value:
            raise StateConflictError(f"Cannot verify. Current status: {current}")
        if not otp:
            raise ValidationError("OTP is required")
        if not verify_otp(otp, order.get("otp")):
            logger.info("OTP_REJECTED order=%s agent=%s", order["_id"], user["_id"])
            raise InvalidOTPError()
    elif current != transition.source.value:
        raise StateConflictError(f"Cannot {event.value}. Current status: {current}")

    now = datetime.utcnow()
    query = {"_id": order["_id"], "orderStatus": transition.source.value}
    changes = {"orderStatus": transition.target.value, "updatedAt": now}

    if event == OrderEvent.ACCEPT:
        query["deliveryAgent"] = None
        changes["deliveryAgent"] = user["_id"]
    elif event == OrderEvent.VERIFY_OTP:
        changes["deliveredAt"] = now

    updated = await db.orders.find_one_and_update(
        query,
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        if event == OrderEvent.ACCEPT:
            raise StateConflictError("Order was already accepted by another agent")
        raise StateConflictError("Order status changed, please refresh")

    logger.info(
        "ORDER_TRANSITION order=%s event=%s from=%s to=%s by=%s",
        order["_id"], event.value, current, transition.target.value, user["_id"],
    )
    await try_record_order_event(
        db,
        order_id=order["_id"],
        event=event.value,
        actor_role=user.get("role"),
        actor_id=user["_id"],
        from_status=current,
        to_status=transition.target.value,
    )
    return updated


def resolve_event(order: dict, action: str | None, status: str | None) -> OrderEvent:
    if action:
        return OrderEvent(action)
    if status:
        return event_for_status(order.get("orderStatus"), status)
    raise ValidationError("Either action or status is required")

import logging
from datetime import datetime

from pymongo import ReturnDocument

from models.order import CancellationRequest, CancellationStatus, OrderStatus, PaymentMethod
from models.wallet import ENTRY_CANCELLATION_REFUND
from utils.errors import AuthorizationError, StateConflictError, ValidationError
from utils.money import ZERO, round_money, to_number
from utils.order_timeline import try_record_order_event
from utils.wallet_service import credit_wallet, reject_pending_cashback_for_order

logger = logging.getLogger(__name__)

DEFAULT_REASON = "User requested cancellation"
REJECTED_NOTE = "Admin rejected cancellation request."

NOT_CANCELLABLE = {
    OrderStatus.CANCELLED.value: "Order is already cancelled",
    OrderStatus.DELIVERED.value: "Order cannot be cancelled at this stage (Delivered or Out for Delivery)",
    OrderStatus.OUT_FOR_DELIVERY.value: "Order cannot be cancelled at this stage (Delivered or Out for Delivery)",
}


def _pending(order: dict) -> bool:
    req = order.get("cancellationRequest") or {}
    return req.get("status") == CancellationStatus.PENDING.value


# =====================================================
# CUSTOMER REQUEST
# =====================================================

async def request_cancellation(db, order: dict, user: dict, reason: str | None = None) -> dict:
    if order.get("user") != user["_id"]:
        raise AuthorizationError("Unauthorized")

    status = order.get("orderStatus")
    if status in NOT_CANCELLABLE:
        raise StateConflictError(NOT_CANCELLABLE[status])
    if _pending(order):
        raise StateConflictError("A cancellation request is already pending")

    request = CancellationRequest(
        reason=(reason or "").strip() or DEFAULT_REASON,
        requestedAt=datetime.utcnow(),
    )

    updated = await db.orders.find_one_and_update(
        {
            "_id": order["_id"],
            "orderStatus": status,
            "cancellationRequest.status": {"$ne": CancellationStatus.PENDING.value},
        },
        {"$set": {
            "cancellationRequest": request.model_dump(),
            "updatedAt": datetime.utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise StateConflictError("Order changed while requesting cancellation, please refresh")

    logger.info("CANCELLATION_REQUESTED order=%s user=%s", order["_id"], user["_id"])
    await try_record_order_event(
        db,
        order_id=order["_id"],
        event="request_cancellation",
        actor_role=user.get("role"),
        actor_id=user["_id"],
        from_status=status,
        to_status=status,
        metadata={"reason": request.reason},
    )
    return updated


# =====================================================
# ADMIN DECISION
# =====================================================

def compute_refund(order: dict, refund_amount=None, wallet_refund_amount=None):
    """
    Returns (refundAmount, walletRefundAmount) after the bounds checks.
    COD orders never collected money, so nothing goes back to the gateway.
    """
    total = round_money(order.get("totalAmount"))
    wallet_used = round_money(order.get("walletUsed"))

    # amounts are the admin's call; nothing is refunded unless stated
    if order.get("paymentMethod") == PaymentMethod.COD.value:
        refund = ZERO
    else:
        refund = round_money(refund_amount or 0)

    if refund < ZERO or refund > total:
        raise ValidationError("Refund amount cannot exceed the order total")

    wallet_refund = round_money(wallet_refund_amount or 0)
    if wallet_refund < ZERO:
        raise ValidationError("Wallet refund amount cannot be negative")
    if wallet_refund > wallet_used + total - refund:
        raise ValidationError("Wallet refund amount exceeds what the customer paid")

    return refund, wallet_refund


def approval_note(order: dict, refund, wallet_refund) -> str:
    # gateway refunds are issued by hand; the note tells the admin how much
    if order.get("paymentMethod") == PaymentMethod.COD.value:
        return f"Cancelled. COD Order. Wallet Refund: ₹{to_number(wallet_refund)}"
    return (
        f"Approved. Refund Amount: ₹{to_number(refund)}. "
        f"Wallet Refund: ₹{to_number(wallet_refund)}. "
        "MANUAL REFUND REQUIRED for Online Payment."
    )


async def reject_cancellation(db, order: dict, admin: dict, note: str | None = None) -> dict:
    if not _pending(order):
        raise StateConflictError("No pending cancellation request")

    updated = await db.orders.find_one_and_update(
        {"_id": order["_id"], "cancellationRequest.status": CancellationStatus.PENDING.value},
        {"$set": {
            "cancellationRequest.status": CancellationStatus.REJECTED.value,
            "cancellationRequest.processedAt": datetime.utcnow(),
            "cancellationRequest.adminNote": note or REJECTED_NOTE,
            "updatedAt": datetime.utcnow(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise StateConflictError("Cancellation request was already processed")

    logger.info("CANCELLATION_REJECTED order=%s admin=%s", order["_id"], admin["_id"])
    await try_record_order_event(
        db,
        order_id=order["_id"],
        event="reject_cancellation",
        actor_role=admin.get("role"),
        actor_id=admin["_id"],
        from_status=order.get("orderStatus"),
        to_status=order.get("orderStatus"),
    )
    return updated


async def approve_cancellation(
    db,
    order: dict,
    admin: dict,
    *,
    refund_amount=None,
    wallet_refund_amount=None,
    note: str | None = None,
) -> dict:
    """
    Cancel the order and settle the refund in one go.

    The order flips only while the request is still Pending. If the
    wallet credit then fails the order is put back as it was, so the
    decision is all-or-nothing.
    """
    if not _pending(order):
        raise StateConflictError("No pending cancellation request")
    if order.get("orderStatus") in NOT_CANCELLABLE:
        raise StateConflictError(NOT_CANCELLABLE[order.get("orderStatus")])

    refund, wallet_refund = compute_refund(order, refund_amount, wallet_refund_amount)
    note = note or approval_note(order, refund, wallet_refund)

    now = datetime.utcnow()
    previous_status = order.get("orderStatus")

    updated = await db.orders.find_one_and_update(
        {
            "_id": order["_id"],
            "orderStatus": previous_status,
            "cancellationRequest.status": CancellationStatus.PENDING.value,
        },
        {"$set": {
            "orderStatus": OrderStatus.CANCELLED.value,
            "cancellationRequest.status": CancellationStatus.APPROVED.value,
            "cancellationRequest.refundAmount": to_number(refund),
            "cancellationRequest.walletRefundAmount": to_number(wallet_refund),
            "cancellationRequest.processedAt": now,
            "cancellationRequest.adminNote": note,
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise StateConflictError("Order changed while approving cancellation, please refresh")

    try:
        if wallet_refund > ZERO:
            await credit_wallet(
                db,
                order["user"],
                wallet_refund,
                entry_type=ENTRY_CANCELLATION_REFUND,
                order_id=order["_id"],
                reason_code="CANCELLATION_APPROVED",
            )
    except Exception:
        logger.exception("CANCELLATION_REFUND_FAILED order=%s", order["_id"])
        await db.orders.update_one(
            {"_id": order["_id"]},
            {"$set": {
                "orderStatus": previous_status,
                "cancellationRequest": order.get("cancellationRequest"),
                "updatedAt": datetime.utcnow(),
            }},
        )
        raise

    await reject_pending_cashback_for_order(db, order["_id"], "Order cancelled")

    logger.info(
        "CANCELLATION_APPROVED order=%s refund=%s wallet_refund=%s admin=%s",
        order["_id"], refund, wallet_refund, admin["_id"],
    )
    await try_record_order_event(
        db,
        order_id=order["_id"],
        event="approve_cancellation",
        actor_role=admin.get("role"),
        actor_id=admin["_id"],
        from_status=previous_status,
        to_status=OrderStatus.CANCELLED.value,
        metadata={"refundAmount": to_number(refund), "walletRefundAmount": to_number(wallet_refund)},
    )
    return updated

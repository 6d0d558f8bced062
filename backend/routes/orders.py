from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status

from config.constants import OTP_VERIFY_MAX_ATTEMPTS, OTP_VERIFY_WINDOW_SECONDS
from database import get_db
from models.order import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderActionRequest,
    OrderEvent,
    OrderStatus,
)
from models.user import Role
from utils.cancellation import request_cancellation
from utils.checkout import place_order
from utils.finance import get_vendor_store, vendor_scope
from utils.guards import assert_can_view_order, get_order_or_404
from utils.idempotency import run_once
from utils.order_state import SUCCESS_MESSAGES, apply_event, resolve_event
from utils.order_timeline import get_order_timeline
from utils.rate_limit import rate_limit
from utils.security import get_current_user
from utils.serializers import serialize_docs, serialize_order, serialize_orders

router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)


# ======================================================
# CREATE ORDER (CUSTOMER)
# ======================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    data: CreateOrderRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    async def checkout():
        order = await place_order(db, user, data)
        return {
            "success": True,
            "message": "Order placed successfully",
            "order": serialize_order(order, user.get("role")),
        }

    return await run_once(db, idempotency_key, f"create_order:{user['_id']}", checkout)


# ======================================================
# LIST ORDERS (ROLE SCOPED)
# ======================================================

async def _orders_query(db, user: dict) -> dict:
    role = user.get("role")

    if role == Role.ADMIN.value:
        return {}
    if role == Role.VENDOR.value:
        store = await get_vendor_store(db, user["_id"])
        return vendor_scope(store, user["_id"])
    if role == Role.DELIVERY_AGENT.value:
        return {"$or": [
            {"orderStatus": OrderStatus.AWAITING_AGENT.value, "deliveryAgent": None},
            {"deliveryAgent": user["_id"]},
        ]}
    # never trust a client-supplied user id
    return {"user": user["_id"]}


@router.get("")
async def list_orders(
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    query = await _orders_query(db, user)
    if order_status:
        query["orderStatus"] = order_status.value

    orders = await db.orders.find(query).sort("createdAt", -1).to_list(length=None)

    return {
        "success": True,
        "count": len(orders),
        "orders": serialize_orders(orders, user.get("role")),
    }


# ======================================================
# ORDER DETAIL
# ======================================================

@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await get_order_or_404(db, order_id)
    await assert_can_view_order(db, user, order)

    return {"success": True, "order": serialize_order(order, user.get("role"))}


@router.get("/{order_id}/timeline")
async def order_timeline(
    order_id: str,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await get_order_or_404(db, order_id)
    await assert_can_view_order(db, user, order)

    events = await get_order_timeline(db, order["_id"])
    return {"success": True, "events": serialize_docs(events)}


# ======================================================
# LIFECYCLE TRANSITIONS
# ======================================================

@router.patch("/{order_id}")
async def update_order(
    order_id: str,
    data: OrderActionRequest,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await get_order_or_404(db, order_id)

    event = resolve_event(
        order,
        data.action.value if data.action else None,
        data.status.value if data.status else None,
    )

    if event == OrderEvent.VERIFY_OTP:
        await rate_limit(
            db=db,
            key=f"verify_otp:{user['_id']}:{order['_id']}",
            max_requests=OTP_VERIFY_MAX_ATTEMPTS,
            window_seconds=OTP_VERIFY_WINDOW_SECONDS,
        )

    updated = await apply_event(db, order, event, user, otp=data.otp)

    return {
        "success": True,
        "message": SUCCESS_MESSAGES[event],
        "order": serialize_order(updated, user.get("role")),
    }


# ======================================================
# CANCELLATION REQUEST (CUSTOMER)
# ======================================================

@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    data: CancelOrderRequest,
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    order = await get_order_or_404(db, order_id)
    updated = await request_cancellation(db, order, user, data.reason)

    return {
        "success": True,
        "message": "Cancellation request submitted to admin for approval",
        "order": serialize_order(updated, user.get("role")),
    }

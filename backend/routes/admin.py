from typing import Optional

from fastapi import APIRouter, Depends, Query

from database import get_db
from models.order import AdminCancelDecision, CancellationStatus
from models.user import Role
from models.wallet import CashbackApproval, CashbackRejection, CashbackStatus
from utils.audit import log_audit
from utils.cancellation import approve_cancellation, reject_cancellation
from utils.finance import admin_dashboard, attach_customers
from utils.guards import get_order_or_404, parse_object_id
from utils.security import require_role
from utils.serializers import serialize_doc, serialize_docs, serialize_order, serialize_orders
from utils.wallet_service import approve_cashback, list_cashback_requests, reject_cashback

router = APIRouter(prefix="/admin", tags=["Admin"])


# =====================================================
# DASHBOARD
# =====================================================

@router.get("/dashboard")
async def dashboard(
    admin=Depends(require_role(Role.ADMIN)),
    db=Depends(get_db),
):
    report = await admin_dashboard(db)
    return {"success": True, **serialize_doc(report)}


# =====================================================
# CANCELLATION REQUESTS
# =====================================================

@router.get("/cancellation-requests")
async def cancellation_requests(
    admin=Depends(require_role(Role.ADMIN)),
    db=Depends(get_db),
):
    orders = (
        await db.orders.find({"cancellationRequest.status": CancellationStatus.PENDING.value})
        .sort("cancellationRequest.requestedAt", 1)
        .to_list(length=None)
    )
    orders = await attach_customers(db, orders)

    return {
        "success": True,
        "count": len(orders),
        "orders": serialize_orders(orders, admin.get("role")),
    }


@router.post("/orders/{order_id}/cancel")
async def decide_cancellation(
    order_id: str,
    data: AdminCancelDecision,
    admin=Depends(require_role(Role.ADMIN)),
    db=Depends(get_db),
):
    order = await get_order_or_404(db, order_id)

    if data.action == "approve":
        updated = await approve_cancellation(
            db,
            order,
            admin,
            refund_amount=data.refundAmount,
            wallet_refund_amount=data.walletRefundAmount,
            note=data.adminNote,
        )
        message = "Cancellation approved & refunded"
    else:
        updated = await reject_cancellation(db, order, admin, data.adminNote)
        message = "Cancellation rejected"

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role=Role.ADMIN.value,
        action=f"CANCELLATION_{data.action.upper()}",
        metadata={
            "order_id": str(order["_id"]),
            "refundAmount": (updated.get("cancellationRequest") or {}).get("refundAmount"),
            "walletRefundAmount": (updated.get("cancellationRequest") or {}).get("walletRefundAmount"),
        },
    )

    return {
        "success": True,
        "message": message,
        "order": serialize_order(updated, admin.get("role")),
    }


# =====================================================
# WALLET CASHBACK REQUESTS
# =====================================================

@router.get("/wallet-cashback")
async def wallet_cashback_requests(
    request_status: Optional[CashbackStatus] = Query(None, alias="status"),
    admin=Depends(require_role(Role.ADMIN)),
    db=Depends(get_db),
):
    requests = await list_cashback_requests(db, request_status.value if request_status else None)
    requests = await attach_customers(db, requests)

    return {
        "success": True,
        "count": len(requests),
        "requests": serialize_docs(requests),
    }


@router.post("/wallet-cashback/approve")
async def approve_wallet_cashback(
    data: CashbackApproval,
    admin=Depends(require_role(Role.ADMIN)),
    db=Depends(get_db),
):
    request_id = parse_object_id(data.requestId, "requestId")
    request = await approve_cashback(db, request_id, data.approvedAmount, admin["_id"])

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role=Role.ADMIN.value,
        action="CASHBACK_APPROVED",
        metadata={"request_id": data.requestId, "approvedAmount": data.approvedAmount},
    )

    return {
        "success": True,
        "message": "Cashback approved and credited to wallet",
        "request": serialize_doc(request),
    }


@router.post("/wallet-cashback/reject")
async def reject_wallet_cashback(
    data: CashbackRejection,
    admin=Depends(require_role(Role.ADMIN)),
    db=Depends(get_db),
):
    request_id = parse_object_id(data.requestId, "requestId")
    request = await reject_cashback(db, request_id, data.note, admin["_id"])

    await log_audit(
        db,
        actor_id=admin["_id"],
        actor_role=Role.ADMIN.value,
        action="CASHBACK_REJECTED",
        metadata={"request_id": data.requestId},
    )

    return {
        "success": True,
        "message": "Cashback request rejected",
        "request": serialize_doc(request),
    }

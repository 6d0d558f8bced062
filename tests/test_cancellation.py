"""Cancellation requests and the admin decision."""

from decimal import Decimal

import pytest
from bson import ObjectId

from utils.cancellation import (
    approve_cancellation,
    compute_refund,
    reject_cancellation,
    request_cancellation,
)
from utils.errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from utils.wallet_service import create_cashback_request, get_ledger, get_wallet_balance


async def test_request_sets_pending(db, make_user, make_order):
    customer = await make_user()
    order = await make_order(customer)

    updated = await request_cancellation(db, order, customer, "  ")

    req = updated["cancellationRequest"]
    assert req["status"] == "Pending"
    assert req["reason"] == "User requested cancellation"
    assert updated["orderStatus"] == "punched"

    with pytest.raises(StateConflictError, match="already pending"):
        await request_cancellation(db, updated, customer, "again")


async def test_only_owner_can_request(db, make_user, make_order):
    customer = await make_user()
    other = await make_user()
    order = await make_order(customer)

    with pytest.raises(AuthorizationError):
        await request_cancellation(db, order, other, "nope")


@pytest.mark.parametrize("status", ["Delivered", "Out for Delivery", "Cancelled"])
async def test_late_orders_cannot_be_cancelled(db, make_user, make_order, status):
    customer = await make_user()
    order = await make_order(customer, orderStatus=status)

    with pytest.raises(StateConflictError):
        await request_cancellation(db, order, customer, "too late")


def test_refund_bounds():
    online = {"paymentMethod": "Online", "totalAmount": 800, "walletUsed": 200}
    assert compute_refund(online, 800, 200) == (Decimal("800"), Decimal("200"))
    assert compute_refund(online) == (0, 0)
    with pytest.raises(ValidationError):
        compute_refund(online, 801, 0)
    with pytest.raises(ValidationError):
        compute_refund(online, 800, 201)

    cod = {"paymentMethod": "COD", "totalAmount": 550, "walletUsed": 0}
    assert compute_refund(cod, 550, 100) == (0, Decimal("100"))


async def test_approve_refunds_wallet_and_rejects_cashback(db, make_user, make_order):
    customer = await make_user(wallet=0)
    admin = await make_user(role="admin")
    order = await make_order(
        customer, paymentMethod="Online", paymentStatus="Paid",
        totalAmount=800, walletUsed=200, couponCode="WALLET100", walletCashback=100,
    )
    cashback = await create_cashback_request(
        db, user_id=customer["_id"], order_id=order["_id"], coupon_code="WALLET100", amount=100
    )
    order = await request_cancellation(db, order, customer, "Changed plans")

    updated = await approve_cancellation(
        db, order, admin, refund_amount=800, wallet_refund_amount=200
    )

    assert updated["orderStatus"] == "Cancelled"
    req = updated["cancellationRequest"]
    assert req["status"] == "Approved"
    assert req["refundAmount"] == 800
    assert req["walletRefundAmount"] == 200
    assert "MANUAL REFUND REQUIRED" in req["adminNote"]

    assert await get_wallet_balance(db, customer["_id"]) == Decimal("200")
    [entry] = await get_ledger(db, customer["_id"])
    assert entry["entry_type"] == "CANCELLATION_REFUND"

    stored = await db.walletcashbackrequests.find_one({"_id": cashback["_id"]})
    assert stored["status"] == "rejected"

    with pytest.raises(StateConflictError):
        await approve_cancellation(db, updated, admin)


async def test_approve_rolls_back_when_wallet_credit_fails(db, make_user, make_order):
    customer = await make_user()
    admin = await make_user(role="admin")
    order = await make_order(customer, walletUsed=100)
    order = await request_cancellation(db, order, customer, "oops")
    await db.users.delete_one({"_id": customer["_id"]})

    with pytest.raises(NotFoundError):
        await approve_cancellation(db, order, admin, wallet_refund_amount=100)

    stored = await db.orders.find_one({"_id": order["_id"]})
    assert stored["orderStatus"] == "punched"
    assert stored["cancellationRequest"]["status"] == "Pending"


async def test_approve_blocked_once_out_for_delivery(db, make_user, make_order):
    customer = await make_user()
    admin = await make_user(role="admin")
    order = await make_order(customer)
    order = await request_cancellation(db, order, customer, "late")
    await db.orders.update_one({"_id": order["_id"]}, {"$set": {"orderStatus": "Out for Delivery"}})
    order = await db.orders.find_one({"_id": order["_id"]})

    with pytest.raises(StateConflictError):
        await approve_cancellation(db, order, admin)


async def test_reject_keeps_order_alive(db, make_user, make_order):
    customer = await make_user()
    admin = await make_user(role="admin")
    order = await make_order(customer, orderStatus="preparing your cake")
    order = await request_cancellation(db, order, customer, "hmm")

    updated = await reject_cancellation(db, order, admin)

    assert updated["orderStatus"] == "preparing your cake"
    assert updated["cancellationRequest"]["status"] == "Rejected"
    assert updated["cancellationRequest"]["adminNote"] == "Admin rejected cancellation request."

    with pytest.raises(StateConflictError):
        await reject_cancellation(db, updated, admin)


async def test_decision_requires_pending_request(db, make_user, make_order):
    admin = await make_user(role="admin")
    order = await make_order({"_id": ObjectId()})

    with pytest.raises(StateConflictError):
        await approve_cancellation(db, order, admin)

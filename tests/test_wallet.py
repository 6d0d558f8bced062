"""Wallet debits, credits and cashback requests."""

import asyncio
from decimal import Decimal

import pytest
from bson import ObjectId

from models.wallet import ENTRY_CASHBACK_CREDIT, ENTRY_ORDER_DEBIT
from utils.errors import NotFoundError, StateConflictError, ValidationError
from utils.wallet_service import (
    approve_cashback,
    create_cashback_request,
    debit_wallet,
    get_ledger,
    get_wallet_balance,
    reject_cashback,
    reverse_wallet_debit,
)


async def test_debit_writes_ledger(db, make_user):
    user = await make_user(wallet=500)
    order_id = ObjectId()

    debited = await debit_wallet(db, user["_id"], 200, order_id=order_id)

    assert debited == Decimal("200")
    assert await get_wallet_balance(db, user["_id"]) == Decimal("300")
    [entry] = await get_ledger(db, user["_id"])
    assert entry["entry_type"] == ENTRY_ORDER_DEBIT
    assert entry["debit"] == 200
    assert entry["balance_after"] == 300
    assert entry["order_id"] == order_id


async def test_insufficient_balance(db, make_user):
    user = await make_user(wallet=100)
    with pytest.raises(ValidationError, match="Insufficient wallet balance"):
        await debit_wallet(db, user["_id"], 150)


async def test_partial_debit_takes_what_is_left(db, make_user):
    user = await make_user(wallet=100)

    debited = await debit_wallet(db, user["_id"], 150, allow_partial=True)

    assert debited == Decimal("100")
    assert await get_wallet_balance(db, user["_id"]) == Decimal("0")
    [entry] = await get_ledger(db, user["_id"])
    assert entry["debit"] == 100


async def test_partial_debit_of_empty_wallet_takes_nothing(db, make_user):
    user = await make_user(wallet=0)

    assert await debit_wallet(db, user["_id"], 80, allow_partial=True) == Decimal("0")
    assert await get_ledger(db, user["_id"]) == []
    assert await get_wallet_balance(db, user["_id"]) == Decimal("100")


async def test_zero_debit_is_noop(db, make_user):
    user = await make_user(wallet=100)
    await debit_wallet(db, user["_id"], 0)
    assert await get_ledger(db, user["_id"]) == []


async def test_concurrent_debits_never_overdraw(db, make_user):
    user = await make_user(wallet=500)

    outcomes = await asyncio.gather(
        *(debit_wallet(db, user["_id"], 200) for _ in range(4)),
        return_exceptions=True,
    )

    succeeded = [o for o in outcomes if not isinstance(o, Exception)]
    assert len(succeeded) == 2
    assert await get_wallet_balance(db, user["_id"]) == Decimal("100")


async def test_reversal_restores_balance(db, make_user):
    user = await make_user(wallet=300)
    await debit_wallet(db, user["_id"], 120)
    await reverse_wallet_debit(db, user["_id"], 120)
    assert await get_wallet_balance(db, user["_id"]) == Decimal("300")
    assert len(await get_ledger(db, user["_id"])) == 2


async def test_missing_user(db):
    with pytest.raises(NotFoundError):
        await get_wallet_balance(db, ObjectId())


async def test_cashback_approval_can_differ_from_request(db, make_user):
    user = await make_user(wallet=0)
    admin = await make_user(role="admin")
    request = await create_cashback_request(
        db, user_id=user["_id"], order_id=ObjectId(), coupon_code="WALLET100", amount=100
    )

    approved = await approve_cashback(db, request["_id"], 80, admin["_id"])

    assert approved["status"] == "approved"
    assert approved["approvedAmount"] == 80
    assert approved["requestedAmount"] == 100
    assert approved["approvedBy"] == admin["_id"]
    assert await get_wallet_balance(db, user["_id"]) == Decimal("80")
    [entry] = await get_ledger(db, user["_id"])
    assert entry["entry_type"] == ENTRY_CASHBACK_CREDIT

    with pytest.raises(StateConflictError):
        await approve_cashback(db, request["_id"], 80, admin["_id"])


async def test_cashback_rejection_moves_no_money(db, make_user):
    user = await make_user(wallet=10)
    request = await create_cashback_request(
        db, user_id=user["_id"], order_id=ObjectId(), coupon_code="WALLET100", amount=100
    )

    rejected = await reject_cashback(db, request["_id"], "Order returned")

    assert rejected["status"] == "rejected"
    assert rejected["adminNote"] == "Order returned"
    assert await get_wallet_balance(db, user["_id"]) == Decimal("10")

    with pytest.raises(StateConflictError):
        await reject_cashback(db, request["_id"])
    with pytest.raises(NotFoundError):
        await reject_cashback(db, ObjectId())

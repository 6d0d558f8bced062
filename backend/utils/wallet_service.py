import logging
from datetime import datetime
from decimal import Decimal

from bson import ObjectId
from pymongo import ReturnDocument

from config.constants import WALLET_DEBIT_MAX_ATTEMPTS, WALLET_LEDGER_PAGE
from models.wallet import (
    ENTRY_CASHBACK_CREDIT,
    ENTRY_ORDER_DEBIT,
    ENTRY_ORDER_DEBIT_REVERSAL,
    CashbackStatus,
    WalletLedger,
)
from utils.errors import IntegrityError, NotFoundError, StateConflictError, ValidationError
from utils.money import ZERO, round_money, to_number

logger = logging.getLogger(__name__)

# users.walletBalance is the spendable balance.
# wallet_ledger is the append-only history of every movement on it.


# ==============================
# Core: Append-only ledger write
# ==============================

async def add_ledger_entry(
    db,
    user_id: ObjectId,
    entry_type: str,
    credit=0,
    debit=0,
    *,
    balance_after=None,
    order_id: ObjectId | None = None,
    reason_code: str | None = None,
):
    entry = WalletLedger(
        user_id=user_id,
        entry_type=entry_type,
        credit=to_number(round_money(credit)),
        debit=to_number(round_money(debit)),
        balance_after=to_number(balance_after) if balance_after is not None else None,
        order_id=order_id,
        reason_code=reason_code,
    )
    await db.wallet_ledger.insert_one(entry.to_document())


# ==============================
# Balance
# ==============================

async def get_wallet_balance(db, user_id: ObjectId) -> Decimal:
    user = await db.users.find_one({"_id": user_id}, {"walletBalance": 1})
    if not user:
        raise NotFoundError("User not found")
    return round_money(user.get("walletBalance") or 0)


async def get_ledger(db, user_id: ObjectId, limit: int = WALLET_LEDGER_PAGE) -> list[dict]:
    cursor = (
        db.wallet_ledger
        .find({"user_id": user_id})
        .sort("created_at", -1)
        .limit(limit)
    )
    return await cursor.to_list(length=limit)


# ==============================
# Debit (checkout)
# ==============================

async def debit_wallet(
    db,
    user_id: ObjectId,
    amount,
    *,
    order_id: ObjectId | None = None,
    allow_partial: bool = False,
) -> Decimal:
    """
    Take `amount` from the user's wallet and return what was taken.

    The balance check is part of the update filter, so two checkouts
    spending the same balance can never both succeed. A lost race is
    retried against the fresh balance a few times before giving up.
    With `allow_partial` the retry takes whatever is left instead of
    failing when the balance dropped below `amount`.
    """
    amount = round_money(amount)

    for attempt in range(1, WALLET_DEBIT_MAX_ATTEMPTS + 1):
        if amount <= ZERO:
            return ZERO

        updated = await db.users.find_one_and_update(
            {"_id": user_id, "walletBalance": {"$gte": to_number(amount)}},
            {"$inc": {"walletBalance": -to_number(amount)}},
            return_document=ReturnDocument.AFTER,
        )
        if updated:
            balance_after = round_money(updated.get("walletBalance") or 0)
            await add_ledger_entry(
                db,
                user_id,
                ENTRY_ORDER_DEBIT,
                debit=amount,
                balance_after=balance_after,
                order_id=order_id,
                reason_code="ORDER_PAYMENT",
            )
            logger.info(
                "WALLET_DEBITED user=%s amount=%s balance=%s",
                user_id, amount, balance_after,
            )
            return amount

        current = await get_wallet_balance(db, user_id)
        if current < amount:
            if not allow_partial:
                raise ValidationError("Insufficient wallet balance")
            logger.warning(
                "WALLET_DEBIT_RECLAMPED user=%s requested=%s available=%s",
                user_id, amount, current,
            )
            amount = max(current, ZERO)

        logger.warning("WALLET_DEBIT_RETRY user=%s attempt=%s", user_id, attempt)

    raise IntegrityError("Wallet balance changed during checkout, please retry")


async def reverse_wallet_debit(db, user_id: ObjectId, amount, *, order_id=None) -> Decimal:
    """
    Give back a checkout debit whose order was never created.
    """
    return await credit_wallet(
        db,
        user_id,
        amount,
        entry_type=ENTRY_ORDER_DEBIT_REVERSAL,
        order_id=order_id,
        reason_code="CHECKOUT_FAILED",
    )


# ==============================
# Credit (refunds, cashback)
# ==============================

async def credit_wallet(
    db,
    user_id: ObjectId,
    amount,
    *,
    entry_type: str,
    order_id: ObjectId | None = None,
    reason_code: str | None = None,
) -> Decimal:
    amount = round_money(amount)
    if amount < ZERO:
        raise ValidationError("Credit amount cannot be negative")

    updated = await db.users.find_one_and_update(
        {"_id": user_id},
        {"$inc": {"walletBalance": to_number(amount)}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("User not found")

    balance_after = round_money(updated.get("walletBalance") or 0)
    if amount > ZERO:
        await add_ledger_entry(
            db,
            user_id,
            entry_type,
            credit=amount,
            balance_after=balance_after,
            order_id=order_id,
            reason_code=reason_code,
        )
        logger.info(
            "WALLET_CREDITED user=%s amount=%s type=%s balance=%s",
            user_id, amount, entry_type, balance_after,
        )
    return balance_after


# ==============================
# Cashback requests
# ==============================

async def create_cashback_request(db, *, user_id, order_id, coupon_code, amount):
    doc = {
        "user": user_id,
        "order": order_id,
        "couponCode": coupon_code,
        "requestedAmount": to_number(round_money(amount)),
        "status": CashbackStatus.PENDING.value,
        "createdAt": datetime.utcnow(),
        "updatedAt": datetime.utcnow(),
    }
    res = await db.walletcashbackrequests.insert_one(doc)
    doc["_id"] = res.inserted_id
    logger.info("CASHBACK_REQUESTED order=%s amount=%s", order_id, doc["requestedAmount"])
    return doc


async def list_cashback_requests(db, status: str | None = None) -> list[dict]:
    query = {}
    if status:
        query["status"] = status
    cursor = db.walletcashbackrequests.find(query).sort("createdAt", -1)
    return await cursor.to_list(length=None)


async def approve_cashback(db, request_id: ObjectId, approved_amount, admin_id=None) -> dict:
    """
    Pending -> approved, crediting `approved_amount` (which may differ from
    the requested amount) to the user's wallet.
    """
    approved_amount = round_money(approved_amount)
    if approved_amount < ZERO:
        raise ValidationError("Approved amount cannot be negative")

    now = datetime.utcnow()
    request = await db.walletcashbackrequests.find_one_and_update(
        {"_id": request_id, "status": CashbackStatus.PENDING.value},
        {"$set": {
            "status": CashbackStatus.APPROVED.value,
            "approvedAmount": to_number(approved_amount),
            "approvedBy": admin_id,
            "approvedAt": now,
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not request:
        await _raise_cashback_missing_or_processed(db, request_id)

    try:
        await credit_wallet(
            db,
            request["user"],
            approved_amount,
            entry_type=ENTRY_CASHBACK_CREDIT,
            order_id=request.get("order"),
            reason_code="CASHBACK_APPROVED",
        )
    except Exception:
        await db.walletcashbackrequests.update_one(
            {"_id": request_id},
            {
                "$set": {"status": CashbackStatus.PENDING.value, "updatedAt": datetime.utcnow()},
                "$unset": {"approvedAmount": "", "approvedBy": "", "approvedAt": ""},
            },
        )
        raise

    logger.info("CASHBACK_APPROVED request=%s amount=%s", request_id, approved_amount)
    return request


async def reject_cashback(db, request_id: ObjectId, note: str | None = None, admin_id=None) -> dict:
    now = datetime.utcnow()
    request = await db.walletcashbackrequests.find_one_and_update(
        {"_id": request_id, "status": CashbackStatus.PENDING.value},
        {"$set": {
            "status": CashbackStatus.REJECTED.value,
            "adminNote": note,
            "rejectedBy": admin_id,
            "rejectedAt": now,
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not request:
        await _raise_cashback_missing_or_processed(db, request_id)

    logger.info("CASHBACK_REJECTED request=%s", request_id)
    return request


async def reject_pending_cashback_for_order(db, order_id: ObjectId, note: str) -> int:
    res = await db.walletcashbackrequests.update_many(
        {"order": order_id, "status": CashbackStatus.PENDING.value},
        {"$set": {
            "status": CashbackStatus.REJECTED.value,
            "adminNote": note,
            "rejectedAt": datetime.utcnow(),
            "updatedAt": datetime.utcnow(),
        }},
    )
    return res.modified_count


async def _raise_cashback_missing_or_processed(db, request_id):
    existing = await db.walletcashbackrequests.find_one({"_id": request_id}, {"status": 1})
    if not existing:
        raise NotFoundError("Cashback request not found")
    raise StateConflictError("Cashback request already processed")

from datetime import datetime
from enum import Enum
from typing import Optional

from bson import ObjectId
from pydantic import BaseModel, Field

# ==============================
# Ledger entry types (ENUM-LIKE)
# ==============================

ENTRY_ORDER_DEBIT = "ORDER_DEBIT"
ENTRY_ORDER_DEBIT_REVERSAL = "ORDER_DEBIT_REVERSAL"
ENTRY_CANCELLATION_REFUND = "CANCELLATION_REFUND"
ENTRY_CASHBACK_CREDIT = "CASHBACK_CREDIT"


class WalletLedger:
    def __init__(
        self,
        user_id: ObjectId,
        entry_type: str,
        credit: int | float = 0,
        debit: int | float = 0,
        balance_after: int | float | None = None,
        order_id: ObjectId | None = None,
        reason_code: str | None = None,
    ):
        if credit < 0 or debit < 0:
            raise ValueError("Credit/Debit cannot be negative")

        self.user_id = user_id
        self.order_id = order_id
        self.entry_type = entry_type
        self.credit = credit
        self.debit = debit
        self.balance_after = balance_after
        self.reason_code = reason_code
        self.created_at = datetime.utcnow()

    def to_document(self) -> dict:
        return dict(vars(self))


class CashbackStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CashbackApproval(BaseModel):
    requestId: str
    approvedAmount: float = Field(..., ge=0)


class CashbackRejection(BaseModel):
    requestId: str
    note: Optional[str] = None

from fastapi import APIRouter, Depends

from database import get_db
from utils.money import to_number
from utils.security import get_current_user
from utils.serializers import serialize_docs
from utils.wallet_service import get_ledger, get_wallet_balance

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("")
async def my_wallet(
    user=Depends(get_current_user),
    db=Depends(get_db),
):
    balance = await get_wallet_balance(db, user["_id"])
    ledger = await get_ledger(db, user["_id"])

    return {
        "success": True,
        "balance": to_number(balance),
        "ledger": serialize_docs(ledger),
    }

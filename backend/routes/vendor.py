from fastapi import APIRouter, Depends

from database import get_db
from models.order import OrderStatus
from models.user import Role
from utils.finance import attach_customers, get_vendor_store, vendor_financial, vendor_scope
from utils.revenue import resolve_admin_cut
from utils.money import to_number
from utils.security import require_role
from utils.serializers import serialize_doc, serialize_orders

router = APIRouter(prefix="/vendor", tags=["Vendor"])

# orders reach the store only once an admin has verified them
VENDOR_VISIBLE_STATUSES = [
    OrderStatus.PREPARING.value,
    OrderStatus.AWAITING_AGENT.value,
    OrderStatus.OUT_FOR_DELIVERY.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
]


@router.get("/financial")
async def financial(
    vendor=Depends(require_role(Role.VENDOR)),
    db=Depends(get_db),
):
    report = await vendor_financial(db, vendor)
    return {"success": True, **serialize_doc(report)}


@router.get("/orders")
async def vendor_orders(
    vendor=Depends(require_role(Role.VENDOR)),
    db=Depends(get_db),
):
    store = await get_vendor_store(db, vendor["_id"])

    query = {
        "orderStatus": {"$in": VENDOR_VISIBLE_STATUSES},
        **vendor_scope(store, vendor["_id"]),
    }
    orders = await db.orders.find(query).sort("createdAt", -1).to_list(length=None)
    orders = await attach_customers(db, orders)

    return {
        "success": True,
        "count": len(orders),
        "orders": serialize_orders(orders, vendor.get("role")),
        "adminCutPercentage": to_number(resolve_admin_cut(store)),
    }

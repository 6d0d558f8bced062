from fastapi import APIRouter, Depends

from database import get_db
from models.order import OrderStatus
from models.user import Role
from utils.security import require_role
from utils.serializers import serialize_orders

router = APIRouter(prefix="/delivery-agent", tags=["Delivery Agent"])


@router.get("/orders")
async def agent_orders(
    agent=Depends(require_role(Role.DELIVERY_AGENT)),
    db=Depends(get_db),
):
    """
    Open pickups waiting for any agent, plus this agent's own deliveries.
    """
    available = (
        await db.orders.find({
            "orderStatus": OrderStatus.AWAITING_AGENT.value,
            "deliveryAgent": None,
        })
        .sort("createdAt", 1)
        .to_list(length=None)
    )
    mine = (
        await db.orders.find({"deliveryAgent": agent["_id"]})
        .sort("updatedAt", -1)
        .to_list(length=None)
    )

    role = agent.get("role")
    return {
        "success": True,
        "available": serialize_orders(available, role),
        "assigned": serialize_orders(mine, role),
    }

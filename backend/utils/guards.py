from bson import ObjectId
from bson.errors import InvalidId

from models.order import OrderStatus
from models.user import Role
from utils.errors import AuthorizationError, NotFoundError, ValidationError

# -------------------------------
# ObjectId Guard
# -------------------------------

def parse_object_id(value, name: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {name}")


async def get_order_or_404(db, order_id) -> dict:
    order = await db.orders.find_one({"_id": parse_object_id(order_id, "order id")})
    if not order:
        raise NotFoundError("Order not found")
    return order


# -------------------------------
# Order visibility
# -------------------------------

def vendor_owns_order(user: dict, order: dict, store: dict | None) -> bool:
    if order.get("vendor") is not None and order.get("vendor") == user["_id"]:
        return True
    return bool(store) and store.get("vendorId") == user["_id"] and order.get("storeId") == store["_id"]


def can_view_order(user: dict, order: dict, store: dict | None = None) -> bool:
    role = user.get("role")
    if role == Role.ADMIN.value:
        return True
    if role == Role.CUSTOMER.value:
        return order.get("user") == user["_id"]
    if role == Role.VENDOR.value:
        return vendor_owns_order(user, order, store)
    if role == Role.DELIVERY_AGENT.value:
        agent = order.get("deliveryAgent")
        if agent is None:
            # open pickups are visible to every agent
            return order.get("orderStatus") == OrderStatus.AWAITING_AGENT.value
        return agent == user["_id"]
    return False


async def assert_can_view_order(db, user: dict, order: dict) -> None:
    store = None
    if user.get("role") == Role.VENDOR.value and order.get("storeId") is not None:
        store = await db.stores.find_one({"_id": order["storeId"]})
    if not can_view_order(user, order, store):
        raise AuthorizationError("You are not allowed to access this order")

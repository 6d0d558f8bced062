import logging
from datetime import datetime, timedelta

from config.constants import (
    COD_PENDING_ORDERS_LIMIT,
    RECENT_ORDERS_LIMIT,
    WEEKLY_WINDOW_DAYS,
)
from models.order import CancellationStatus, OrderStatus, PaymentMethod, PaymentStatus
from utils.errors import NotFoundError
from utils.money import ZERO, to_decimal, to_number
from utils.revenue import resolve_admin_cut, split_order_revenue

logger = logging.getLogger(__name__)

# ======================================================
# FINANCIAL AGGREGATION
# ======================================================
# Replays orders through the revenue split calculator.
# Windows are bounded on createdAt, months are calendar months in UTC.
# ======================================================

PAID = {"paymentStatus": PaymentStatus.PAID.value}

COD_PENDING = {
    "paymentMethod": PaymentMethod.COD.value,
    "orderStatus": OrderStatus.DELIVERED.value,
    "paymentStatus": {"$ne": PaymentStatus.PAID.value},
}


def window_starts(now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    return {
        "lifetime": None,
        "monthly": now.replace(day=1, hour=0, minute=0, second=0, microsecond=0),
        "weekly": now - timedelta(days=WEEKLY_WINDOW_DAYS),
    }


def _windowed(query: dict, since: datetime | None) -> dict:
    query = dict(query)
    if since is not None:
        query["createdAt"] = {"$gte": since}
    return query


def addons_total(order: dict):
    return sum(
        (to_decimal(a.get("price")) * (a.get("quantity") or 1) for a in order.get("addons") or []),
        ZERO,
    )


class StoreCutCache:
    """
    adminCutPercentage per storeId, each store read once per report.
    """

    def __init__(self, db):
        self.db = db
        self._cuts = {}

    async def cut_for(self, order: dict):
        store_id = order.get("storeId")
        if store_id not in self._cuts:
            store = await self.db.stores.find_one({"_id": store_id}) if store_id else None
            self._cuts[store_id] = resolve_admin_cut(store)
        return self._cuts[store_id]


async def window_metrics(db, since: datetime | None = None, scope: dict | None = None, cuts=None) -> dict:
    cuts = cuts or StoreCutCache(db)
    base = {**PAID, **(scope or {})}

    gross = delivery = coupons = wallet = addons = ZERO
    platform = vendor = ZERO

    async for order in db.orders.find(_windowed(base, since)):
        gross += to_decimal(order.get("totalAmount"))
        delivery += to_decimal(order.get("deliveryCharge"))
        coupons += to_decimal(order.get("discount"))
        wallet += to_decimal(order.get("walletUsed"))
        addons += addons_total(order)

        split = split_order_revenue(order, await cuts.cut_for(order))
        platform += split["platformShare"]
        vendor += split["vendorShare"]

    refunds = ZERO
    refund_query = {"cancellationRequest.status": CancellationStatus.APPROVED.value, **(scope or {})}
    async for order in db.orders.find(_windowed(refund_query, since)):
        refunds += to_decimal((order.get("cancellationRequest") or {}).get("refundAmount"))

    net_profit = platform + delivery + addons - refunds - coupons - wallet

    return {
        "grossRevenue": to_number(gross),
        "platformRevenue": to_number(platform),
        "vendorRevenue": to_number(vendor),
        "addonsTotal": to_number(addons),
        "delivery": to_number(delivery),
        "coupons": to_number(coupons),
        "wallet": to_number(wallet),
        "refunds": to_number(refunds),
        "netProfit": to_number(net_profit),
    }


async def cod_pending(db, scope: dict | None = None) -> dict:
    total = ZERO
    count = 0
    async for order in db.orders.find({**COD_PENDING, **(scope or {})}, {"totalAmount": 1}):
        total += to_decimal(order.get("totalAmount"))
        count += 1
    return {"totalAmount": to_number(total), "count": count}


async def cod_pending_orders(db, scope: dict | None = None, limit: int = COD_PENDING_ORDERS_LIMIT):
    cursor = db.orders.find({**COD_PENDING, **(scope or {})}).sort("createdAt", -1).limit(limit)
    return await cursor.to_list(length=limit)


async def attach_customers(db, orders: list[dict]) -> list[dict]:
    user_ids = list({o.get("user") for o in orders if o.get("user") is not None})
    if not user_ids:
        return orders

    users = {
        u["_id"]: {"_id": u["_id"], "name": u.get("name"), "email": u.get("email")}
        async for u in db.users.find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})
    }
    return [{**o, "user": users.get(o.get("user"), o.get("user"))} for o in orders]


# ======================================================
# ADMIN DASHBOARD
# ======================================================

async def admin_dashboard(db, now: datetime | None = None) -> dict:
    cuts = StoreCutCache(db)
    report = {}
    for name, since in window_starts(now).items():
        report[name] = await window_metrics(db, since, cuts=cuts)

    cod_data = await cod_pending(db)
    cod_orders = await cod_pending_orders(db)
    recent = (
        await db.orders.find()
        .sort("createdAt", -1)
        .limit(RECENT_ORDERS_LIMIT)
        .to_list(length=RECENT_ORDERS_LIMIT)
    )

    report["codData"] = cod_data
    report["codOrders"] = await attach_customers(db, cod_orders)
    report["recentOrders"] = await attach_customers(db, recent)

    logger.info("ADMIN_DASHBOARD_BUILT cod_pending=%s", cod_data["count"])
    return report


# ======================================================
# VENDOR FINANCIAL
# ======================================================

async def get_vendor_store(db, vendor_id):
    store = await db.stores.find_one({"vendorId": vendor_id})
    if not store:
        raise NotFoundError("No store assigned to this vendor.")
    return store


def vendor_scope(store: dict, vendor_id) -> dict:
    # older orders carry only the vendor id
    return {"$or": [{"storeId": store["_id"]}, {"vendor": vendor_id}]}


async def vendor_window(db, scope: dict, pct, since: datetime | None) -> dict:
    item_revenue = platform = vendor = ZERO
    count = 0
    async for order in db.orders.find(_windowed({**PAID, **scope}, since)):
        split = split_order_revenue(order, pct)
        item_revenue += split["itemRevenue"]
        platform += split["platformShare"]
        vendor += split["vendorShare"]
        count += 1

    return {
        "itemRevenue": to_number(item_revenue),
        "vendorRevenue": to_number(vendor),
        "platformRevenue": to_number(platform),
        "orderCount": count,
    }


def enrich_vendor_order(order: dict, pct) -> dict:
    split = split_order_revenue(order, pct)
    items = [
        {
            "name": item.get("name"),
            "quantity": item.get("quantity"),
            "weight": item.get("weight"),
            "price": item.get("price"),
            "adminCutPercentage": to_number(item["adminCutPercentage"]),
            "itemRevenue": to_number(item["itemRevenue"]),
            "platformShare": to_number(item["platformShare"]),
            "vendorShare": to_number(item["vendorShare"]),
        }
        for item in split["items"]
    ]
    return {
        "_id": order["_id"],
        "createdAt": order.get("createdAt"),
        "orderStatus": order.get("orderStatus"),
        "paymentStatus": order.get("paymentStatus"),
        "paymentMethod": order.get("paymentMethod"),
        "totalAmount": order.get("totalAmount"),
        "items": items,
        "vendorRevenue": to_number(split["vendorShare"]),
        "platformRevenue": to_number(split["platformShare"]),
    }


async def vendor_financial(db, vendor: dict, now: datetime | None = None) -> dict:
    """
    Same windows as the admin dashboard, restricted to the vendor's store.
    """
    store = await get_vendor_store(db, vendor["_id"])
    pct = resolve_admin_cut(store)
    scope = vendor_scope(store, vendor["_id"])

    report = {"store": {"_id": store["_id"], "name": store.get("name")}, "adminCutPercentage": to_number(pct)}
    for name, since in window_starts(now).items():
        report[name] = await vendor_window(db, scope, pct, since)

    report["codPending"] = await cod_pending(db, scope)

    orders = await db.orders.find({**PAID, **scope}).sort("createdAt", -1).to_list(length=None)
    report["orders"] = [enrich_vendor_order(o, pct) for o in orders]

    logger.info(
        "VENDOR_FINANCIAL_BUILT vendor=%s store=%s orders=%s",
        vendor["_id"], store["_id"], len(orders),
    )
    return report

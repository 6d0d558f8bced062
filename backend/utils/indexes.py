import logging

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import OperationFailure

from config.constants import COUPON_HOLD_STALE_SECONDS
from utils.idempotency import KEY_TTL_SECONDS

logger = logging.getLogger(__name__)

# Mongo error codes for "same keys, different options/name"
INDEX_CONFLICT_CODES = {85, 86}

# collection -> [(keys, options)]
INDEXES = {
    "coupons": [
        ([("code", ASCENDING)], {"name": "coupons_code_unique", "unique": True}),
    ],
    "orders": [
        ([("user", ASCENDING), ("createdAt", DESCENDING)], {"name": "orders_user_created_at_idx"}),
        ([("orderStatus", ASCENDING), ("createdAt", DESCENDING)], {"name": "orders_status_created_at_idx"}),
        ([("storeId", ASCENDING), ("createdAt", DESCENDING)], {"name": "orders_store_created_at_idx"}),
        ([("vendor", ASCENDING), ("createdAt", DESCENDING)], {"name": "orders_vendor_created_at_idx", "sparse": True}),
        (
            [("paymentMethod", ASCENDING), ("paymentStatus", ASCENDING), ("orderStatus", ASCENDING)],
            {"name": "orders_payment_state_idx"},
        ),
        ([("cancellationRequest.status", ASCENDING)], {"name": "orders_cancellation_status_idx", "sparse": True}),
        ([("user", ASCENDING), ("couponCode", ASCENDING)], {"name": "orders_user_coupon_idx", "sparse": True}),
        ([("deliveryAgent", ASCENDING), ("orderStatus", ASCENDING)], {"name": "orders_delivery_agent_status_idx"}),
    ],
    "walletcashbackrequests": [
        ([("status", ASCENDING), ("createdAt", DESCENDING)], {"name": "cashback_status_created_at_idx"}),
        ([("order", ASCENDING)], {"name": "cashback_order_idx"}),
    ],
    "wallet_ledger": [
        ([("user_id", ASCENDING), ("created_at", DESCENDING)], {"name": "wallet_ledger_user_created_at_idx"}),
        ([("order_id", ASCENDING)], {"name": "wallet_ledger_order_idx", "sparse": True}),
    ],
    "order_timeline": [
        ([("order_id", ASCENDING), ("created_at", ASCENDING)], {"name": "order_timeline_order_created_at_idx"}),
    ],
    "idempotency_keys": [
        ([("key", ASCENDING), ("scope", ASCENDING)], {"name": "idempotency_key_scope_unique", "unique": True}),
        ([("created_at", ASCENDING)], {"name": "idempotency_ttl_idx", "expireAfterSeconds": KEY_TTL_SECONDS}),
    ],
    "coupon_holds": [
        ([("created_at", ASCENDING)], {"name": "coupon_holds_ttl_idx", "expireAfterSeconds": COUPON_HOLD_STALE_SECONDS * 10}),
    ],
    "rate_limits": [
        ([("key", ASCENDING)], {"name": "rate_limits_key_unique", "unique": True}),
    ],
    "audit_logs": [
        ([("action", ASCENDING), ("created_at", DESCENDING)], {"name": "audit_action_created_at_idx"}),
    ],
}


async def _create_index_safe(collection, keys, **kwargs):
    """
    Create an index, replacing an older index on the same keys whose
    name or options differ.
    """
    try:
        await collection.create_index(keys, **kwargs)
        return
    except OperationFailure as e:
        if getattr(e, "code", None) not in INDEX_CONFLICT_CODES:
            raise

    wanted = list(keys)
    async for idx in collection.list_indexes():
        if list(idx.get("key", {}).items()) != wanted:
            continue
        if idx.get("name") and idx["name"] != kwargs.get("name"):
            logger.warning("INDEX_REPLACED collection=%s index=%s", collection.name, idx["name"])
            await collection.drop_index(idx["name"])

    await collection.create_index(keys, **kwargs)


async def ensure_indexes(db):
    for collection, specs in INDEXES.items():
        for keys, options in specs:
            await _create_index_safe(db[collection], keys, **options)

    logger.info("INDEXES_ENSURED collections=%s", len(INDEXES))

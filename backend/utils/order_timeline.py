import logging
from datetime import datetime

from bson import ObjectId

logger = logging.getLogger(__name__)


async def record_order_event(
    db,
    *,
    order_id,
    event: str,
    actor_role: str,
    actor_id=None,
    from_status: str | None = None,
    to_status: str | None = None,
    metadata: dict | None = None,
):
    """
    Single source of truth for order timeline events.
    """

    doc = {
        "order_id": ObjectId(order_id),
        "event": event,
        "actor_role": actor_role,
        "actor_id": ObjectId(actor_id) if actor_id else None,
        "from_status": from_status,
        "to_status": to_status,
        "metadata": metadata or {},
        "created_at": datetime.utcnow(),
    }

    await db.order_timeline.insert_one(doc)


async def get_order_timeline(db, order_id) -> list[dict]:
    cursor = db.order_timeline.find({"order_id": ObjectId(order_id)}).sort("created_at", 1)
    return await cursor.to_list(length=None)


async def try_record_order_event(db, **kwargs) -> None:
    # the order write already happened; a lost timeline row must not fail it
    try:
        await record_order_event(db, **kwargs)
    except Exception:
        logger.exception("TIMELINE_WRITE_FAILED order=%s event=%s", kwargs.get("order_id"), kwargs.get("event"))

from datetime import datetime, timedelta

from pymongo import ReturnDocument
from starlette.exceptions import HTTPException


async def rate_limit(
    db,
    key: str,
    max_requests: int,
    window_seconds: int,
):
    """
    Fixed-window counter stored in `rate_limits`.
    A window older than `window_seconds` is restarted on the next hit.
    """
    now = datetime.utcnow()
    window_start = now - timedelta(seconds=window_seconds)

    # expired window: start over
    await db.rate_limits.update_one(
        {"key": key, "created_at": {"$lt": window_start}},
        {"$set": {"count": 0, "created_at": now}},
    )

    record = await db.rate_limits.find_one_and_update(
        {"key": key},
        {
            "$inc": {"count": 1},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )

    if record["count"] > max_requests:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
        )

import logging
from datetime import datetime

from pymongo.errors import DuplicateKeyError

from utils.errors import AppError, StateConflictError

logger = logging.getLogger(__name__)

KEY_TTL_SECONDS = 60 * 60 * 24          # 24 hours
RESERVATION_STALE_SECONDS = 60 * 10     # 10 minutes

STATUS_RESERVED = "reserved"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

IN_PROGRESS_MESSAGE = "Request already in progress"


def _key_filter(key: str, scope: str) -> dict:
    return {"key": key, "scope": scope}


def _is_stale(record: dict) -> bool:
    created_at = record.get("created_at")
    if not created_at:
        return False
    return (datetime.utcnow() - created_at).total_seconds() > RESERVATION_STALE_SECONDS


async def reserve(db, key: str, scope: str):
    """
    Claim `key` for the current request.

    Returns the response an earlier request with the same key completed
    with, or None when the current request now owns the key. A live
    reservation held by another request raises StateConflictError; a
    failed or abandoned one is taken over.
    """
    record = await db.idempotency_keys.find_one(_key_filter(key, scope))

    if record:
        if record.get("status") == STATUS_COMPLETED:
            return record.get("response")
        if record.get("status") == STATUS_RESERVED and not _is_stale(record):
            raise StateConflictError(IN_PROGRESS_MESSAGE)
        await db.idempotency_keys.delete_one({"_id": record["_id"]})

    try:
        await db.idempotency_keys.insert_one({
            **_key_filter(key, scope),
            "status": STATUS_RESERVED,
            "response": None,
            "created_at": datetime.utcnow(),
        })
    except DuplicateKeyError:
        # a concurrent request with the same key got there first
        winner = await db.idempotency_keys.find_one(_key_filter(key, scope))
        if winner and winner.get("status") == STATUS_COMPLETED:
            return winner.get("response")
        raise StateConflictError(IN_PROGRESS_MESSAGE)

    return None


async def complete(db, key: str, scope: str, response: dict) -> None:
    await db.idempotency_keys.update_one(
        _key_filter(key, scope),
        {"$set": {
            "status": STATUS_COMPLETED,
            "response": response,
            "completed_at": datetime.utcnow(),
        }},
    )


async def fail(db, key: str, scope: str, error: str) -> None:
    await db.idempotency_keys.update_one(
        _key_filter(key, scope),
        {"$set": {
            "status": STATUS_FAILED,
            "error": error,
            "failed_at": datetime.utcnow(),
        }},
    )


async def release(db, key: str, scope: str) -> None:
    await db.idempotency_keys.delete_one(_key_filter(key, scope))


async def run_once(db, key: str | None, scope: str, work):
    """
    Await `work()` at most once per (key, scope) and return its response.

    Without a key the call simply runs. A business rejection frees the
    key so the client can fix the request and retry with the same key;
    any other failure marks it failed.
    """
    if not key:
        return await work()

    replay = await reserve(db, key, scope)
    if replay is not None:
        logger.info("IDEMPOTENT_REPLAY scope=%s key=%s", scope, key)
        return replay

    try:
        response = await work()
    except AppError:
        await release(db, key, scope)
        raise
    except Exception as e:
        await fail(db, key, scope, str(e))
        raise

    await complete(db, key, scope, response)
    return response

from datetime import datetime


async def log_audit(
    db,
    actor_id,
    actor_role: str,
    action: str,
    metadata: dict | None = None
):
    """
    Admin money decisions (cancellation refunds, cashback) end up here.
    """
    await db.audit_logs.insert_one({
        "actor_id": str(actor_id) if actor_id is not None else None,
        "actor_role": actor_role,
        "action": action,
        "metadata": metadata or {},
        "created_at": datetime.utcnow()
    })

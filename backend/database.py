from fastapi import Request
from motor.motor_asyncio import AsyncIOMotorClient

from config.env import MONGO_URI, MONGO_DB_NAME


def create_client(uri: str | None = None) -> AsyncIOMotorClient:
    uri = uri or MONGO_URI
    if not uri:
        raise RuntimeError("MONGODB_URI not set")
    return AsyncIOMotorClient(uri)


def open_database(client: AsyncIOMotorClient, name: str | None = None):
    """
    Database named in the URI wins; MONGODB_DB_NAME is the fallback.
    """
    default = client.get_default_database(default=name or MONGO_DB_NAME)
    return default


def get_db(request: Request):
    # Bound in the app startup hook (or by tests); never created on import.
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise RuntimeError("Database is not initialised")
    return db

from dotenv import load_dotenv
load_dotenv()

import logging
from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from database import create_client, get_db, open_database

# ENV
from config.env import ENV, CORS_ALLOWED_ORIGINS, LOG_LEVEL, validate_production_env

# ERRORS
from utils.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_error_handler,
)
from utils.indexes import ensure_indexes

# ROUTES
from routes.orders import router as orders_router
from routes.admin import router as admin_router
from routes.vendor import router as vendor_router
from routes.delivery_agent import router as delivery_agent_router
from routes.coupons import router as coupons_router
from routes.payment import router as payment_router
from routes.wallet import router as wallet_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

logger.info("ENV: %s", ENV)

app = FastAPI(
    title="Bakehouse Orders API",
    version="1.0.0",
    docs_url=None if ENV == "production" else "/docs",
    redoc_url=None if ENV == "production" else "/redoc",
    openapi_url=None if ENV == "production" else "/openapi.json",
)
app.state.db = None
app.state.mongo_client = None

# -----------------------------
# ERRORS -> {"error": message}
# -----------------------------

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

# -----------------------------
# CORS
# -----------------------------

allowed_origins = [origin.strip() for origin in CORS_ALLOWED_ORIGINS if origin.strip()]
if not allowed_origins:
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# ROUTES
# -----------------------------

app.include_router(orders_router, prefix="/api")
app.include_router(admin_router, prefix="/api")
app.include_router(vendor_router, prefix="/api")
app.include_router(delivery_agent_router, prefix="/api")
app.include_router(coupons_router, prefix="/api")
app.include_router(payment_router, prefix="/api")
app.include_router(wallet_router, prefix="/api")

# -----------------------------
# HEALTH CHECKS
# -----------------------------

@app.get("/api/health")
async def health():

    return {"status": "ok"}

@app.get("/api/health/db")
async def health_db(db=Depends(get_db)):
    await db.command("ping")
    return {"status": "mongodb connected"}

# -----------------------------
# STARTUP / SHUTDOWN (ONE PLACE ONLY)
# -----------------------------

@app.on_event("startup")
async def connect_database():
    validate_production_env()

    if app.state.db is not None:
        # already bound (tests inject their own database)
        return

    client = create_client()
    app.state.mongo_client = client
    app.state.db = open_database(client)
    await ensure_indexes(app.state.db)
    logger.info("MONGODB_CONNECTED db=%s", app.state.db.name)


@app.on_event("shutdown")
async def close_database():
    if app.state.mongo_client is not None:
        app.state.mongo_client.close()
        app.state.mongo_client = None
        app.state.db = None

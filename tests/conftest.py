import os
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Must be set before config.env is imported
os.environ.setdefault("JWT_SECRET", "test-secret-key-min-32-characters-long")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/bakehouse_test")
os.environ["ENV"] = "test"


@pytest_asyncio.fixture
async def db():
    client = AsyncMongoMockClient()
    yield client["bakehouse_test"]


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from main import app
    app.state.db = db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.state.db = None


# -----------------------------
# Seed helpers
# -----------------------------

@pytest.fixture
def make_user(db):
    async def _make(role="user", wallet=0, name="Test User", email=None):
        user = {
            "_id": ObjectId(),
            "name": name,
            "email": email,
            "role": role,
            "walletBalance": wallet,
        }
        await db.users.insert_one(user)
        return user
    return _make


@pytest.fixture
def auth_headers():
    from utils.jwt import create_access_token

    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user['_id'])}"}
    return _headers


@pytest.fixture
def make_store(db):
    async def _make(vendor=None, admin_cut=None, name="Sugar Bloom"):
        store = {
            "_id": ObjectId(),
            "name": name,
            "address": "12 MG Road, Pune",
            "phone": "9800000000",
            "vendorId": vendor["_id"] if vendor else None,
        }
        if admin_cut is not None:
            store["adminCutPercentage"] = admin_cut
        await db.stores.insert_one(store)
        return store
    return _make


@pytest.fixture
def make_cart(db):
    async def _make(user, items, addons=None, store=None):
        """
        items: list of (price, quantity) tuples.
        """
        cart_items = []
        for i, (price, qty) in enumerate(items):
            product = {"_id": ObjectId(), "name": f"Cake {i}"}
            if store:
                product["storeId"] = store["_id"]
            await db.products.insert_one(product)
            cart_items.append({
                "product": product["_id"],
                "name": product["name"],
                "image": "cake.jpg",
                "quantity": qty,
                "weight": "1kg",
                "selectedPrice": price,
            })
        cart = {
            "_id": ObjectId(),
            "user": user["_id"],
            "items": cart_items,
            "addons": [
                {"addon": ObjectId(), "name": name, "price": price, "quantity": qty}
                for name, price, qty in (addons or [])
            ],
        }
        await db.carts.insert_one(cart)
        return cart
    return _make


@pytest.fixture
def make_coupon(db):
    async def _make(code="SAVE50", discount_type="fixed", value=50, **fields):
        coupon = {
            "_id": ObjectId(),
            "code": code,
            "description": "test coupon",
            "discountType": discount_type,
            "discountValue": value,
            "minOrderAmount": fields.pop("minOrderAmount", 0),
            "maxDiscount": fields.pop("maxDiscount", None),
            "expiryDate": fields.pop("expiryDate", datetime.utcnow() + timedelta(days=30)),
            "usageLimit": fields.pop("usageLimit", None),
            "usedCount": fields.pop("usedCount", 0),
            "usageLimitPerUser": fields.pop("usageLimitPerUser", None),
            "isActive": fields.pop("isActive", True),
            **fields,
        }
        await db.coupons.insert_one(coupon)
        return coupon
    return _make


@pytest.fixture
def make_location(db):
    async def _make(fee=50, active=True):
        location = {"_id": ObjectId(), "name": "Kothrud", "fee": fee, "isActive": active}
        await db.deliverylocations.insert_one(location)
        return location
    return _make


@pytest.fixture
def make_order(db):
    async def _make(user, **fields):
        now = datetime.utcnow()
        order = {
            "_id": ObjectId(),
            "user": user["_id"],
            "items": [{"product": ObjectId(), "name": "Truffle", "price": 500, "quantity": 1, "weight": "1kg"}],
            "addons": [],
            "shippingAddress": ADDRESS,
            "subtotal": 500,
            "discount": 0,
            "couponCode": None,
            "deliveryCharge": 50,
            "walletUsed": 0,
            "walletCashback": 0,
            "totalAmount": 550,
            "paymentMethod": "COD",
            "paymentStatus": "Pending",
            "orderStatus": "punched",
            "otp": "482913",
            "deliveryAgent": None,
            "createdAt": now,
            "updatedAt": now,
        }
        order.update(fields)
        await db.orders.insert_one(order)
        return order
    return _make


ADDRESS = {
    "name": "Asha",
    "phone": "9811111111",
    "addressLine1": "Flat 4, Lotus Apartments",
    "addressLine2": "",
    "city": "Pune",
    "state": "MH",
    "pincode": "411038",
}


@pytest.fixture
def address():
    return dict(ADDRESS)

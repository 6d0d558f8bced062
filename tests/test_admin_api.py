"""Admin, vendor and wallet endpoints."""

from bson import ObjectId

from utils.wallet_service import create_cashback_request


async def test_admin_routes_require_admin(client, make_user, auth_headers):
    customer = await make_user()
    resp = await client.get("/api/admin/dashboard", headers=auth_headers(customer))
    assert resp.status_code == 403
    assert resp.json() == {"error": "Insufficient permissions"}


async def test_dashboard_shape(client, make_user, auth_headers, make_order):
    admin = await make_user(role="admin")
    customer = await make_user()
    await make_order(customer, paymentStatus="Paid")

    resp = await client.get("/api/admin/dashboard", headers=auth_headers(admin))

    body = resp.json()
    assert resp.status_code == 200
    for window in ("lifetime", "monthly", "weekly"):
        assert body[window]["grossRevenue"] == 550
        assert body[window]["platformRevenue"] == 500
    assert body["codData"] == {"totalAmount": 0, "count": 0}
    assert len(body["recentOrders"]) == 1


async def test_cancellation_approval_flow(client, db, make_user, auth_headers, make_order):
    admin = await make_user(role="admin")
    customer = await make_user(wallet=0)
    order = await make_order(customer, walletUsed=150, totalAmount=400)

    await client.post(
        f"/api/orders/{order['_id']}/cancel", json={"reason": "Plans changed"}, headers=auth_headers(customer)
    )

    resp = await client.get("/api/admin/cancellation-requests", headers=auth_headers(admin))
    assert resp.json()["count"] == 1

    resp = await client.post(
        f"/api/admin/orders/{order['_id']}/cancel",
        json={"action": "approve", "walletRefundAmount": 150},
        headers=auth_headers(admin),
    )

    assert resp.status_code == 200
    assert resp.json()["message"] == "Cancellation approved & refunded"
    cancelled = resp.json()["order"]
    assert cancelled["orderStatus"] == "Cancelled"
    assert cancelled["cancellationRequest"]["refundAmount"] == 0
    assert cancelled["cancellationRequest"]["adminNote"] == "Cancelled. COD Order. Wallet Refund: ₹150"

    assert (await db.users.find_one({"_id": customer["_id"]}))["walletBalance"] == 150
    audit = await db.audit_logs.find_one({"action": "CANCELLATION_APPROVE"})
    assert audit["metadata"]["order_id"] == str(order["_id"])


async def test_cancellation_rejection(client, make_user, auth_headers, make_order):
    admin = await make_user(role="admin")
    customer = await make_user()
    order = await make_order(customer)
    await client.post(f"/api/orders/{order['_id']}/cancel", json={}, headers=auth_headers(customer))

    resp = await client.post(
        f"/api/admin/orders/{order['_id']}/cancel",
        json={"action": "reject", "adminNote": "Cake already baked"},
        headers=auth_headers(admin),
    )

    assert resp.json()["message"] == "Cancellation rejected"
    assert resp.json()["order"]["orderStatus"] == "punched"

    resp = await client.post(
        f"/api/admin/orders/{order['_id']}/cancel",
        json={"action": "approve"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 409


async def test_cashback_review(client, db, make_user, auth_headers):
    admin = await make_user(role="admin")
    customer = await make_user(wallet=20)
    request = await create_cashback_request(
        db, user_id=customer["_id"], order_id=ObjectId(), coupon_code="WALLET100", amount=100
    )

    resp = await client.get("/api/admin/wallet-cashback?status=pending", headers=auth_headers(admin))
    assert resp.json()["count"] == 1

    resp = await client.post(
        "/api/admin/wallet-cashback/approve",
        json={"requestId": str(request["_id"]), "approvedAmount": 100},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["request"]["status"] == "approved"

    resp = await client.get("/api/wallet", headers=auth_headers(customer))
    assert resp.json()["balance"] == 120
    assert resp.json()["ledger"][0]["entry_type"] == "CASHBACK_CREDIT"

    resp = await client.post(
        "/api/admin/wallet-cashback/reject",
        json={"requestId": str(request["_id"])},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 409


async def test_vendor_endpoints(client, make_user, auth_headers, make_store, make_order):
    vendor = await make_user(role="vendor")
    customer = await make_user()
    store = await make_store(vendor=vendor, admin_cut=25)
    await make_order(customer, storeId=store["_id"], orderStatus="punched")
    await make_order(customer, storeId=store["_id"], orderStatus="preparing your cake", paymentStatus="Paid")

    resp = await client.get("/api/vendor/orders", headers=auth_headers(vendor))
    body = resp.json()
    assert body["count"] == 1
    assert body["adminCutPercentage"] == 25
    assert "otp" not in body["orders"][0]

    resp = await client.get("/api/vendor/financial", headers=auth_headers(vendor))
    lifetime = resp.json()["lifetime"]
    assert lifetime["itemRevenue"] == 500
    assert lifetime["platformRevenue"] == 125
    assert lifetime["vendorRevenue"] == 375


async def test_vendor_without_store_gets_404(client, make_user, auth_headers):
    vendor = await make_user(role="vendor")
    resp = await client.get("/api/vendor/financial", headers=auth_headers(vendor))
    assert resp.status_code == 404
    assert resp.json() == {"error": "No store assigned to this vendor."}

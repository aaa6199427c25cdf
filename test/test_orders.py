import pytest
from httpx import AsyncClient

from conftest import add_tyre, bearer, register_and_login

pytestmark = pytest.mark.asyncio

SHIPPING = {
    "fullName": "Ravi Kumar",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Pune",
    "state": "MH",
    "pincode": "411001",
}


async def place(client: AsyncClient, token: str, items, mode: str = "COD", shipping=None):
    return await client.post(
        "/api/orders",
        json={"items": items, "shippingAddress": shipping or SHIPPING, "paymentMode": mode},
        headers=bearer(token),
    )


async def stock_of(client: AsyncClient, tyre_id: str) -> int:
    r = await client.post("/api/tyres/stock-check", json={"ids": [tyre_id]})
    return r.json()[0]["stock"]


class TestCreateOrder:
    """Checkout: validation, pricing, stock and notification."""

    async def test_cod_order(self, client: AsyncClient, user_token: str, admin_token: str, outbox):
        tyre = await add_tyre(client, admin_token, price=4000, stock=5)
        # Client-side price is ignored
        r = await place(client, user_token, [{"id": tyre["id"], "quantity": 2, "tyre": {"price": 1}}])
        assert r.status_code == 201
        body = r.json()
        assert body["totalAmount"] == 8000
        assert "upi" not in body
        assert await stock_of(client, tyre["id"]) == 3

        assert outbox[-1]["to"] == "ravi@example.com"
        assert "Order Confirmation" in outbox[-1]["subject"]

        mine = (await client.get("/api/orders/my-orders", headers=bearer(user_token))).json()
        assert len(mine) == 1
        assert mine[0]["id"] == body["orderId"]
        assert mine[0]["paymentStatus"] == "PENDING"
        assert mine[0]["status"] == "Pending"
        assert mine[0]["items"][0]["price"] == 4000

    async def test_upi_order_returns_qr(self, client: AsyncClient, user_token: str, admin_token: str, outbox):
        tyre = await add_tyre(client, admin_token, price=1499.5, stock=4)
        r = await place(client, user_token, [{"tyre": {"id": tyre["id"]}, "quantity": 1}], mode="upi")
        assert r.status_code == 201
        upi = r.json()["upi"]
        assert upi["uri"].startswith("upi://pay?")
        assert "am=1499.50" in upi["uri"]
        assert upi["qr_png_base64"]
        assert "UPI Payment Pending" in outbox[-1]["subject"]

        qr = await client.get(f"/api/orders/{r.json()['orderId']}/upi-qr", headers=bearer(user_token))
        assert qr.status_code == 200
        assert qr.headers["content-type"] == "image/png"

    async def test_duplicate_lines_are_merged(self, client: AsyncClient, user_token: str, admin_token: str):
        tyre = await add_tyre(client, admin_token, price=100, stock=3)
        r = await place(client, user_token, [{"id": tyre["id"], "quantity": 2}, {"id": tyre["id"], "quantity": 1}])
        assert r.status_code == 201
        assert r.json()["totalAmount"] == 300
        assert await stock_of(client, tyre["id"]) == 0

    async def test_insufficient_stock_changes_nothing(self, client: AsyncClient, user_token: str, admin_token: str):
        plenty = await add_tyre(client, admin_token, stock=10)
        scarce = await add_tyre(client, admin_token, stock=1)
        r = await place(client, user_token, [{"id": plenty["id"], "quantity": 2}, {"id": scarce["id"], "quantity": 2}])
        assert r.status_code == 409
        assert await stock_of(client, plenty["id"]) == 10
        assert await stock_of(client, scarce["id"]) == 1
        assert (await client.get("/api/orders/my-orders", headers=bearer(user_token))).json() == []

    @pytest.mark.parametrize(
        "payload, detail",
        [
            ({"items": [], "paymentMode": "COD"}, "no order items"),
            ({"items": [{"id": "x", "quantity": 1}]}, "payment mode is required"),
            ({"items": [{"id": "x", "quantity": 1}], "paymentMode": "CARD"}, "payment mode must be COD or UPI"),
        ],
    )
    async def test_validation(self, client: AsyncClient, user_token: str, payload, detail):
        payload = {"shippingAddress": SHIPPING, **payload}
        r = await client.post("/api/orders", json=payload, headers=bearer(user_token))
        assert r.status_code == 400
        assert r.json()["detail"] == detail

    async def test_unknown_tyre_and_bad_address(self, client: AsyncClient, user_token: str, admin_token: str):
        r = await place(client, user_token, [{"id": "missing", "quantity": 1}])
        assert r.status_code == 400
        assert "unknown tyre" in r.json()["detail"]

        tyre = await add_tyre(client, admin_token)
        r = await place(client, user_token, [{"id": tyre["id"], "quantity": 1}], shipping={**SHIPPING, "pincode": " "})
        assert r.status_code == 400
        assert "pincode" in r.json()["detail"]

    async def test_requires_login(self, client: AsyncClient):
        r = await client.post("/api/orders", json={"items": []})
        assert r.status_code == 401


class TestAdminOrders:
    """Order management from the admin console."""

    async def test_list_and_get(self, client: AsyncClient, user_token: str, admin_token: str):
        tyre = await add_tyre(client, admin_token)
        order_id = (await place(client, user_token, [{"id": tyre["id"], "quantity": 1}])).json()["orderId"]

        listed = (await client.get("/api/orders", headers=bearer(admin_token))).json()
        assert listed[0]["user"]["email"] == "ravi@example.com"
        one = await client.get(f"/api/orders/{order_id}", headers=bearer(admin_token))
        assert one.json()["user"]["name"] == "Ravi Kumar"
        assert (await client.get("/api/orders/nope", headers=bearer(admin_token))).status_code == 404
        assert (await client.get("/api/orders", headers=bearer(user_token))).status_code == 403

    async def test_cancel_restocks_and_reopen_reserves(self, client: AsyncClient, user_token: str, admin_token: str):
        tyre = await add_tyre(client, admin_token, stock=4)
        order_id = (await place(client, user_token, [{"id": tyre["id"], "quantity": 3}])).json()["orderId"]
        assert await stock_of(client, tyre["id"]) == 1

        r = await client.put(f"/api/orders/{order_id}/status", json={"status": "Cancelled"}, headers=bearer(admin_token))
        assert r.json()["order"]["status"] == "Cancelled"
        assert await stock_of(client, tyre["id"]) == 4

        r = await client.put(f"/api/orders/{order_id}/status", json={"status": "Confirmed"}, headers=bearer(admin_token))
        assert r.status_code == 200
        assert await stock_of(client, tyre["id"]) == 1

        r = await client.put(f"/api/orders/{order_id}/status", json={"status": "Lost"}, headers=bearer(admin_token))
        assert r.status_code == 400

    async def test_verify_upi_payment(self, client: AsyncClient, user_token: str, admin_token: str, outbox):
        tyre = await add_tyre(client, admin_token, price=2500)
        cod_id = (await place(client, user_token, [{"id": tyre["id"], "quantity": 1}])).json()["orderId"]
        upi_id = (await place(client, user_token, [{"id": tyre["id"], "quantity": 1}], mode="UPI")).json()["orderId"]

        r = await client.put(f"/api/orders/{cod_id}/verify-payment", headers=bearer(admin_token))
        assert r.status_code == 400
        assert r.json()["detail"] == "not a UPI order"

        sent_before = len(outbox)
        r = await client.put(f"/api/orders/{upi_id}/verify-payment", headers=bearer(admin_token))
        assert r.status_code == 200
        assert r.json()["order"]["paymentStatus"] == "PAID"
        assert r.json()["order"]["status"] == "Confirmed"
        assert len(outbox) == sent_before + 1
        assert outbox[-1]["attachments"][0]["cid"] == "upi_qr_code"

        r = await client.put(f"/api/orders/{upi_id}/verify-payment", headers=bearer(admin_token))
        assert r.json()["detail"] == "already verified"

    async def test_verifying_cancelled_order_reserves_stock(self, client: AsyncClient, user_token: str, admin_token: str):
        tyre = await add_tyre(client, admin_token, stock=4)
        first = (await place(client, user_token, [{"id": tyre["id"], "quantity": 4}], mode="UPI")).json()["orderId"]
        await client.put(f"/api/orders/{first}/status", json={"status": "Cancelled"}, headers=bearer(admin_token))
        assert await stock_of(client, tyre["id"]) == 4

        second = await place(client, user_token, [{"id": tyre["id"], "quantity": 4}])
        assert second.status_code == 201
        assert await stock_of(client, tyre["id"]) == 0

        r = await client.put(f"/api/orders/{first}/verify-payment", headers=bearer(admin_token))
        assert r.status_code == 409
        assert await stock_of(client, tyre["id"]) == 0
        one = (await client.get(f"/api/orders/{first}", headers=bearer(admin_token))).json()
        assert one["status"] == "Cancelled"
        assert one["paymentStatus"] == "PENDING"

    async def test_verifying_cancelled_order_with_stock_confirms_it(self, client: AsyncClient, user_token: str, admin_token: str):
        tyre = await add_tyre(client, admin_token, stock=4)
        order_id = (await place(client, user_token, [{"id": tyre["id"], "quantity": 3}], mode="UPI")).json()["orderId"]
        await client.put(f"/api/orders/{order_id}/status", json={"status": "Cancelled"}, headers=bearer(admin_token))

        r = await client.put(f"/api/orders/{order_id}/verify-payment", headers=bearer(admin_token))
        assert r.status_code == 200
        assert r.json()["order"]["status"] == "Confirmed"
        assert await stock_of(client, tyre["id"]) == 1

    async def test_qr_is_private(self, client: AsyncClient, user_token: str, admin_token: str):
        tyre = await add_tyre(client, admin_token)
        order_id = (await place(client, user_token, [{"id": tyre["id"], "quantity": 1}], mode="UPI")).json()["orderId"]
        other = await register_and_login(client, "other@example.com")
        assert (await client.get(f"/api/orders/{order_id}/upi-qr", headers=bearer(other))).status_code == 404
        assert (await client.get(f"/api/orders/{order_id}/upi-qr", headers=bearer(admin_token))).status_code == 200

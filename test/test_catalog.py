import pytest
from httpx import AsyncClient

from conftest import add_tyre, bearer
from tyrestore.models import Car, Fitment

pytestmark = pytest.mark.asyncio


class TestTyreSearch:
    """Public catalog endpoints."""

    async def test_size_matches_any_spelling(self, client: AsyncClient, admin_token: str):
        tyre = await add_tyre(client, admin_token, size="185/65 R15")
        await add_tyre(client, admin_token, brand="MRF", title="ZVTV", size="195/55R16")

        for q in ("185/65R15", "185/65 r15", "185 / 65 R15"):
            r = await client.get("/api/tyres", params={"size": q})
            assert r.status_code == 200
            assert [t["id"] for t in r.json()] == [tyre["id"]]

    async def test_brand_filter_and_empty_query(self, client: AsyncClient, admin_token: str):
        await add_tyre(client, admin_token, brand="Bridgestone")
        await add_tyre(client, admin_token, brand="CEAT")
        r = await client.get("/api/tyres", params={"brand": "bridge"})
        assert [t["brand"] for t in r.json()] == ["Bridgestone"]
        assert (await client.get("/api/tyres")).json() == []

    async def test_by_id(self, client: AsyncClient, admin_token: str):
        tyre = await add_tyre(client, admin_token)
        r = await client.get(f"/api/tyres/by-id/{tyre['id']}")
        assert r.json()["sku"] == tyre["sku"]
        assert r.json()["warranty_months"] == 36
        assert (await client.get("/api/tyres/by-id/missing")).status_code == 404

    async def test_distinct_facets(self, client: AsyncClient, admin_token: str):
        await add_tyre(client, admin_token, size="185/65R15")
        await add_tyre(client, admin_token, size="185/60R15")
        await add_tyre(client, admin_token, size="185/60 R14")
        await add_tyre(client, admin_token, size="205/55R16")

        assert (await client.get("/api/tyres/distinct/widths")).json() == ["185", "205"]
        assert (await client.get("/api/tyres/distinct/aspects", params={"width": "185"})).json() == ["60", "65"]
        rims = await client.get("/api/tyres/distinct/rims", params={"width": "185", "aspect": "60"})
        assert rims.json() == ["14", "15"]
        assert (await client.get("/api/tyres/distinct/rims", params={"width": "185"})).json() == []

    async def test_stock_check(self, client: AsyncClient, admin_token: str):
        tyre = await add_tyre(client, admin_token, stock=7)
        r = await client.post("/api/tyres/stock-check", json={"ids": [tyre["id"], "missing"]})
        assert r.json() == [{"id": tyre["id"], "stock": 7}]
        r = await client.post("/api/tyres/stock-check", json={"ids": "nope"})
        assert r.status_code == 400

    async def test_cart_sync(self, client: AsyncClient, admin_token: str):
        tyre = await add_tyre(client, admin_token, stock=2, price=1000)
        r = await client.post(
            "/api/tyres/cart-sync",
            json={"items": [{"id": tyre["id"], "quantity": 5}, {"id": "gone", "quantity": 1}]},
        )
        body = r.json()
        assert body["removed"] == ["gone"]
        assert body["items"][0]["quantity"] == 2
        assert body["subtotal"] == 2000


class TestCarLookup:
    """Make / model / year pickers and fitment-driven tyre lists."""

    async def _seed(self, session):
        session.add(Car(make="Hyundai", model="Creta", years=[2019, 2020]))
        session.add(Car(make="Hyundai", model="i20", years=[]))
        session.add(Car(make="Tata", model="Nexon", years=[2021]))
        session.add(Fitment(car_make="Hyundai", car_model="Creta", year=2020, tyre_size="215/60 R17"))
        session.add(Fitment(car_make="Hyundai", car_model="Creta", year=2020, tyre_size="205/65R16"))
        await session.commit()

    async def test_makes_models_years(self, client: AsyncClient, session):
        await self._seed(session)
        assert (await client.get("/api/makes")).json() == ["Hyundai", "Tata"]
        assert (await client.get("/api/makes/Hyundai/models")).json() == ["Creta", "i20"]
        assert (await client.get("/api/makes/Hyundai/Creta/years")).json() == [2019, 2020]
        assert (await client.get("/api/makes/Hyundai/i20/years")).json() == [2022, 2023, 2024]
        assert (await client.get("/api/makes/Hyundai/Venue/years")).json() == []

    async def test_tyres_for_car(self, client: AsyncClient, session, admin_token: str):
        await self._seed(session)
        fits = await add_tyre(client, admin_token, size="215/60R17", price=7200)
        await add_tyre(client, admin_token, size="215/60R17", price=0, sku="FREE-1")
        await add_tyre(client, admin_token, size="175/70R14")

        r = await client.get("/api/makes/hyundai/creta/2020/tyres")
        assert r.status_code == 200
        assert [t["id"] for t in r.json()] == [fits["id"]]
        assert (await client.get("/api/makes/Hyundai/Creta/2019/tyres")).json() == []

    async def test_health(self, client: AsyncClient):
        assert (await client.get("/api/health")).json() == {"ok": True}


async def test_admin_reads_need_token(client: AsyncClient, user_token: str):
    assert (await client.get("/api/admin/tyres")).status_code == 401
    assert (await client.get("/api/admin/tyres", headers=bearer(user_token))).status_code == 403

import pytest
from sqlalchemy import func, select

from tyrestore.main import ensure_default_admin
from tyrestore import main as main_module
from tyrestore.models import Car, Fitment, Tyre, User
from tyrestore.seed import DEMO_TYRES, assign_fitment_years, expand_fitments_by_year, seed

pytestmark = pytest.mark.asyncio


class TestSeed:
    async def test_seed_is_repeatable(self, session):
        first = await seed(session, "Owner@Example.com", "pw-123456")
        assert first["admin_created"] is True
        second = await seed(session, "owner@example.com", "pw-123456")
        assert second["admin_created"] is False

        assert await session.scalar(select(func.count()).select_from(Tyre)) == len(DEMO_TYRES)
        assert await session.scalar(select(func.count()).select_from(Car)) == 4
        assert await session.scalar(select(func.count()).select_from(Fitment)) == first["fitments"]
        admin = await session.scalar(select(User).where(User.email == "owner@example.com"))
        assert admin.role == "admin"

        tyre = await session.scalar(select(Tyre).where(Tyre.sku == "AP-16580R14-1"))
        assert tyre.size_key == "165/80R14"


class TestFitmentMaintenance:
    async def test_expand_by_year(self, session):
        session.add(Car(make="Kia", model="Seltos", years=[2020, 2021]))
        session.add(Fitment(car_make="Kia", car_model="Seltos", year=2020, tyre_size="215/60R17"))
        session.add(Fitment(car_make="Ghost", car_model="Car", year=2020, tyre_size="175/65R14"))
        await session.commit()

        result = await expand_fitments_by_year(session)
        assert result == {"inserted": 1, "skipped": 1}
        years = (await session.scalars(select(Fitment.year).where(Fitment.car_make == "Kia"))).all()
        assert sorted(years) == [2020, 2021]

        # Nothing new on a second run
        assert (await expand_fitments_by_year(session))["inserted"] == 0

    async def test_assign_years(self, session):
        session.add(Car(make="Tata", model="Nexon", years=[2019, 2022, 2021]))
        session.add(Fitment(car_make="tata", car_model="nexon", tyre_size="195/60R16"))
        await session.commit()

        assert await assign_fitment_years(session) == {"updated": 1}
        fit = await session.scalar(select(Fitment))
        assert fit.year == 2022


class TestDefaultAdmin:
    async def test_creates_admin_once(self, session, monkeypatch):
        monkeypatch.setattr(main_module, "ADMIN_DEFAULT_EMAIL", "boot@example.com")
        monkeypatch.setattr(main_module, "ADMIN_DEFAULT_PASSWORD", "boot-pass")
        assert await ensure_default_admin(session) is True
        assert await ensure_default_admin(session) is False
        user = await session.scalar(select(User).where(User.email == "boot@example.com"))
        assert user.role == "admin"

    async def test_noop_without_env(self, session, monkeypatch):
        monkeypatch.setattr(main_module, "ADMIN_DEFAULT_EMAIL", "")
        assert await ensure_default_admin(session) is False

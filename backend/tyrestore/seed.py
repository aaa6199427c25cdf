"""Data maintenance commands.

    python -m tyrestore.seed seed             # demo fitments, tyres and admin
    python -m tyrestore.seed expand-fitments  # copy fitments onto every year of the matching car
    python -m tyrestore.seed assign-years     # stamp year-less fitments with the car's latest year
"""
import argparse
import asyncio
import os
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth_routes import hash_password
from .db import SessionLocal, init_db
from .models import Car, Fitment, Tyre, User
from .sizes import compact_size

DEMO_FITMENTS = [
    {"make": "Maruti", "model": "Swift", "years": [2016, 2017, 2018, 2019, 2020, 2021, 2022], "sizes": ["165/80R14", "185/65R15"]},
    {"make": "Hyundai", "model": "i20", "years": [2015, 2016, 2017, 2018, 2019, 2020, 2021], "sizes": ["185/65R15"]},
    {"make": "Tata", "model": "Nexon", "years": [2017, 2018, 2019, 2020, 2021, 2022], "sizes": ["195/60R16"]},
    {"make": "Kia", "model": "Seltos", "years": [2019, 2020, 2021, 2022], "sizes": ["215/60R17"]},
]

DEMO_TYRES = [
    {"sku": "AP-16580R14-1", "brand": "Apollo", "title": "Apollo Amazer 165/80R14", "size": "165/80R14", "price": 4500, "features": ["All-season", "Comfort"], "stock": 20},
    {"sku": "JK-18565R15-1", "brand": "JK Tyre", "title": "JK Tyre 185/65R15", "size": "185/65R15", "price": 4800, "features": ["All-season"], "stock": 15},
    {"sku": "MRF-19560R16-1", "brand": "MRF", "title": "MRF 195/60R16", "size": "195/60R16", "price": 6900, "features": ["Performance"], "stock": 10},
]


def _same_car(make_col, model_col, make: str, model: str):
    return (func.lower(make_col) == make.lower(), func.lower(model_col) == model.lower())


async def seed(session: AsyncSession, admin_email: str, admin_password: str) -> dict:
    """Replace fitments and tyres with the demo set and make sure the admin exists."""
    await session.execute(delete(Fitment))
    fitment_count = 0
    for f in DEMO_FITMENTS:
        car = await session.scalar(select(Car).where(*_same_car(Car.make, Car.model, f["make"], f["model"])))
        if not car:
            session.add(Car(make=f["make"], model=f["model"], years=f["years"], tyre_size=f["sizes"][0]))
        for year in f["years"]:
            for size in f["sizes"]:
                session.add(Fitment(car_make=f["make"], car_model=f["model"], year=year, tyre_size=size))
                fitment_count += 1

    await session.execute(delete(Tyre))
    for t in DEMO_TYRES:
        session.add(Tyre(warranty_months=36, size_key=compact_size(t["size"]), **t))

    admin_created = False
    admin = await session.scalar(select(User).where(User.email == admin_email.lower()))
    if not admin:
        session.add(User(name="Admin", email=admin_email.lower(), password_hash=hash_password(admin_password), role="admin"))
        admin_created = True
    await session.commit()
    return {"fitments": fitment_count, "tyres": len(DEMO_TYRES), "admin_created": admin_created}


async def expand_fitments_by_year(session: AsyncSession) -> dict:
    inserted = 0
    skipped = 0
    for f in (await session.scalars(select(Fitment))).all():
        car = await session.scalar(select(Car).where(*_same_car(Car.make, Car.model, f.car_make, f.car_model)).limit(1))
        if not car or not car.years:
            print(f"[SEED] No matching car/years for {f.car_make} {f.car_model}")
            skipped += 1
            continue
        for year in car.years:
            exists = await session.scalar(
                select(Fitment.id).where(
                    Fitment.car_make == f.car_make,
                    Fitment.car_model == f.car_model,
                    Fitment.tyre_size == f.tyre_size,
                    Fitment.year == year,
                )
            )
            if exists is None:
                session.add(Fitment(
                    car_make=f.car_make,
                    car_model=f.car_model,
                    tyre_brand=f.tyre_brand,
                    tyre_size=f.tyre_size,
                    price=f.price,
                    year=year,
                ))
                # flush so a duplicate within this run is seen by the next lookup
                await session.flush()
                inserted += 1
    await session.commit()
    return {"inserted": inserted, "skipped": skipped}


async def assign_fitment_years(session: AsyncSession) -> dict:
    updated = 0
    for f in (await session.scalars(select(Fitment).where(Fitment.year.is_(None)))).all():
        car = await session.scalar(select(Car).where(*_same_car(Car.make, Car.model, f.car_make, f.car_model)).limit(1))
        if car and car.years:
            f.year = max(car.years)
            updated += 1
    await session.commit()
    return {"updated": updated}


async def _run(command: str, admin_email: Optional[str], admin_password: Optional[str]) -> dict:
    await init_db()
    async with SessionLocal() as session:
        if command == "seed":
            return await seed(session, admin_email or "admin@tyrefusion.com", admin_password or "admin123")
        if command == "expand-fitments":
            return await expand_fitments_by_year(session)
        return await assign_fitment_years(session)


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="tyrestore.seed", description="TyreStore data maintenance")
    parser.add_argument("command", choices=["seed", "expand-fitments", "assign-years"])
    parser.add_argument("--admin-email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--admin-password", default=os.environ.get("ADMIN_PASS"))
    args = parser.parse_args(argv)
    result = asyncio.run(_run(args.command, args.admin_email, args.admin_password))
    print(f"[SEED] {args.command}: {result}")


if __name__ == "__main__":
    main()

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .catalog import find_tyres
from .db import get_session
from .logs import log_event
from .models import Car, Fitment
from .sizes import compact_size

router = APIRouter()

DEFAULT_YEARS = [2022, 2023, 2024]


async def fitment_sizes(db: AsyncSession, make: str, model: str, year: int) -> List[str]:
    """Distinct compacted tyre sizes recorded for a car (make/model case-insensitive)."""
    rows = (
        await db.scalars(
            select(Fitment.tyre_size).where(
                func.lower(Fitment.car_make) == make.strip().lower(),
                func.lower(Fitment.car_model) == model.strip().lower(),
                Fitment.year == year,
            )
        )
    ).all()
    out: List[str] = []
    for s in rows:
        key = compact_size(s)
        if key and key not in out:
            out.append(key)
    return out


@router.get("/api/makes")
async def list_makes(db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(select(Car.make).distinct())).all()
    return sorted(rows)


@router.get("/api/makes/{make}/models")
async def list_models(make: str, db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(select(Car.model).where(Car.make == make).distinct())).all()
    return sorted(rows)


@router.get("/api/makes/{make}/{model}/years")
async def list_years(make: str, model: str, db: AsyncSession = Depends(get_session)):
    car = await db.scalar(select(Car).where(Car.make == make, Car.model == model).limit(1))
    if not car:
        return []
    return list(car.years) if car.years else DEFAULT_YEARS


@router.get("/api/makes/{make}/{model}/{year}/tyres")
async def tyres_for_car(make: str, model: str, year: int, db: AsyncSession = Depends(get_session)):
    sizes = await fitment_sizes(db, make, model, year)
    log_event("cars", action="tyres_for_car", make=make, model=model, year=year, sizes=sizes)
    if not sizes:
        return []
    return await find_tyres(db, sizes=sizes, priced_only=True)

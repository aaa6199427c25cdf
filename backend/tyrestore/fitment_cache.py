from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import AiFitmentCache, FitmentCache


def ai_fitment_key(make: str, model: str, year: Any) -> str:
    return f"{(make or '').strip().lower()}|{(model or '').strip().lower()}|{str(year).strip()}"


async def get_ai_fitment(db: AsyncSession, key: str) -> Optional[Dict[str, Any]]:
    row = await db.scalar(select(AiFitmentCache).where(AiFitmentCache.key == key))
    if not row or not isinstance(row.result, dict):
        return None
    return row.result  # type: ignore[return-value]


async def set_ai_fitment(db: AsyncSession, key: str, result: Dict[str, Any]) -> None:
    row = await db.scalar(select(AiFitmentCache).where(AiFitmentCache.key == key))
    if not row:
        row = AiFitmentCache(key=key, result=result)
        db.add(row)
    else:
        row.result = result
        row.updated_at = datetime.now(timezone.utc)
    await db.commit()


async def get_wheel_fitment(db: AsyncSession, *, make: str, model: str, year: int, modification: str) -> Optional[List[str]]:
    row = await db.scalar(
        select(FitmentCache).where(
            FitmentCache.make == make,
            FitmentCache.model == model,
            FitmentCache.year == year,
            FitmentCache.modification == modification,
        )
    )
    return None if not row else list(row.sizes or [])


async def set_wheel_fitment(
    db: AsyncSession,
    *,
    make: str,
    model: str,
    year: int,
    modification: str,
    sizes: List[str],
) -> None:
    row = await db.scalar(
        select(FitmentCache).where(
            FitmentCache.make == make,
            FitmentCache.model == model,
            FitmentCache.year == year,
            FitmentCache.modification == modification,
        )
    )
    if not row:
        db.add(FitmentCache(make=make, model=model, year=year, modification=modification, sizes=sizes))
    else:
        row.sizes = sizes
        row.created_at = datetime.now(timezone.utc)
    await db.commit()

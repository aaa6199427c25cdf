from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from . import wheelsize
from .catalog import find_tyres
from .db import get_session
from .fitment_cache import get_wheel_fitment, set_wheel_fitment
from .logs import log_event

router = APIRouter()


# ---------- Raw proxies (used by the make/model pickers) ----------
@router.get("/api/wheelsize/makes")
async def ws_makes():
    return await wheelsize.wheelsize_get("makes")


@router.get("/api/wheelsize/models/{make}")
async def ws_models(make: str):
    return await wheelsize.wheelsize_get("models", {"make": make})


@router.get("/api/wheelsize/years/{make}/{model}")
async def ws_years(make: str, model: str):
    return await wheelsize.wheelsize_get("generations", {"make": make, "model": model})


# ---------- Fitment lookup ----------
@router.get("/api/wheels/years")
async def wheel_years(make: Optional[str] = None, model: Optional[str] = None):
    if not make or not model:
        raise HTTPException(status_code=400, detail="missing make or model")
    years = await wheelsize.fetch_years(make, model)
    if not years:
        log_event("wheelsize", action="years_fallback", make=make, model=model)
        return wheelsize.FALLBACK_YEARS
    return years


@router.get("/api/wheels/variants")
async def wheel_variants(make: Optional[str] = None, model: Optional[str] = None, year: Optional[int] = None):
    if not make or not model or not year:
        raise HTTPException(status_code=400, detail="missing parameters")
    variants = await wheelsize.fetch_variants(make, model, year)
    if not variants:
        raise HTTPException(status_code=404, detail="no variants found for this model/year")
    return variants


@router.get("/api/wheels/fitments/{make}/{model}/{year}")
async def wheel_fitments(
    make: str,
    model: str,
    year: int,
    mod: Optional[str] = Query(None, description="Variant slug from /api/wheels/variants"),
    db: AsyncSession = Depends(get_session),
):
    if not mod:
        raise HTTPException(status_code=400, detail="variant (mod) required")

    cached = await get_wheel_fitment(db, make=make, model=model, year=year, modification=mod)
    if cached is not None:
        tyres = await find_tyres(db, sizes=cached)
        return {"source": "cache", "sizes": cached, "tyres": tyres}

    sizes = await wheelsize.fetch_fitment_sizes(make, model, year, mod)
    if not sizes:
        raise HTTPException(status_code=404, detail="no tyre sizes found for this variant")
    await set_wheel_fitment(db, make=make, model=model, year=year, modification=mod, sizes=sizes)
    tyres = await find_tyres(db, sizes=sizes)
    log_event("wheelsize", action="fitments", make=make, model=model, year=year, mod=mod, sizes=sizes, matched=len(tyres))
    return {"source": "wheel-size", "sizes": sizes, "tyres": tyres}

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .cart import reconcile_cart
from .catalog import find_tyres, tyre_dict
from .db import get_session
from .models import Tyre
from .sizes import aspect_of, compact_size, numeric_sorted, rim_of, width_of

router = APIRouter()


class StockCheckBody(BaseModel):
    ids: Any = None


class CartLine(BaseModel):
    id: str
    quantity: int = 1


class CartSyncBody(BaseModel):
    items: List[CartLine] = []


@router.get("/api/tyres/by-id/{tyre_id}")
async def get_tyre(tyre_id: str, db: AsyncSession = Depends(get_session)):
    tyre = await db.get(Tyre, tyre_id)
    if not tyre:
        raise HTTPException(status_code=404, detail="tyre not found")
    return tyre_dict(tyre)


@router.get("/api/tyres")
async def search_tyres(
    size: Optional[str] = Query(None, description="Tyre size in any spelling, e.g. '215/60 R16'"),
    brand: Optional[str] = Query(None, description="Case-insensitive brand substring"),
    db: AsyncSession = Depends(get_session),
):
    size = (size or "").strip()
    brand = (brand or "").strip()
    if not size and not brand:
        return []
    return await find_tyres(db, sizes=[size] if size else None, brand=brand or None)


async def _size_keys(db: AsyncSession, prefix: Optional[str] = None) -> List[str]:
    stmt = select(Tyre.size_key)
    if prefix:
        stmt = stmt.where(Tyre.size_key.startswith(prefix, autoescape=True))
    return list((await db.scalars(stmt)).all())


@router.get("/api/tyres/distinct/widths")
async def distinct_widths(db: AsyncSession = Depends(get_session)):
    return numeric_sorted(width_of(k) for k in await _size_keys(db))


@router.get("/api/tyres/distinct/aspects")
async def distinct_aspects(width: Optional[str] = None, db: AsyncSession = Depends(get_session)):
    if not width:
        return []
    keys = await _size_keys(db, f"{compact_size(width)}/")
    return numeric_sorted(aspect_of(k) for k in keys)


@router.get("/api/tyres/distinct/rims")
async def distinct_rims(width: Optional[str] = None, aspect: Optional[str] = None, db: AsyncSession = Depends(get_session)):
    if not width or not aspect:
        return []
    prefix = f"{compact_size(width)}/{compact_size(aspect)}"
    keys = [k for k in await _size_keys(db, prefix) if k[len(prefix):].lstrip("Z").startswith("R")]
    return numeric_sorted(str(rim_of(k)) for k in keys if rim_of(k))


@router.post("/api/tyres/stock-check")
async def stock_check(body: StockCheckBody, db: AsyncSession = Depends(get_session)):
    if not isinstance(body.ids, list):
        raise HTTPException(status_code=400, detail="ids must be an array")
    ids = [str(i) for i in body.ids if i]
    if not ids:
        return []
    rows = (await db.execute(select(Tyre.id, Tyre.stock).where(Tyre.id.in_(ids)))).all()
    return [{"id": tid, "stock": stock} for tid, stock in rows]


@router.post("/api/tyres/cart-sync")
async def cart_sync(body: CartSyncBody, db: AsyncSession = Depends(get_session)):
    ids = list({line.id for line in body.items})
    catalog: Dict[str, Dict[str, Any]] = {}
    if ids:
        for t in (await db.scalars(select(Tyre).where(Tyre.id.in_(ids)))).all():
            catalog[t.id] = tyre_dict(t)
    items, removed, subtotal = reconcile_cart([line.dict() for line in body.items], catalog)
    return {"items": items, "removed": removed, "subtotal": subtotal}

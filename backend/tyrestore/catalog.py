"""Catalog queries shared by the tyre, car, wheel and AI routes."""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Tyre
from .sizes import canonical_size, compact_size, dedupe_tyres

SEARCH_LIMIT = 200


def tyre_dict(t: Tyre) -> Dict[str, Any]:
    return {
        "id": t.id,
        "sku": t.sku,
        "brand": t.brand,
        "title": t.title,
        "size": t.size,
        "price": t.price,
        "warranty_months": t.warranty_months,
        "images": list(t.images or []),
        "stock": t.stock,
        "type": t.type,
        "loadIndex": t.load_index,
        "rating": t.rating,
        "features": list(t.features or []),
        "createdAt": t.created_at.isoformat() if t.created_at else None,
        "updatedAt": t.updated_at.isoformat() if t.updated_at else None,
    }


def size_conditions(sizes: Iterable[str]) -> List[Any]:
    """OR-able conditions matching a tyre whose size_key contains any of the sizes."""
    conds = []
    seen = set()
    for s in sizes:
        for key in (compact_size(s), compact_size(canonical_size(s))):
            if key and key not in seen:
                seen.add(key)
                conds.append(Tyre.size_key.contains(key, autoescape=True))
    return conds


async def find_tyres(
    db: AsyncSession,
    *,
    sizes: Optional[Iterable[str]] = None,
    brand: Optional[str] = None,
    priced_only: bool = False,
    limit: int = SEARCH_LIMIT,
) -> List[Dict[str, Any]]:
    stmt = select(Tyre)
    if sizes is not None:
        conds = size_conditions(sizes)
        if not conds:
            return []
        stmt = stmt.where(or_(*conds))
    if brand:
        stmt = stmt.where(Tyre.brand.ilike(f"%{brand.strip()}%"))
    if priced_only:
        stmt = stmt.where(Tyre.price > 0)
    rows = (await db.scalars(stmt.order_by(Tyre.created_at.desc()).limit(limit))).all()
    return dedupe_tyres(tyre_dict(t) for t in rows)

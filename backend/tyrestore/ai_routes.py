from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from . import llm, wheelsize
from .car_routes import fitment_sizes
from .catalog import find_tyres
from .db import get_session
from .fitment_cache import ai_fitment_key, get_ai_fitment, set_ai_fitment
from .logs import log_event
from .sizes import canonical_size, compact_size, rim_of, unique_sizes

router = APIRouter()


class AiSearchBody(BaseModel):
    query: Any = None


class AiFitmentBody(BaseModel):
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None


@router.post("/api/ai-search")
async def ai_search(body: AiSearchBody, db: AsyncSession = Depends(get_session)):
    if not isinstance(body.query, str) or not body.query.strip():
        raise HTTPException(status_code=400, detail="invalid query")

    content = await llm.chat_completion(
        [
            {"role": "system", "content": llm.SEARCH_SYSTEM_PROMPT},
            {"role": "user", "content": body.query.strip()},
        ],
        model=llm.OPENROUTER_SEARCH_MODEL,
    )
    if llm.MISSING_MMY in content:
        raise HTTPException(status_code=422, detail="missing make, model, or year")
    try:
        typed = llm.parse_typed_sizes(content)
    except ValueError:
        log_event("ai", action="search_unparseable", query=body.query, content=content[:500])
        raise HTTPException(status_code=502, detail="invalid AI output")

    sizes = [f"{s['size']} ({s['type']})" for s in typed]
    tyres = await find_tyres(db, sizes=[s["size"] for s in typed]) if typed else []
    return {"sizes": sizes, "tyres": tyres}


async def verify_size(db: AsyncSession, make: str, model: str, year: int, size: str) -> Optional[str]:
    """Return the source that confirms the size for this vehicle, or None."""
    local = await fitment_sizes(db, make, model, year)
    if compact_size(size) in local or any(canonical_size(s) == size for s in local):
        return "local_fitment"
    if await wheelsize.size_listed_for_vehicle(make, model, year, size):
        return "wheel-size-api"
    return None


def sort_fitment_results(results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Verified sizes first, then larger rims first."""
    return sorted(results, key=lambda r: (not r["verified"], -rim_of(r["size"])))


@router.post("/api/ai/fitment")
async def ai_fitment(body: AiFitmentBody, db: AsyncSession = Depends(get_session)):
    make = (body.make or "").strip()
    model = (body.model or "").strip()
    if not make or not model or not body.year:
        raise HTTPException(status_code=400, detail="missing make/model/year")
    year = body.year

    key = ai_fitment_key(make, model, year)
    cached = await get_ai_fitment(db, key)
    if cached:
        return {**cached, "source": "cache"}

    content = await llm.chat_completion(
        [
            {"role": "system", "content": "You are a tyre fitment expert. Be concise and factual."},
            {"role": "user", "content": llm.fitment_prompt(make, model, year)},
        ],
        model=llm.OPENROUTER_MODEL,
        temperature=0.0,
        max_tokens=300,
    )

    results: List[Dict[str, Any]] = []
    for size in llm.parse_size_list(content):
        source = await verify_size(db, make, model, year, size)
        results.append({"size": size, "verified": bool(source), "verifiedBy": source})

    if not results:
        for size in unique_sizes(await fitment_sizes(db, make, model, year)):
            results.append({"size": size, "verified": True, "verifiedBy": "local_fitment"})

    out = {"sizes": sort_fitment_results(results), "source": "ai+validation", "modelUsed": llm.OPENROUTER_MODEL}
    await set_ai_fitment(db, key, out)
    log_event("ai", action="fitment", key=key, sizes=[r["size"] for r in out["sizes"]])
    return out

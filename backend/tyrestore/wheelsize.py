"""Wheel-Size API (https://api.wheel-size.com/v2) client."""
import asyncio
import os
import random
from typing import Any, Dict, List, Optional

import httpx
from fastapi import HTTPException

from .logs import log_event
from .sizes import canonical_size

WHEELSIZE_API_KEY = os.environ.get("WHEELSIZE_API_KEY", "").strip()
WHEELSIZE_API_BASE = os.environ.get("WHEELSIZE_API_BASE", "https://api.wheel-size.com/v2").strip().rstrip("/")
WHEELSIZE_TIMEOUT_SECONDS = float(os.environ.get("WHEELSIZE_TIMEOUT_SECONDS", "15").strip() or 15)

FALLBACK_YEARS = list(range(2015, 2025))


async def wheelsize_get(endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
    """GET {base}/{endpoint}/ with the API key, retrying throttling and transient errors."""
    if not WHEELSIZE_API_KEY:
        raise HTTPException(status_code=503, detail="Wheel-Size API key not configured")
    url = f"{WHEELSIZE_API_BASE}/{endpoint.strip('/')}/"
    query = {k: v for k, v in (params or {}).items() if v is not None}
    query["user_key"] = WHEELSIZE_API_KEY

    max_retries = 3
    base_delay = 0.35
    last_exc: Optional[Exception] = None
    async with httpx.AsyncClient(timeout=WHEELSIZE_TIMEOUT_SECONDS) as client:
        for attempt in range(max_retries):
            try:
                r = await client.get(url, params=query)
                if r.status_code in (429, 502, 503, 504) and attempt < max_retries - 1:
                    ra = r.headers.get("Retry-After")
                    try:
                        wait = float(ra) if ra else base_delay * (2 ** attempt) + random.uniform(0, 0.15)
                    except ValueError:
                        wait = base_delay * (2 ** attempt) + random.uniform(0, 0.15)
                    await asyncio.sleep(wait)
                    continue
                r.raise_for_status()
                return r.json()
            except httpx.HTTPStatusError as e:
                last_exc = e
                break
            except (httpx.TransportError, ValueError) as e:
                last_exc = e
                if attempt < max_retries - 1:
                    await asyncio.sleep(base_delay * (2 ** attempt) + random.uniform(0, 0.15))
                    continue
                break

    log_event("wheelsize", endpoint=endpoint, params={k: v for k, v in query.items() if k != "user_key"}, error=str(last_exc))
    raise HTTPException(status_code=502, detail=f"Wheel-Size request failed: {last_exc}")


def _rows(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get("data") or []
    return [d for d in (data or []) if isinstance(d, dict)]


def normalize_make_model(make: str, model: str):
    """Wheel-Size lists Maruti under Suzuki and slugs multi-word models with dashes."""
    make = (make or "").strip()
    if make.lower().startswith("maruti"):
        make = "Suzuki"
    model = "-".join((model or "").split())
    return make, model


def years_from_generations(data: Any) -> List[int]:
    years = set()
    for gen in _rows(data):
        start, end = gen.get("start"), gen.get("end")
        try:
            if start and end:
                years.update(range(int(start), int(end) + 1))
            elif start:
                years.add(int(start))
        except (TypeError, ValueError):
            continue
    return sorted(years)


def normalize_variants(data: Any) -> List[Dict[str, Any]]:
    out = []
    for m in _rows(data):
        engine = m.get("engine") or {}
        power = engine.get("power") or {}
        out.append({
            "name": m.get("name") or m.get("trim") or "Unknown Variant",
            "slug": m.get("slug"),
            "fuel": engine.get("fuel") or "N/A",
            "power": (power.get("hp") if isinstance(power, dict) else None) or "N/A",
            "start_year": m.get("start_year"),
            "end_year": m.get("end_year"),
        })
    return out


def _tire_texts(item: Dict[str, Any]) -> List[str]:
    out = []
    for side in ("front", "rear"):
        axle = item.get(side) or {}
        val = axle.get("tire_full") or axle.get("tire")
        if val:
            out.append(str(val))
    for wheel in item.get("wheels") or []:
        if isinstance(wheel, dict):
            out.extend(_tire_texts(wheel))
    return out


def sizes_from_fitment_data(data: Any) -> List[str]:
    """Front/rear tyre sizes (first token of tire_full, upper-cased) in first-seen order."""
    out: List[str] = []
    for item in _rows(data):
        for text in _tire_texts(item):
            size = text.split(" ")[0].upper()
            if size and size not in out:
                out.append(size)
    return out


async def fetch_years(make: str, model: str) -> List[int]:
    make, model = normalize_make_model(make, model)
    return years_from_generations(await wheelsize_get("generations", {"make": make, "model": model}))


async def fetch_variants(make: str, model: str, year: Any) -> List[Dict[str, Any]]:
    return normalize_variants(await wheelsize_get("modifications", {"make": make, "model": model, "year": year}))


async def fetch_fitment_sizes(make: str, model: str, year: Any, modification: str) -> List[str]:
    data = await wheelsize_get("search/by_model", {"make": make, "model": model, "year": year, "modification": modification})
    return sizes_from_fitment_data(data)


async def size_listed_for_vehicle(make: str, model: str, year: Any, size: str) -> bool:
    """True when any modification of the vehicle lists the (canonical) size. Upstream errors count as False."""
    try:
        data = await wheelsize_get("modifications", {"make": make, "model": model, "year": year})
    except HTTPException:
        return False
    for item in _rows(data):
        for text in _tire_texts(item):
            if canonical_size(text) == size:
                return True
    return False

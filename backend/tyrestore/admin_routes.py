from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth_routes import require_admin
from .catalog import tyre_dict
from .db import get_session
from .logs import log_event
from .models import Car, Fitment, Order, Tyre, User
from .sizes import compact_size

router = APIRouter()

MAX_FEATURES = 3
MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


class TyreBody(BaseModel):
    brand: Optional[str] = None
    title: Optional[str] = None
    size: Optional[str] = None
    price: Optional[float] = None
    warranty_months: Optional[int] = None
    images: Optional[Any] = None
    stock: Optional[int] = None
    type: Optional[str] = None
    loadIndex: Optional[str] = None
    rating: Optional[str] = None
    features: Optional[Any] = None
    sku: Optional[str] = None


class StockBody(BaseModel):
    stock: Optional[int] = None


class CarBody(BaseModel):
    make: Optional[str] = None
    model: Optional[str] = None
    years: Optional[List[int]] = None
    type: Optional[str] = None
    fuelType: Optional[str] = None
    transmission: Optional[str] = None
    tyreSize: Optional[str] = None


class FitmentBody(BaseModel):
    carMake: str
    carModel: str
    tyreSize: str
    year: Optional[int] = None
    tyreBrand: Optional[str] = None
    price: Optional[float] = 0


def _check_features(features: Any) -> Optional[List[str]]:
    if not isinstance(features, list):
        return None
    cleaned = [str(f).strip() for f in features if str(f).strip()]
    if len(cleaned) > MAX_FEATURES:
        raise HTTPException(status_code=400, detail="maximum 3 features allowed")
    return cleaned


def _check_stock(stock: Optional[int]) -> None:
    if stock is not None and stock < 0:
        raise HTTPException(status_code=400, detail="stock cannot be negative")


def _default_title(brand: Optional[str], size: Optional[str]) -> str:
    return f"{brand or 'Tyre'} {size or ''}".strip()


def car_dict(c: Car) -> Dict[str, Any]:
    return {
        "id": c.id,
        "make": c.make,
        "model": c.model,
        "years": list(c.years or []),
        "type": c.type,
        "fuelType": c.fuel_type,
        "transmission": c.transmission,
        "tyreSize": c.tyre_size,
    }


def fitment_dict(f: Fitment) -> Dict[str, Any]:
    return {
        "id": f.id,
        "carMake": f.car_make,
        "carModel": f.car_model,
        "year": f.year,
        "tyreSize": f.tyre_size,
        "tyreBrand": f.tyre_brand,
        "price": f.price,
    }


# ---------- Tyres ----------
@router.get("/api/admin/tyres")
async def admin_list_tyres(_: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(select(Tyre).order_by(Tyre.created_at.desc()))).all()
    return [tyre_dict(t) for t in rows]


@router.post("/api/admin/tyres", status_code=201)
async def admin_add_tyre(body: TyreBody, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    brand = (body.brand or "").strip()
    size = (body.size or "").strip()
    if not brand or not size or body.price is None:
        raise HTTPException(status_code=400, detail="brand, size and price are required")
    _check_stock(body.stock)
    features = _check_features(body.features) or []
    if body.sku:
        exists = await db.scalar(select(Tyre).where(Tyre.sku == body.sku.strip()))
        if exists:
            raise HTTPException(status_code=400, detail="sku already exists")

    tyre = Tyre(
        brand=brand,
        title=(body.title or "").strip() or _default_title(brand, size),
        size=size,
        size_key=compact_size(size),
        price=float(body.price),
        warranty_months=body.warranty_months if body.warranty_months is not None else 36,
        images=[str(i) for i in body.images] if isinstance(body.images, list) else [],
        stock=body.stock or 0,
        type=(body.type or "").strip() or "Tubeless",
        load_index=body.loadIndex,
        rating=body.rating,
        features=features,
    )
    if body.sku:
        tyre.sku = body.sku.strip()
    db.add(tyre)
    await db.commit()
    await db.refresh(tyre)
    log_event("admin", action="tyre_added", tyre_id=tyre.id, sku=tyre.sku)
    return tyre_dict(tyre)


@router.put("/api/admin/tyres/{tyre_id}")
async def admin_update_tyre(tyre_id: str, body: TyreBody, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    tyre = await db.get(Tyre, tyre_id)
    if not tyre:
        raise HTTPException(status_code=404, detail="tyre not found")
    _check_stock(body.stock)
    features = _check_features(body.features)

    if body.brand is not None and body.brand.strip():
        tyre.brand = body.brand.strip()
    if body.size is not None and body.size.strip():
        tyre.size = body.size.strip()
        tyre.size_key = compact_size(tyre.size)
    if body.title is not None:
        tyre.title = body.title.strip() or _default_title(tyre.brand, tyre.size)
    if body.price is not None:
        tyre.price = float(body.price)
    if body.warranty_months is not None:
        tyre.warranty_months = body.warranty_months
    if isinstance(body.images, list):
        tyre.images = [str(i) for i in body.images]
    if body.stock is not None:
        tyre.stock = body.stock
    if features is not None:
        tyre.features = features
    if body.type is not None:
        tyre.type = body.type.strip() or "Tubeless"
    if body.loadIndex is not None:
        tyre.load_index = body.loadIndex
    if body.rating is not None:
        tyre.rating = body.rating
    await db.commit()
    await db.refresh(tyre)
    return tyre_dict(tyre)


@router.patch("/api/admin/tyres/{tyre_id}/stock")
async def admin_update_stock(tyre_id: str, body: StockBody, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    if body.stock is None:
        raise HTTPException(status_code=400, detail="stock is required")
    _check_stock(body.stock)
    tyre = await db.get(Tyre, tyre_id)
    if not tyre:
        raise HTTPException(status_code=404, detail="tyre not found")
    tyre.stock = body.stock
    await db.commit()
    await db.refresh(tyre)
    return {"message": "stock updated successfully", "tyre": tyre_dict(tyre)}


@router.delete("/api/admin/tyres/{tyre_id}")
async def admin_delete_tyre(tyre_id: str, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    tyre = await db.get(Tyre, tyre_id)
    if not tyre:
        raise HTTPException(status_code=404, detail="tyre not found")
    await db.delete(tyre)
    await db.commit()
    log_event("admin", action="tyre_deleted", tyre_id=tyre_id)
    return {"message": "tyre deleted successfully", "tyreId": tyre_id}


# ---------- Cars ----------
@router.get("/api/admin/cars")
async def admin_list_cars(_: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(select(Car).order_by(Car.make, Car.model))).all()
    return [car_dict(c) for c in rows]


@router.post("/api/admin/cars", status_code=201)
async def admin_add_car(body: CarBody, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    make = (body.make or "").strip()
    model = (body.model or "").strip()
    if not make or not model:
        raise HTTPException(status_code=400, detail="make and model are required")
    car = Car(
        make=make,
        model=model,
        years=sorted(set(body.years or [])),
        type=body.type,
        fuel_type=body.fuelType,
        transmission=body.transmission,
        tyre_size=body.tyreSize,
    )
    db.add(car)
    await db.commit()
    await db.refresh(car)
    return car_dict(car)


@router.put("/api/admin/cars/{car_id}")
async def admin_update_car(car_id: str, body: CarBody, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    car = await db.get(Car, car_id)
    if not car:
        raise HTTPException(status_code=404, detail="car not found")
    if body.make and body.make.strip():
        car.make = body.make.strip()
    if body.model and body.model.strip():
        car.model = body.model.strip()
    if body.years is not None:
        car.years = sorted(set(body.years))
    if body.type is not None:
        car.type = body.type
    if body.fuelType is not None:
        car.fuel_type = body.fuelType
    if body.transmission is not None:
        car.transmission = body.transmission
    if body.tyreSize is not None:
        car.tyre_size = body.tyreSize
    await db.commit()
    await db.refresh(car)
    return car_dict(car)


@router.delete("/api/admin/cars/{car_id}")
async def admin_delete_car(car_id: str, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    car = await db.get(Car, car_id)
    if not car:
        raise HTTPException(status_code=404, detail="car not found")
    await db.delete(car)
    await db.commit()
    return {"message": "car deleted successfully", "carId": car_id}


# ---------- Fitments ----------
@router.get("/api/admin/fitments")
async def admin_list_fitments(
    make: Optional[str] = None,
    model: Optional[str] = None,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    stmt = select(Fitment)
    if make:
        stmt = stmt.where(func.lower(Fitment.car_make) == make.strip().lower())
    if model:
        stmt = stmt.where(func.lower(Fitment.car_model) == model.strip().lower())
    rows = (await db.scalars(stmt.order_by(Fitment.car_make, Fitment.car_model, Fitment.year))).all()
    return [fitment_dict(f) for f in rows]


@router.post("/api/admin/fitments", status_code=201)
async def admin_add_fitment(body: FitmentBody, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    if not body.carMake.strip() or not body.carModel.strip() or not body.tyreSize.strip():
        raise HTTPException(status_code=400, detail="carMake, carModel and tyreSize are required")
    fit = Fitment(
        car_make=body.carMake.strip(),
        car_model=body.carModel.strip(),
        year=body.year,
        tyre_size=body.tyreSize.strip(),
        tyre_brand=body.tyreBrand,
        price=body.price or 0,
    )
    db.add(fit)
    await db.commit()
    await db.refresh(fit)
    return fitment_dict(fit)


@router.delete("/api/admin/fitments/{fitment_id}")
async def admin_delete_fitment(fitment_id: int, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    fit = await db.get(Fitment, fitment_id)
    if not fit:
        raise HTTPException(status_code=404, detail="fitment not found")
    await db.delete(fit)
    await db.commit()
    return {"message": "fitment deleted successfully", "fitmentId": fitment_id}


# ---------- Dashboard ----------
@router.get("/api/admin/stats", response_model=Dict[str, Any])
async def admin_stats(
    year: Optional[int] = Query(None, description="Year for the monthly sales chart (default: current year)"),
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    total_tyres = await db.scalar(select(func.count()).select_from(Tyre))
    total_cars = await db.scalar(select(func.count()).select_from(Car))
    total_orders, total_sales, pending = (
        await db.execute(
            select(
                func.count(Order.id),
                func.sum(case((Order.status != "Cancelled", Order.total_amount), else_=0)),
                func.sum(case((Order.status == "Pending", 1), else_=0)),
            )
        )
    ).one()

    chart_year = year or datetime.now(timezone.utc).year
    start = datetime(chart_year, 1, 1, tzinfo=timezone.utc)
    end = datetime(chart_year + 1, 1, 1, tzinfo=timezone.utc)
    rows = (
        await db.execute(
            select(Order.created_at, Order.total_amount).where(
                Order.created_at >= start,
                Order.created_at < end,
                Order.status != "Cancelled",
            )
        )
    ).all()
    by_month = [0.0] * 12
    for created_at, amount in rows:
        by_month[created_at.month - 1] += float(amount or 0)

    return {
        "totalTyres": int(total_tyres or 0),
        "totalOrders": int(total_orders or 0),
        "totalCars": int(total_cars or 0),
        "totalSales": float(total_sales or 0),
        "pendingServices": int(pending or 0),
        "salesByMonth": [{"month": m, "sales": round(by_month[i], 2)} for i, m in enumerate(MONTHS)],
        "year": chart_year,
    }

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import mailer
from .auth_routes import get_current_user, require_admin
from .db import get_session
from .logs import log_event
from .models import ORDER_STATUSES, PAYMENT_MODES, Order, Tyre, User
from .upi import build_upi_uri, qr_png, qr_png_b64

router = APIRouter()

SHIPPING_FIELDS = ("fullName", "phone", "address", "city", "state", "pincode")


class OrderItemBody(BaseModel):
    id: Optional[str] = None
    tyre: Optional[Dict[str, Any]] = None
    quantity: int = 1


class CreateOrderBody(BaseModel):
    items: List[OrderItemBody] = []
    shippingAddress: Optional[Dict[str, Any]] = None
    paymentMode: Optional[str] = None


class StatusBody(BaseModel):
    status: Optional[str] = None


def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def order_dict(order: Order, user: Optional[User] = None) -> Dict[str, Any]:
    out = {
        "id": order.id,
        "user": order.user_id,
        "items": list(order.items or []),
        "totalAmount": order.total_amount,
        "shippingAddress": dict(order.shipping_address or {}),
        "paymentMode": order.payment_mode,
        "paymentStatus": order.payment_status,
        "status": order.status,
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
    }
    if user is not None:
        out["user"] = {"id": user.id, "name": user.name, "email": user.email}
    return out


def _user_dict(user: User) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email}


def _mailable(email: Optional[str]) -> bool:
    # Phone-only accounts carry a placeholder address
    return bool(email) and not email.endswith("@otp.tyrefusion")


def _item_tyre_id(item: OrderItemBody) -> str:
    tyre = item.tyre or {}
    return str(item.id or tyre.get("id") or tyre.get("_id") or "").strip()


def _clean_shipping(raw: Optional[Dict[str, Any]]) -> Dict[str, str]:
    raw = raw or {}
    ship = {k: str(raw.get(k) or "").strip() for k in SHIPPING_FIELDS}
    missing = [k for k, v in ship.items() if not v]
    if missing:
        raise HTTPException(status_code=400, detail=f"shipping address incomplete: {', '.join(missing)}")
    return ship


async def reserve_stock(db: AsyncSession, tyre_id: str, quantity: int) -> bool:
    """Atomically take ``quantity`` units; False when stock is short."""
    res = await db.execute(
        update(Tyre)
        .where(Tyre.id == tyre_id, Tyre.stock >= quantity)
        .values(stock=Tyre.stock - quantity)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount == 1


async def release_stock(db: AsyncSession, tyre_id: str, quantity: int) -> None:
    await db.execute(
        update(Tyre)
        .where(Tyre.id == tyre_id)
        .values(stock=Tyre.stock + quantity)
        .execution_options(synchronize_session="fetch")
    )


async def _reserve_items(db: AsyncSession, items: List[Dict[str, Any]]) -> None:
    for it in items:
        tid = (it.get("tyre") or {}).get("id")
        if not await reserve_stock(db, tid, int(it.get("quantity") or 0)):
            await db.rollback()
            raise HTTPException(status_code=409, detail=f"insufficient stock for {(it.get('tyre') or {}).get('title') or tid}")


async def _release_items(db: AsyncSession, items: List[Dict[str, Any]]) -> None:
    for it in items:
        tid = (it.get("tyre") or {}).get("id")
        if tid:
            await release_stock(db, tid, int(it.get("quantity") or 0))


async def _get_order(db: AsyncSession, order_id: str) -> Order:
    order = await db.scalar(select(Order).options(selectinload(Order.user)).where(Order.id == order_id))
    if not order:
        raise HTTPException(status_code=404, detail="order not found")
    return order


def _upi_block(order: Order) -> Dict[str, str]:
    uri = build_upi_uri(order.total_amount, note=f"Order {order.id}")
    return {"uri": uri, "qr_png_base64": qr_png_b64(uri)}


# ---------- Customer ----------
@router.post("/api/orders", status_code=201)
async def create_order(
    body: CreateOrderBody,
    background: BackgroundTasks,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    if not body.items:
        raise HTTPException(status_code=400, detail="no order items")
    payment_mode = (body.paymentMode or "").strip().upper()
    if not payment_mode:
        raise HTTPException(status_code=400, detail="payment mode is required")
    if payment_mode not in PAYMENT_MODES:
        raise HTTPException(status_code=400, detail="payment mode must be COD or UPI")
    shipping = _clean_shipping(body.shippingAddress)

    # Merge duplicate lines so each tyre is reserved once
    quantities: Dict[str, int] = {}
    for item in body.items:
        tid = _item_tyre_id(item)
        if not tid:
            raise HTTPException(status_code=400, detail="order item without tyre id")
        if item.quantity < 1:
            raise HTTPException(status_code=400, detail="quantity must be at least 1")
        quantities[tid] = quantities.get(tid, 0) + item.quantity

    tyres = {t.id: t for t in (await db.scalars(select(Tyre).where(Tyre.id.in_(list(quantities))))).all()}
    unknown = [tid for tid in quantities if tid not in tyres]
    if unknown:
        raise HTTPException(status_code=400, detail=f"unknown tyre: {', '.join(unknown)}")

    items: List[Dict[str, Any]] = []
    for tid, qty in quantities.items():
        t = tyres[tid]
        items.append({
            "tyre": {
                "id": t.id,
                "brand": t.brand,
                "title": t.title or f"{t.brand} {t.size}".strip(),
                "size": t.size or "",
                "price": t.price,
                "images": list(t.images or []),
            },
            "quantity": qty,
            "price": t.price,
        })
    total = round(sum(float(it["price"]) * it["quantity"] for it in items), 2)

    await _reserve_items(db, items)
    order = Order(
        user_id=user.id,
        items=items,
        total_amount=total,
        shipping_address=shipping,
        payment_mode=payment_mode,
        payment_status="PENDING",
        status="Pending",
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)

    data = order_dict(order)
    if _mailable(user.email):
        if payment_mode == "COD":
            background.add_task(mailer.send_order_confirmation_email, user.email, data, _user_dict(user))
        else:
            background.add_task(mailer.send_upi_pending_email, user.email, data, _user_dict(user))
    log_event("orders", action="created", order_id=order.id, user_id=user.id, total=total, payment_mode=payment_mode)

    out: Dict[str, Any] = {"message": "order placed successfully", "orderId": order.id, "totalAmount": total}
    if payment_mode == "UPI":
        out["upi"] = _upi_block(order)
    return out


@router.get("/api/orders/my-orders")
async def my_orders(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(select(Order).where(Order.user_id == user.id).order_by(Order.created_at.desc()))).all()
    return [order_dict(o) for o in rows]


@router.get("/api/orders/{order_id}/upi-qr")
async def order_upi_qr(order_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_session)):
    order = await _get_order(db, order_id)
    if order.user_id != user.id and user.role != "admin":
        raise HTTPException(status_code=404, detail="order not found")
    if order.payment_mode != "UPI":
        raise HTTPException(status_code=400, detail="not a UPI order")
    uri = build_upi_uri(order.total_amount, note=f"Order {order.id}")
    return Response(content=qr_png(uri), media_type="image/png")


# ---------- Admin ----------
@router.get("/api/orders")
async def all_orders(_: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    rows = (await db.scalars(select(Order).options(selectinload(Order.user)).order_by(Order.created_at.desc()))).all()
    return [order_dict(o, o.user) for o in rows]


@router.get("/api/orders/{order_id}")
async def get_order(order_id: str, _: User = Depends(require_admin), db: AsyncSession = Depends(get_session)):
    order = await _get_order(db, order_id)
    return order_dict(order, order.user)


@router.put("/api/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    body: StatusBody,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    order = await _get_order(db, order_id)
    new_status = (body.status or "").strip() or order.status
    if new_status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of {', '.join(ORDER_STATUSES)}")

    old_status = order.status
    if new_status == "Cancelled" and old_status != "Cancelled":
        await _release_items(db, order.items or [])
    elif old_status == "Cancelled" and new_status != "Cancelled":
        await _reserve_items(db, order.items or [])
    order.status = new_status
    await db.commit()
    await db.refresh(order)
    log_event("orders", action="status", order_id=order.id, old=old_status, new=new_status)
    return {"message": "order status updated successfully", "order": order_dict(order)}


@router.put("/api/orders/{order_id}/verify-payment")
async def verify_upi_payment(
    order_id: str,
    background: BackgroundTasks,
    _: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    order = await _get_order(db, order_id)
    if order.payment_mode != "UPI":
        raise HTTPException(status_code=400, detail="not a UPI order")
    if order.payment_status == "PAID":
        raise HTTPException(status_code=400, detail="already verified")
    customer = order.user
    if order.status == "Cancelled":
        # cancelling released the units; confirming takes them again
        await _reserve_items(db, order.items or [])
    order.payment_status = "PAID"
    order.status = "Confirmed"
    await db.commit()
    await db.refresh(order)

    if customer is not None and _mailable(customer.email):
        background.add_task(mailer.send_order_confirmation_email, customer.email, order_dict(order), _user_dict(customer))
    log_event("orders", action="payment_verified", order_id=order.id)
    return {"message": "payment verified & order confirmed", "order": order_dict(order)}

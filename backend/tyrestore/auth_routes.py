import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from starlette.concurrency import run_in_threadpool
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from .db import get_session
from .logs import log_event
from .mailer import send_otp_email
from .models import OTP_PURPOSES, Otp, User

router = APIRouter()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

JWT_SECRET = os.environ.get("JWT_SECRET", "CHANGE_ME_SECRET").strip()
JWT_EXPIRES_MINUTES = int(os.environ.get("JWT_EXPIRES_MINUTES", "10080").strip() or 10080)
OTP_TTL_MINUTES = int(os.environ.get("OTP_TTL_MINUTES", "5").strip() or 5)
OTP_MAX_ATTEMPTS = int(os.environ.get("OTP_MAX_ATTEMPTS", "5").strip() or 5)
PHONE_OTP_ECHO = os.environ.get("PHONE_OTP_ECHO", "0").strip() in ("1", "true", "TRUE", "yes", "on")
FIREBASE_CREDENTIALS = os.environ.get("FIREBASE_CREDENTIALS", "").strip()


def _csv_env(name: str) -> set:
    return {p.strip().lower() for p in (os.environ.get(name) or "").split(",") if p.strip()}


ADMIN_EMAILS = _csv_env("ADMIN_EMAILS")
ADMIN_PHONES = _csv_env("ADMIN_PHONES")


class RegisterBody(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class RequestOtpBody(BaseModel):
    email: EmailStr
    purpose: Optional[str] = None  # LOGIN | SIGNUP
    name: Optional[str] = None


class VerifyOtpBody(BaseModel):
    email: EmailStr
    otp: str
    name: Optional[str] = None


class PhoneOtpBody(BaseModel):
    phone: str


class VerifyPhoneOtpBody(BaseModel):
    phone: str
    otp: str


class FirebaseLoginBody(BaseModel):
    idToken: Optional[str] = None


def hash_password(pw: str) -> str:
    return pwd_context.hash(pw)


def verify_password(pw: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(pw, hashed)
    except ValueError:
        return False


def is_admin_email(email: Optional[str]) -> bool:
    return bool(email) and email.strip().lower() in ADMIN_EMAILS


def is_admin_phone(phone: Optional[str]) -> bool:
    return bool(phone) and phone.strip().lower() in ADMIN_PHONES


def generate_otp() -> str:
    return f"{secrets.randbelow(900000) + 100000}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def issue_token(user: User) -> str:
    exp = _now() + timedelta(minutes=JWT_EXPIRES_MINUTES)
    payload = {"sub": str(user.id), "role": user.role, "exp": exp}
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def public_user(user: User) -> Dict[str, Any]:
    return {"id": user.id, "name": user.name, "email": user.email, "phone": user.phone, "role": user.role}


def _token_response(user: User, message: str) -> Dict[str, Any]:
    return {"message": message, "token": issue_token(user), "user": public_user(user)}


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db: AsyncSession = Depends(get_session)) -> User:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="no token provided")
    cred_exc = HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid or expired token")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
        uid = payload.get("sub")
        if not uid:
            raise cred_exc
    except JWTError:
        raise cred_exc
    user = await db.scalar(select(User).where(User.id == uid))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="user not found")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="admin access only")
    return user


# ---------- Password ----------
@router.post("/api/auth/register", status_code=201)
async def register(body: RegisterBody, db: AsyncSession = Depends(get_session)):
    name = body.name.strip()
    if not name or not body.password:
        raise HTTPException(status_code=400, detail="all fields are required")
    email_norm = body.email.lower().strip()
    exists = await db.scalar(select(User).where(User.email == email_norm))
    if exists:
        raise HTTPException(status_code=400, detail="user already exists")
    user = User(
        name=name,
        email=email_norm,
        password_hash=hash_password(body.password),
        role="admin" if is_admin_email(email_norm) else "user",
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return {"message": "user registered successfully", "user": public_user(user)}


@router.post("/api/auth/login")
async def login(body: LoginBody, db: AsyncSession = Depends(get_session)):
    user = await db.scalar(select(User).where(User.email == body.email.lower().strip()))
    if not user:
        raise HTTPException(status_code=400, detail="user not found")
    if not user.is_active or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=400, detail="invalid credentials")
    user.last_login_at = _now()
    await db.commit()
    await db.refresh(user)
    return _token_response(user, "login successful")


@router.get("/api/auth/me")
async def me(user: User = Depends(get_current_user)):
    return public_user(user)


# ---------- E-mail OTP ----------
@router.post("/api/auth/request-otp")
async def request_otp(body: RequestOtpBody, background: BackgroundTasks, db: AsyncSession = Depends(get_session)):
    email_norm = body.email.lower().strip()
    user = await db.scalar(select(User).where(User.email == email_norm))
    purpose = (body.purpose or ("LOGIN" if user else "SIGNUP")).strip().upper()
    if purpose not in OTP_PURPOSES:
        raise HTTPException(status_code=400, detail="purpose must be LOGIN or SIGNUP")
    if purpose == "SIGNUP" and user:
        raise HTTPException(status_code=400, detail="user already exists")
    if purpose == "LOGIN" and not user:
        raise HTTPException(status_code=404, detail="user not found")

    # One live code per address
    await db.execute(delete(Otp).where(Otp.email == email_norm))
    code = generate_otp()
    db.add(
        Otp(
            email=email_norm,
            otp_hash=hash_password(code),
            purpose=purpose,
            expires_at=_now() + timedelta(minutes=OTP_TTL_MINUTES),
            attempts=0,
        )
    )
    await db.commit()
    background.add_task(send_otp_email, email_norm, code)
    log_event("auth", action="otp_requested", email=email_norm, purpose=purpose)
    return {"message": "OTP sent", "purpose": purpose, "expiresInMinutes": OTP_TTL_MINUTES}


@router.post("/api/auth/verify-otp")
async def verify_otp(body: VerifyOtpBody, db: AsyncSession = Depends(get_session)):
    email_norm = body.email.lower().strip()
    await db.execute(delete(Otp).where(Otp.expires_at < _now()))
    record = await db.scalar(select(Otp).where(Otp.email == email_norm).order_by(Otp.id.desc()))
    if not record or _aware(record.expires_at) < _now():
        await db.commit()
        raise HTTPException(status_code=400, detail="OTP expired or not requested")
    if (record.attempts or 0) >= OTP_MAX_ATTEMPTS:
        await db.commit()
        raise HTTPException(status_code=429, detail="too many attempts; request a new OTP")
    if not verify_password(body.otp.strip(), record.otp_hash):
        record.attempts = (record.attempts or 0) + 1
        await db.commit()
        raise HTTPException(status_code=400, detail="invalid OTP")

    purpose = record.purpose
    await db.delete(record)
    user = await db.scalar(select(User).where(User.email == email_norm))
    if not user:
        if purpose != "SIGNUP":
            await db.commit()
            raise HTTPException(status_code=404, detail="user not found")
        user = User(
            name=(body.name or "").strip() or email_norm.split("@")[0],
            email=email_norm,
            role="admin" if is_admin_email(email_norm) else "user",
        )
        db.add(user)
    elif is_admin_email(email_norm) and user.role != "admin":
        user.role = "admin"
    user.last_login_at = _now()
    await db.commit()
    await db.refresh(user)
    return _token_response(user, "login successful")


# ---------- Phone OTP ----------
@router.post("/api/auth/send-otp")
async def send_phone_otp(body: PhoneOtpBody, db: AsyncSession = Depends(get_session)):
    phone = body.phone.strip()
    if not phone:
        raise HTTPException(status_code=400, detail="phone number is required")
    user = await db.scalar(select(User).where(User.phone == phone))
    if not user:
        user = User(
            name="OTP User",
            phone=phone,
            # placeholder address; users table requires an e-mail
            email=f"{phone}@otp.tyrefusion",
            role="admin" if is_admin_phone(phone) else "user",
        )
        db.add(user)
    code = generate_otp()
    user.phone_otp_hash = hash_password(code)
    user.phone_otp_expires_at = _now() + timedelta(minutes=OTP_TTL_MINUTES)
    user.phone_otp_attempts = 0
    await db.commit()
    log_event("auth", action="phone_otp_generated", phone=phone)
    out: Dict[str, Any] = {"message": "OTP generated"}
    if PHONE_OTP_ECHO:
        out["otp"] = code
    return out


@router.post("/api/auth/verify-phone-otp")
async def verify_phone_otp(body: VerifyPhoneOtpBody, db: AsyncSession = Depends(get_session)):
    user = await db.scalar(select(User).where(User.phone == body.phone.strip()))
    if not user or not user.phone_otp_hash or not user.phone_otp_expires_at or _aware(user.phone_otp_expires_at) < _now():
        raise HTTPException(status_code=400, detail="OTP expired or not requested")
    if (user.phone_otp_attempts or 0) >= OTP_MAX_ATTEMPTS:
        raise HTTPException(status_code=429, detail="too many attempts; request a new OTP")
    if not verify_password(body.otp.strip(), user.phone_otp_hash):
        user.phone_otp_attempts = (user.phone_otp_attempts or 0) + 1
        await db.commit()
        raise HTTPException(status_code=400, detail="invalid OTP")
    user.phone_otp_hash = None
    user.phone_otp_expires_at = None
    user.phone_otp_attempts = 0
    user.last_login_at = _now()
    await db.commit()
    await db.refresh(user)
    return _token_response(user, "login successful")


# ---------- Firebase phone auth ----------
_firebase_app = None


def _verify_firebase_token(id_token: str) -> Dict[str, Any]:
    global _firebase_app
    import firebase_admin
    from firebase_admin import auth as firebase_auth, credentials

    if _firebase_app is None:
        if firebase_admin._apps:
            _firebase_app = firebase_admin.get_app()
        elif FIREBASE_CREDENTIALS:
            _firebase_app = firebase_admin.initialize_app(credentials.Certificate(FIREBASE_CREDENTIALS))
        else:
            _firebase_app = firebase_admin.initialize_app()
    return firebase_auth.verify_id_token(id_token, app=_firebase_app)


@router.post("/api/auth/firebase-login")
async def firebase_login(body: FirebaseLoginBody, db: AsyncSession = Depends(get_session)):
    if not body.idToken:
        raise HTTPException(status_code=400, detail="Firebase ID token missing")
    try:
        decoded = await run_in_threadpool(_verify_firebase_token, body.idToken)
    except Exception as e:  # firebase_admin raises ValueError or its own auth errors
        log_event("auth", action="firebase_login_failed", error=str(e))
        raise HTTPException(status_code=401, detail="invalid or expired Firebase token")

    phone = (decoded.get("phone_number") or "").strip()
    if not phone:
        raise HTTPException(status_code=400, detail="phone number not found in Firebase token")

    admin = is_admin_phone(phone)
    user = await db.scalar(select(User).where(User.phone == phone))
    if not user:
        user = User(
            name=decoded.get("name") or None,
            phone=phone,
            email=f"{phone}@otp.tyrefusion",
            role="admin" if admin else "user",
        )
        db.add(user)
    elif admin and user.role != "admin":
        user.role = "admin"
    user.last_login_at = _now()
    await db.commit()
    await db.refresh(user)
    return {"token": issue_token(user), "user": public_user(user)}

import os
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import select, func

from .db import SessionLocal, init_db
from .models import User
from .auth_routes import router as auth_router, hash_password
from .tyre_routes import router as tyre_router
from .car_routes import router as car_router
from .wheel_routes import router as wheel_router
from .ai_routes import router as ai_router
from .order_routes import router as order_router
from .admin_routes import router as admin_router

# ---------- FastAPI ----------
app = FastAPI(title="TyreStore API", version="1.0.0")
app.include_router(auth_router)
app.include_router(tyre_router)
app.include_router(car_router)
app.include_router(wheel_router)
app.include_router(ai_router)
app.include_router(order_router)
app.include_router(admin_router)

# CORS (relaxed for the SPA; tighten in prod)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Compress JSON responses (catalog and admin order lists get large)
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.get("/api/health")
async def health():
    return {"ok": True}


# --------- Static frontend (mounted last so it never shadows /api) ---------
STATIC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "frontend", "dist"))


@app.get("/admin")
async def _spa_admin():
    index_path = os.path.join(STATIC_DIR, "index.html")
    if os.path.isfile(index_path):
        return FileResponse(index_path)
    return JSONResponse({"detail": "Not Found"}, status_code=404)


if os.path.isdir(STATIC_DIR):
    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="static")
else:
    print(f"[WARN] Static directory not found at {STATIC_DIR}. Build the frontend first.")


@app.on_event("startup")
async def _init_db_tables():
    try:
        await init_db()
    except Exception as e:
        print(f"[DB] Failed to init tables: {e}")
        raise


# Log routes on startup to verify ordering and presence
@app.on_event("startup")
async def _log_routes():
    print("[ROUTES] Registered routes in order:")
    for r in app.router.routes:
        path = getattr(r, "path", "?")
        name = getattr(r, "name", "")
        print(f" - {r.__class__.__name__}: {path} ({name})")


# ---------- Optional default admin bootstrap (env-based) ----------
# Creates an admin user ONLY IF no admin exists. Useful for first deploy / recovery.
ADMIN_DEFAULT_EMAIL = (os.environ.get("ADMIN_DEFAULT_EMAIL") or "").strip().lower()
ADMIN_DEFAULT_PASSWORD = (os.environ.get("ADMIN_DEFAULT_PASSWORD") or "").strip()
ADMIN_DEFAULT_NAME = (os.environ.get("ADMIN_DEFAULT_NAME") or "Admin").strip()


async def ensure_default_admin(session) -> bool:
    """Create or promote the env-configured admin when no admin exists. Returns True when it acted."""
    if not ADMIN_DEFAULT_EMAIL or not ADMIN_DEFAULT_PASSWORD:
        return False
    admin_count = await session.scalar(select(func.count()).select_from(User).where(User.role == "admin"))
    if (admin_count or 0) > 0:
        return False
    user = await session.scalar(select(User).where(User.email == ADMIN_DEFAULT_EMAIL))
    if not user:
        user = User(email=ADMIN_DEFAULT_EMAIL, name=ADMIN_DEFAULT_NAME or None)
        session.add(user)
    user.password_hash = hash_password(ADMIN_DEFAULT_PASSWORD)
    user.role = "admin"
    user.is_active = True
    await session.commit()
    return True


@app.on_event("startup")
async def _ensure_default_admin():
    try:
        async with SessionLocal() as session:
            if await ensure_default_admin(session):
                print(f"[AUTH] Default admin ensured: {ADMIN_DEFAULT_EMAIL}")
    except Exception as e:
        # Never fail startup for this helper
        print(f"[AUTH] Default admin bootstrap skipped/failed: {e}")

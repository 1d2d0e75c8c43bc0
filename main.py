"""
ExamReady API: Main Application
FastAPI application for the quiz platform admin backend.
Serves the public taxonomy browser, AI structure ingestion and the admin panel.
"""

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware
from contextlib import asynccontextmanager
import logging
import os
import time

from database.database import engine, Base, SessionLocal
from database.models import Category, SchoolClass, User
from auth.security import hash_password
from services.fetch_guard import GLOBAL_RATE_LIMIT_MAX, client_identifier, global_limiter

from routers import admin, ai_fetch, structure
from routers import auth as auth_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s  %(levelname)s  %(name)s  %(message)s",
)
log = logging.getLogger(__name__)

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@examready.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin")
FRONTEND_URL = os.getenv("FRONTEND_URL")
# Proxies allowed to set X-Forwarded-For (comma separated, "*" for any)
FORWARDED_ALLOW_IPS = os.getenv("FORWARDED_ALLOW_IPS", "127.0.0.1")

DEFAULT_CATEGORIES = [
    ("School", "Board exams and school syllabus", 1),
    ("University", "Semester-wise university subjects", 2),
    ("Competitive", "Entrance and recruitment exams", 3),
]


def _seed_defaults():
    """Create default admin, classes and categories if they don't exist."""
    db = SessionLocal()
    try:
        if db.query(User).filter(User.role == "admin").count() == 0:
            db.add(User(
                username="admin",
                email=ADMIN_EMAIL,
                password=hash_password(ADMIN_PASSWORD),
                role="admin",
                is_active=True,
            ))
            db.commit()
            log.info("Default admin created: %s", ADMIN_EMAIL)

        if db.query(SchoolClass).count() == 0:
            for n in range(1, 13):
                db.add(SchoolClass(name=f"Class {n}"))
            db.commit()
            log.info("Default classes seeded (Class 1 - Class 12)")

        if db.query(Category).count() == 0:
            for name, description, sort_order in DEFAULT_CATEGORIES:
                db.add(Category(name=name, description=description, sort_order=sort_order))
            db.commit()
            log.info("Default categories seeded (School, University, Competitive)")

    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables + seed defaults."""
    Base.metadata.create_all(bind=engine)
    _seed_defaults()
    yield


app = FastAPI(
    title="ExamReady API",
    description="Taxonomy browsing, AI structure ingestion and admin panel for the quiz platform",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in [FRONTEND_URL, "http://localhost:5173", "http://localhost:3000", "http://localhost:4173"] if o],
    allow_origin_regex=r"^(http://(localhost|127\.0\.0\.1)(:\d+)?|https://[a-z0-9.-]+\.vercel\.app)$",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# ─── Middleware ────────────────────────────────────────────────────────────────

@app.middleware("http")
async def global_rate_limit(request: Request, call_next):
    if GLOBAL_RATE_LIMIT_MAX > 0 and request.method != "OPTIONS":
        client_id = client_identifier(request)
        if not global_limiter.check(client_id):
            log.warning("Global rate limit exceeded for %s", client_id)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests, please try again later."},
            )
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    log.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    return response


# Outermost: resolves the real client address before the limiters run
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=FORWARDED_ALLOW_IPS)


# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(auth_router.router)        # /api/auth/*
app.include_router(admin.router)              # /api/admin/login
app.include_router(admin.protected)           # /api/admin/* (admin token)
app.include_router(structure.router)          # /api/structure/*
app.include_router(ai_fetch.router)           # /api/ai-fetch/*


@app.get("/")
def root():
    return {
        "name": "ExamReady API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "auth": "/api/auth",
            "admin": "/api/admin",
            "structure": "/api/structure",
            "ai_fetch": "/api/ai-fetch",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "examready-api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "5000")))

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

import database
from app_logger import setup_logging
from config import settings
from database import database_status, ensure_indexes, utcnow
from errors import register_exception_handlers
from routers import app_version, auth, divisions, lesson_plans, mcq, mcq_student, profile, standards, students, uploads

log = setup_logging()


def keep_alive_enabled() -> bool:
    return settings.is_production or settings.ENABLE_KEEP_ALIVE


async def keep_alive(url: str, interval: float, client: Optional[httpx.AsyncClient] = None) -> None:
    """Ping ``url`` every ``interval`` seconds so the host does not idle the service."""
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=30)
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                resp = await client.get(url)
                log.info("Keep-alive ping", extra={"url": url, "status": resp.status_code})
            except httpx.HTTPError as e:
                log.warning("Keep-alive ping failed", extra={"url": url, "error": str(e)})
    finally:
        if owns_client:
            await client.aclose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.CREATE_INDEXES and database.db is not None:
        await asyncio.to_thread(ensure_indexes, database.db)

    task = None
    if keep_alive_enabled():
        url = f"{(settings.KEEP_ALIVE_URL or settings.BASE_URL).rstrip('/')}/health"
        task = asyncio.create_task(keep_alive(url, settings.KEEP_ALIVE_INTERVAL_SECONDS))
        log.info("Keep-alive started", extra={"url": url, "interval": settings.KEEP_ALIVE_INTERVAL_SECONDS})

    yield

    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

for module in (auth, profile, standards, divisions, students, uploads, mcq, mcq_student, lesson_plans, app_version):
    app.include_router(module.router)

if not settings.supabase_configured:
    app.mount("/uploads", StaticFiles(directory=settings.LOCAL_UPLOAD_DIR, check_dir=False), name="uploads")


# -------------------- Root & Health --------------------
@app.get("/")
def read_root():
    return {"message": f"Welcome to {settings.APP_NAME}", "version": settings.APP_VERSION}


@app.get("/health")
def health():
    return {"message": "Server is running", "timestamp": utcnow().isoformat() + "Z"}


@app.get("/test")
def test_database():
    """Test endpoint to check if database is available and accessible"""
    status = database_status(database.db)
    if status["connected"]:
        db_state = "✅ Connected & Working"
    elif status["error"]:
        db_state = f"⚠️  Connected but Error: {status['error']}"
    else:
        db_state = "❌ Not Available"
    return {
        "backend": "✅ Running",
        "database": db_state,
        "database_name": status["name"],
        "connection_status": "Connected" if status["connected"] else "Not Connected",
        "collections": status["collections"],
        "storage": "supabase" if settings.supabase_configured else "local",
        "email": "✅ Configured" if settings.email_configured else "❌ Not Configured",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)

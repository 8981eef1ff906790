import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from app.config import settings
from app.database import init_db
from app.routers import links, redirect
from app.services.codegen_service import code_allocator

logger = logging.getLogger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: schema must be current before the first allocation.
    logging.basicConfig(level=settings.log_level.upper())
    if settings.database_url is None:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    applied = init_db()
    if applied:
        logger.info("Database migrated to version %s.", applied[-1])
    else:
        logger.info("Database schema is current.")
    yield


app = FastAPI(
    title="privtools",
    description="Privacy-focused link shortener",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(links.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0", "allocation": code_allocator.metrics()}


# Must stay last: it matches every single-segment path.
app.include_router(redirect.router)

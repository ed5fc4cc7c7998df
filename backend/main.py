from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from nollyai.api.deps import get_scheduler
from nollyai.api.endpoints import admin, billing, credits, jobs, notifications
from nollyai.core.database import engine, Base
from nollyai.core.settings import settings
import asyncio
import logging

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="NollyAI Studio API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

_worker_task: asyncio.Task | None = None


@app.on_event("startup")
async def startup() -> None:
    global _worker_task
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    if settings.job_worker_enabled:
        _worker_task = asyncio.create_task(get_scheduler().run_forever())
        logger.info("in-process job worker enabled")


@app.on_event("shutdown")
async def shutdown() -> None:
    if _worker_task is not None:
        get_scheduler().stop()
        await _worker_task


# API Routes
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(credits.router, prefix="/api", tags=["credits"])
app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(admin.router, prefix="/api", tags=["admin"])
app.include_router(notifications.router, prefix="/api", tags=["notifications"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}

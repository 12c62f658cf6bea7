import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config_manager import config
from core.logger import get_logger
from web.backend.routers import tasks

logger = get_logger("api")


def _scheduler_disabled() -> bool:
    # Keep tests deterministic: no background timer threads.
    if os.getenv("PYTEST_CURRENT_TEST"):
        return True
    if os.getenv("TASKFLOW_DISABLE_SCHEDULER", "0").lower() in {"1", "true", "yes"}:
        return True
    return not config.SCHEDULER_ENABLED


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if _scheduler_disabled():
        logger.info("Midnight scheduler disabled for this process")
    else:
        scheduler = tasks.get_scheduler()
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop(wait=True)


def create_app() -> FastAPI:
    app = FastAPI(title="TaskFlow Engine API", version="1.0", lifespan=lifespan)

    raw_origins = os.getenv("TASKFLOW_ALLOWED_ORIGINS", "*")
    allow_origins = [o.strip() for o in raw_origins.split(",") if o.strip()]
    allow_credentials = "*" not in allow_origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "TaskFlow Engine"}

    app.include_router(tasks.router, prefix="/api/v1/tasks", tags=["tasks"])

    return app


app = create_app()

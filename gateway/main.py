from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from gateway.core.config import settings
from gateway.core.database import engine, Base
from gateway.core.envelope import register_exception_handlers
from gateway.core.rate_limiter import limiter
from gateway.api.v1.router import api_router
from gateway.services.scheduler import get_scheduler
import gateway.models  # noqa: F401  (register tables on Base)
import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


DEFAULT_VERSION = "1.0.0"
VERSION_FILE = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "VERSION")


def get_version() -> str:
    """Version string from the VERSION file at the repository root"""
    try:
        with open(VERSION_FILE) as f:
            return f.read().strip() or DEFAULT_VERSION
    except OSError as e:
        logger.warning(f"get_version: VERSION file unreadable, using {DEFAULT_VERSION} - {e}")
        return DEFAULT_VERSION


# Single table, no migrations
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = get_scheduler()
    if settings.scheduler_enabled:
        await scheduler.start()
    else:
        logger.info("Scheduler disabled")
    try:
        yield
    finally:
        await scheduler.stop()


app = FastAPI(
    title="Mirai Gateway API",
    version=get_version(),
    debug=settings.debug,
    redirect_slashes=False,
    lifespan=lifespan,
)

app.state.limiter = limiter
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(api_router, prefix=settings.api_v1_str)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)

"""
Medical Interpreter Backend - Main Application

Entry point of the FastAPI service:
- REST API under /api (health, conversation history, stop/resume)
- WebSocket endpoint /ws, one interpretation session per connection
- Background heartbeat that pings every live session
"""
from contextlib import asynccontextmanager, suppress
import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from interpreter.api import router as api_router
from interpreter.api.websocket import router as ws_router
from interpreter.config.redis import close_redis, get_redis
from interpreter.config.settings import settings
from interpreter.models.database import engine, init_db
from interpreter.services.llm import close_llm_client
from interpreter.services.metrics import start_metrics_server
from interpreter.services.session.heartbeat import run_heartbeat
from interpreter.services.session.registry import get_session_registry

logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

LOCAL_ORIGINS = r"http://(localhost|127\.0\.0\.1)(:\d+)?"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Medical Interpreter Backend...")

    await init_db()
    await get_redis()
    registry = get_session_registry()
    heartbeat = asyncio.create_task(run_heartbeat(registry))
    if settings.METRICS_PORT:
        start_metrics_server(settings.METRICS_PORT)
    logger.info(f"✅ Ready: heartbeat every {settings.HEARTBEAT_INTERVAL_SEC:g}s")

    yield

    logger.info(f"🛑 Shutting down, stopping {len(registry)} live session(s)...")
    heartbeat.cancel()
    with suppress(asyncio.CancelledError):
        await heartbeat
    await registry.stop_all("shutdown")
    await close_llm_client()
    await close_redis()
    await engine.dispose()


def add_cors(app: FastAPI):
    """Allow the configured client origin, or any localhost port when none is set."""
    origins = {"allow_origins": [settings.CLIENT_URL]} if settings.CLIENT_URL else {"allow_origin_regex": LOCAL_ORIGINS}
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        **origins,
    )


app = FastAPI(
    title="Medical Interpreter Backend",
    description="Live doctor/patient speech interpretation",
    version="1.0.0",
    lifespan=lifespan,
)
add_cors(app)
app.include_router(api_router, prefix="/api")
app.include_router(ws_router)


@app.get("/")
async def root():
    return {"name": "Medical Interpreter", "version": "1.0.0", "status": "running"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("interpreter.main:app", host=settings.API_HOST, port=settings.API_PORT)

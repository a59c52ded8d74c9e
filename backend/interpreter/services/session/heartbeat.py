"""
Heartbeat - liveness probing for live sessions

Every interval each registered session is sent a `ping`. A session
that has not shown any sign of life (pong, heartbeat or audio) since the
previous ping is torn down.
"""
import asyncio
import logging
from typing import Optional

from interpreter.config.settings import settings

logger = logging.getLogger(__name__)


async def heartbeat_tick(registry):
    for orchestrator in registry.snapshot():
        session = orchestrator.session
        try:
            if not session.is_alive:
                logger.warning(f"[Heartbeat] Session {session.id} missed a heartbeat, stopping")
                await orchestrator.stop("heartbeat_timeout")
                continue
            session.is_alive = False
            await session.client.ping()
        except Exception as e:
            logger.error(f"[Heartbeat] Error probing session {session.id}: {e}")


async def run_heartbeat(registry, interval: Optional[float] = None):
    """Background task started by the application lifespan."""
    interval = interval or settings.HEARTBEAT_INTERVAL_SEC
    logger.info(f"Starting session heartbeat task ({interval}s)")
    while True:
        await asyncio.sleep(interval)
        await heartbeat_tick(registry)

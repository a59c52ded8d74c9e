"""
Session Presence - Redis-backed liveness tracking

A live session owns the key `session:{id}` with a TTL of a few heartbeat
intervals:
1. Session reaches Ready → mark_active() sets the key
2. Client heartbeat / pong → refresh() extends the TTL
3. Teardown → mark_inactive() deletes the key
4. A crashed process leaves keys that simply expire

Presence is advisory. Redis errors are logged and never interrupt a session.
"""
import logging
from typing import Awaitable, Callable, List, Optional

from redis.exceptions import RedisError

from interpreter.config.constants import PRESENCE_TTL_HEARTBEATS
from interpreter.config.redis import get_redis
from interpreter.config.settings import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "session:"


class SessionPresence:
    """Track which interpretation sessions are live."""

    def __init__(self, redis_factory: Callable[[], Awaitable] = get_redis, ttl_seconds: Optional[int] = None):
        self._redis_factory = redis_factory
        self.ttl = ttl_seconds or int(settings.HEARTBEAT_INTERVAL_SEC * PRESENCE_TTL_HEARTBEATS)

    @staticmethod
    def key(session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}"

    async def mark_active(self, session_id: str, conversation_id: Optional[str] = None):
        """Called when the session becomes usable."""
        try:
            redis = await self._redis_factory()
            await redis.set(self.key(session_id), conversation_id or "", ex=self.ttl)
            logger.info(f"[Presence] Session {session_id} marked active")
        except (RedisError, OSError) as e:
            logger.warning(f"[Presence] Could not mark {session_id} active: {e}")

    async def refresh(self, session_id: str):
        """Called on every heartbeat / pong."""
        try:
            redis = await self._redis_factory()
            await redis.expire(self.key(session_id), self.ttl)
        except (RedisError, OSError) as e:
            logger.warning(f"[Presence] Could not refresh {session_id}: {e}")

    async def mark_inactive(self, session_id: str):
        """Called on teardown."""
        try:
            redis = await self._redis_factory()
            await redis.delete(self.key(session_id))
            logger.info(f"[Presence] Session {session_id} marked inactive")
        except (RedisError, OSError) as e:
            logger.warning(f"[Presence] Could not mark {session_id} inactive: {e}")

    async def is_active(self, session_id: str) -> bool:
        redis = await self._redis_factory()
        return bool(await redis.exists(self.key(session_id)))

    async def active_sessions(self) -> List[str]:
        """Get list of all live session IDs."""
        redis = await self._redis_factory()
        keys = await redis.keys(f"{KEY_PREFIX}*")
        return [
            (key.decode("utf-8") if isinstance(key, bytes) else key)[len(KEY_PREFIX):]
            for key in keys
        ]

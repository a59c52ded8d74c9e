"""
Session Registry

The only structure shared between sessions. Holds one SessionOrchestrator
per live session id; insertion happens on connect, removal on teardown,
and removal releases the session's timers and channels exactly once.
"""
import asyncio
import logging
import uuid
from typing import Callable, Dict, List, Optional

from interpreter.services.metrics import active_sessions_gauge
from interpreter.services.protocols import ClientChannel
from interpreter.services.session.dependencies import SessionDependencies, build_dependencies
from interpreter.services.session.orchestrator import SessionOrchestrator
from interpreter.services.session.state import Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Process-wide map of live sessions."""

    def __init__(self, dependencies_factory: Callable[[], SessionDependencies] = build_dependencies):
        self._dependencies_factory = dependencies_factory
        self._dependencies: Optional[SessionDependencies] = None
        self._sessions: Dict[str, SessionOrchestrator] = {}

    @property
    def dependencies(self) -> SessionDependencies:
        if self._dependencies is None:
            self._dependencies = self._dependencies_factory()
        return self._dependencies

    def create(self, client: ClientChannel, session_id: Optional[str] = None) -> SessionOrchestrator:
        session_id = session_id or str(uuid.uuid4())
        if session_id in self._sessions:
            raise ValueError(f"session {session_id} already registered")
        session = Session(id=session_id, client=client)
        orchestrator = SessionOrchestrator(session, self.dependencies, registry=self)
        self._sessions[session_id] = orchestrator
        active_sessions_gauge.set(len(self._sessions))
        logger.info(f"[Registry] Session {session_id} created ({len(self._sessions)} live)")
        return orchestrator

    def lookup(self, session_id: str) -> Optional[SessionOrchestrator]:
        return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> bool:
        orchestrator = self._sessions.pop(session_id, None)
        if orchestrator is None:
            return False
        active_sessions_gauge.set(len(self._sessions))
        await orchestrator.session.release()
        logger.info(f"[Registry] Session {session_id} removed ({len(self._sessions)} live)")
        return True

    def snapshot(self) -> List[SessionOrchestrator]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def stop_all(self, reason: str = "shutdown"):
        orchestrators = self.snapshot()
        if orchestrators:
            await asyncio.gather(
                *(orchestrator.stop(reason) for orchestrator in orchestrators),
                return_exceptions=True,
            )


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry

"""
Session management module.

State, registry and orchestration of live interpretation sessions:
- state: Session, SessionState, PendingMessage, CorrelationTable
- orchestrator: SessionOrchestrator, the per-session state machine
- registry: SessionRegistry, the process-wide session map
- heartbeat: liveness probing of every registered session
"""
from .state import (
    CorrelationTable,
    PendingMessage,
    Session,
    SessionState,
    Utterance,
)

__all__ = [
    "CorrelationTable",
    "PendingMessage",
    "Session",
    "SessionState",
    "Utterance",
]

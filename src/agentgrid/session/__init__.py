"""Session model, persistence and registry."""

from agentgrid.session.models import Session, SessionKind, SessionState
from agentgrid.session.registry import SessionRegistry, generate_session_id
from agentgrid.session.storage import SessionStore

__all__ = [
    "Session",
    "SessionKind",
    "SessionRegistry",
    "SessionState",
    "SessionStore",
    "generate_session_id",
]

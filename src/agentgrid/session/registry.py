"""SessionRegistry: the single source of truth for session existence and state.

Managed sessions are persisted through SessionStore on every mutation and come
back offline on load until the next health pass. Observed sessions live in a
separate, purely in-memory table keyed by external id.

All mutations take a re-entrant lock held only for the duration of one record
update, so the polling loops, hook ingress and command handlers can share the
registry without private copies of session state.
"""

from __future__ import annotations

import secrets
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from agentgrid.errors import ConflictError, NotFoundError
from agentgrid.logging import get_logger
from agentgrid.session.models import Session, SessionKind, SessionState
from agentgrid.session.storage import SessionStore

log = get_logger("registry")

OBSERVED_ID_LENGTH = 8


def generate_session_id() -> str:
    return secrets.token_hex(4)


class SessionRegistry:
    """Authoritative store of managed and observed session records."""

    def __init__(
        self,
        store: SessionStore | None = None,
        id_factory: Callable[[], str] = generate_session_id,
    ) -> None:
        self._store = store
        self._id_factory = id_factory
        self._managed: dict[str, Session] = {}
        self._observed: dict[str, Session] = {}  # external id -> session
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load(self) -> int:
        """Load persisted managed sessions (all offline). Returns the count."""
        if self._store is None:
            return 0
        with self._lock:
            for session in self._store.load():
                self._managed[session.id] = session
            return len(self._managed)

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(list(self._managed.values()))

    @contextmanager
    def edit(self, session: Session) -> Iterator[Session]:
        """Mutate one record under the lock; managed records are persisted after."""
        with self._lock:
            yield session
            session.touch()
            if session.managed and session.id in self._managed:
                self._persist()

    # -------------------------------------------------------------------------
    # Managed sessions
    # -------------------------------------------------------------------------

    def create(self, name: str, directory: str, process_name: str) -> Session:
        with self._lock:
            session_id = self._id_factory()
            while session_id in self._managed:
                session_id = self._id_factory()
            session = Session(
                id=session_id,
                kind=SessionKind.MANAGED,
                name=name or f"Session {session_id}",
                directory=directory,
                process_name=process_name,
                state=SessionState.IDLE,
            )
            self._managed[session_id] = session
            self._persist()
        log.info("Created managed session %s (%s) in %s", session_id, process_name, directory)
        return session

    def get(self, session_id: str) -> Session | None:
        return self._managed.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._managed.get(session_id)
        if session is None:
            raise NotFoundError(f"Session '{session_id}' not found")
        return session

    def lookup(self, session_id: str) -> Session | None:
        """Find a managed or observed session by its record id."""
        session = self._managed.get(session_id)
        if session is not None:
            return session
        with self._lock:
            for observed in self._observed.values():
                if observed.id == session_id:
                    return observed
        return None

    def exists(self, session_id: str) -> bool:
        return self.lookup(session_id) is not None

    def update(self, session_id: str, **changes: Any) -> Session:
        session = self.require(session_id)
        with self.edit(session):
            for key, value in changes.items():
                if not hasattr(session, key):
                    raise AttributeError(f"Session has no field '{key}'")
                setattr(session, key, value)
        return session

    def set_state(self, session_id: str, state: SessionState) -> Session:
        return self.update(session_id, state=state)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            session = self._managed.pop(session_id, None)
            if session is None:
                return False
            self._persist()
        log.info("Deleted managed session %s", session_id)
        return True

    def list_managed(self) -> list[Session]:
        with self._lock:
            return list(self._managed.values())

    def list_sessions(self) -> list[Session]:
        """Visible sessions: managed ones that are not offline, plus observed."""
        with self._lock:
            managed = [s for s in self._managed.values() if not s.offline]
            return managed + list(self._observed.values())

    def all_sessions(self) -> list[Session]:
        """Every record, offline managed sessions included."""
        with self._lock:
            return list(self._managed.values()) + list(self._observed.values())

    def snapshot(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self.list_sessions()]

    def find_by_name(self, name: str) -> Session | None:
        with self._lock:
            return next((s for s in self._managed.values() if s.name == name), None)

    def find_by_external_id(self, external_id: str) -> Session | None:
        """Managed sessions are checked before observed ones."""
        with self._lock:
            for session in self._managed.values():
                if session.external_id == external_id:
                    return session
            return self._observed.get(external_id)

    def find_unlinked_by_directory(self, directory: str) -> Session | None:
        """First live managed session (creation order) in ``directory`` with no external id."""
        with self._lock:
            candidates = [
                s for s in self._managed.values()
                if s.directory == directory and not s.external_id and not s.offline
            ]
        if len(candidates) > 1:
            log.debug(
                "%d unlinked sessions share %s, linking the first (%s)",
                len(candidates), directory, candidates[0].id,
            )
        return candidates[0] if candidates else None

    # -------------------------------------------------------------------------
    # Observed sessions
    # -------------------------------------------------------------------------

    def upsert_observed(
        self,
        external_id: str,
        directory: str | None = None,
        state: SessionState | None = None,
    ) -> tuple[Session, bool]:
        """Create or refresh an observed session. Returns (session, created)."""
        with self._lock:
            session = self._observed.get(external_id)
            created = session is None
            if session is None:
                short_id = self._observed_id(external_id)
                session = Session(
                    id=short_id,
                    kind=SessionKind.OBSERVED,
                    name=f"Observed {short_id}",
                    directory=directory,
                    external_id=external_id,
                    state=state or SessionState.WORKING,
                )
                self._observed[external_id] = session
                log.debug("Observing new session %s", short_id)
            else:
                if directory:
                    session.directory = directory
                if state is not None:
                    session.state = state
                session.touch()
            return session, created

    def _observed_id(self, external_id: str) -> str:
        """Shortest prefix (at least 8 chars) not already used as a record id."""
        taken = set(self._managed) | {s.id for s in self._observed.values()}
        length = OBSERVED_ID_LENGTH
        while length < len(external_id) and external_id[:length] in taken:
            length += 1
        candidate = external_id[:length]
        suffix = 2
        while candidate in taken:
            candidate = f"{external_id}-{suffix}"
            suffix += 1
        return candidate

    def get_observed(self, external_id: str) -> Session | None:
        return self._observed.get(external_id)

    def remove_observed(self, external_id: str) -> Session | None:
        with self._lock:
            return self._observed.pop(external_id, None)

    def find_observed_by_directory(self, directory: str) -> Session | None:
        with self._lock:
            return next(
                (s for s in self._observed.values() if s.directory == directory), None
            )

    # -------------------------------------------------------------------------
    # Linking
    # -------------------------------------------------------------------------

    def link_external_id(self, external_id: str, managed_id: str) -> Session:
        """Attach an agent-reported session id to a managed session.

        Idempotent. Any observed record for ``external_id`` is folded into the
        managed session and deleted.
        """
        with self._lock:
            session = self.require(managed_id)
            for other in self._managed.values():
                if other is not session and other.external_id == external_id:
                    raise ConflictError(
                        f"External id '{external_id}' is already linked to session '{other.id}'"
                    )

            observed = self._observed.pop(external_id, None)
            if session.external_id == external_id and observed is None:
                return session

            with self.edit(session):
                session.external_id = external_id
                if observed is not None:
                    session.active_tools.update(observed.active_tools)
                    session.pending_prompts |= observed.pending_prompts
                    session.dimmed = observed.dimmed
                    if not observed.offline:
                        session.state = observed.state
                        session.revert_state = observed.revert_state
                        session.revert_at = observed.revert_at
                    if session.pending_prompts:
                        session.state = SessionState.WAITING
                        session.cancel_revert()

        log.info(
            "Linked external session %s to %s%s",
            external_id[:OBSERVED_ID_LENGTH],
            managed_id,
            " (absorbed observed record)" if observed is not None else "",
        )
        return session

    # -------------------------------------------------------------------------
    # Health and prompts
    # -------------------------------------------------------------------------

    def reconcile_health(self, live_names: Iterable[str]) -> bool:
        """Bring managed states in line with the set of live process names.

        Returns:
            True if any session changed state.
        """
        live = set(live_names)
        changed = False
        with self._lock:
            for session in self._managed.values():
                is_live = session.process_name in live
                if is_live and session.offline:
                    session.state = SessionState.IDLE
                    session.cancel_revert()
                    session.remove_at = None
                    changed = True
                    log.info("Session %s is back online", session.id)
                elif not is_live and not session.offline:
                    session.state = SessionState.OFFLINE
                    session.active_tools.clear()
                    session.pending_prompts.clear()
                    session.cancel_revert()
                    changed = True
                    log.info("Session %s went offline", session.id)
            if changed:
                self._persist()
        return changed

    def enter_waiting(self, session_id: str, prompt_id: str) -> Session:
        """Record an outstanding prompt and move the session to waiting."""
        session = self.require(session_id)
        with self.edit(session):
            session.pending_prompts.add(prompt_id)
            session.state = SessionState.WAITING
            session.cancel_revert()
        return session

    def clear_prompt(self, session_id: str, prompt_id: str) -> bool:
        """Drop one outstanding prompt that went away without an answer from us.

        Leaves waiting for working once no prompts remain. Returns True if the
        state changed.
        """
        session = self.get(session_id)
        if session is None or prompt_id not in session.pending_prompts:
            return False
        with self.edit(session):
            session.pending_prompts.discard(prompt_id)
            if session.pending_prompts or session.state is not SessionState.WAITING:
                return False
            session.state = SessionState.WORKING
        return True

    def mark_working(self, session_id: str) -> Session:
        """Input was delivered: prompts are answered and the agent is busy."""
        session = self.require(session_id)
        with self.edit(session):
            session.pending_prompts.clear()
            session.dimmed = False
            session.state = SessionState.WORKING
            session.cancel_revert()
        return session

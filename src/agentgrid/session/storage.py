"""Managed session persistence.

All managed sessions live in one YAML file, rewritten wholesale on every
mutation:
  $DATA_DIR/sessions.yaml

Each entry holds id, name, directory, process_name, state, external_id and
timestamps. Observed sessions are never written here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from agentgrid.config.paths import FALLBACK_DATA_DIR, get_default_data_dir
from agentgrid.logging import get_logger
from agentgrid.session.models import Session

log = get_logger("storage")

SESSIONS_FILENAME = "sessions.yaml"


class SessionStore:
    """Reads and writes the managed-session file."""

    def __init__(self, data_dir: str | Path | None = None) -> None:
        self._data_dir = Path(data_dir).expanduser() if data_dir else get_default_data_dir()

    @property
    def path(self) -> Path:
        return self._data_dir / SESSIONS_FILENAME

    def ensure_data_dir(self) -> Path:
        """Create the data directory, falling back to /tmp when that fails."""
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.error("Failed to create data directory %s: %s", self._data_dir, e)
            self._data_dir = FALLBACK_DATA_DIR
            self._data_dir.mkdir(parents=True, exist_ok=True)
            log.warning("Using fallback data directory: %s", self._data_dir)
        return self._data_dir

    def load(self) -> list[Session]:
        """Load persisted sessions. Every loaded session starts offline."""
        self.ensure_data_dir()
        if not self.path.exists():
            return []

        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (yaml.YAMLError, OSError) as e:
            log.error("Error loading sessions from %s: %s", self.path, e)
            return []

        sessions: list[Session] = []
        for entry in data or []:
            if not isinstance(entry, dict) or "id" not in entry:
                log.warning("Skipping malformed session entry: %r", entry)
                continue
            sessions.append(Session.from_record(entry))

        log.info("Loaded %d sessions from %s", len(sessions), self.path)
        return sessions

    def save(self, sessions: list[Session]) -> None:
        """Rewrite the session file atomically via a temp file."""
        self.ensure_data_dir()
        temp_path = self.path.with_suffix(".yaml.tmp")
        records: list[dict[str, Any]] = [s.to_record() for s in sessions]

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(records, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
            temp_path.replace(self.path)
            log.debug("Saved %d sessions to %s", len(records), self.path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            log.error("Error saving sessions to %s: %s", self.path, e)

"""Root pytest configuration and shared fakes."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentgrid.config.schema import Config, RouterConfig, SchedulerConfig, StorageConfig, WatcherConfig
from agentgrid.errors import AlreadyExistsError, NotFoundError, ValidationError
from agentgrid.process.tmux import KEYS_RE, validate_directory, validate_process_name
from agentgrid.session.registry import SessionRegistry
from agentgrid.session.storage import SessionStore

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeController:
    """In-memory ProcessController with the same error semantics as tmux."""

    def __init__(self) -> None:
        self.panes: dict[str, str] = {}
        self.workdirs: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.injected: list[tuple[str, str]] = []
        self.keys: list[tuple[str, str]] = []
        self.fail_create: Exception | None = None

    def _require(self, name: str) -> str:
        validate_process_name(name)
        if name not in self.panes:
            raise NotFoundError(f"Process '{name}' not found")
        return name

    async def create(self, name: str, workdir: str, continue_session: bool = False) -> str:
        self.calls.append(("create", name, workdir, continue_session))
        validate_process_name(name)
        workdir = validate_directory(workdir)
        if self.fail_create is not None:
            raise self.fail_create
        if name in self.panes:
            raise AlreadyExistsError(f"Process '{name}' already exists")
        self.panes[name] = ""
        self.workdirs[name] = workdir
        return name

    async def inject(self, name: str, text: str) -> None:
        self.calls.append(("inject", name, text))
        self._require(name)
        self.injected.append((name, text))

    async def send_keys(self, name: str, keys: str) -> None:
        self.calls.append(("send_keys", name, keys))
        if not KEYS_RE.match(keys):
            raise ValidationError("Keys must be a short alphanumeric token")
        self._require(name)
        self.keys.append((name, keys))

    async def cancel(self, name: str) -> None:
        self.calls.append(("cancel", name))
        self._require(name)

    async def capture(self, name: str, lines: int = 50) -> str:
        self.calls.append(("capture", name, lines))
        self._require(name)
        return "\n".join(self.panes[name].split("\n")[-lines:])

    async def kill(self, name: str) -> bool:
        self.calls.append(("kill", name))
        return self.panes.pop(name, None) is not None

    async def list(self) -> list[str]:
        return list(self.panes)

    async def exists(self, name: str) -> bool:
        return name in self.panes

    def set_output(self, name: str, output: str) -> None:
        self.panes[name] = output

    def process_calls(self) -> list[tuple]:
        """Calls that would have touched a real process."""
        return [c for c in self.calls if c[0] != "list"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def controller() -> FakeController:
    return FakeController()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def workdir(tmp_path: Path) -> str:
    path = tmp_path / "project"
    path.mkdir()
    return str(path.resolve())


@pytest.fixture
def store(data_dir: Path) -> SessionStore:
    return SessionStore(data_dir)


@pytest.fixture
def registry(store: SessionStore) -> SessionRegistry:
    return SessionRegistry(store)


@pytest.fixture
def config(data_dir: Path) -> Config:
    """Config with immediate polling and unchanged timing semantics."""
    return Config(
        storage=StorageConfig(data_dir=str(data_dir)),
        watcher=WatcherConfig(poll_interval=0.01),
        router=RouterConfig(),
        scheduler=SchedulerConfig(),
    )


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"

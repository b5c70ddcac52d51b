import pytest

from fakes import NOW, MemoryNotes, MemoryStorage
from sprout.application.service import SproutService


@pytest.fixture
def mock_vault(tmp_path):
    """Creates a temporary directory structure mimicking a vault."""
    d = tmp_path / "MyVault"
    d.mkdir()
    return d


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def notes():
    return MemoryNotes()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def clock():
    """A controllable clock; bump ``clock.now`` to move time."""

    class Clock:
        now = NOW

        def __call__(self) -> int:
            return self.now

    return Clock()


@pytest.fixture
def service(notes, storage, clock):
    return SproutService(notes, storage, clock=clock)

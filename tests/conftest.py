import datetime as dt
import sys
from pathlib import Path

import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if SRC_DIR.exists() and str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from tabflow.adapters import SimulatedTabPlatform, WindowKind  # noqa: E402
from tabflow.config import AppConfig  # noqa: E402
from tabflow.config_store import MemorySettingsStore  # noqa: E402


class FakeClock:
    """可手动推进的时钟。"""

    def __init__(self, start: dt.datetime) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(dt.datetime(2024, 1, 1, 12, 0, 0, tzinfo=dt.timezone.utc))


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(settings_path=Path("unused.json"))


@pytest.fixture
def store() -> MemorySettingsStore:
    return MemorySettingsStore()


@pytest.fixture
def platform() -> SimulatedTabPlatform:
    platform = SimulatedTabPlatform()
    platform.add_window(1, WindowKind.NORMAL)
    return platform


def open_tabs(platform: SimulatedTabPlatform, count: int, window_id: int = 1, **kwargs) -> list[int]:
    return [platform.open_tab(window_id=window_id, **kwargs).id for _ in range(count)]

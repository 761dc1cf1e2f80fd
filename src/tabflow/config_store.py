"""持久化键值存储，保存用户设置与收纳分组指针。"""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from tabflow.config import AppConfig

logger = logging.getLogger(__name__)


HOLDING_GROUP_KEY = "holdingCollectionId"
THRESHOLD_MINUTES_KEY = "thresholdMinutes"
MIN_CONSOLIDATION_KEY = "minConsolidationCount"
AUTO_CONSOLIDATE_KEY = "autoConsolidate"
AUTO_RELEASE_KEY = "autoRelease"
SESSION_READY_KEY = "sessionReady"
SESSION_START_KEY = "sessionStartTime"
SESSION_CLEAN_KEY = "sessionClean"
LAST_CLOSE_KEY = "lastCloseTime"


class SettingsStore(abc.ABC):
    """异步键值存储接口，每次读写都视为一次挂起点。"""

    @abc.abstractmethod
    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        """返回存在的键值，缺失的键不出现在结果中。"""

    @abc.abstractmethod
    async def set_many(self, values: Dict[str, Any]) -> None:
        """批量写入。"""

    @abc.abstractmethod
    async def remove(self, key: str) -> None:
        """删除单个键，键不存在时静默忽略。"""

    async def get(self, key: str, default: Any = None) -> Any:
        data = await self.get_many([key])
        return data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})


class MemorySettingsStore(SettingsStore):
    """内存实现，用于测试与模拟环境。"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {key: self._data[key] for key in keys if key in self._data}

    async def set_many(self, values: Dict[str, Any]) -> None:
        self._data.update(values)

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def dump(self) -> Dict[str, Any]:
        return dict(self._data)


class JsonSettingsStore(SettingsStore):
    """基于 JSON 文件的存储，首次写入时创建目录。"""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        data = self._read()
        return {key: data[key] for key in keys if key in data}

    async def set_many(self, values: Dict[str, Any]) -> None:
        data = self._read()
        data.update(values)
        self._write(data)

    async def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def _read(self) -> Dict[str, Any]:
        try:
            if not self._path.exists():
                return {}
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("无法读取设置文件 %s，按空配置处理", self._path, exc_info=True)
            return {}
        if not isinstance(data, dict):
            logger.warning("设置文件 %s 格式异常，按空配置处理", self._path)
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


@dataclass
class UserSettings:
    threshold_minutes: int
    min_consolidation_count: int
    auto_consolidate: bool = True
    auto_release: bool = True

    @classmethod
    def from_config(cls, config: AppConfig) -> "UserSettings":
        return cls(
            threshold_minutes=config.default_threshold_minutes,
            min_consolidation_count=config.default_min_consolidation_count,
        )

    @classmethod
    async def load(cls, store: SettingsStore, config: AppConfig) -> "UserSettings":
        """读取持久化设置，缺失或非法的值回退到配置默认值。"""

        defaults = cls.from_config(config)
        data = await store.get_many(
            [THRESHOLD_MINUTES_KEY, MIN_CONSOLIDATION_KEY, AUTO_CONSOLIDATE_KEY, AUTO_RELEASE_KEY]
        )
        return cls(
            threshold_minutes=_positive_int(data.get(THRESHOLD_MINUTES_KEY), defaults.threshold_minutes),
            min_consolidation_count=_positive_int(
                data.get(MIN_CONSOLIDATION_KEY), defaults.min_consolidation_count
            ),
            auto_consolidate=bool(data.get(AUTO_CONSOLIDATE_KEY, defaults.auto_consolidate)),
            auto_release=bool(data.get(AUTO_RELEASE_KEY, defaults.auto_release)),
        )

    async def save(self, store: SettingsStore) -> None:
        await store.set_many(self.to_store())

    def to_store(self) -> Dict[str, Any]:
        return {
            THRESHOLD_MINUTES_KEY: self.threshold_minutes,
            MIN_CONSOLIDATION_KEY: self.min_consolidation_count,
            AUTO_CONSOLIDATE_KEY: self.auto_consolidate,
            AUTO_RELEASE_KEY: self.auto_release,
        }

    def to_dict(self) -> dict:
        return {
            "threshold_minutes": self.threshold_minutes,
            "min_consolidation_count": self.min_consolidation_count,
            "auto_consolidate": self.auto_consolidate,
            "auto_release": self.auto_release,
        }


def _positive_int(value: Any, default: int) -> int:
    # 布尔值也是 int 的子类，需要单独排除
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 1 else default

"""应用配置模型。"""

from __future__ import annotations

import importlib.util
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


HOLDING_GROUP_TITLE = "Inactive Tabs"


class AppConfig(BaseModel):
    """引擎常量与运行参数。"""

    holding_group_title: str = Field(HOLDING_GROUP_TITLE, min_length=1)
    default_threshold_minutes: int = Field(30, ge=1)
    default_min_consolidation_count: int = Field(5, ge=1)
    start_threshold: int = Field(10, ge=1)
    stop_threshold: int = Field(5, ge=0)
    sample_interval_seconds: float = Field(120.0, gt=0.0)
    reconcile_interval_seconds: float = Field(600.0, gt=0.0)
    release_drain_interval_seconds: float = Field(6.0, gt=0.0)
    release_delay_seconds: float = Field(10.0, ge=0.0)
    force_unlock_seconds: float = Field(30.0, gt=0.0)
    bootstrap_idle_days: int = Field(365, ge=1)
    settings_path: Path = Field(default_factory=lambda: Path.home() / ".tabflow" / "settings.json")
    api_host: str = "127.0.0.1"
    api_port: int = Field(8000, ge=1, le=65535)
    event_buffer_size: int = Field(200, ge=1)

    @model_validator(mode="after")
    def _check_thresholds(self) -> "AppConfig":
        # 启停阈值构成滞回区间，停止阈值不能高于启动阈值
        if self.stop_threshold > self.start_threshold:
            raise ValueError("stop_threshold 不能大于 start_threshold")
        return self

    @classmethod
    def load_default(cls) -> "AppConfig":
        return cls()

    @classmethod
    def load(cls) -> "AppConfig":
        """优先尝试加载项目根目录的 `config.local.py`，否则返回默认配置。"""

        root_dir = Path(__file__).resolve().parents[2]
        local_path = root_dir / "config.local.py"
        if not local_path.exists():
            return cls.load_default()

        spec = importlib.util.spec_from_file_location("config_local", local_path)
        if spec is None or spec.loader is None:
            return cls.load_default()

        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)  # type: ignore[arg-type]
        except Exception:
            return cls.load_default()

        load_fn = getattr(module, "load_config", None)
        if callable(load_fn):
            try:
                return load_fn()
            except Exception:
                return cls.load_default()
        return cls.load_default()

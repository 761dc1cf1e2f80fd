"""本地配置覆盖示例（由 AppConfig.load 自动加载）。"""

from tabflow.config import AppConfig


def load_config() -> AppConfig:
    return AppConfig(
        default_threshold_minutes=30,
        default_min_consolidation_count=5,
        start_threshold=10,
        stop_threshold=5,
        sample_interval_seconds=120.0,
        release_delay_seconds=10.0,
        # settings_path="/path/to/settings.json",
    )

"""浏览器平台适配器。"""

from .base import PlatformError, PlatformListener, Tab, TabGroup, TabPlatform, WindowKind
from .simulated import SimulatedTabPlatform

__all__ = [
    "PlatformError",
    "PlatformListener",
    "SimulatedTabPlatform",
    "Tab",
    "TabGroup",
    "TabPlatform",
    "WindowKind",
]

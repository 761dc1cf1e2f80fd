"""状态事件广播。"""

from .base import Notifier, StatusEvent, StatusKind
from .broadcast import BroadcastNotifier

__all__ = [
    "BroadcastNotifier",
    "Notifier",
    "StatusEvent",
    "StatusKind",
]

"""核心业务逻辑：活动跟踪、收纳编排、自动启停与延迟释放。"""

from .activity_tracker import ActivityTracker, ItemState
from .control_loop import AutoControlLoop, EngineStatus
from .event_buffer import EventBuffer
from .orchestrator import ConsolidationOutcome, ConsolidationResult, GroupingOrchestrator
from .release_queue import DelayedReleaseQueue
from .scheduler import TimerScheduler

__all__ = [
    "ActivityTracker",
    "AutoControlLoop",
    "ConsolidationOutcome",
    "ConsolidationResult",
    "DelayedReleaseQueue",
    "EngineStatus",
    "EventBuffer",
    "GroupingOrchestrator",
    "ItemState",
    "TimerScheduler",
]

"""自动启停控制：按标签页数量启动或取消收纳倒计时。"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Optional

from tabflow.config import AppConfig
from tabflow.config_store import SettingsStore, UserSettings
from tabflow.core.activity_tracker import ActivityTracker, Clock, utc_now
from tabflow.core.eligibility import is_countable
from tabflow.core.orchestrator import ConsolidationResult, GroupingOrchestrator
from tabflow.core.scheduler import TimerScheduler
from tabflow.notifiers.base import Notifier, StatusEvent

logger = logging.getLogger(__name__)

COUNTDOWN_TIMER = "countdown"


@dataclass
class EngineStatus:
    """对外暴露的只读状态。"""

    running: bool
    configured_threshold_minutes: int
    auto_consolidate: bool
    countdown_end_time: Optional[dt.datetime] = None

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "configured_threshold_minutes": self.configured_threshold_minutes,
            "auto_consolidate": self.auto_consolidate,
            "countdown_end_time": (
                self.countdown_end_time.isoformat() if self.countdown_end_time else None
            ),
        }


class AutoControlLoop:
    """双阈值（滞回）控制：数量达到启动阈值时开始倒计时，低于停止阈值时取消。"""

    def __init__(
        self,
        tracker: ActivityTracker,
        orchestrator: GroupingOrchestrator,
        store: SettingsStore,
        scheduler: TimerScheduler,
        notifier: Notifier,
        config: Optional[AppConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._tracker = tracker
        self._orchestrator = orchestrator
        self._store = store
        self._scheduler = scheduler
        self._notifier = notifier
        self._config = config or AppConfig.load_default()
        self._clock = clock or utc_now
        self._running = False
        self._end_time: Optional[dt.datetime] = None
        self.current_minutes = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def end_time(self) -> Optional[dt.datetime]:
        return self._end_time

    async def sample(self) -> Optional[int]:
        """执行一次采样，返回可计数的标签页数量；枚举失败时返回 None。"""

        try:
            tabs = await self._tracker.eligible_tabs()
            settings = await UserSettings.load(self._store, self._config)
        except Exception:
            logger.warning("采样失败，本轮跳过", exc_info=True)
            return None

        count = sum(1 for tab in tabs if is_countable(tab))
        logger.debug("可计数标签页 %s 个（倒计时运行中：%s）", count, self._running)

        if count >= self._config.start_threshold and not self._running:
            if settings.auto_consolidate:
                self.start_countdown(settings.threshold_minutes)
            else:
                logger.debug("自动收纳已关闭，不启动倒计时")

        if count < self._config.stop_threshold and self._running:
            self.stop_countdown()

        return count

    def start_countdown(self, minutes: int) -> bool:
        """启动倒计时，已在运行时不做任何事并返回 False。"""

        if self._running:
            return False
        self._scheduler.cancel(COUNTDOWN_TIMER)
        self.current_minutes = minutes
        self._end_time = self._clock() + dt.timedelta(minutes=minutes)
        self._running = True
        self._scheduler.once(COUNTDOWN_TIMER, minutes * 60.0, self.fire_countdown)
        logger.info("收纳倒计时已启动：%s 分钟", minutes)
        self._notifier.send(StatusEvent.timer_started(minutes))
        return True

    def stop_countdown(self, notify: bool = True) -> None:
        """取消倒计时；只清除计划中的触发，不会打断正在执行的收纳。"""

        self.clear()
        if notify:
            self._notifier.send(StatusEvent.stopped())

    def clear(self) -> None:
        if self._scheduler.cancel(COUNTDOWN_TIMER) or self._running:
            logger.info("收纳倒计时已取消")
        self._running = False
        self._end_time = None

    async def fire_countdown(self) -> ConsolidationResult:
        """倒计时到期：执行一轮收纳后清除倒计时。"""

        minutes = self.current_minutes or self._config.default_threshold_minutes
        armed_end = self._end_time
        try:
            return await self._orchestrator.consolidate_now(minutes)
        finally:
            # 收纳期间若倒计时被取消后又重新启动，不能误清新的倒计时
            if self._end_time == armed_end:
                self.clear()

    def reset(self) -> None:
        self.clear()
        self.current_minutes = 0

    def status(self, auto_consolidate: bool, threshold_minutes: int = 0) -> EngineStatus:
        """倒计时尚未启动过时，报告用户设置中的分钟数。"""

        return EngineStatus(
            running=self._running,
            configured_threshold_minutes=self.current_minutes or threshold_minutes,
            auto_consolidate=auto_consolidate,
            countdown_end_time=self._end_time,
        )

"""引擎上下文：组装各组件，处理平台生命周期事件与外部命令。"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from tabflow.adapters.base import PlatformError, TabPlatform
from tabflow.config import AppConfig
from tabflow.config_store import (
    LAST_CLOSE_KEY,
    SESSION_CLEAN_KEY,
    SESSION_READY_KEY,
    SESSION_START_KEY,
    SettingsStore,
    UserSettings,
)
from tabflow.core.activity_tracker import ActivityTracker, Clock, utc_now
from tabflow.core.control_loop import AutoControlLoop, EngineStatus
from tabflow.core.event_buffer import EventBuffer
from tabflow.core.orchestrator import ConsolidationResult, GroupingOrchestrator
from tabflow.core.release_queue import DelayedReleaseQueue
from tabflow.core.scheduler import TimerScheduler
from tabflow.notifiers.base import StatusEvent
from tabflow.notifiers.broadcast import BroadcastNotifier

logger = logging.getLogger(__name__)

AUTO_CHECKER_TIMER = "auto_checker"
RECONCILE_TIMER = "reconcile_states"
RELEASE_TIMER = "release_processor"

_SETTING_FIELDS = ("threshold_minutes", "min_consolidation_count", "auto_consolidate", "auto_release")


class TabEngine:
    """进程级的引擎上下文。

    所有可变状态（活动表、守卫、倒计时、释放队列）都挂在这个对象上，
    由同一个事件循环驱动；启动、挂起与重置时统一清理。
    """

    def __init__(
        self,
        platform: TabPlatform,
        store: SettingsStore,
        config: Optional[AppConfig] = None,
        notifier: Optional[BroadcastNotifier] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config or AppConfig.load_default()
        self.platform = platform
        self.store = store
        self.notifier = notifier or BroadcastNotifier()
        self.clock = clock or utc_now
        self.events = EventBuffer(maxlen=self.config.event_buffer_size)
        self.notifier.subscribe(self.events)
        self.scheduler = TimerScheduler()
        self.tracker = ActivityTracker(platform, self.config, self.clock)
        self.orchestrator = GroupingOrchestrator(
            platform, self.tracker, store, self.notifier, self.config, self.clock
        )
        self.control_loop = AutoControlLoop(
            self.tracker,
            self.orchestrator,
            store,
            self.scheduler,
            self.notifier,
            self.config,
            self.clock,
        )
        self.release_queue = DelayedReleaseQueue(platform, store, self.config, self.clock)
        platform.set_listener(self)

    # --- 进程生命周期 --------------------------------------------------

    async def startup(self) -> None:
        """进程启动：重建活动表并注册周期任务。"""

        self._reset_runtime()
        self.tracker.clear()
        group_id = await self._locate_holding_group()
        await self._bootstrap(group_id)
        self._schedule_recurring()
        await self._mark_session_ready()
        logger.info("引擎已启动，收纳分组：%s", group_id)

    async def suspend(self) -> None:
        """进程挂起：清理所有内存状态，只保留持久化的分组指针。"""

        self.scheduler.cancel_all()
        self._reset_runtime()
        self.tracker.clear()
        await self.store.set_many(
            {SESSION_CLEAN_KEY: True, LAST_CLOSE_KEY: self._epoch_ms()}
        )
        logger.info("引擎已挂起")

    async def shutdown(self) -> None:
        await self.scheduler.aclose()
        await self.suspend()
        self.platform.set_listener(None)

    # --- 平台事件 ------------------------------------------------------

    async def on_tab_activated(self, tab_id: int) -> None:
        self.tracker.record_activation(tab_id)
        if tab_id in self.release_queue:
            return
        if await self.release_queue.is_holding_member(tab_id):
            # 首次激活的时间为准，重复激活不会重置
            self.release_queue.enqueue(tab_id)

    def on_tab_updated(
        self,
        tab_id: int,
        status: Optional[str] = None,
        url: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> None:
        if status == "complete" or url:
            self.tracker.record_content_settled(tab_id, active)
        if active is False:
            self.tracker.record_deactivation(tab_id)
            self.release_queue.discard(tab_id)

    def on_tab_removed(self, tab_id: int) -> None:
        self.tracker.forget(tab_id)
        self.release_queue.discard(tab_id)

    async def on_group_removed(self, group_id: int) -> None:
        await self.orchestrator.forget_group(group_id)

    # --- 周期任务 ------------------------------------------------------

    async def auto_check(self) -> None:
        await self.control_loop.sample()

    async def reconcile(self) -> None:
        try:
            tabs = await self.platform.query_tabs()
        except PlatformError:
            logger.warning("无法列出标签页，本轮清理跳过", exc_info=True)
            return
        self.tracker.reconcile(tab.id for tab in tabs)

    async def process_releases(self) -> None:
        await self.release_queue.drain()

    # --- 外部命令 ------------------------------------------------------

    async def get_status(self) -> EngineStatus:
        settings = await UserSettings.load(self.store, self.config)
        return self.control_loop.status(settings.auto_consolidate, settings.threshold_minutes)

    def stop(self) -> None:
        self.control_loop.stop_countdown()

    async def group_now(self, minutes: Optional[int] = None) -> ConsolidationResult:
        """立即收纳；未指定分钟数时沿用倒计时或用户设置，非法值抛出 ValueError。"""

        if minutes is not None and minutes != 0:
            minutes = _require_positive_int("thresholdMinutes", minutes)
        if not minutes:
            minutes = self.control_loop.current_minutes
        if not minutes:
            settings = await UserSettings.load(self.store, self.config)
            minutes = settings.threshold_minutes
        return await self.orchestrator.consolidate_now(minutes)

    async def force_reset(self) -> Dict[str, Any]:
        """清除全部守卫与队列，重建活动表并写入新的会话标记。"""

        self._reset_runtime()
        group_id = await self._locate_holding_group()
        await self._bootstrap(group_id)
        self._schedule_recurring()
        await self._mark_session_ready()
        self.notifier.send(StatusEvent.stopped())
        return {"success": True}

    async def get_settings(self) -> UserSettings:
        return await UserSettings.load(self.store, self.config)

    async def update_settings(self, **changes: Any) -> UserSettings:
        settings = await UserSettings.load(self.store, self.config)
        for name, value in changes.items():
            if name not in _SETTING_FIELDS:
                raise ValueError(f"未知的设置项：{name}")
            if value is None:
                continue
            if name in ("threshold_minutes", "min_consolidation_count"):
                value = _require_positive_int(name, value)
            else:
                value = bool(value)
            setattr(settings, name, value)
        await settings.save(self.store)
        return settings

    async def handle_command(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """处理来自消息通道的命令，未知命令返回 None。"""

        kind = message.get("type")
        if kind == "GET_STATUS":
            return (await self.get_status()).to_dict()
        if kind == "STOP":
            self.stop()
            return {"success": True}
        if kind == "GROUP_NOW":
            minutes = message.get("thresholdMinutes", message.get("minutes"))
            return (await self.group_now(minutes)).to_dict()
        if kind == "FORCE_RESET":
            return await self.force_reset()
        if kind == "UPDATE_SETTINGS":
            changes = {key: message[key] for key in _SETTING_FIELDS if key in message}
            return (await self.update_settings(**changes)).to_dict()
        logger.debug("忽略未知命令：%s", kind)
        return None

    # --- 内部实现 ------------------------------------------------------

    def _reset_runtime(self) -> None:
        self.control_loop.reset()
        self.orchestrator.reset()
        self.release_queue.clear()

    async def _locate_holding_group(self) -> Optional[int]:
        try:
            return await self.orchestrator.resolve_holding_group(prefer_title=True)
        except PlatformError:
            logger.warning("查找收纳分组失败", exc_info=True)
            return None

    async def _bootstrap(self, group_id: Optional[int]) -> None:
        try:
            await self.tracker.bootstrap(group_id)
        except PlatformError:
            logger.warning("初始化活动表失败，等待后续事件补齐", exc_info=True)

    def _schedule_recurring(self) -> None:
        self.scheduler.every(AUTO_CHECKER_TIMER, self.config.sample_interval_seconds, self.auto_check)
        self.scheduler.every(RECONCILE_TIMER, self.config.reconcile_interval_seconds, self.reconcile)
        self.scheduler.every(
            RELEASE_TIMER, self.config.release_drain_interval_seconds, self.process_releases
        )

    async def _mark_session_ready(self) -> None:
        await self.store.set_many({SESSION_READY_KEY: True, SESSION_START_KEY: self._epoch_ms()})

    def _epoch_ms(self) -> int:
        return int(self.clock().timestamp() * 1000)


def _require_positive_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} 必须是正整数")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} 必须是正整数") from exc
    if number < 1:
        raise ValueError(f"{name} 必须是正整数")
    return number

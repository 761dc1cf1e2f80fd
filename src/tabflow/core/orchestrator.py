"""收纳编排：挑选空闲标签页并移入收纳分组。"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from tabflow.adapters.base import PlatformError, Tab, TabPlatform
from tabflow.config import AppConfig
from tabflow.config_store import HOLDING_GROUP_KEY, SettingsStore, UserSettings
from tabflow.core.activity_tracker import ActivityTracker, Clock, utc_now
from tabflow.core.eligibility import is_candidate
from tabflow.notifiers.base import Notifier, StatusEvent

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "Grouping already in progress"
TIMEOUT_MESSAGE = "Grouping timed out, please try again"


class ConsolidationOutcome(Enum):
    COMPLETED = "completed"
    BUSY = "busy"
    NOT_ENOUGH_CANDIDATES = "not_enough_candidates"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class ConsolidationResult:
    """一次收纳的结果。"""

    outcome: ConsolidationOutcome
    grouped: int = 0
    group_id: Optional[int] = None
    required: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict = {"outcome": self.outcome.value, "grouped": self.grouped}
        if self.group_id is not None:
            data["group_id"] = self.group_id
        if self.required is not None:
            data["required"] = self.required
        if self.message is not None:
            data["message"] = self.message
        return data


class GroupingOrchestrator:
    """单飞（single-flight）的收纳执行器，同时负责收纳分组的身份。

    同一时刻最多只有一轮收纳在执行；``consolidation_in_flight`` 在第一个
    挂起点之前置位。每轮收纳都有一个超时保护，超时后强制解锁并丢弃
    该轮稍后返回的结果。
    """

    def __init__(
        self,
        platform: TabPlatform,
        tracker: ActivityTracker,
        store: SettingsStore,
        notifier: Notifier,
        config: Optional[AppConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._platform = platform
        self._tracker = tracker
        self._store = store
        self._notifier = notifier
        self._config = config or AppConfig.load_default()
        self._clock = clock or utc_now
        self._in_flight = False
        self._pass_token = 0
        self._abandoned: set[int] = set()
        self._watchdog: Optional[asyncio.TimerHandle] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def holding_title(self) -> str:
        return self._config.holding_group_title

    def reset(self) -> None:
        """清除守卫与超时保护；正在执行的旧一轮结果将被丢弃。"""

        if self._in_flight:
            self._abandoned.add(self._pass_token)
        self._cancel_watchdog()
        self._in_flight = False

    async def consolidate_now(self, threshold_minutes: int) -> ConsolidationResult:
        if self._in_flight:
            logger.info("已有收纳在执行，拒绝本次请求")
            self._notifier.send(StatusEvent.error(BUSY_MESSAGE))
            return ConsolidationResult(ConsolidationOutcome.BUSY, message=BUSY_MESSAGE)

        self._in_flight = True
        self._pass_token += 1
        token = self._pass_token
        self._arm_watchdog(token)

        error: Optional[Exception] = None
        result: Optional[ConsolidationResult] = None
        try:
            result = await self._run_pass(threshold_minutes, token)
        except Exception as exc:
            error = exc
        finally:
            abandoned = self._release(token)

        if abandoned:
            logger.warning("收纳在超时后才结束，结果已丢弃")
            return ConsolidationResult(ConsolidationOutcome.TIMED_OUT, message=TIMEOUT_MESSAGE)
        if error is not None:
            logger.warning("收纳失败：%s", error, exc_info=error)
            message = str(error) or error.__class__.__name__
            self._notifier.send(StatusEvent.error(message))
            return ConsolidationResult(ConsolidationOutcome.FAILED, message=message)

        assert result is not None
        if result.outcome is ConsolidationOutcome.NOT_ENOUGH_CANDIDATES:
            self._notifier.send(StatusEvent.not_enough_tabs(result.required or 0))
        elif result.outcome is ConsolidationOutcome.COMPLETED:
            self._notifier.send(StatusEvent.grouping_complete(result.grouped))
        return result

    async def _run_pass(self, threshold_minutes: int, token: int) -> ConsolidationResult:
        tabs = await self._tracker.eligible_tabs()
        now = self._now()
        self._tracker.resync_active(tabs)

        threshold = dt.timedelta(minutes=threshold_minutes)
        candidates: List[Tab] = [
            tab for tab in tabs if is_candidate(tab, self._tracker.get(tab.id), now, threshold)
        ]

        settings = await UserSettings.load(self._store, self._config)
        required = settings.min_consolidation_count
        if len(candidates) < required:
            logger.info("空闲标签页 %s 个，少于最低要求 %s 个，跳过收纳", len(candidates), required)
            return ConsolidationResult(
                ConsolidationOutcome.NOT_ENOUGH_CANDIDATES,
                grouped=0,
                required=required,
            )

        if not self._is_abandoned(token):
            self._notifier.send(StatusEvent.grouping_started())

        ids = [tab.id for tab in candidates]
        group_id = await self.resolve_holding_group()
        if group_id is None:
            group_id = await self._create_holding_group(ids[0])
            ids = ids[1:]

        if ids:
            await self._platform.group_tabs(ids, group_id=group_id)

        self._tracker.mark_consolidated(tab.id for tab in candidates)
        logger.info("已将 %s 个空闲标签页移入分组 %s", len(candidates), group_id)
        return ConsolidationResult(
            ConsolidationOutcome.COMPLETED,
            grouped=len(candidates),
            group_id=group_id,
        )

    async def resolve_holding_group(self, prefer_title: bool = False) -> Optional[int]:
        """依次尝试已持久化的 id 与按标题查找，找到后重新持久化。

        prefer_title 为 True 时先按标题查找（用于启动与重置）。
        """

        if prefer_title:
            group_id = await self._find_by_title()
            if group_id is None:
                group_id = await self.validate_group_id(await self._store.get(HOLDING_GROUP_KEY))
            return group_id

        group_id = await self.validate_group_id(await self._store.get(HOLDING_GROUP_KEY))
        if group_id is None:
            group_id = await self._find_by_title()
        return group_id

    async def validate_group_id(self, group_id: Optional[int]) -> Optional[int]:
        """确认分组仍存在且标题未变；失效时清除持久化的 id。"""

        if group_id is None:
            return None
        try:
            group = await self._platform.get_group(int(group_id))
        except (PlatformError, TypeError, ValueError):
            group = None
        if group is not None and group.title == self.holding_title:
            return group.id

        logger.debug("已持久化的收纳分组 %s 失效，清除", group_id)
        await self._store.remove(HOLDING_GROUP_KEY)
        return None

    async def forget_group(self, group_id: int) -> bool:
        """分组被外部删除时调用；若是收纳分组则清除持久化的 id。"""

        stored = await self._store.get(HOLDING_GROUP_KEY)
        if stored is not None and stored == group_id:
            await self._store.remove(HOLDING_GROUP_KEY)
            logger.info("收纳分组 %s 已被删除", group_id)
            return True
        return False

    async def _find_by_title(self) -> Optional[int]:
        groups = await self._platform.query_groups(title=self.holding_title)
        if not groups:
            return None
        group_id = groups[0].id
        await self._store.set(HOLDING_GROUP_KEY, group_id)
        return group_id

    async def _create_holding_group(self, first_tab_id: int) -> int:
        group_id = await self._platform.group_tabs([first_tab_id])
        await self._platform.update_group(group_id, title=self.holding_title, collapsed=True)
        await self._store.set(HOLDING_GROUP_KEY, group_id)
        logger.info("新建收纳分组 %s", group_id)
        return group_id

    def _arm_watchdog(self, token: int) -> None:
        self._cancel_watchdog()
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(self._config.force_unlock_seconds, self._force_unlock, token)

    def _force_unlock(self, token: int) -> None:
        if token != self._pass_token or not self._in_flight:
            return
        logger.warning("收纳超过 %s 秒未完成，强制解锁", self._config.force_unlock_seconds)
        self._watchdog = None
        self._abandoned.add(token)
        self._in_flight = False
        self._notifier.send(StatusEvent.error(TIMEOUT_MESSAGE))

    def _release(self, token: int) -> bool:
        """结束一轮收纳，返回该轮是否已被超时或重置放弃。"""

        abandoned = token in self._abandoned
        self._abandoned.discard(token)
        # 较新的一轮已经接管守卫时不能再动它
        if token == self._pass_token:
            self._cancel_watchdog()
            self._in_flight = False
        return abandoned

    def _is_abandoned(self, token: int) -> bool:
        return token in self._abandoned

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _now(self) -> dt.datetime:
        return self._clock()

"""标签页活动跟踪。"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Set

from tabflow.adapters.base import PlatformError, Tab, TabPlatform, WindowKind
from tabflow.config import AppConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class ItemState:
    """单个标签页的活动状态。"""

    last_accessed: dt.datetime
    is_active: bool = False
    is_hidden: bool = False


class ActivityTracker:
    """维护 normal 窗口中每个标签页的 ItemState。

    表只保存在内存中，启动时由 :meth:`bootstrap` 根据实时查询重建。
    """

    def __init__(
        self,
        platform: TabPlatform,
        config: Optional[AppConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._platform = platform
        self._config = config or AppConfig.load_default()
        self._clock = clock or utc_now
        self._states: Dict[int, ItemState] = {}
        # 已知位于非 normal 窗口的标签页，不进入状态表
        self._excluded: Set[int] = set()

    def record_activation(self, tab_id: int) -> Optional[ItemState]:
        if tab_id in self._excluded:
            return None
        now = self._now()
        state = self._states.get(tab_id)
        if state is None:
            state = ItemState(last_accessed=now, is_active=True)
            self._states[tab_id] = state
        else:
            state.last_accessed = now
            state.is_active = True
            state.is_hidden = False
        return state

    def record_content_settled(
        self, tab_id: int, active: Optional[bool] = None
    ) -> Optional[ItemState]:
        """页面加载完成或地址变化时刷新访问时间。"""

        if tab_id in self._excluded:
            return None
        now = self._now()
        state = self._states.get(tab_id)
        if state is None:
            state = ItemState(last_accessed=now, is_active=bool(active))
            self._states[tab_id] = state
        else:
            state.last_accessed = now
        return state

    def record_deactivation(self, tab_id: int) -> None:
        state = self._states.get(tab_id)
        if state is not None:
            state.is_active = False

    def forget(self, tab_id: int) -> None:
        self._states.pop(tab_id, None)
        self._excluded.discard(tab_id)

    def reconcile(self, live_ids: Iterable[int]) -> List[int]:
        """删除已不存在的标签页条目，返回被删除的 id。"""

        live: Set[int] = set(live_ids)
        stale = [tab_id for tab_id in self._states if tab_id not in live]
        for tab_id in stale:
            del self._states[tab_id]
        self._excluded &= live
        if stale:
            logger.debug("清理失效标签页状态：%s", stale)
        return stale

    async def eligible_tabs(self) -> List[Tab]:
        """列出 normal 窗口中的标签页，单个窗口查询失败只跳过对应标签页。"""

        tabs = await self._platform.query_tabs()
        kinds: Dict[int, Optional[WindowKind]] = {}
        eligible: List[Tab] = []
        for tab in tabs:
            if tab.window_id not in kinds:
                try:
                    kinds[tab.window_id] = await self._platform.get_window_kind(tab.window_id)
                except PlatformError as exc:
                    logger.debug("无法获取窗口 %s 类型，跳过：%s", tab.window_id, exc)
                    kinds[tab.window_id] = None
            kind = kinds[tab.window_id]
            if kind is WindowKind.NORMAL:
                self._excluded.discard(tab.id)
                eligible.append(tab)
            elif kind is not None:
                self._exclude(tab.id)
        return eligible

    async def bootstrap(self, holding_group_id: Optional[int] = None) -> int:
        """根据实时标签页重建状态表，返回跟踪的标签页数量。

        已在收纳分组中的标签页被赋予很久以前的访问时间且一律视为未激活，
        避免重启后把它们当作新的空闲标签页参与竞争。
        """

        tabs = await self.eligible_tabs()
        now = self._now()
        long_idle = now - dt.timedelta(days=self._config.bootstrap_idle_days)
        self._states.clear()
        held = 0
        for tab in tabs:
            if holding_group_id is not None and tab.group_id == holding_group_id:
                self._states[tab.id] = ItemState(last_accessed=long_idle, is_active=False)
                held += 1
            else:
                self._states[tab.id] = ItemState(last_accessed=now, is_active=tab.active)
        logger.info("活动表已重建：共 %s 个标签页，其中 %s 个位于收纳分组", len(tabs), held)
        return len(tabs)

    def resync_active(self, tabs: Iterable[Tab]) -> None:
        """用实时激活状态校正表项，防止遗漏激活事件。"""

        now = self._now()
        for tab in tabs:
            state = self._states.get(tab.id)
            if state is None:
                state = ItemState(last_accessed=now, is_active=tab.active)
                self._states[tab.id] = state
            state.is_active = tab.active
            if tab.active:
                state.last_accessed = now

    def mark_consolidated(self, tab_ids: Iterable[int]) -> None:
        for tab_id in tab_ids:
            state = self._states.get(tab_id)
            if state is not None:
                state.is_active = False
                state.is_hidden = False

    def get(self, tab_id: int) -> Optional[ItemState]:
        return self._states.get(tab_id)

    def snapshot(self) -> Dict[int, ItemState]:
        return {tab_id: replace(state) for tab_id, state in self._states.items()}

    def clear(self) -> None:
        self._states.clear()
        self._excluded.clear()

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, tab_id: object) -> bool:
        return tab_id in self._states

    def _exclude(self, tab_id: int) -> None:
        if self._states.pop(tab_id, None) is not None:
            logger.debug("标签页 %s 不在 normal 窗口，移出状态表", tab_id)
        self._excluded.add(tab_id)

    def _now(self) -> dt.datetime:
        return self._clock()

"""延迟释放队列：用户重新使用收纳分组中的标签页后，将其单独移出分组。"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, List, Optional

from tabflow.adapters.base import PlatformError, TabPlatform
from tabflow.config import AppConfig
from tabflow.config_store import SettingsStore, UserSettings
from tabflow.core.activity_tracker import Clock, utc_now

logger = logging.getLogger(__name__)


class DelayedReleaseQueue:
    """按入队时间延迟处理的释放队列。

    同一标签页只会入队一次，重复激活不会刷新入队时间，防止频繁切换
    导致释放被无限推迟。释放是尽力而为的：每个条目只处理一次，失败不重试。
    """

    def __init__(
        self,
        platform: TabPlatform,
        store: SettingsStore,
        config: Optional[AppConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._platform = platform
        self._store = store
        self._config = config or AppConfig.load_default()
        self._clock = clock or utc_now
        self._queue: Dict[int, dt.datetime] = {}
        self._in_flight = False
        self._generation = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def enqueue(self, tab_id: int) -> bool:
        if tab_id in self._queue:
            return False
        self._queue[tab_id] = self._clock()
        logger.debug("标签页 %s 进入释放队列", tab_id)
        return True

    def discard(self, tab_id: int) -> None:
        self._queue.pop(tab_id, None)

    def clear(self) -> None:
        """清空队列；仍在执行的旧一轮处理结束后不再改动队列与守卫。"""

        self._queue.clear()
        self._in_flight = False
        self._generation += 1

    def enqueued_at(self, tab_id: int) -> Optional[dt.datetime]:
        return self._queue.get(tab_id)

    def __contains__(self, tab_id: object) -> bool:
        return tab_id in self._queue

    def __len__(self) -> int:
        return len(self._queue)

    async def is_holding_member(self, tab_id: int) -> bool:
        """标签页当前是否位于标题为收纳名称的分组中。"""

        try:
            tab = await self._platform.get_tab(tab_id)
            if tab.group_id is None:
                return False
            group = await self._platform.get_group(tab.group_id)
        except PlatformError:
            return False
        return group.title == self._config.holding_group_title

    async def drain(self) -> List[int]:
        """处理到期条目，返回实际被移出分组的标签页。"""

        if self._in_flight:
            return []
        self._in_flight = True
        generation = self._generation
        released: List[int] = []
        try:
            now = self._clock()
            delay = dt.timedelta(seconds=self._config.release_delay_seconds)
            due = [tab_id for tab_id, queued_at in self._queue.items() if now - queued_at >= delay]
            if not due:
                return released

            settings = await UserSettings.load(self._store, self._config)
            for tab_id in due:
                if generation != self._generation:
                    break
                try:
                    if settings.auto_release and await self._release_one(tab_id):
                        released.append(tab_id)
                except Exception as exc:
                    logger.warning("释放标签页 %s 失败，不再重试：%s", tab_id, exc)
                finally:
                    if generation == self._generation:
                        self._queue.pop(tab_id, None)
        finally:
            if generation == self._generation:
                self._in_flight = False
        return released

    async def _release_one(self, tab_id: int) -> bool:
        tab = await self._platform.get_tab(tab_id)
        if not tab.active:
            logger.debug("标签页 %s 已不在前台，放弃释放", tab_id)
            return False
        if tab.group_id is None:
            return False
        group_id = tab.group_id
        group = await self._platform.get_group(group_id)
        if group.title != self._config.holding_group_title:
            return False

        await self._platform.ungroup_tabs([tab_id])
        remaining = await self._platform.query_tabs(group_id=group_id)
        if remaining:
            await self._platform.update_group(group_id, collapsed=True)
        logger.info("标签页 %s 已移出收纳分组", tab_id)
        return True

"""模拟浏览器平台，用于开发阶段与测试。"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from tabflow.adapters.base import PlatformError, Tab, TabGroup, TabPlatform, WindowKind

logger = logging.getLogger(__name__)

MUTATING_CALLS = frozenset({"group_tabs", "ungroup_tabs", "update_group"})


class SimulatedTabPlatform(TabPlatform):
    """内存中的标签页/窗口/分组模型。

    除了实现 :class:`TabPlatform`，还提供模拟用户操作的方法（打开、激活、
    关闭标签页，删除分组），并按浏览器的方式把事件转发给监听方。
    ``fail_on`` 与 ``block`` 用于在测试中注入失败或挂起的平台调用。
    """

    def __init__(self) -> None:
        super().__init__()
        self._tabs: Dict[int, Tab] = {}
        self._windows: Dict[int, WindowKind] = {}
        self._groups: Dict[int, TabGroup] = {}
        self._tab_ids = itertools.count(1)
        self._group_ids = itertools.count(100)
        self._failures: Dict[str, Exception] = {}
        self._blocks: Dict[str, asyncio.Event] = {}
        self._broken_windows: Set[int] = set()
        self.calls: List[Tuple[str, tuple]] = []

    # --- 模拟用户操作 -------------------------------------------------

    def add_window(self, window_id: int, kind: WindowKind = WindowKind.NORMAL) -> None:
        self._windows[window_id] = kind

    def open_tab(
        self,
        window_id: int = 1,
        active: bool = False,
        pinned: bool = False,
        audible: bool = False,
        url: str = "about:blank",
    ) -> Tab:
        """打开标签页，不触发事件（等价于启动前就已存在）。"""

        self._windows.setdefault(window_id, WindowKind.NORMAL)
        tab = Tab(
            id=next(self._tab_ids),
            window_id=window_id,
            active=False,
            pinned=pinned,
            audible=audible,
            url=url,
        )
        self._tabs[tab.id] = tab
        if active:
            self._set_active(tab)
        return tab

    def create_group(self, tab_ids: Sequence[int], title: str = "", collapsed: bool = False) -> TabGroup:
        """直接创建分组，不经过调用记录。"""

        group_id = self._group_into(tab_ids, None)
        group = self._groups[group_id]
        group.title = title
        group.collapsed = collapsed
        return group

    def break_window(self, window_id: int) -> None:
        """让该窗口的类型查询失败。"""

        self._broken_windows.add(window_id)

    async def activate(self, tab_id: int) -> None:
        tab = self._require_tab(tab_id)
        self._set_active(tab)
        if self._listener is not None:
            await self._listener.on_tab_activated(tab_id)

    def navigate(self, tab_id: int, url: str) -> None:
        tab = self._require_tab(tab_id)
        tab.url = url
        if self._listener is not None:
            self._listener.on_tab_updated(tab_id, status="complete", url=url)

    def close_tab(self, tab_id: int) -> None:
        tab = self._tabs.pop(tab_id, None)
        if tab is None:
            return
        if self._listener is not None:
            self._listener.on_tab_removed(tab_id)
        if tab.group_id is not None:
            self._drop_if_empty(tab.group_id)

    async def remove_group(self, group_id: int) -> None:
        """模拟用户删除分组：成员移出后分组消失。"""

        for tab in self._tabs.values():
            if tab.group_id == group_id:
                tab.group_id = None
        if self._groups.pop(group_id, None) is not None and self._listener is not None:
            await self._listener.on_group_removed(group_id)

    def fail_on(self, method: str, exc: Optional[Exception] = None) -> None:
        """下一次及之后对 method 的调用抛出 exc，传入 None 清除。"""

        if exc is None:
            self._failures.pop(method, None)
        else:
            self._failures[method] = exc

    def block(self, method: str) -> asyncio.Event:
        """让 method 挂起，直到返回的事件被 set。"""

        event = asyncio.Event()
        self._blocks[method] = event
        return event

    def tab(self, tab_id: int) -> Tab:
        return self._require_tab(tab_id)

    def groups(self) -> List[TabGroup]:
        return list(self._groups.values())

    def mutations(self) -> List[Tuple[str, tuple]]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    # --- TabPlatform ---------------------------------------------------

    async def query_tabs(self, group_id: Optional[int] = None) -> List[Tab]:
        await self._enter("query_tabs", group_id)
        tabs = list(self._tabs.values())
        if group_id is not None:
            tabs = [tab for tab in tabs if tab.group_id == group_id]
        return [self._copy(tab) for tab in tabs]

    async def get_tab(self, tab_id: int) -> Tab:
        await self._enter("get_tab", tab_id)
        return self._copy(self._require_tab(tab_id))

    async def get_window_kind(self, window_id: int) -> WindowKind:
        await self._enter("get_window_kind", window_id)
        if window_id in self._broken_windows or window_id not in self._windows:
            raise PlatformError(f"No window with id: {window_id}")
        return self._windows[window_id]

    async def query_groups(self, title: Optional[str] = None) -> List[TabGroup]:
        await self._enter("query_groups", title)
        groups = list(self._groups.values())
        if title is not None:
            groups = [group for group in groups if group.title == title]
        return [TabGroup(g.id, g.title, g.collapsed, g.window_id) for g in groups]

    async def get_group(self, group_id: int) -> TabGroup:
        await self._enter("get_group", group_id)
        group = self._groups.get(group_id)
        if group is None:
            raise PlatformError(f"No group with id: {group_id}")
        return TabGroup(group.id, group.title, group.collapsed, group.window_id)

    async def group_tabs(self, tab_ids: Sequence[int], group_id: Optional[int] = None) -> int:
        await self._enter("group_tabs", tuple(tab_ids), group_id)
        return self._group_into(tab_ids, group_id)

    async def ungroup_tabs(self, tab_ids: Sequence[int]) -> None:
        await self._enter("ungroup_tabs", tuple(tab_ids))
        touched = set()
        for tab_id in tab_ids:
            tab = self._require_tab(tab_id)
            if tab.group_id is not None:
                touched.add(tab.group_id)
                tab.group_id = None
        for group_id in touched:
            self._drop_if_empty(group_id)

    async def update_group(
        self,
        group_id: int,
        title: Optional[str] = None,
        collapsed: Optional[bool] = None,
    ) -> TabGroup:
        await self._enter("update_group", group_id, title, collapsed)
        group = self._groups.get(group_id)
        if group is None:
            raise PlatformError(f"No group with id: {group_id}")
        if title is not None:
            group.title = title
        if collapsed is not None:
            group.collapsed = collapsed
        return TabGroup(group.id, group.title, group.collapsed, group.window_id)

    # --- 内部实现 ------------------------------------------------------

    async def _enter(self, method: str, *args: object) -> None:
        self.calls.append((method, args))
        await asyncio.sleep(0)
        blocker = self._blocks.get(method)
        if blocker is not None:
            await blocker.wait()
        exc = self._failures.get(method)
        if exc is not None:
            raise exc

    def _require_tab(self, tab_id: int) -> Tab:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise PlatformError(f"No tab with id: {tab_id}")
        return tab

    def _set_active(self, tab: Tab) -> None:
        for other in self._tabs.values():
            if other.window_id == tab.window_id:
                other.active = False
        tab.active = True

    def _group_into(self, tab_ids: Sequence[int], group_id: Optional[int]) -> int:
        if not tab_ids:
            raise PlatformError("tabIds must not be empty")
        tabs = [self._require_tab(tab_id) for tab_id in tab_ids]
        if group_id is None:
            group_id = next(self._group_ids)
            self._groups[group_id] = TabGroup(id=group_id, window_id=tabs[0].window_id)
        elif group_id not in self._groups:
            raise PlatformError(f"No group with id: {group_id}")
        previous = {tab.group_id for tab in tabs if tab.group_id not in (None, group_id)}
        for tab in tabs:
            tab.group_id = group_id
        for old in previous:
            self._drop_if_empty(old)
        return group_id

    def _drop_if_empty(self, group_id: int) -> None:
        if any(tab.group_id == group_id for tab in self._tabs.values()):
            return
        # 浏览器会自动移除空分组
        if self._groups.pop(group_id, None) is not None:
            logger.debug("分组 %s 已清空并被移除", group_id)

    @staticmethod
    def _copy(tab: Tab) -> Tab:
        return Tab(
            id=tab.id,
            window_id=tab.window_id,
            active=tab.active,
            pinned=tab.pinned,
            audible=tab.audible,
            group_id=tab.group_id,
            url=tab.url,
        )

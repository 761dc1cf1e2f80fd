"""浏览器平台能力接口。"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol, Sequence


class PlatformError(Exception):
    """平台调用被拒绝（标签页或分组已失效、权限不足等）。"""


class WindowKind(str, Enum):
    """窗口类型，只有 NORMAL 窗口内的标签页参与跟踪。"""

    NORMAL = "normal"
    POPUP = "popup"
    PANEL = "panel"
    APP = "app"
    DEVTOOLS = "devtools"


@dataclass
class Tab:
    """标签页的实时视图。"""

    id: int
    window_id: int
    active: bool = False
    pinned: bool = False
    audible: bool = False
    group_id: Optional[int] = None
    url: str = ""

    @property
    def grouped(self) -> bool:
        return self.group_id is not None


@dataclass
class TabGroup:
    """标签页分组的实时视图。"""

    id: int
    title: str = ""
    collapsed: bool = False
    window_id: Optional[int] = None


class PlatformListener(Protocol):
    """平台生命周期事件的接收方。"""

    async def on_tab_activated(self, tab_id: int) -> None:
        ...

    def on_tab_updated(
        self,
        tab_id: int,
        status: Optional[str] = None,
        url: Optional[str] = None,
        active: Optional[bool] = None,
    ) -> None:
        ...

    def on_tab_removed(self, tab_id: int) -> None:
        ...

    async def on_group_removed(self, group_id: int) -> None:
        ...


class TabPlatform(abc.ABC):
    """宿主浏览器提供的标签页、窗口与分组原语。

    所有方法都是协程；失败时抛出 :class:`PlatformError`。
    """

    def __init__(self) -> None:
        self._listener: Optional[PlatformListener] = None

    def set_listener(self, listener: Optional[PlatformListener]) -> None:
        """注册生命周期事件接收方，传入 None 取消订阅。"""

        self._listener = listener

    @abc.abstractmethod
    async def query_tabs(self, group_id: Optional[int] = None) -> List[Tab]:
        """列出所有标签页；指定 group_id 时只返回该分组成员。"""

    @abc.abstractmethod
    async def get_tab(self, tab_id: int) -> Tab:
        """按 id 获取标签页。"""

    @abc.abstractmethod
    async def get_window_kind(self, window_id: int) -> WindowKind:
        """查询窗口类型。"""

    @abc.abstractmethod
    async def query_groups(self, title: Optional[str] = None) -> List[TabGroup]:
        """列出分组；指定 title 时只返回标题完全相同的分组。"""

    @abc.abstractmethod
    async def get_group(self, group_id: int) -> TabGroup:
        """按 id 获取分组。"""

    @abc.abstractmethod
    async def group_tabs(self, tab_ids: Sequence[int], group_id: Optional[int] = None) -> int:
        """把标签页移入分组；未指定 group_id 时新建分组，返回分组 id。"""

    @abc.abstractmethod
    async def ungroup_tabs(self, tab_ids: Sequence[int]) -> None:
        """把标签页移出所属分组。"""

    @abc.abstractmethod
    async def update_group(
        self,
        group_id: int,
        title: Optional[str] = None,
        collapsed: Optional[bool] = None,
    ) -> TabGroup:
        """修改分组标题或折叠状态。"""

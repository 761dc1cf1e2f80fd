"""标签页资格判定，自动采样与手动收纳共用同一套规则。"""

from __future__ import annotations

import datetime as dt
from typing import Optional

from tabflow.adapters.base import Tab
from tabflow.core.activity_tracker import ItemState


def is_countable(tab: Tab) -> bool:
    """未固定、未发声且不在任何分组中的标签页。

    调用方负责事先过滤掉非 normal 窗口中的标签页。
    """

    return not tab.pinned and not tab.audible and not tab.grouped


def is_candidate(
    tab: Tab,
    state: Optional[ItemState],
    now: dt.datetime,
    threshold: dt.timedelta,
) -> bool:
    """可计数、当前未激活且空闲时间超过阈值的标签页。"""

    if state is None or not is_countable(tab):
        return False
    if tab.active or state.is_active:
        return False
    return now - state.last_accessed > threshold

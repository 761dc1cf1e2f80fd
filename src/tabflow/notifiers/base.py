"""状态事件与通知接口。"""

from __future__ import annotations

import abc
import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class StatusKind(str, Enum):
    """对外广播的状态事件类型。"""

    TIMER_STARTED = "TIMER_STARTED"
    NOT_ENOUGH_TABS = "NOT_ENOUGH_TABS"
    GROUPING_STARTED = "GROUPING_STARTED"
    GROUPING_COMPLETE = "GROUPING_COMPLETE"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


@dataclass
class StatusEvent:
    """单条状态事件。"""

    kind: StatusKind
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    def to_message(self) -> Dict[str, Any]:
        return {"type": self.kind.value, **self.payload}

    @classmethod
    def timer_started(cls, minutes: int) -> "StatusEvent":
        return cls(StatusKind.TIMER_STARTED, {"minutes": minutes})

    @classmethod
    def not_enough_tabs(cls, required: int) -> "StatusEvent":
        return cls(StatusKind.NOT_ENOUGH_TABS, {"required": required})

    @classmethod
    def grouping_started(cls) -> "StatusEvent":
        return cls(StatusKind.GROUPING_STARTED)

    @classmethod
    def grouping_complete(cls, grouped: int) -> "StatusEvent":
        return cls(StatusKind.GROUPING_COMPLETE, {"grouped": grouped})

    @classmethod
    def stopped(cls) -> "StatusEvent":
        return cls(StatusKind.STOPPED)

    @classmethod
    def error(cls, message: str) -> "StatusEvent":
        return cls(StatusKind.ERROR, {"message": message})


class Notifier(abc.ABC):
    """状态事件发布接口。

    ``send`` 必须是非阻塞的，投递失败由实现自行吞掉，不能抛给调用方。
    """

    @abc.abstractmethod
    def send(self, event: StatusEvent) -> None:
        """发布事件。"""

        raise NotImplementedError

"""缓存最近的状态事件，供 HTTP 接口读取。"""

from __future__ import annotations

import collections
import threading
from typing import Any, Deque, Dict, List, Optional

from tabflow.notifiers.base import StatusEvent, StatusKind


class EventBuffer:
    """环形缓冲区，支持多线程追加与快照。"""

    def __init__(self, maxlen: int = 200) -> None:
        self._records: Deque[StatusEvent] = collections.deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def __call__(self, event: StatusEvent) -> None:
        self.append(event)

    def append(self, event: StatusEvent) -> None:
        with self._lock:
            self._records.append(event)

    def snapshot(self) -> List[StatusEvent]:
        """返回当前记录的浅拷贝。"""

        with self._lock:
            return list(self._records)

    def messages(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """按时间顺序返回最近的事件消息，附带 ISO 时间戳。"""

        records = self.snapshot()
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return [
            {**event.to_message(), "created_at": event.created_at.isoformat()}
            for event in records
        ]

    def kinds(self) -> List[StatusKind]:
        return [event.kind for event in self.snapshot()]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

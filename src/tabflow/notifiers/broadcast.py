"""尽力而为的事件广播。"""

from __future__ import annotations

import logging
from typing import Callable, List

from tabflow.notifiers.base import Notifier, StatusEvent

logger = logging.getLogger(__name__)

Subscriber = Callable[[StatusEvent], None]


class BroadcastNotifier(Notifier):
    """把事件分发给所有订阅者；没有订阅者或订阅者出错都不影响调用方。"""

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """注册订阅者，返回取消订阅的函数。"""

        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    def send(self, event: StatusEvent) -> None:
        logger.info("状态事件：%s", event.to_message())
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.debug("事件投递失败，已忽略: %s", event.kind.value, exc_info=True)

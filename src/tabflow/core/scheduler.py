"""基于 asyncio 的命名定时任务。"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerScheduler:
    """管理周期任务与一次性任务，同名任务重复注册时先取消旧任务。

    一次性任务到期后先从登记表中移除再执行回调，因此在回调执行期间
    调用 :meth:`cancel` 只会清除登记，不会打断正在运行的回调。
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task[None]] = {}

    def every(self, name: str, period: float, callback: TimerCallback) -> None:
        """每隔 period 秒执行一次回调，首次执行在一个周期之后。"""

        self.cancel(name)

        async def _loop() -> None:
            while True:
                await asyncio.sleep(period)
                try:
                    await callback()
                except Exception:
                    logger.exception("周期任务 %s 执行失败", name)

        self._tasks[name] = asyncio.create_task(_loop(), name=f"tabflow-{name}")

    def once(self, name: str, delay: float, callback: TimerCallback) -> None:
        """delay 秒后执行一次回调。"""

        self.cancel(name)

        async def _fire() -> None:
            await asyncio.sleep(delay)
            current = asyncio.current_task()
            if self._tasks.get(name) is current:
                del self._tasks[name]
            try:
                await callback()
            except Exception:
                logger.exception("定时任务 %s 执行失败", name)

        self._tasks[name] = asyncio.create_task(_fire(), name=f"tabflow-{name}")

    def cancel(self, name: str) -> bool:
        """取消指定任务，返回是否存在该任务。"""

        task = self._tasks.pop(name, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for name in list(self._tasks):
            self.cancel(name)

    def is_scheduled(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def names(self) -> List[str]:
        return sorted(name for name, task in self._tasks.items() if not task.done())

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

"""开发环境：在模拟浏览器上运行引擎并启动 FastAPI 服务。"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
from contextlib import suppress
from typing import Optional

import uvicorn

from tabflow.adapters import SimulatedTabPlatform, WindowKind
from tabflow.config import AppConfig
from tabflow.config_store import JsonSettingsStore
from tabflow.service import TabEngine
from tabflow.ui import create_app

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO, format="[%(asctime)s][%(levelname)s] %(name)s: %(message)s")


def build_demo_platform(normal_tabs: int = 14) -> SimulatedTabPlatform:
    """一个 normal 窗口若干标签页，外加一个不参与跟踪的弹窗。"""

    platform = SimulatedTabPlatform()
    platform.add_window(1, WindowKind.NORMAL)
    platform.add_window(2, WindowKind.POPUP)
    for index in range(normal_tabs):
        platform.open_tab(window_id=1, active=index == 0, url=f"https://example.com/{index}")
    platform.open_tab(window_id=1, pinned=True, url="https://mail.example.com")
    platform.open_tab(window_id=2, active=True, url="https://popup.example.com")
    return platform


async def main(config: Optional[AppConfig] = None) -> None:
    config_model = config or AppConfig.load()
    platform = build_demo_platform()
    store = JsonSettingsStore(config_model.settings_path)
    engine = TabEngine(platform, store, config=config_model)
    await engine.startup()

    app = create_app(engine)
    uvicorn_config = uvicorn.Config(app, host=config_model.api_host, port=config_model.api_port, reload=False)
    server = uvicorn.Server(uvicorn_config)

    try:
        if threading.current_thread() is threading.main_thread():
            stop_event = asyncio.Event()

            def _handle_stop(*_: object) -> None:
                logger.info("收到终止信号，准备关闭服务器…")
                stop_event.set()

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, _handle_stop)

            async def _serve() -> None:
                await server.serve()
                stop_event.set()

            serve_task = asyncio.create_task(_serve())

            await stop_event.wait()
            serve_task.cancel()
            with suppress(asyncio.CancelledError):
                await serve_task
        else:
            await server.serve()
    finally:
        await engine.shutdown()


if __name__ == "__main__":
    asyncio.run(main())

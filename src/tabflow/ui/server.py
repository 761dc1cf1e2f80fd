"""FastAPI 命令接口。"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from tabflow.service import TabEngine


class GroupNowRequest(BaseModel):
    minutes: Optional[int] = Field(None, ge=1)


class SettingsUpdate(BaseModel):
    threshold_minutes: Optional[int] = Field(None, ge=1)
    min_consolidation_count: Optional[int] = Field(None, ge=1)
    auto_consolidate: Optional[bool] = None
    auto_release: Optional[bool] = None


def create_app(engine: TabEngine) -> FastAPI:
    """构建 FastAPI 应用并注册命令路由。"""

    app = FastAPI(title="tabflow")

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/status", tags=["engine"])
    async def status() -> dict:
        return (await engine.get_status()).to_dict()

    @app.post("/stop", tags=["engine"])
    async def stop() -> dict:
        engine.stop()
        return {"success": True}

    @app.post("/group-now", tags=["engine"])
    async def group_now(request: Optional[GroupNowRequest] = None) -> dict:
        minutes = request.minutes if request is not None else None
        return (await engine.group_now(minutes)).to_dict()

    @app.post("/force-reset", tags=["engine"])
    async def force_reset() -> dict:
        return await engine.force_reset()

    @app.get("/settings", tags=["settings"])
    async def get_settings() -> dict:
        return (await engine.get_settings()).to_dict()

    @app.put("/settings", tags=["settings"])
    async def put_settings(update: SettingsUpdate) -> dict:
        try:
            settings = await engine.update_settings(**update.model_dump(exclude_none=True))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return settings.to_dict()

    @app.get("/events", tags=["engine"])
    async def events(limit: int = Query(50, ge=1, le=1000)) -> dict:
        return {"events": engine.events.messages(limit=limit)}

    return app

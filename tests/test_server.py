import asyncio

from fastapi.testclient import TestClient

from tabflow.service import TabEngine
from tabflow.ui.server import create_app

from conftest import open_tabs


def _client(platform, store, config, clock) -> tuple[TabEngine, TestClient]:
    engine = TabEngine(platform, store, config, clock=clock)
    return engine, TestClient(create_app(engine))


def test_health_and_status(platform, store, config, clock) -> None:
    _, client = _client(platform, store, config, clock)

    assert client.get("/health").json() == {"status": "ok"}
    status = client.get("/status").json()
    assert status["running"] is False
    assert status["auto_consolidate"] is True


def test_group_now_endpoint_consolidates(platform, store, config, clock) -> None:
    ids = open_tabs(platform, 6)
    engine, client = _client(platform, store, config, clock)
    asyncio.run(engine.tracker.bootstrap())
    clock.advance(minutes=11)

    response = client.post("/group-now", json={"minutes": 10})

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "completed"
    assert body["grouped"] == 6
    assert all(platform.tab(tab_id).group_id == body["group_id"] for tab_id in ids)

    events = client.get("/events").json()["events"]
    assert [event["type"] for event in events] == ["GROUPING_STARTED", "GROUPING_COMPLETE"]


def test_group_now_reports_not_enough_tabs(platform, store, config, clock) -> None:
    open_tabs(platform, 2)
    _, client = _client(platform, store, config, clock)

    body = client.post("/group-now").json()

    assert body["outcome"] == "not_enough_candidates"
    assert body["required"] == 5


def test_stop_and_force_reset(platform, store, config, clock) -> None:
    _, client = _client(platform, store, config, clock)

    assert client.post("/stop").json() == {"success": True}
    assert client.post("/force-reset").json() == {"success": True}

    kinds = [event["type"] for event in client.get("/events", params={"limit": 10}).json()["events"]]
    assert kinds == ["STOPPED", "STOPPED"]


def test_settings_round_trip_and_validation(platform, store, config, clock) -> None:
    _, client = _client(platform, store, config, clock)

    updated = client.put("/settings", json={"threshold_minutes": 45, "auto_consolidate": False})
    assert updated.status_code == 200
    assert updated.json()["threshold_minutes"] == 45
    assert client.get("/settings").json()["auto_consolidate"] is False
    assert client.get("/status").json()["auto_consolidate"] is False

    rejected = client.put("/settings", json={"min_consolidation_count": 0})
    assert rejected.status_code == 422

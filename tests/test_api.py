"""Tests for the FastAPI server endpoints."""

from datetime import datetime, timedelta, timezone

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from garden_watch.api.server import app
from garden_watch.config import get_settings

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
async def client(monkeypatch):
    """Async test client with lifespan (startup / shutdown) fully executed.

    The wall-clock scheduler is disabled so only the test drives reminders.
    """
    monkeypatch.setenv("GARDEN_WATCH_SCHEDULER_ENABLED", "false")
    monkeypatch.delenv("GARDEN_WATCH_API_SECRET_KEY", raising=False)
    get_settings.cache_clear()
    async with LifespanManager(app) as manager:
        transport = ASGITransport(app=manager.app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    get_settings.cache_clear()


async def _post_samples(client: AsyncClient, subject: str, values: list[float]) -> list[dict]:
    results = []
    for day, value in enumerate(values):
        resp = await client.post(
            f"/subjects/{subject}/samples",
            json={"timestamp": (T0 + timedelta(days=day)).isoformat(), "value": value},
        )
        assert resp.status_code == 201
        results.append(resp.json())
    return results


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_system_info(client: AsyncClient):
    resp = await client.get("/system/info")
    assert resp.status_code == 200
    body = resp.json()
    assert "garden" in body["subjects"]
    assert body["notifications"]["handlers"][0] == "log"


@pytest.mark.asyncio
async def test_presence_is_queued(client: AsyncClient):
    resp = await client.post("/presence", json={"subject_id": "garden", "is_present": True})
    assert resp.status_code == 201
    assert resp.json()["queued"] is True

    resp = await client.post(
        "/presence/batch",
        json=[{"subject_id": "garden", "is_present": False, "timestamp": T0.isoformat()}] * 3,
    )
    assert resp.json()["count"] == 3


@pytest.mark.asyncio
async def test_samples_and_baseline(client: AsyncClient):
    results = await _post_samples(client, "plot-7", [30.0] * 8)
    assert results[0]["scored"] is False
    assert results[7]["scored"] is True
    assert results[7]["outcome"]["score"] == 0.0

    resp = await client.get("/subjects/plot-7/baselines/0/9")
    assert resp.json()["sufficient"] is True
    assert resp.json()["mean"] == 30.0

    resp = await client.get("/subjects/plot-7/baselines/0/3")
    assert resp.json()["sufficient"] is False

    resp = await client.get("/subjects/plot-7/baselines/9/3")
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_subject_lifecycle(client: AsyncClient):
    await _post_samples(client, "plot-7", [30.0])
    assert "plot-7" in (await client.get("/subjects")).json()

    status = (await client.get("/subjects/plot-7")).json()
    assert status["alert_state"] == "normal"

    assert (await client.delete("/subjects/plot-7")).status_code == 200
    assert (await client.get("/subjects/plot-7")).status_code == 404
    assert (await client.delete("/subjects/plot-7")).status_code == 404


@pytest.mark.asyncio
async def test_reminder_flow(client: AsyncClient):
    resp = await client.post(
        "/subjects/garden/reminders",
        json={"task_id": "water-tomatoes", "cadence_days": 1, "time_of_day": "08:00", "start": "2024-01-01"},
    )
    assert resp.status_code == 201

    fired_at = datetime(2024, 1, 1, 8, 0)
    resp = await client.post("/subjects/garden/reminders/water-tomatoes/fire", json={"timestamp": fired_at.isoformat()})
    assert resp.status_code == 201

    ack = {"timestamp": (fired_at + timedelta(minutes=12)).isoformat()}
    resp = await client.post("/subjects/garden/reminders/water-tomatoes/ack", json=ack)
    assert resp.json()["status"] == "acknowledged"
    assert resp.json()["interaction_mode"] == "normal"

    resp = await client.post("/subjects/garden/reminders/water-tomatoes/ack", json=ack)
    assert resp.json()["status"] == "nothing_pending"

    history = (await client.get("/api/data/reminders")).json()
    assert history == [{"week": "Week 1", "responseTime": 12.0, "alert": False}]

    assert (await client.delete("/subjects/garden/reminders/water-tomatoes")).status_code == 200
    assert (await client.delete("/subjects/garden/reminders/water-tomatoes")).status_code == 404


@pytest.mark.asyncio
async def test_rejected_configuration(client: AsyncClient):
    resp = await client.post(
        "/subjects/garden/reminders",
        json={"task_id": "water-tomatoes", "cadence_days": 0, "time_of_day": "08:00"},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_ack_before_fire_rejected(client: AsyncClient):
    fired_at = datetime(2024, 1, 1, 8, 0)
    await client.post("/subjects/garden/reminders/feed-roses/fire", json={"timestamp": fired_at.isoformat()})
    resp = await client.post(
        "/subjects/garden/reminders/feed-roses/ack",
        json={"timestamp": (fired_at - timedelta(minutes=1)).isoformat()},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_data_views(client: AsyncClient):
    await _post_samples(client, "plot-7", [30.0] * 8)
    closed = (
        await client.post("/subjects/plot-7/days/close", json={"timestamp": (T0 + timedelta(days=8)).isoformat()})
    ).json()
    assert closed["closed"] == 1
    assert closed["alert_state"] == "normal"

    activity = (await client.get("/api/data/activity", params={"subject_id": "plot-7"})).json()
    assert len(activity) == 8
    assert activity[7] == {
        "day": "Day 8",
        "actualActivity": 30.0,
        "baselineActivity": 30.0,
        "deviationScore": 0.0,
        "alert": False,
    }

    patterns = (await client.get("/api/data/daily-patterns", params={"subject_id": "plot-7"})).json()
    assert len(patterns["healthy"]) == 24
    assert patterns["current"][9] == {"hour": "9:00", "activity": 30.0, "expectedActivity": 30.0}

    weekly = (await client.get("/api/data/weekly-tasks", params={"subject_id": "plot-7"})).json()
    assert set(weekly) == {"healthy", "current"}
    assert [row["day"] for row in weekly["current"]][:2] == ["Mon", "Tue"]
    assert weekly["healthy"][0]["gardenTime"] == weekly["current"][0]["gardenTime"]

    deviation = (await client.get("/api/data/deviation", params={"subject_id": "plot-7"})).json()
    assert deviation[0]["deviationScore"] is None


@pytest.mark.asyncio
async def test_data_views_for_unknown_subject(client: AsyncClient):
    assert (await client.get("/api/data/activity", params={"subject_id": "nobody"})).json() == []
    assert (await client.get("/api/data/daily-patterns", params={"subject_id": "nobody"})).json() == {
        "healthy": [],
        "current": [],
    }
    assert (await client.get("/api/data/weekly-tasks", params={"subject_id": "nobody"})).json() == {
        "healthy": [],
        "current": [],
    }
    assert (await client.post("/subjects/nobody/days/close")).status_code == 404


@pytest.mark.asyncio
async def test_api_key_required_when_configured(client: AsyncClient, monkeypatch):
    monkeypatch.setenv("GARDEN_WATCH_API_SECRET_KEY", "s3cret")
    get_settings.cache_clear()

    assert (await client.get("/subjects")).status_code == 401
    assert (await client.get("/subjects", headers={"X-API-Key": "s3cret"})).status_code == 200
    assert (await client.get("/subjects", headers={"Authorization": "Bearer s3cret"})).status_code == 200
    assert (await client.get("/api/data/activity")).status_code == 200


@pytest.mark.asyncio
async def test_offset_and_naive_timestamps_are_accepted(client: AsyncClient):
    paris = timezone(timedelta(hours=1))
    resp = await client.post(
        "/subjects/plot-9/samples",
        json={"timestamp": datetime(2024, 1, 1, 10, 0, tzinfo=paris).isoformat(), "value": 12.0},
    )
    assert resp.status_code == 201
    resp = await client.post(
        "/subjects/plot-9/samples",
        json={"timestamp": datetime(2024, 1, 8, 9, 0).isoformat(), "value": 12.0},
    )
    assert resp.status_code == 201

    baseline = (await client.get("/subjects/plot-9/baselines/0/9")).json()
    assert baseline["sufficient"] is True
    assert baseline["sample_count"] == 2

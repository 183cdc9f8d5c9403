"""Tests for the HTTP API."""

import json
import threading
import time
from collections.abc import Callable, Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from tunelink import (
    AdapterRegistry,
    CandidateTrack,
    Platform,
    PlaylistMetadata,
    TaskStatus,
)
from tunelink_api.api.app import create_app, create_services
from tunelink_api.api.container import Services
from tunelink_api.services.adapters import AdapterProvider
from tunelink_api.services.task_store import InMemoryTaskStore
from tunelink_api.settings import Settings

PLAYLIST_URL = "https://www.deezer.com/playlist/908622995"
TRACK_URL = "https://www.deezer.com/track/3135556"


@pytest.fixture
def adapters(
    make_adapter: Callable[..., Any],
    make_track: Callable[..., CandidateTrack],
    playlist_meta: PlaylistMetadata,
) -> dict[Platform, Any]:
    source = [
        make_track(Platform.DEEZER, "3135556", "Harder Better Faster Stronger"),
        make_track(Platform.DEEZER, "3135553", "One More Time"),
        make_track(Platform.DEEZER, "3135554", "Aerodynamic"),
    ]
    return {
        Platform.DEEZER: make_adapter(
            Platform.DEEZER, source, playlists={"908622995": (playlist_meta, source)}
        ),
        Platform.YTMUSIC: make_adapter(
            Platform.YTMUSIC,
            [
                make_track(Platform.YTMUSIC, "yt1", "Harder Better Faster Stronger"),
                make_track(Platform.YTMUSIC, "yt2", "One More Time"),
            ],
        ),
    }


@pytest.fixture
def services(
    adapters: dict[Platform, Any], monkeypatch: pytest.MonkeyPatch, tmp_path: Any
) -> Services:
    monkeypatch.chdir(tmp_path)
    settings = Settings(adapter_max_retries=0, retry_backoff_seconds=0)
    return create_services(
        settings,
        InMemoryTaskStore(),
        adapters=AdapterProvider(build=lambda app: AdapterRegistry(adapters)),
    )


@pytest.fixture
def client(services: Services) -> Generator[TestClient, None, None]:
    with TestClient(create_app(services=services)) as client:
        yield client


def _wait_until_finished(client: TestClient, task_id: str) -> dict[str, Any]:
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        task = client.get(f"/api/tasks/{task_id}").json()
        if task["status"] in ("completed", "failed", "cancelled"):
            return task
        time.sleep(0.02)
    raise AssertionError(f"Task {task_id} did not finish")


def _sse_messages(body: str) -> list[tuple[str | None, str | None]]:
    """Split an SSE body into (event, data) pairs, skipping comments."""
    messages = []
    for block in body.split("\n\n"):
        event = data = None
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line.removeprefix("event: ")
            elif line.startswith("data: "):
                data = line.removeprefix("data: ")
        if data is not None:
            messages.append((event, data))
    return messages


# =============================================================================
# Conversions
# =============================================================================


class TestTrackConversion:
    """POST /api/conversions with a track link."""

    def test_converts_inline(self, client: TestClient) -> None:
        response = client.post("/api/conversions", json={"url": TRACK_URL})

        assert response.status_code == 200
        body = response.json()
        assert body["entity"] == "track"
        assert body["source"]["id"] == "3135556"
        assert body["platforms"]["ytmusic"]["chosen"]["id"] == "yt1"

    def test_unsupported_host(self, client: TestClient) -> None:
        response = client.post(
            "/api/conversions", json={"url": "https://example.com/track/1"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "host_unsupported"

    def test_album_cannot_be_converted(self, client: TestClient) -> None:
        response = client.post(
            "/api/conversions", json={"url": "https://www.deezer.com/album/302127"}
        )

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_link"

    def test_url_too_long(self, client: TestClient) -> None:
        response = client.post(
            "/api/conversions", json={"url": TRACK_URL + "?x=" + "a" * 600}
        )

        assert response.status_code == 422

    def test_source_track_missing(self, client: TestClient) -> None:
        response = client.post(
            "/api/conversions", json={"url": "https://www.deezer.com/track/999"}
        )

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "entity_not_found"
        assert body["platform"] == "deezer"


class TestPlaylistConversion:
    """POST /api/conversions with a playlist link."""

    def test_starts_task_and_completes(self, client: TestClient) -> None:
        response = client.post("/api/conversions", json={"url": PLAYLIST_URL})

        assert response.status_code == 202
        task = response.json()
        assert task["status"] == "processing"
        assert task["entity_id"] == "908622995"

        finished = _wait_until_finished(client, task["id"])
        assert finished["status"] == "completed"
        result = finished["result"]
        assert [t["id"] for t in result["platforms"]["ytmusic"]["tracks"]] == [
            "yt1",
            "yt2",
        ]
        assert [(o["title"], o["index"]) for o in result["omitted_tracks"]] == [
            ("Aerodynamic", 3)
        ]

    def test_resubmission_returns_same_task(
        self, client: TestClient, adapters: dict[Platform, Any]
    ) -> None:
        first = client.post("/api/conversions", json={"url": PLAYLIST_URL}).json()
        _wait_until_finished(client, first["id"])

        second = client.post("/api/conversions", json={"url": PLAYLIST_URL})

        assert second.status_code == 202
        assert second.json()["id"] == first["id"]
        assert second.json()["status"] == "completed"
        assert adapters[Platform.DEEZER].calls["get_playlist_tracks"] == 1

    def test_unknown_app_uses_default(self, client: TestClient) -> None:
        response = client.post(
            "/api/conversions",
            json={"url": PLAYLIST_URL},
            headers={"X-App-Id": "nobody"},
        )

        assert response.status_code == 202
        assert response.json()["app"] == "default"


class TestParseLink:
    """POST /api/links/parse."""

    def test_parses_link(self, client: TestClient) -> None:
        response = client.post(
            "/api/links/parse", json={"url": TRACK_URL, "target_platform": "ytmusic"}
        )

        assert response.status_code == 200
        link = response.json()["link"]
        assert link["platform"] == "deezer"
        assert link["entity"] == "track"
        assert link["entity_id"] == "3135556"
        assert link["target_platform"] == "ytmusic"
        assert link["app"] == "default"


# =============================================================================
# Tasks
# =============================================================================


class TestTasks:
    """Task status and cancellation endpoints."""

    def test_unknown_task(self, client: TestClient) -> None:
        response = client.get("/api/tasks/missing")

        assert response.status_code == 404
        assert response.json() == {
            "error": "task_not_found",
            "message": "Task missing not found",
            "task_id": "missing",
        }

    def test_cancel_finished_task_conflicts(self, client: TestClient) -> None:
        task = client.post("/api/conversions", json={"url": PLAYLIST_URL}).json()
        _wait_until_finished(client, task["id"])

        response = client.post(f"/api/tasks/{task['id']}/cancel")

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"
        assert response.json()["current"] == "completed"

    def test_cancel_running_task(
        self, client: TestClient, adapters: dict[Platform, Any]
    ) -> None:
        ytmusic = adapters[Platform.YTMUSIC]
        ytmusic.gate = threading.Event()
        task = client.post("/api/conversions", json={"url": PLAYLIST_URL}).json()

        try:
            response = client.post(f"/api/tasks/{task['id']}/cancel")
        finally:
            ytmusic.gate.set()

        assert response.status_code == 200
        assert response.json() == {
            "task_id": task["id"],
            "message": "Cancellation requested",
        }
        assert _wait_until_finished(client, task["id"])["status"] == "cancelled"

    def test_startup_fails_interrupted_tasks(self, services: Services) -> None:
        stale, _ = services.tracker.get_or_create("sum-stale", entity_id="908622995")
        services.tracker.advance(stale.id, TaskStatus.PROCESSING)

        with TestClient(create_app(services=services)) as client:
            response = client.get(f"/api/tasks/{stale.id}")

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert services.tracker.get(stale.id).error.reason == "Interrupted"


class TestTaskEvents:
    """GET /api/tasks/{id}/events."""

    def test_finished_task_sends_snapshot_only(self, client: TestClient) -> None:
        task = client.post("/api/conversions", json={"url": PLAYLIST_URL}).json()
        _wait_until_finished(client, task["id"])

        response = client.get(f"/api/tasks/{task['id']}/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        messages = _sse_messages(response.text)
        assert len(messages) == 1
        event, data = messages[0]
        assert event == "snapshot"
        assert json.loads(data)["status"] == "completed"

    def test_streams_until_done(
        self,
        client: TestClient,
        services: Services,
        adapters: dict[Platform, Any],
    ) -> None:
        ytmusic = adapters[Platform.YTMUSIC]
        ytmusic.gate = threading.Event()
        task = client.post("/api/conversions", json={"url": PLAYLIST_URL}).json()

        def release_when_subscribed() -> None:
            deadline = time.monotonic() + 5
            while (
                services.event_stream.subscriber_count == 0
                and time.monotonic() < deadline
            ):
                time.sleep(0.01)
            ytmusic.gate.set()

        threading.Thread(target=release_when_subscribed, daemon=True).start()
        response = client.get(f"/api/tasks/{task['id']}/events")

        messages = _sse_messages(response.text)
        assert messages[0][0] == "snapshot"
        events = [json.loads(data) for _, data in messages[1:]]
        assert events[-1]["event_type"] == "playlist:conversion:done"
        assert all(e["task_id"] == task["id"] for e in events)
        track_indexes = sorted(
            e["index"] for e in events if e["event_type"] == "playlist:conversion:track"
        )
        assert set(track_indexes) <= {1, 2, 3}

    def test_unknown_task(self, client: TestClient) -> None:
        assert client.get("/api/tasks/missing/events").status_code == 404


# =============================================================================
# Health and schema
# =============================================================================


class TestHealth:
    def test_reports_platforms(self, client: TestClient) -> None:
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "platforms": ["deezer", "ytmusic"],
        }


class TestOpenAPI:
    def test_event_schema_included(self, client: TestClient) -> None:
        schema = client.get("/openapi.json").json()

        assert "ConversionEvent" in schema["components"]["schemas"]
        content = schema["paths"]["/api/tasks/{task_id}/events"]["get"]["responses"][
            "200"
        ]["content"]
        assert "text/event-stream" in content

"""
Route tests for the API gateway.

Core singletons are replaced through app.dependency_overrides.
"""
import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from shared.errors import ConfigError, EpisodeAssemblyError
from shared.models.episode import CompositionState, EpisodeComposition
from shared.storage import InMemoryEpisodeStore
from api_gateway.dependencies import get_assembler, get_batch_manager, get_shot_source
from api_gateway.main import app
from modules.batch_manager import BatchManager
from modules.episode_assembler import EpisodeAssembler, InMemoryShotSource, ShotSource
from modules.video_generator.registry import ProviderRegistry

SHOT = {
    "shot_id": "s1",
    "scene_id": "A",
    "order": 1,
    "source_image_url": "https://img.test/s1.png",
    "motion_description": "The knight looks up",
}


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def assembler():
    mock = MagicMock()
    mock.get_composition = AsyncMock(return_value=None)
    mock.is_assembling = MagicMock(return_value=False)
    mock.assemble_episode = AsyncMock()
    app.dependency_overrides[get_assembler] = lambda: mock
    return mock


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestEpisodes:
    def test_put_shots(self, client):
        source = InMemoryShotSource()
        app.dependency_overrides[get_shot_source] = lambda: source

        response = client.put("/api/v1/episodes/ep1/shots", json=[SHOT])

        assert response.status_code == 204
        assert "ep1" in source._episodes

    def test_put_shots_validates_body(self, client):
        app.dependency_overrides[get_shot_source] = lambda: InMemoryShotSource()

        response = client.put("/api/v1/episodes/ep1/shots", json=[{"shot_id": "s1"}])

        assert response.status_code == 422

    def test_put_shots_read_only_source(self, client):
        app.dependency_overrides[get_shot_source] = lambda: MagicMock(spec=ShotSource)

        response = client.put("/api/v1/episodes/ep1/shots", json=[SHOT])

        assert response.status_code == 405

    def test_assemble_runs_in_background(self, client, assembler):
        response = client.post("/api/v1/episodes/ep1/assemble")

        assert response.status_code == 202
        assert response.json() == {"episode_id": "ep1", "accepted": True, "previous_state": None}
        assembler.assemble_episode.assert_awaited_once_with("ep1")

    def test_background_failure_is_contained(self, client, assembler):
        assembler.assemble_episode.side_effect = EpisodeAssemblyError("failed at phase 5 (render)", phase="render")

        response = client.post("/api/v1/episodes/ep1/assemble")

        assert response.status_code == 202

    def test_assemble_conflict_while_running(self, client, assembler):
        assembler.is_assembling.return_value = True

        response = client.post("/api/v1/episodes/ep1/assemble")

        assert response.status_code == 409
        assembler.is_assembling.assert_called_once_with("ep1")
        assembler.assemble_episode.assert_not_awaited()

    def test_stale_running_state_is_resumed(self, client):
        store = InMemoryEpisodeStore()
        asyncio.run(store.put(
            "ep1", EpisodeComposition(episode_id="ep1", state=CompositionState.RUNNING).model_dump(mode="json")
        ))
        real = EpisodeAssembler(
            shot_source=InMemoryShotSource(),
            audio=MagicMock(),
            store=store,
            batch_manager=MagicMock(),
            engine=MagicMock(),
        )
        app.dependency_overrides[get_assembler] = lambda: real

        with patch.object(real, "assemble_episode", new=AsyncMock()) as assemble:
            response = client.post("/api/v1/episodes/ep1/assemble")

        assert response.status_code == 202
        assert response.json()["previous_state"] == "running"
        assemble.assert_awaited_once_with("ep1")

    def test_resume_reports_previous_state(self, client, assembler):
        assembler.get_composition.return_value = EpisodeComposition(episode_id="ep1", state=CompositionState.FAILED)

        response = client.post("/api/v1/episodes/ep1/assemble")

        assert response.json()["previous_state"] == "failed"

    def test_get_composition(self, client, assembler):
        assembler.get_composition.return_value = EpisodeComposition(
            episode_id="ep1", state=CompositionState.COMPLETED, output_path="/renders/ep1.mp4"
        )

        response = client.get("/api/v1/episodes/ep1/composition")

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "completed"
        assert body["output_path"] == "/renders/ep1.mp4"
        assert body["total_cost"] == "0"

    def test_get_composition_not_found(self, client, assembler):
        response = client.get("/api/v1/episodes/nope/composition")
        assert response.status_code == 404


class TestBatches:
    @pytest.fixture
    def manager(self, make_profile, fake_provider, fast_retry):
        registry = ProviderRegistry([])
        registry.register(fake_provider(make_profile("budget", cap=2)))
        manager = BatchManager(registry, global_cap=4, retry_options=fast_retry)
        app.dependency_overrides[get_batch_manager] = lambda: manager
        return manager

    def wait_finished(self, client, batch_id):
        for _ in range(100):
            body = client.get(f"/api/v1/batches/{batch_id}").json()
            if body["finished"]:
                return body
            time.sleep(0.01)
        raise AssertionError(f"Batch {batch_id} did not finish")

    def test_create_and_poll(self, client, manager):
        requests = [
            {
                "shot_id": f"s{i}",
                "source_image_ref": f"https://img.test/s{i}.png",
                "target_duration_seconds": 5,
                "motion_description": "The knight turns",
            }
            for i in range(3)
        ]

        response = client.post("/api/v1/batches", json={"requests": requests})

        assert response.status_code == 202
        created = response.json()
        assert created["progress"]["total"] == 3

        body = self.wait_finished(client, created["batch_id"])
        assert body["progress"]["completed"] == 3
        assert body["progress"]["percent"] == 100
        assert body["results"]["s0"] == "https://cdn.test/budget/s0.mp4"
        assert body["total_cost"] == "0.3000"
        assert body["estimated_cost"] == "0.3000"

        metrics = client.get("/api/v1/metrics/providers").json()
        assert metrics["recorded"] == 3
        budget = metrics["providers"]["budget"]
        assert budget["success_count"] == 3
        assert budget["success_rate"] == 1.0
        assert budget["total_cost"] == "0.3000"

    def test_provider_metrics_empty(self, client, manager):
        response = client.get("/api/v1/metrics/providers")

        assert response.status_code == 200
        assert response.json() == {"recorded": 0, "providers": {}}

    def test_empty_batch_rejected(self, client, manager):
        response = client.post("/api/v1/batches", json={"requests": []})
        assert response.status_code == 422

    def test_unknown_batch(self, client, manager):
        assert client.get("/api/v1/batches/nope").status_code == 404
        assert client.post("/api/v1/batches/nope/cancel").status_code == 404

    def test_start_failure_is_bad_request(self, client):
        broken = MagicMock()
        broken.start_batch.side_effect = ConfigError("Profile budget has no registered adapter")
        app.dependency_overrides[get_batch_manager] = lambda: broken

        response = client.post("/api/v1/batches", json={"requests": [{
            "shot_id": "s1",
            "source_image_ref": "https://img.test/s1.png",
            "target_duration_seconds": 5,
            "motion_description": "x",
        }]})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "ConfigError"

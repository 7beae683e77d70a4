"""Tests for the run registry and its HTTP transport."""

import asyncio
import json

import pytest
from aiohttp.test_utils import TestClient, TestServer

from creative_orchestrator.models import GenerationMode, GenerationRequest, RunStatus
from creative_orchestrator.service import GenerationService
from creative_orchestrator.ui_server import build_app

from conftest import FakeProvider, ScriptedModel, make_services, plan_args, tool_call, tool_turn


def planning_model():
    return ScriptedModel([
        tool_turn(tool_call("plan_structure", plan_args(["Intro", "Moon"])), tool_call("finalize_prompt")),
    ])


def deck_request():
    return GenerationRequest(goal="Explain ocean tides", mode=GenerationMode.DECK)


@pytest.fixture
def service(config, output_manager):
    return GenerationService(make_services(config, output_manager, planning_model()))


class TestGenerationService:
    """Test submission, event replay, abort and runs nobody is watching."""

    async def test_submit_and_wait(self, service):
        run_id = service.submit(deck_request())

        record = await service.wait(run_id)

        assert record.status == RunStatus.COMPLETED
        assert (await service.get_run(run_id)).artifact_url == record.artifact_url

    async def test_every_subscriber_replays_history(self, service):
        run_id = service.submit(deck_request())
        await service.wait(run_id)

        live = [event.type async for event in service.events(run_id)]
        replay = [event.type async for event in service.events(run_id)]

        assert live[0] == "start"
        assert live[-1] == "complete"
        assert replay == live

    async def test_run_completes_with_no_subscriber_on_small_channel(self, config, output_manager):
        titles = [f"Slide {i}" for i in range(1, 6)]
        model = ScriptedModel([
            tool_turn(tool_call("plan_structure", plan_args(titles)), tool_call("finalize_prompt")),
        ])
        small = config.model_copy(update={"event_channel_size": 5})
        service = GenerationService(
            make_services(small, output_manager, model, image_provider=FakeProvider("image", polls_until_done=4))
        )

        run_id = service.submit(deck_request())
        record = await asyncio.wait_for(service.wait(run_id), timeout=10)

        assert record.status == RunStatus.COMPLETED
        assert record.succeeded_units == [0, 1, 2, 3, 4]
        types = [event.type async for event in service.events(run_id)]
        assert types[0] == "start"
        assert types[-1] == "complete"

    async def test_subscriber_attached_mid_run_follows_live(self, config, output_manager):
        image = FakeProvider("image", hold_when=lambda prompt: True)
        service = GenerationService(make_services(config, output_manager, planning_model(), image_provider=image))
        run_id = service.submit(deck_request())
        stream = service.events(run_id)

        first = await asyncio.wait_for(stream.__anext__(), timeout=5)
        image.release.set()
        rest = [event.type async for event in stream]

        assert first.type == "start"
        assert rest[-1] == "complete"
        await service.wait(run_id)

    async def test_unknown_run(self, service):
        with pytest.raises(KeyError):
            service.events("missing")
        assert await service.get_run("missing") is None
        assert service.abort("missing") is False

    async def test_abort_before_planning(self, service):
        run_id = service.submit(deck_request())

        assert service.abort(run_id) is True
        record = await service.wait(run_id)

        assert record.status == RunStatus.ABORTED
        assert service.abort(run_id) is False

    async def test_record_loaded_from_disk(self, service, config, output_manager):
        run_id = service.submit(deck_request())
        await service.wait(run_id)

        fresh = GenerationService(make_services(config, output_manager, ScriptedModel([])))
        record = await fresh.get_run(run_id)

        assert record.status == RunStatus.COMPLETED

    async def test_shutdown_aborts_live_runs(self, service):
        run_id = service.submit(deck_request())
        await service.shutdown()
        assert service.get_handle(run_id).done
        assert service.get_handle(run_id).record.status == RunStatus.ABORTED


class TestHttpApi:
    """Test the JSON endpoints and the event stream."""

    async def test_health(self, service):
        async with TestClient(TestServer(build_app(service))) as client:
            response = await client.get("/api/health")
            assert response.status == 200
            assert await response.json() == {"status": "ok"}

    async def test_rejects_bad_requests(self, service):
        async with TestClient(TestServer(build_app(service))) as client:
            not_json = await client.post("/api/runs", data="goal=tides")
            missing_goal = await client.post("/api/runs", json={"mode": "deck"})

            assert not_json.status == 400
            assert missing_goal.status == 400
            body = await missing_goal.json()
            assert body["details"][0]["loc"] == ["goal"]

    async def test_run_lifecycle(self, service):
        async with TestClient(TestServer(build_app(service))) as client:
            started = await client.post("/api/runs", json={"goal": "Explain ocean tides", "mode": "deck"})
            assert started.status == 200
            run_id = (await started.json())["run_id"]

            stream = await client.get(f"/api/runs/{run_id}/events")
            assert stream.headers["Content-Type"].startswith("text/event-stream")
            text = await stream.text()

            frames = [frame for frame in text.split("\n\n") if frame.strip()]
            assert frames[0].startswith("event: start\n")
            assert frames[-1].startswith("event: complete\n")
            payload = json.loads(frames[-1].split("data: ", 1)[1])
            assert payload["succeeded_units"] == [0, 1]

            status = await client.get(f"/api/runs/{run_id}")
            assert (await status.json())["status"] == "completed"

            finished = await client.post(f"/api/runs/{run_id}/abort")
            assert finished.status == 409

    async def test_unknown_run_is_404(self, service):
        async with TestClient(TestServer(build_app(service))) as client:
            assert (await client.get("/api/runs/nope")).status == 404
            assert (await client.get("/api/runs/nope/events")).status == 404
            assert (await client.post("/api/runs/nope/abort")).status == 404

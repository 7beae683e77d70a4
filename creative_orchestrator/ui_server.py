"""HTTP transport for the generation service: JSON endpoints plus a Server-Sent Events stream."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from aiohttp import web
from dotenv import load_dotenv
from pydantic import ValidationError

from .config import load_config
from .models import GenerationRequest
from .service import GenerationService
from .utils.logging_utils import configure_logging
from .workflow import create_services

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", GenerationService)


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def handle_run_start(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        return web.json_response({"error": "body must be JSON"}, status=400)
    if not isinstance(payload, dict):
        return web.json_response({"error": "body must be a JSON object"}, status=400)

    try:
        generation_request = GenerationRequest.model_validate(payload)
    except ValidationError as e:
        return web.json_response(
            {"error": "invalid request", "details": json.loads(e.json(include_url=False))},
            status=400
        )

    run_id = service.submit(generation_request)
    return web.json_response({"run_id": run_id})


async def handle_run_status(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    run_id = request.match_info["run_id"]
    record = await service.get_run(run_id)
    if record is None:
        return web.json_response({"error": "run_id not found"}, status=404)
    return web.json_response(record.model_dump(mode="json"))


async def handle_run_events(request: web.Request) -> web.StreamResponse:
    service = request.app[SERVICE_KEY]
    run_id = request.match_info["run_id"]
    try:
        events = service.events(run_id)
    except KeyError:
        return web.json_response({"error": "run_id not found"}, status=404)

    response = web.StreamResponse(headers={
        "Content-Type": "text/event-stream",
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    })
    await response.prepare(request)
    try:
        async for event in events:
            await response.write(f"event: {event.type}\ndata: {event.model_dump_json()}\n\n".encode("utf-8"))
    except ConnectionResetError:
        logger.info("UI: event stream for run_id=%s closed by client", run_id)
        return response
    await response.write_eof()
    return response


async def handle_run_abort(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    run_id = request.match_info["run_id"]
    if service.get_handle(run_id) is None:
        return web.json_response({"error": "run_id not found"}, status=404)
    if not service.abort(run_id):
        return web.json_response({"error": "run already finished"}, status=409)
    return web.json_response({"run_id": run_id, "aborting": True})


async def _shutdown_service(app: web.Application) -> None:
    await app[SERVICE_KEY].shutdown()


def build_app(service: GenerationService) -> web.Application:
    app = web.Application(client_max_size=5 * 1024 * 1024)
    app[SERVICE_KEY] = service
    app.on_cleanup.append(_shutdown_service)

    app.router.add_get("/api/health", handle_health)
    app.router.add_post("/api/runs", handle_run_start)
    app.router.add_get("/api/runs/{run_id}", handle_run_status)
    app.router.add_get("/api/runs/{run_id}/events", handle_run_events)
    app.router.add_post("/api/runs/{run_id}/abort", handle_run_abort)
    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the generation service over HTTP")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", default=8787, type=int)
    args = parser.parse_args()

    configure_logging()
    repo_root = Path(__file__).resolve().parent.parent
    load_dotenv(repo_root / ".env")
    config = load_config()

    app = build_app(GenerationService(create_services(config)))
    web.run_app(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()

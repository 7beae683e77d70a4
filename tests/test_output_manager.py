"""Tests for run persistence and artifact output."""

import json
import os
import time
from pathlib import Path
from urllib.parse import urlparse

from creative_orchestrator.models import GenerationRequest, RunRecord, RunStatus


class TestRunRecords:
    async def test_record_round_trip(self, output_manager):
        output_manager.create_run_directory("run1")
        record = RunRecord(run_id="run1", request=GenerationRequest(goal="Explain ocean tides"))
        record.status = RunStatus.COMPLETED
        record.succeeded_units = [0, 2]

        path = await output_manager.write_run_record(record)
        loaded = await output_manager.load_run_record("run1")

        assert path.name == "run.json"
        assert not path.with_suffix(".json.tmp").exists()
        assert loaded.status == RunStatus.COMPLETED
        assert loaded.succeeded_units == [0, 2]
        assert loaded.updated_at is not None

    async def test_missing_record(self, output_manager):
        assert await output_manager.load_run_record("nope") is None

    async def test_list_runs_only_with_records(self, output_manager):
        output_manager.create_run_directory("empty")
        for run_id in ("a", "b"):
            output_manager.create_run_directory(run_id)
            await output_manager.write_run_record(RunRecord(run_id=run_id, request=GenerationRequest(goal="g")))
        assert sorted(output_manager.list_runs()) == ["a", "b"]


class TestSnapshotsAndArtifacts:
    """Test snapshot serialization and artifact URIs."""

    async def test_snapshot_serializes_models_and_falls_back_to_str(self, output_manager):
        output_manager.create_run_directory("run1")
        request = GenerationRequest(goal="Explain ocean tides")

        await output_manager.write_snapshot("run1", "plan", {"request": request, "odd": {1, 2}, "n": 3})
        data = await output_manager.load_snapshot("run1", "plan")

        assert data["request"]["goal"] == "Explain ocean tides"
        assert data["n"] == 3
        assert isinstance(data["odd"], str)
        assert await output_manager.load_snapshot("run1", "missing") is None

    async def test_artifact_uri_points_at_file(self, output_manager):
        url = await output_manager.write_artifact("run1", "deck.md", "# Deck\n")

        assert url.startswith("file://")
        path = Path(urlparse(url).path)
        assert path.parent.name == "artifacts"
        assert path.read_text() == "# Deck\n"

    def test_run_directory_layout(self, output_manager):
        run_dir = output_manager.create_run_directory("run1")
        assert sorted(p.name for p in run_dir.iterdir()) == ["artifacts", "audio", "snapshots"]


class TestCleanup:
    def test_removes_only_old_runs(self, output_manager):
        old = output_manager.create_run_directory("old")
        output_manager.create_run_directory("fresh")
        stale = time.time() - 10 * 86400
        os.utime(old, (stale, stale))

        removed = output_manager.cleanup_old_runs(max_age_days=7)

        assert removed == 1
        assert [p.name for p in output_manager.base_dir.iterdir()] == ["fresh"]

    async def test_manifest_is_plain_json(self, output_manager):
        url = await output_manager.write_artifact("run1", "manifest.json", json.dumps({"units": []}))
        assert json.loads(Path(urlparse(url).path).read_text()) == {"units": []}

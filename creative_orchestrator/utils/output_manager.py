"""Output file management: run records, snapshots, audio and artifacts."""

import json
import logging
import shutil
import aiofiles
import aiofiles.os
from pathlib import Path
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta

from ..models import RunRecord

logger = logging.getLogger(__name__)


class OutputManager:
    """Manages the output directory and the durable state of each run."""

    def __init__(self, base_dir: str = "output"):
        """
        Initialize output manager.

        Args:
            base_dir: Base output directory
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def get_run_dir(self, run_id: str) -> Path:
        return self.base_dir / run_id

    def create_run_directory(self, run_id: str) -> Path:
        """
        Create directory structure for a run.

        Creates:
        - output/<run_id>/
        - output/<run_id>/audio/
        - output/<run_id>/snapshots/
        - output/<run_id>/artifacts/

        Args:
            run_id: Run identifier

        Returns:
            Path to run directory
        """
        run_dir = self.get_run_dir(run_id)
        run_dir.mkdir(exist_ok=True)
        for sub in ("audio", "snapshots", "artifacts"):
            (run_dir / sub).mkdir(exist_ok=True)

        logger.info("Output: created run directory %s", str(run_dir))
        return run_dir

    async def _write_json_atomic(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(data, indent=2, ensure_ascii=False))
        await aiofiles.os.replace(tmp_path, path)

    async def write_run_record(self, record: RunRecord) -> Path:
        """
        Persist the run record to run.json, replacing the previous version.

        Args:
            record: Current run state

        Returns:
            Path to run.json
        """
        record.updated_at = datetime.now().isoformat()
        path = self.get_run_dir(record.run_id) / "run.json"
        await self._write_json_atomic(path, record.model_dump(mode="json"))
        logger.debug("Output: wrote run record %s (phase=%s)", str(path), record.phase)
        return path

    async def load_run_record(self, run_id: str) -> Optional[RunRecord]:
        """Read run.json back, or None when the run has no record."""
        path = self.get_run_dir(run_id) / "run.json"
        if not path.exists():
            return None
        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            return RunRecord.model_validate_json(await f.read())

    async def write_snapshot(self, run_id: str, step_name: str, data: Dict[str, Any]) -> Path:
        """
        Save a state snapshot for one step.

        Values that cannot be serialized are stored as their string form.

        Args:
            run_id: Run identifier
            step_name: Snapshot name, e.g. "plan"
            data: State to store

        Returns:
            Path to the snapshot file
        """
        serializable = {}
        for key, value in data.items():
            if hasattr(value, "model_dump"):
                value = value.model_dump(mode="json")
            try:
                json.dumps(value)
                serializable[key] = value
            except (TypeError, ValueError):
                serializable[key] = str(value)

        path = self.get_run_dir(run_id) / "snapshots" / f"{step_name}.json"
        await self._write_json_atomic(path, serializable)
        logger.debug("Output: wrote snapshot %s", str(path))
        return path

    async def load_snapshot(self, run_id: str, step_name: str) -> Optional[Dict[str, Any]]:
        path = self.get_run_dir(run_id) / "snapshots" / f"{step_name}.json"
        if not path.exists():
            return None
        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            return json.loads(await f.read())

    def list_runs(self) -> List[str]:
        """Run ids with a persisted record, oldest first."""
        records = [p for p in self.base_dir.glob("*/run.json")]
        records.sort(key=lambda p: p.stat().st_mtime)
        return [p.parent.name for p in records]

    async def save_audio(
        self,
        run_id: str,
        audio_data: bytes,
        filename: str = "narration.mp3"
    ) -> str:
        """
        Save audio file to the run's audio directory.

        Returns:
            Full path to saved audio file
        """
        audio_dir = self.get_run_dir(run_id) / "audio"
        audio_dir.mkdir(parents=True, exist_ok=True)
        audio_path = audio_dir / filename

        async with aiofiles.open(audio_path, 'wb') as f:
            await f.write(audio_data)

        logger.debug("Output: saved audio %s", str(audio_path))
        return str(audio_path)

    def video_path(self, run_id: Optional[str], filename: str) -> Path:
        """Where a downloaded clip goes; clips with no known run share base_dir/videos."""
        video_dir = (self.get_run_dir(run_id) if run_id else self.base_dir) / "videos"
        video_dir.mkdir(parents=True, exist_ok=True)
        return video_dir / filename

    async def write_artifact(self, run_id: str, filename: str, content: str) -> str:
        """
        Write a text artifact (manifest, subtitles, document).

        Returns:
            file:// URI of the written artifact
        """
        artifacts_dir = self.get_run_dir(run_id) / "artifacts"
        artifacts_dir.mkdir(parents=True, exist_ok=True)
        path = artifacts_dir / filename
        async with aiofiles.open(path, 'w', encoding='utf-8') as f:
            await f.write(content)
        logger.debug("Output: wrote artifact %s", str(path))
        return path.resolve().as_uri()

    def cleanup_old_runs(self, max_age_days: int = 7) -> int:
        """
        Delete runs older than specified age.

        Returns:
            Number of run directories removed
        """
        cutoff_time = datetime.now() - timedelta(days=max_age_days)
        removed = 0

        for run_dir in self.base_dir.iterdir():
            if not run_dir.is_dir():
                continue
            mtime = datetime.fromtimestamp(run_dir.stat().st_mtime)
            if mtime < cutoff_time:
                logger.info("Deleting old run: %s", run_dir.name)
                shutil.rmtree(run_dir)
                removed += 1
        return removed

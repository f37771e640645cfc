"""Run manifest: a JSON journal of one installation run."""

import json
import os
import tempfile
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ManifestService:
    """Journals step transitions, service health and produced files to disk.

    The file is rewritten after every change so an interrupted run still
    leaves a record of how far it got. Only paths and statuses are
    recorded; secrets never reach the journal.
    """

    def __init__(self, manifest_file: str, logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self._open_steps: Dict[str, Dict[str, Any]] = {}
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "steps": [],
            "summary": {},
            "health": {},
            "artifacts": {},
            "error": None,
        }

    def start_run(self, run_id: str, metadata: Dict[str, Any]):
        self.manifest.update(run_id=run_id, status="running", started_at=self._now(), metadata=dict(metadata))
        self.write()

    def step_started(self, step_name: str, details: Optional[Dict[str, Any]] = None):
        entry = {
            "name": step_name,
            "status": "running",
            "started_at": self._now(),
            "finished_at": None,
            "duration_seconds": None,
            "details": dict(details or {}),
            "error": None,
        }
        self._open_steps[step_name] = entry
        self.manifest["steps"].append(entry)
        self.write()

    def is_running(self, step_name: str) -> bool:
        return step_name in self._open_steps

    def step_finished(
        self,
        step_name: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        entry = self._open_steps.pop(step_name, None)
        if entry is None:
            self.logger.warning("Manifest has no open entry for step %s; recording %s anyway.", step_name, status)
            self.step_started(step_name)
            entry = self._open_steps.pop(step_name)

        entry["finished_at"] = self._now()
        entry["duration_seconds"] = self._elapsed(entry["started_at"], entry["finished_at"])
        entry["status"] = status
        entry["error"] = error
        entry["details"].update(details or {})
        self.write()

    def set_health(self, role: str, service: str, running: bool, diagnostic: Optional[str] = None):
        self.manifest["health"][role] = {"service": service, "running": running, "diagnostic": diagnostic}
        self.write()

    def add_artifact(self, key: str, value: str):
        self.manifest["artifacts"][key] = value
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        finished_at = self._now()
        self.manifest["status"] = status
        self.manifest["finished_at"] = finished_at
        if self.manifest["started_at"]:
            self.manifest["duration_seconds"] = self._elapsed(self.manifest["started_at"], finished_at)
        self.manifest["summary"] = dict(Counter(step["status"] for step in self.manifest["steps"]))
        self.manifest["error"] = error
        self.write()

    def write(self):
        """Atomically replace the manifest file. Failures only warn."""
        directory = os.path.dirname(self.manifest_file) or "."
        temp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".run-manifest-", suffix=".json", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.manifest, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.manifest_file)
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)

    @staticmethod
    def _elapsed(started_at: str, finished_at: str) -> float:
        delta = datetime.fromisoformat(finished_at) - datetime.fromisoformat(started_at)
        return round(delta.total_seconds(), 3)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

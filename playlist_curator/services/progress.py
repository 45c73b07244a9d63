from __future__ import annotations

import threading
from typing import Any, Dict, Optional


class JobProgress:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: Dict[str, Dict[str, Any]] = {}

    def start(self, job_id: str, label: str = "") -> None:
        with self._lock:
            self._jobs[job_id] = {
                "fraction": 0.0,
                "label": label,
                "status": "running",
            }

    def report_fraction(self, job_id: str, fraction: float) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            job["fraction"] = max(0.0, min(1.0, fraction))

    def finish(self, job_id: str) -> None:
        with self._lock:
            if job_id not in self._jobs:
                return
            self._jobs[job_id]["status"] = "completed"
            self._jobs[job_id]["fraction"] = 1.0

    def error(self, job_id: str, message: str = "") -> None:
        with self._lock:
            if job_id not in self._jobs:
                return
            self._jobs[job_id]["status"] = "error"
            self._jobs[job_id]["message"] = message

    def pop(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._jobs.pop(job_id, None)

    def snapshot(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            return dict(job)


progress_tracker = JobProgress()

__all__ = ["JobProgress", "progress_tracker"]

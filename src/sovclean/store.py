"""In-memory store for cleaning runs, keyed by project id."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass

from sovclean.pipeline import CleanResult


@dataclass(frozen=True)
class StoredRun:
    project_id: str
    run_id: str
    created: float
    result: CleanResult


class Store:
    """In-memory run store. A new run for a project replaces the old one."""

    def __init__(self) -> None:
        self._runs: dict[str, StoredRun] = {}
        self._counter = 0
        self._lock = threading.Lock()

    def new_id(self, prefix: str) -> str:
        with self._lock:
            self._counter += 1
            counter = self._counter
        return f"{prefix}_{int(time.time() * 1000)}_{os.getpid()}_{counter}"

    def put_run(self, project_id: str, result: CleanResult) -> StoredRun:
        run = StoredRun(project_id=project_id, run_id=self.new_id("run"), created=time.time(), result=result)
        with self._lock:
            self._runs[project_id] = run
        return run

    def get_run(self, project_id: str) -> StoredRun | None:
        with self._lock:
            return self._runs.get(project_id)

    def project_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._runs)

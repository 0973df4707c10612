# Copyright (c) 2025 Trae AI. All rights reserved.

import threading
from typing import Any, Dict, Optional
from ..core.models import TaskResult, utc_now


class TaskManager:
    """
    Tracks the state of named tasks. At most one run per task name may be
    in progress at a time.
    """

    def __init__(self):
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _state(self, task_name: str) -> Dict[str, Any]:
        return self._tasks.setdefault(task_name, {
            "status": "idle",
            "started_at": None,
            "last_run": None,
            "last_result": None,
        })

    def try_start(self, task_name: str) -> bool:
        """
        Moves the task from idle to running. Returns False if it is already running.
        """
        with self._lock:
            state = self._state(task_name)
            if state["status"] == "running":
                return False
            state["status"] = "running"
            state["started_at"] = utc_now()
            return True

    def finish(self, task_name: str, result: Optional[TaskResult] = None):
        with self._lock:
            state = self._state(task_name)
            state["status"] = "idle"
            state["started_at"] = None
            state["last_run"] = result.completed_at if result else utc_now()
            state["last_result"] = result

    def is_running(self, task_name: str) -> bool:
        with self._lock:
            return self._tasks.get(task_name, {}).get("status") == "running"

    def get_task_status(self, task_name: str) -> Dict[str, Any]:
        with self._lock:
            return dict(self._state(task_name))

    def get_all_tasks(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: dict(state) for name, state in self._tasks.items()}

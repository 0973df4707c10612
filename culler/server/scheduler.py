# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.cron import CronTrigger
from flask_apscheduler import APScheduler
from ..core.config import DEFAULT_SCHEDULES, SchedulerConfig
from ..core.errors import TaskAlreadyRunningError, UnknownTaskError
from ..core.models import TaskResult, utc_now
from .task_manager import TaskManager

logger = logging.getLogger(__name__)


class TaskScheduler:
    """
    Runs the named tasks on cron schedules and on demand.

    A task never runs twice at the same time: run_now() refuses with
    TaskAlreadyRunningError, and a cron firing during a run is skipped.
    Exceptions escaping a task become a failed TaskResult.
    """

    def __init__(self, tasks: Dict[str, Callable[[], TaskResult]], config: Optional[SchedulerConfig] = None,
                 scheduler: Optional[APScheduler] = None, task_manager: Optional[TaskManager] = None):
        self.tasks = dict(tasks)
        self.config = config or SchedulerConfig()
        self.schedules = {
            name: self.config.schedules.get(name) or DEFAULT_SCHEDULES.get(name, "0 * * * *")
            for name in self.tasks
        }
        self.enabled = {name: name not in self.config.disabled_tasks for name in self.tasks}
        self.scheduler = scheduler or APScheduler()
        self.task_manager = task_manager or TaskManager()
        self.started = False

    def _require(self, task_name: str):
        if task_name not in self.tasks:
            raise UnknownTaskError(task_name)

    def _trigger(self, expression: str) -> CronTrigger:
        return CronTrigger.from_crontab(expression, timezone=self.config.timezone)

    def _add_job(self, task_name: str):
        try:
            trigger = self._trigger(self.schedules[task_name])
        except ValueError as e:
            logger.error(f"Invalid schedule for {task_name} ({self.schedules[task_name]}): {e}")
            return
        self.scheduler.add_job(
            id=task_name,
            func=self._run_scheduled,
            args=[task_name],
            trigger=trigger,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(f"Scheduled {task_name}: {self.schedules[task_name]} ({self.config.timezone})")

    def _remove_job(self, task_name: str):
        try:
            self.scheduler.remove_job(task_name)
        except JobLookupError:
            pass

    def start(self, app=None):
        if app is not None:
            self.scheduler.init_app(app)
        for task_name in self.tasks:
            if self.enabled[task_name]:
                self._add_job(task_name)
        self.scheduler.start()
        self.started = True
        logger.info("Task scheduler started")

    def stop(self):
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            logger.info("Task scheduler stopped")

    def _execute(self, task_name: str) -> TaskResult:
        # Caller must have claimed the task via task_manager.try_start
        started_at = utc_now()
        result = None
        logger.info(f"Running task {task_name}")
        try:
            result = self.tasks[task_name]()
        except Exception as e:
            logger.error(f"Task {task_name} crashed: {e}")
            completed_at = utc_now()
            result = TaskResult(
                success=False,
                task_name=task_name,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=int((completed_at - started_at).total_seconds() * 1000),
                message=f"Task {task_name} failed",
                error=str(e),
            )
        finally:
            self.task_manager.finish(task_name, result)

        if result.success:
            logger.info(f"Task {task_name} finished in {result.duration_ms}ms: {result.message}")
        else:
            logger.error(f"Task {task_name} failed: {result.error}")
        return result

    def _run_scheduled(self, task_name: str) -> Optional[TaskResult]:
        if not self.task_manager.try_start(task_name):
            logger.warning(f"Skipping scheduled run of {task_name}: already running")
            return None
        return self._execute(task_name)

    def run_now(self, task_name: str) -> TaskResult:
        self._require(task_name)
        if not self.task_manager.try_start(task_name):
            raise TaskAlreadyRunningError(task_name)
        return self._execute(task_name)

    def run_in_background(self, task_name: str) -> threading.Thread:
        """
        Claims the task like run_now() and runs it on a worker thread.
        """
        self._require(task_name)
        if not self.task_manager.try_start(task_name):
            raise TaskAlreadyRunningError(task_name)
        thread = threading.Thread(target=self._execute, args=(task_name,), name=f"task-{task_name}", daemon=True)
        thread.start()
        return thread

    def run_all_now(self) -> List[TaskResult]:
        results = []
        for task_name in self.tasks:
            try:
                results.append(self.run_now(task_name))
            except TaskAlreadyRunningError as e:
                now = utc_now()
                results.append(TaskResult(
                    success=False, task_name=task_name, started_at=now, completed_at=now,
                    duration_ms=0, message="Skipped", error=str(e),
                ))
        return results

    def enable_task(self, task_name: str):
        self._require(task_name)
        self.enabled[task_name] = True
        if self.started:
            self._add_job(task_name)

    def disable_task(self, task_name: str):
        self._require(task_name)
        self.enabled[task_name] = False
        if self.started:
            self._remove_job(task_name)

    def update_schedule(self, task_name: str, expression: str):
        """
        Raises ValueError for an invalid cron expression.
        """
        self._require(task_name)
        self._trigger(expression)
        self.schedules[task_name] = expression
        if self.started and self.enabled[task_name]:
            self._add_job(task_name)

    def next_run(self, task_name: str, now: Optional[datetime] = None) -> Optional[datetime]:
        # Display only, never used to decide whether a task runs
        self._require(task_name)
        if not self.enabled[task_name]:
            return None
        try:
            trigger = self._trigger(self.schedules[task_name])
        except ValueError:
            return None
        return trigger.get_next_fire_time(None, now or utc_now())

    def get_status(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        statuses = []
        for task_name in self.tasks:
            state = self.task_manager.get_task_status(task_name)
            last_result = state["last_result"]
            statuses.append({
                "name": task_name,
                "enabled": self.enabled[task_name],
                "schedule": self.schedules[task_name],
                "is_running": state["status"] == "running",
                "last_run": state["last_run"],
                "last_result": last_result.model_dump(mode="json") if last_result else None,
                "next_run": self.next_run(task_name, now),
            })
        return statuses

# Copyright (c) 2025 Trae AI. All rights reserved.

from typing import Optional


class CullerError(Exception):
    """Base class for errors raised by the deletion engine."""


class ItemNotFoundError(CullerError):
    def __init__(self, item_id: int):
        super().__init__(f"Media item {item_id} not found")
        self.item_id = item_id


class ItemProtectedError(CullerError):
    def __init__(self, item_id: int, title: Optional[str] = None):
        label = f"'{title}'" if title else str(item_id)
        super().__init__(f"Media item {label} is protected and cannot be queued for deletion")
        self.item_id = item_id


class NotInQueueError(CullerError):
    def __init__(self, item_id: int):
        super().__init__(f"Media item {item_id} is not in the deletion queue")
        self.item_id = item_id


class InvalidRuleError(CullerError):
    pass


class UnknownTaskError(CullerError):
    def __init__(self, task_name: str):
        super().__init__(f"Unknown task: {task_name}")
        self.task_name = task_name


class TaskAlreadyRunningError(CullerError):
    def __init__(self, task_name: str):
        super().__init__(f"Task {task_name} is already running")
        self.task_name = task_name


class ServiceError(CullerError):
    """
    Raised by external service clients when a request fails.
    """

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code

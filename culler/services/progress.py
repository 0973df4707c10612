# Copyright (c) 2025 Trae AI. All rights reserved.

import queue
from typing import Iterator, Optional
from ..core.models import DeletionProgress, DeletionResult, FileProgress, ProgressStage

_CLOSED = object()


class ProgressChannel:
    """
    Thread-safe stream of deletion progress events.

    The executor writes events, a consumer (SSE response, CLI, test) iterates
    them until the channel is closed.
    """

    def __init__(self, item_id: Optional[int] = None):
        self.item_id = item_id
        self._queue: "queue.Queue" = queue.Queue()
        self.closed = False

    def emit(self, stage: ProgressStage, message: str, file_progress: Optional[FileProgress] = None,
             result: Optional[DeletionResult] = None):
        if self.closed:
            return
        self._queue.put(DeletionProgress(
            stage=stage, message=message, item_id=self.item_id,
            file_progress=file_progress, result=result,
        ))

    def close(self):
        if not self.closed:
            self.closed = True
            self._queue.put(_CLOSED)

    def __iter__(self) -> Iterator[DeletionProgress]:
        while True:
            event = self._queue.get()
            if event is _CLOSED:
                return
            yield event


class NullProgress(ProgressChannel):
    """Discards every event."""

    def emit(self, stage, message, file_progress=None, result=None):
        pass

"""Sequential queue that exports EXR previews to PNG files.

Each export opens the source image in the backend and then writes the
backend's current preview, so tasks share the engine's current-image state
with everything else in the application.  The queue therefore runs strictly
one task at a time, in FIFO order, and holds the gateway's exclusive lock for
the duration of a task's open/export pair.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Callable, Deque, List, Optional

from exr_inspector.core.cancellation import CancellationToken, OperationKind, ProgressChannel
from exr_inspector.core.commands import DEFAULT_PREVIEW_MAX_SIZE, ExportPreviewRequest, OpenImageRequest
from exr_inspector.core.gateway import BridgeUnavailableError, CommandGateway, is_cancellation_error


LOGGER = logging.getLogger(__name__)


class ExportTaskState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ExportTaskState.COMPLETED, ExportTaskState.CANCELLED, ExportTaskState.FAILED)


def derive_output_path(source_path: str) -> str:
    """Replace the source extension with ``.png`` (or append it)."""

    path = Path(source_path)
    if path.suffix:
        return str(path.with_suffix(".png"))
    return f"{source_path}.png"


@dataclass
class ExportTask:
    source_path: str
    output_path: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    progress_percent: int = 0
    cancel_requested: bool = False
    state: ExportTaskState = ExportTaskState.PENDING
    error: Optional[str] = None


TaskListener = Callable[[ExportTask], None]


class ExportQueue:
    """FIFO export runner with cooperative cancellation."""

    def __init__(
        self,
        gateway: CommandGateway,
        *,
        channel: Optional[ProgressChannel] = None,
        max_size: int = DEFAULT_PREVIEW_MAX_SIZE,
        ready_timeout: Optional[float] = None,
    ) -> None:
        self._gateway = gateway
        self._channel = channel or ProgressChannel(gateway)
        self._max_size = max_size
        self._ready_timeout = ready_timeout
        self._pending: Deque[ExportTask] = deque()
        self._active: Optional[ExportTask] = None
        self._active_token: Optional[CancellationToken] = None
        self._processing = False
        self._lock = threading.Lock()
        self._listeners: List[TaskListener] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    def add_listener(self, listener: TaskListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TaskListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def tasks(self) -> List[ExportTask]:
        """Live view: the running task followed by pending ones."""

        with self._lock:
            live = [self._active] if self._active is not None else []
            live.extend(self._pending)
        return live

    def get(self, task_id: str) -> Optional[ExportTask]:
        for task in self.tasks():
            if task.id == task_id:
                return task
        return None

    @property
    def active_task(self) -> Optional[ExportTask]:
        with self._lock:
            return self._active

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return self._processing

    def __len__(self) -> int:
        return len(self.tasks())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def enqueue(self, source_path: str) -> ExportTask:
        task = ExportTask(source_path=source_path, output_path=derive_output_path(source_path))
        with self._lock:
            self._pending.append(task)
        LOGGER.info("Export queued: %s -> %s", task.source_path, task.output_path)
        self._notify(task)
        return task

    def cancel(self, task_id: str) -> bool:
        """Request cancellation of a queued or running task."""

        with self._lock:
            running = self._active is not None and self._active.id == task_id
            task = self._active if running else next((t for t in self._pending if t.id == task_id), None)
            if task is None or task.cancel_requested:
                return False
            task.cancel_requested = True
            token = self._active_token if running else None
        LOGGER.info("Export cancel requested: %s", task.source_path)
        if running:
            self._channel.request_cancel(OperationKind.EXPORT, token)
        self._notify(task)
        return True

    def cancel_all(self) -> None:
        for task in self.tasks():
            self.cancel(task.id)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------
    def run_pending(self) -> List[ExportTask]:
        """Process queued tasks until the queue is empty.

        Returns the tasks that reached a terminal state during this call.  When
        another thread is already processing, returns immediately.
        """

        with self._lock:
            if self._processing:
                return []
            self._processing = True
        finished: List[ExportTask] = []
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        break
                    task = self._pending.popleft()
                    if task.cancel_requested:
                        task.state = ExportTaskState.CANCELLED
                    else:
                        task.state = ExportTaskState.RUNNING
                        self._active = task
                        self._active_token = CancellationToken()
                        token = self._active_token
                if task.state is ExportTaskState.CANCELLED:
                    LOGGER.info("Export skipped (cancelled): %s", task.source_path)
                    self._notify(task)
                    finished.append(task)
                    continue
                self._notify(task)
                try:
                    self._process(task, token)
                finally:
                    with self._lock:
                        self._active = None
                        self._active_token = None
                    self._notify(task)
                finished.append(task)
        finally:
            with self._lock:
                self._processing = False
        return finished

    def _process(self, task: ExportTask, token: CancellationToken) -> None:
        try:
            if not self._gateway.ensure_ready(self._ready_timeout):
                raise BridgeUnavailableError("Backend bridge is not available")
            progress = partial(self._on_progress, task)
            with self._gateway.exclusive(), self._channel.tracked(OperationKind.EXPORT, progress, token=token):
                self._gateway.invoke(OpenImageRequest(path=task.source_path, max_size=self._max_size))
                if task.cancel_requested:
                    task.state = ExportTaskState.CANCELLED
                    LOGGER.info("Export cancelled after open: %s", task.source_path)
                    return
                self._gateway.invoke(ExportPreviewRequest(output_path=task.output_path))
        except Exception as exc:
            if task.cancel_requested or is_cancellation_error(exc):
                task.state = ExportTaskState.CANCELLED
                LOGGER.info("Export cancelled: %s", task.source_path)
            else:
                task.state = ExportTaskState.FAILED
                task.error = str(exc)
                LOGGER.error("Export failed for %s: %s", task.source_path, exc, exc_info=True)
            return
        task.progress_percent = 100
        task.state = ExportTaskState.COMPLETED
        LOGGER.info("Export completed: %s", task.output_path)

    def _on_progress(self, task: ExportTask, percent: int) -> None:
        task.progress_percent = percent
        self._notify(task)

    def _notify(self, task: ExportTask) -> None:
        for listener in list(self._listeners):
            try:
                listener(task)
            except Exception:  # pragma: no cover
                LOGGER.exception("Export listener raised", extra={"component": "ExportQueue"})


__all__ = ["ExportQueue", "ExportTask", "ExportTaskState", "derive_output_path"]

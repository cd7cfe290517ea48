from __future__ import annotations
import abc
import asyncio
import inspect
import time
import traceback
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog

from shipwright.utils.exceptions import BuildAbortError, TaskError


class TaskResult(str, Enum):
    """Final result of a pipeline run."""
    UNKNOWN = "unknown"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TaskPhase(str, Enum):
    """Stage a pipeline run is in."""
    PENDING = "pending"
    PREPROCESSING = "preprocessing"
    PROCESSING = "processing"
    POSTPROCESSING = "postprocessing"
    DONE = "done"


class ErrorKind(str, Enum):
    """Classification of the first error recorded on a report."""
    NONE = "none"
    STAGE = "stage"
    BUILD_ABORT = "build_abort"
    CANCELLED = "cancelled"


@dataclass
class TaskReport:
    """Structured outcome of one pipeline run.

    The result starts as UNKNOWN and is set exactly once when the run completes.
    Only the first error is kept.
    """
    name: str = ""
    task_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    result: TaskResult = TaskResult.UNKNOWN
    phase: TaskPhase = TaskPhase.PENDING
    error: Optional[str] = None
    error_kind: ErrorKind = ErrorKind.NONE
    exception: Optional[BaseException] = None
    traceback: Optional[str] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        """Whether an error has been recorded."""
        return self.error is not None

    @property
    def aborted(self) -> bool:
        return self.error_kind == ErrorKind.BUILD_ABORT

    @property
    def elapsed(self) -> Optional[float]:
        if self.started_at is None:
            return None
        return (self.completed_at or time.time()) - self.started_at

    def fail(
            self,
            error: str,
            kind: ErrorKind = ErrorKind.STAGE,
            exception: Optional[BaseException] = None,
    ) -> None:
        """Record an error unless one has already been recorded."""
        if self.error is not None:
            return
        self.error = error
        self.error_kind = kind
        self.exception = exception
        if exception is not None:
            self.traceback = "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )

    def abort(self, error: str, exception: Optional[BaseException] = None) -> None:
        """Record a build-abort condition."""
        self.fail(error, ErrorKind.BUILD_ABORT, exception)


class TaskHandler(abc.ABC):
    """A staged operation run by :class:`TaskPipeline`.

    Stages may be plain methods or coroutines. ``postprocess`` always runs, also
    after a failed ``preprocess`` or ``process``.
    """

    name: str = ""

    def preprocess(self, report: TaskReport) -> Any:
        pass

    @abc.abstractmethod
    def process(self, report: TaskReport) -> Any:
        pass

    def postprocess(self, report: TaskReport) -> Any:
        pass


class TaskPipeline:
    """Runs task handlers through preprocess, process and postprocess.

    Stages of one run execute strictly in order. Long-running stages may await
    asynchronous work, so several pipelines can share an event loop.
    """

    def __init__(self, logger: Any = None, keep_completed: int = 100) -> None:
        self._logger = logger or structlog.get_logger("task_pipeline")
        self._keep_completed = keep_completed
        self._history: "OrderedDict[str, TaskReport]" = OrderedDict()

    def execute(self, handler: TaskHandler, report: Optional[TaskReport] = None) -> TaskReport:
        """Run ``handler`` and block until every stage has finished.

        Raises:
            TaskError: If called from a running event loop or with a used report
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.execute_async(handler, report))
        raise TaskError(
            "execute() cannot be called from a running event loop, await execute_async()",
            task_name=self._task_name(handler),
        )

    async def execute_async(self, handler: TaskHandler, report: Optional[TaskReport] = None) -> TaskReport:
        """Run ``handler`` on the current event loop.

        Raises:
            TaskError: If ``report`` has already been used for a run
        """
        name = self._task_name(handler)
        if report is None:
            report = TaskReport(name=name)
        elif report.result != TaskResult.UNKNOWN or report.phase != TaskPhase.PENDING:
            raise TaskError(f"Report {report.task_id} has already been used", task_name=name)
        elif not report.name:
            report.name = name

        report.started_at = time.time()
        self._logger.info(f"Task {name} started")

        cancelled: Optional[asyncio.CancelledError] = None
        for phase, stage in (
                (TaskPhase.PREPROCESSING, handler.preprocess),
                (TaskPhase.PROCESSING, handler.process),
        ):
            if report.failed:
                break
            report.phase = phase
            try:
                await self._invoke(stage, report)
            except asyncio.CancelledError as e:
                report.fail(f"{name} cancelled during {phase.value}", ErrorKind.CANCELLED, e)
                cancelled = e
                break
            except Exception as e:
                self._record(report, phase, e)

        report.phase = TaskPhase.POSTPROCESSING
        try:
            await self._invoke(handler.postprocess, report)
        except Exception as e:
            self._record(report, TaskPhase.POSTPROCESSING, e)

        report.phase = TaskPhase.DONE
        report.completed_at = time.time()
        report.result = TaskResult.FAILED if report.failed else TaskResult.SUCCEEDED
        self._remember(report)

        if report.failed:
            self._logger.error(f"Task {name} failed after {report.elapsed:.2f}s: {report.error}")
        else:
            self._logger.info(f"Task {name} succeeded in {report.elapsed:.2f}s")

        if cancelled is not None:
            raise cancelled
        return report

    async def execute_all(
            self,
            handlers: Iterable[TaskHandler],
            stop_on_failure: bool = True,
    ) -> List[TaskReport]:
        """Run several handlers one after another."""
        reports: List[TaskReport] = []
        for handler in handlers:
            report = await self.execute_async(handler)
            reports.append(report)
            if report.failed and stop_on_failure:
                break
        return reports

    def get_report(self, task_id: str) -> Optional[TaskReport]:
        return self._history.get(task_id)

    @property
    def history(self) -> List[TaskReport]:
        return list(self._history.values())

    async def _invoke(self, stage: Callable[[TaskReport], Any], report: TaskReport) -> None:
        result = stage(report)
        if inspect.isawaitable(result):
            await result

    def _record(self, report: TaskReport, phase: TaskPhase, error: Exception) -> None:
        kind = ErrorKind.BUILD_ABORT if isinstance(error, BuildAbortError) else ErrorKind.STAGE
        self._logger.error(f"Task {report.name} raised during {phase.value}: {error}")
        report.fail(str(error) or type(error).__name__, kind, error)

    def _remember(self, report: TaskReport) -> None:
        self._history[report.task_id] = report
        while len(self._history) > self._keep_completed:
            self._history.popitem(last=False)

    @staticmethod
    def _task_name(handler: TaskHandler) -> str:
        return getattr(handler, "name", "") or type(handler).__name__

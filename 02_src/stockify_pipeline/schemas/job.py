"""Batch job schemas: task state machine and result snapshots."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .common import ImageRef, Metadata


class TaskState(str, Enum):
    """Lifecycle of one image task.

    pending -> in_flight -> succeeded
                         -> failed_retryable -> pending
                         -> failed_terminal
    """
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED_TERMINAL)


class ErrorKind(str, Enum):
    """Why a task failed, in caller-facing terms."""
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    INVALID = "invalid"
    UNAUTHORIZED = "unauthorized"
    QUOTA_EXCEEDED = "quota_exceeded"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TaskError:
    """Failure recorded on a task.

    Attributes:
        kind: Error category
        message: Human-readable reason
        retry_after_s: Server-suggested delay, when the upstream sent one
    """
    kind: ErrorKind
    message: str
    retry_after_s: Optional[float] = None


@dataclass
class ImageTask:
    """One image inside a batch job. Mutated only by the orchestrator.

    Attributes:
        task_id: Identifier, stable across retries
        image: Image handle (not owned by the pipeline)
        state: Current state
        attempts: Number of inference calls issued so far
        last_error: Most recent failure, if any
        metadata: Result metadata once succeeded
        eligible_at: Earliest time the task may be dispatched, on the orchestrator's monotonic clock
        model_used: Model that served the latest attempt
    """
    task_id: str
    image: ImageRef
    state: TaskState = TaskState.PENDING
    attempts: int = 0
    last_error: Optional[TaskError] = None
    metadata: Optional[Metadata] = None
    eligible_at: float = 0.0
    model_used: Optional[str] = None

    def snapshot(self) -> "TaskResult":
        return TaskResult(
            task_id=self.task_id,
            filename=self.image.name,
            state=self.state,
            attempts=self.attempts,
            error=self.last_error,
            metadata=self.metadata,
            model_used=self.model_used,
        )


@dataclass
class BatchJob:
    """One user-submitted batch, owned by the orchestrator for its lifetime.

    Attributes:
        job_id: Unique identifier
        tasks: Tasks in submission order
        model: Selected model identifier
        created_at: Creation timestamp (epoch seconds)
        cancelled: Set once cancel() was observed
        halted: Set once an unauthorized response stopped the batch
    """
    job_id: str
    tasks: List[ImageTask]
    model: str
    created_at: float
    cancelled: bool = False
    halted: bool = False

    @property
    def is_complete(self) -> bool:
        return all(t.state.is_terminal for t in self.tasks)


@dataclass(frozen=True)
class TaskResult:
    """Read-only view of a task at the moment status() was called."""
    task_id: str
    filename: str
    state: TaskState
    attempts: int
    error: Optional[TaskError] = None
    metadata: Optional[Metadata] = None
    model_used: Optional[str] = None


@dataclass(frozen=True)
class BatchResult:
    """Derived summary of a batch job.

    Attributes:
        job_id: Job identifier
        model: Selected model
        total: Number of tasks
        succeeded: Tasks in succeeded state
        failed: Tasks in failed_terminal state
        pending: Tasks not yet terminal (includes in_flight)
        in_flight: Tasks with a call currently outstanding
        results: Per-task views in submission order
    """
    job_id: str
    model: str
    total: int
    succeeded: int
    failed: int
    pending: int
    in_flight: int
    results: Tuple[TaskResult, ...] = field(default_factory=tuple)

    @property
    def is_complete(self) -> bool:
        return self.pending == 0

    @classmethod
    def from_job(cls, job: BatchJob) -> "BatchResult":
        results = tuple(t.snapshot() for t in job.tasks)
        succeeded = sum(1 for r in results if r.state == TaskState.SUCCEEDED)
        failed = sum(1 for r in results if r.state == TaskState.FAILED_TERMINAL)
        in_flight = sum(1 for r in results if r.state == TaskState.IN_FLIGHT)
        return cls(
            job_id=job.job_id,
            model=job.model,
            total=len(results),
            succeeded=succeeded,
            failed=failed,
            pending=len(results) - succeeded - failed,
            in_flight=in_flight,
            results=results,
        )

    def successes(self) -> List[TaskResult]:
        return [r for r in self.results if r.state == TaskState.SUCCEEDED]

    def failures(self) -> List[TaskResult]:
        return [r for r in self.results if r.state == TaskState.FAILED_TERMINAL]

"""BatchOrchestrator - fans a batch of images out to the inference client.

Each job gets one dispatcher thread that walks its tasks, admits them
through the rate limiter and quota ledger, and hands calls to a shared
worker pool. Waiting (rate limits, backoff) is expressed as eligibility
timestamps; no worker thread ever sleeps.

Telemetry events are queued while the job lock is held and reported only
after it is released, and the quota ledger is consulted outside the lock,
so a slow sink or a busy quota database never blocks status().
"""

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..schemas.common import ImageRef, Metadata
from ..schemas.config import DEFAULT_MODEL, ModelCatalog, PipelineConfig
from ..schemas.job import BatchJob, BatchResult, ErrorKind, ImageTask, TaskError, TaskState
from .errors import (
    InferenceError,
    JobNotFoundError,
    PipelineError,
    RateLimited,
    Unauthorized,
    UnknownModelError,
)
from .inference_client import BaseInferenceClient
from .quota import MemoryQuotaStore, QuotaDecision, QuotaLedger, SQLiteQuotaStore
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .telemetry import LoggingTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)

# (event, severity, context)
_Event = Tuple[str, str, Dict[str, Any]]


@dataclass
class _JobRuntime:
    """Scheduling state of one job. Every field is guarded by `cond`."""
    job: BatchJob
    cond: threading.Condition = field(default_factory=threading.Condition)
    in_flight: int = 0
    dispatching: bool = False
    thread: Optional[threading.Thread] = None
    events: List[_Event] = field(default_factory=list)

    def take_events(self) -> List[_Event]:
        events, self.events = self.events, []
        return events


class BatchOrchestrator:
    """Runs batches of images through quota, rate limit, inference and retry.

    Usage:
        orchestrator = BatchOrchestrator(client=GeminiInferenceClient(InferenceConfig()))
        job = orchestrator.submit(images, model="gemini-2.5-flash")
        result = orchestrator.wait(job.job_id)
        for r in result.failures():
            print(r.filename, r.error.kind.value, r.error.message)
    """

    def __init__(
        self,
        client: BaseInferenceClient,
        catalog: Optional[ModelCatalog] = None,
        config: Optional[PipelineConfig] = None,
        ledger: Optional[QuotaLedger] = None,
        limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        telemetry: Optional[TelemetrySink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize orchestrator.

        Args:
            client: Inference client used for every call
            catalog: Model catalog (ModelCatalog.default() if not provided)
            config: Pipeline configuration (defaults if not provided)
            ledger: Quota ledger (in-memory, or SQLite when config.state_dir is set)
            limiter: Rate limiter (built from catalog if not provided)
            retry_policy: Retry policy (built from config if not provided)
            telemetry: Telemetry sink (logging sink if not provided)
            clock: Monotonic time source for eligibility timestamps

        Raises:
            UnknownModelError: If a fallback model is not in the catalog
        """
        self.client = client
        self.catalog = catalog or ModelCatalog.default()
        self.config = config or PipelineConfig()
        self.clock = clock

        for model in self.config.fallback_models:
            if model not in self.catalog:
                raise UnknownModelError(f"Fallback model not in catalog: {model}")

        if ledger is None:
            store = (
                SQLiteQuotaStore(self.config.state_dir)
                if self.config.state_dir
                else MemoryQuotaStore()
            )
            ledger = QuotaLedger(self.catalog, store)
        self.ledger = ledger
        self.limiter = limiter or RateLimiter(self.catalog)
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.config.max_attempts,
            base_delay_s=self.config.backoff_base_s,
            max_delay_s=self.config.backoff_max_s,
            jitter_fraction=self.config.jitter_fraction,
        )
        self.telemetry = telemetry or LoggingTelemetrySink()

        self._executor = ThreadPoolExecutor(
            max_workers=self.config.fan_out, thread_name_prefix="stockify-infer"
        )
        self._jobs: Dict[str, _JobRuntime] = {}
        self._jobs_lock = threading.Lock()
        self._closed = False

        logger.info(
            f"BatchOrchestrator initialized: fan_out={self.config.fan_out}, "
            f"max_attempts={self.retry_policy.max_attempts}, "
            f"fallback_models={list(self.config.fallback_models)}"
        )

    def __enter__(self) -> "BatchOrchestrator":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, images: Iterable[ImageRef], model: Optional[str] = None) -> BatchJob:
        """Submit a batch of images for metadata generation.

        Args:
            images: Images to process (order is kept in results)
            model: Model identifier (DEFAULT_MODEL if not provided)

        Returns:
            The created BatchJob. It is owned by the orchestrator; read it
            through status().

        Raises:
            UnknownModelError: If model is not in the catalog
            PipelineError: If the orchestrator was shut down
        """
        model = model or DEFAULT_MODEL
        if model not in self.catalog:
            raise UnknownModelError(f"Model not in catalog: {model}")
        if self._closed:
            raise PipelineError("Orchestrator is shut down")

        job_id = uuid.uuid4().hex
        tasks = [
            ImageTask(task_id=f"{job_id[:8]}-{i:04d}", image=image)
            for i, image in enumerate(images)
        ]
        job = BatchJob(job_id=job_id, tasks=tasks, model=model, created_at=time.time())
        runtime = _JobRuntime(job=job)

        with self._jobs_lock:
            self._jobs[job_id] = runtime
        with runtime.cond:
            self._start_dispatcher(runtime)

        logger.info(f"Submitted job {job_id}: {len(tasks)} images, model={model}")
        return job

    def status(self, job_id: str) -> BatchResult:
        """Get a snapshot of a job's progress.

        Raises:
            JobNotFoundError: If job_id is unknown
        """
        runtime = self._runtime(job_id)
        with runtime.cond:
            return BatchResult.from_job(runtime.job)

    def cancel(self, job_id: str) -> int:
        """Cancel a job.

        Non-terminal tasks become failed_terminal (cancelled). Calls already
        in flight run to completion but their results are discarded.

        Returns:
            Number of tasks cancelled

        Raises:
            JobNotFoundError: If job_id is unknown
        """
        runtime = self._runtime(job_id)
        with runtime.cond:
            job = runtime.job
            job.cancelled = True
            cancelled = 0
            for task in job.tasks:
                if not task.state.is_terminal:
                    task.state = TaskState.FAILED_TERMINAL
                    task.last_error = TaskError(ErrorKind.CANCELLED, "cancelled by caller")
                    cancelled += 1
            runtime.cond.notify_all()

        logger.info(f"Cancelled job {job_id}: {cancelled} tasks stopped")
        return cancelled

    def wait(self, job_id: str, timeout: Optional[float] = None) -> BatchResult:
        """Block until every task of a job is terminal, or timeout expires.

        Returns:
            Snapshot at return time (check is_complete after a timeout)
        """
        runtime = self._runtime(job_id)
        with runtime.cond:
            runtime.cond.wait_for(lambda: runtime.job.is_complete, timeout)
            return BatchResult.from_job(runtime.job)

    def discard(self, job_id: str) -> BatchResult:
        """Forget a completed job and return its final result.

        Raises:
            JobNotFoundError: If job_id is unknown
            PipelineError: If the job still has non-terminal tasks
        """
        runtime = self._runtime(job_id)
        with runtime.cond:
            if not runtime.job.is_complete:
                raise PipelineError(f"Job {job_id} is still running")
            result = BatchResult.from_job(runtime.job)

        with self._jobs_lock:
            self._jobs.pop(job_id, None)
        logger.debug(f"Discarded job {job_id}")
        return result

    def retry_failed(self, job_id: str, task_ids: Optional[Iterable[str]] = None) -> int:
        """Re-run failed tasks of a finished job.

        Selected failed_terminal tasks go back to pending with a fresh
        attempt count. Succeeded tasks keep their results. The job's
        cancelled and halted flags are cleared so the dispatcher issues
        calls again.

        Args:
            job_id: Job identifier
            task_ids: Tasks to retry (every failed task if not provided).
                Tasks that are not failed are left untouched.

        Returns:
            Number of tasks reset to pending

        Raises:
            JobNotFoundError: If job_id is unknown
            PipelineError: If the job is still running, a task id is unknown,
                or the orchestrator was shut down
        """
        if self._closed:
            raise PipelineError("Orchestrator is shut down")

        runtime = self._runtime(job_id)
        with runtime.cond:
            job = runtime.job
            if not job.is_complete or runtime.in_flight:
                raise PipelineError(f"Job {job_id} is still running")

            if task_ids is None:
                wanted = {t.task_id for t in job.tasks}
            else:
                wanted = set(task_ids)
                unknown = wanted - {t.task_id for t in job.tasks}
                if unknown:
                    raise PipelineError(f"Unknown tasks for job {job_id}: {sorted(unknown)}")

            reset = 0
            for task in job.tasks:
                if task.task_id not in wanted or task.state != TaskState.FAILED_TERMINAL:
                    continue
                task.state = TaskState.PENDING
                task.attempts = 0
                task.last_error = None
                task.eligible_at = 0.0
                task.model_used = None
                reset += 1

            if reset:
                job.cancelled = False
                job.halted = False
                if not runtime.dispatching:
                    self._start_dispatcher(runtime)
                runtime.cond.notify_all()

        logger.info(f"Retrying {reset} failed tasks of job {job_id}")
        return reset

    def shutdown(self, wait: bool = True) -> None:
        """Cancel unfinished jobs and stop the worker pool."""
        if self._closed:
            return
        self._closed = True

        with self._jobs_lock:
            runtimes = list(self._jobs.values())
        for runtime in runtimes:
            with runtime.cond:
                unfinished = not runtime.job.is_complete
            if unfinished:
                self.cancel(runtime.job.job_id)

        self._executor.shutdown(wait=wait)
        logger.info("BatchOrchestrator shut down")

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    def _runtime(self, job_id: str) -> _JobRuntime:
        with self._jobs_lock:
            runtime = self._jobs.get(job_id)
        if runtime is None:
            raise JobNotFoundError(f"Unknown job: {job_id}")
        return runtime

    def _runtime(self, job_id: str) -> _JobRuntime:
        with self._jobs_lock:
            runtime = self._jobs.get(job_id)
        if runtime is None:
            raise JobNotFoundError(f"Unknown job: {job_id}")
        return runtime

    def _start_dispatcher(self, runtime: _JobRuntime) -> None:
        """Start the job's dispatcher thread. Caller holds cond."""
        runtime.dispatching = True
        runtime.thread = threading.Thread(
            target=self._dispatch_loop,
            args=(runtime,),
            name=f"stockify-dispatch-{runtime.job.job_id[:8]}",
            daemon=True,
        )
        runtime.thread.start()

    def _dispatch_loop(self, runtime: _JobRuntime) -> None:
        job = runtime.job
        while True:
            with runtime.cond:
                if job.is_complete:
                    runtime.dispatching = False
                    summary = BatchResult.from_job(job)
                    break
                next_wake = self._dispatch_ready(runtime)
                events = runtime.take_events()
                if not events:
                    timeout = None if next_wake is None else max(0.0, next_wake - self.clock())
                    runtime.cond.wait(timeout)
            self._emit(events)

        logger.info(
            f"Job {job.job_id} finished: {summary.succeeded} succeeded, "
            f"{summary.failed} failed of {summary.total}"
        )

    def _dispatch_ready(self, runtime: _JobRuntime) -> Optional[float]:
        """Start every eligible task the fan-out allows. Caller holds cond.

        Returns:
            Earliest future eligibility time, or None to wait for a completion
        """
        job = runtime.job
        now = self.clock()
        next_wake: Optional[float] = None

        for task in job.tasks:
            if job.cancelled or job.halted or self._closed:
                return None
            if runtime.in_flight >= self.config.fan_out:
                break
            if task.state not in (TaskState.PENDING, TaskState.FAILED_RETRYABLE):
                continue
            if task.eligible_at > now:
                next_wake = task.eligible_at if next_wake is None else min(next_wake, task.eligible_at)
                continue

            task.state = TaskState.PENDING
            try:
                wait = self._admit(runtime, task, now)
            except Exception as e:
                logger.exception(f"Admission failed for task {task.task_id}")
                if not task.state.is_terminal:
                    self._fail(runtime, task, TaskError(ErrorKind.UNAVAILABLE, f"admission failed: {e}"))
                continue

            if wait is not None:
                # Rate limiter is per model: later tasks would wait just as long
                next_wake = task.eligible_at if next_wake is None else min(next_wake, task.eligible_at)
                break

        return next_wake

    def _admit(self, runtime: _JobRuntime, task: ImageTask, now: float) -> Optional[float]:
        """Admit one pending task: rate limit, then quota, then start the call.

        Returns:
            Rate-limit wait if the task was deferred, otherwise None
        """
        job = runtime.job
        model = job.model

        wait = self.limiter.acquire(model)
        if wait > 0:
            task.eligible_at = now + wait
            return wait

        decision, charged = self._consume_quota(runtime, model)
        if task.state != TaskState.PENDING or job.cancelled or job.halted:
            # The job stopped while the lock was released; the unit stays spent
            logger.debug(f"Task {task.task_id}: job stopped during admission")
            return None

        if charged is None:
            self._fail(
                runtime,
                task,
                TaskError(
                    ErrorKind.QUOTA_EXCEEDED,
                    f"Quota exhausted for {model}, resets at "
                    f"{time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(decision.reset_at))}",
                ),
            )
            return None
        if charged != model:
            logger.info(f"Task {task.task_id}: quota exhausted for {model}, using {charged}")

        self._executor.submit(self._run_call, runtime, task, charged)
        task.state = TaskState.IN_FLIGHT
        task.attempts += 1
        task.model_used = charged
        runtime.in_flight += 1

        logger.debug(f"Task {task.task_id}: attempt {task.attempts} on {charged}")
        return None

    def _consume_quota(self, runtime: _JobRuntime, model: str) -> Tuple[QuotaDecision, Optional[str]]:
        """Charge one unit to model or a fallback, with the job lock released.

        Returns:
            Decision for model, and the model that was charged (None if denied)
        """
        runtime.cond.release()
        try:
            decision = self.ledger.try_consume(model)
            if decision.allowed:
                return decision, model
            return decision, self._fallback_model(model)
        finally:
            runtime.cond.acquire()

    def _fallback_model(self, primary: str) -> Optional[str]:
        """Find a fallback model with both quota and a rate token, consuming both."""
        for model in self.config.fallback_models:
            if model == primary or self.ledger.remaining(model) < 1:
                continue
            if self.limiter.acquire(model) > 0:
                continue
            if self.ledger.try_consume(model).allowed:
                return model
        return None

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _run_call(self, runtime: _JobRuntime, task: ImageTask, model: str) -> None:
        metadata: Optional[Metadata] = None
        error: Optional[BaseException] = None
        try:
            metadata = self.client.infer(task.image, model)
        except Exception as e:
            error = e

        with runtime.cond:
            runtime.in_flight -= 1
            try:
                self._record(runtime, task, metadata, error)
            finally:
                events = runtime.take_events()
                runtime.cond.notify_all()
        self._emit(events)

    def _record(
        self,
        runtime: _JobRuntime,
        task: ImageTask,
        metadata: Optional[Metadata],
        error: Optional[BaseException],
    ) -> None:
        """Apply the outcome of one call. Caller holds cond."""
        job = runtime.job
        if job.cancelled or task.state != TaskState.IN_FLIGHT:
            logger.debug(f"Task {task.task_id}: discarding result of cancelled job")
            return

        if error is None:
            task.state = TaskState.SUCCEEDED
            task.metadata = metadata
            task.last_error = None
            logger.info(f"Task {task.task_id} ({task.image.name}) succeeded after {task.attempts} attempts")
            return

        task_error = self._task_error(error)

        if isinstance(error, Unauthorized):
            self._fail(runtime, task, task_error)
            self._halt(runtime, task_error)
            return

        if job.halted:
            self._fail(runtime, task, task_error)
            return

        if not self.retry_policy.should_retry(error, task.attempts):
            self._fail(runtime, task, task_error)
            return

        delay = self.retry_policy.delay_for(error, task.attempts)
        task.state = TaskState.FAILED_RETRYABLE
        task.last_error = task_error
        task.eligible_at = self.clock() + delay

        logger.warning(
            f"Task {task.task_id} attempt {task.attempts} failed ({task_error.kind.value}), "
            f"retry in {delay:.2f}s: {task_error.message}"
        )
        runtime.events.append((
            "task_retry",
            "warning",
            dict(
                job_id=job.job_id,
                task_id=task.task_id,
                kind=task_error.kind.value,
                attempt=task.attempts,
                delay_s=round(delay, 3),
            ),
        ))

    def _fail(self, runtime: _JobRuntime, task: ImageTask, error: TaskError) -> None:
        task.state = TaskState.FAILED_TERMINAL
        task.last_error = error
        logger.warning(
            f"Task {task.task_id} ({task.image.name}) failed: {error.kind.value}: {error.message}"
        )
        runtime.events.append((
            "task_failed",
            "error",
            dict(
                job_id=runtime.job.job_id,
                task_id=task.task_id,
                filename=task.image.name,
                kind=error.kind.value,
                message=error.message,
                attempts=task.attempts,
            ),
        ))

    def _halt(self, runtime: _JobRuntime, cause: TaskError) -> None:
        """Stop issuing calls for a job after an unauthorized response."""
        job = runtime.job
        job.halted = True
        halted = 0
        for task in job.tasks:
            if task.state in (TaskState.PENDING, TaskState.FAILED_RETRYABLE):
                task.state = TaskState.FAILED_TERMINAL
                task.last_error = TaskError(
                    ErrorKind.UNAUTHORIZED, f"batch halted: {cause.message}"
                )
                halted += 1

        logger.error(f"Job {job.job_id} halted on unauthorized response; {halted} tasks not issued")
        runtime.events.append((
            "batch_halted",
            "critical",
            dict(job_id=job.job_id, tasks_not_issued=halted, message=cause.message),
        ))

    def _emit(self, events: List[_Event]) -> None:
        """Report queued events. Caller must not hold any job lock."""
        for event, severity, context in events:
            try:
                self.telemetry.report(event, severity=severity, **context)
            except Exception:
                logger.exception(f"Telemetry sink failed to report {event}")

    @staticmethod
    def _task_error(error: BaseException) -> TaskError:
        message = str(error) or type(error).__name__
        if isinstance(error, RateLimited):
            return TaskError(error.kind, message, retry_after_s=error.retry_after_s)
        if isinstance(error, InferenceError):
            return TaskError(error.kind, message)
        return TaskError(ErrorKind.UNAVAILABLE, f"{type(error).__name__}: {message}")

"""Shared fixtures: fake clocks, scripted inference clients, image factories."""

import io
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest
from PIL import Image

from stockify_pipeline.core.inference_client import BaseInferenceClient
from stockify_pipeline.core.orchestrator import BatchOrchestrator
from stockify_pipeline.core.retry import RetryPolicy
from stockify_pipeline.schemas.common import ImageRef, Metadata

logging.getLogger("stockify_pipeline").setLevel(logging.DEBUG)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedClient(BaseInferenceClient):
    """Inference client that replays scripted outcomes per filename.

    Each filename maps to a list of outcomes consumed one per call: an
    exception instance is raised, anything else means success. Once the
    list is exhausted every call succeeds.
    """

    def __init__(self, script: Optional[Dict[str, Sequence[object]]] = None, delay: float = 0.0):
        self.script = {name: list(outcomes) for name, outcomes in (script or {}).items()}
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []
        self.call_times: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def infer(self, image: ImageRef, model: str) -> Metadata:
        with self._lock:
            self.calls.append((image.name, model))
            self.call_times.setdefault(image.name, []).append(time.monotonic())
            outcomes = self.script.get(image.name)
            outcome = outcomes.pop(0) if outcomes else None

        if self.delay:
            time.sleep(self.delay)
        if isinstance(outcome, BaseException):
            raise outcome
        return Metadata(
            filename=image.name,
            description=f"Description of {image.name}",
            keywords=["stock", "photo"],
            categories=["Nature"],
            extra={"editorial": "no"},
        )

    def calls_for(self, name: str) -> int:
        with self._lock:
            return sum(1 for n, _ in self.calls if n == name)


class BlockingClient(ScriptedClient):
    """ScriptedClient whose calls for `blocked` names wait for release()."""

    def __init__(self, blocked: Sequence[str], script=None):
        super().__init__(script)
        self.blocked = set(blocked)
        self.gate = threading.Event()
        self.finished = 0
        self._finished_lock = threading.Lock()

    def infer(self, image: ImageRef, model: str) -> Metadata:
        try:
            if image.name in self.blocked:
                with self._lock:
                    self.calls.append((image.name, model))
                assert self.gate.wait(timeout=10), "gate never released"
                return Metadata(filename=image.name, description="late result")
            return super().infer(image, model)
        finally:
            with self._finished_lock:
                self.finished += 1

    def release(self) -> None:
        self.gate.set()


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def png_bytes(size: Tuple[int, int] = (8, 8), mode: str = "RGB", color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def jpeg_bytes(size: Tuple[int, int] = (8, 8), color=(30, 200, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def images() -> Callable[[int], List[ImageRef]]:
    """Factory for n small in-memory images named img_00.jpg, img_01.jpg, ..."""

    def factory(n: int) -> List[ImageRef]:
        return [ImageRef(name=f"img_{i:02d}.jpg", data=b"\xff\xd8fake") for i in range(n)]

    return factory


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy without waiting between attempts."""
    return RetryPolicy(max_attempts=5, base_delay_s=0.0, max_delay_s=0.0, jitter_fraction=0.0)


@pytest.fixture
def make_orchestrator(fast_retry):
    """Factory for orchestrators that are shut down after the test."""
    created: List[BatchOrchestrator] = []

    def factory(client: BaseInferenceClient, **kwargs) -> BatchOrchestrator:
        kwargs.setdefault("retry_policy", fast_retry)
        orchestrator = BatchOrchestrator(client, **kwargs)
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        orchestrator.shutdown(wait=False)

"""Core components: quota, rate limiting, inference clients, retry and orchestration."""

from .errors import (
    ImageRejectedError,
    InferenceError,
    Invalid,
    JobNotFoundError,
    PipelineError,
    RateLimited,
    Unauthorized,
    Unavailable,
    UnknownModelError,
)
from .quota import (
    QuotaStore,
    MemoryQuotaStore,
    SQLiteQuotaStore,
    QuotaDecision,
    QuotaLedger,
    QuotaWindow,
)
from .rate_limiter import RateBucket, RateLimiter
from .retry import RetryDecision, RetryPolicy
from .inference_client import (
    BaseInferenceClient,
    GeminiInferenceClient,
    ProxyInferenceClient,
)
from .telemetry import HttpTelemetrySink, LoggingTelemetrySink, TelemetrySink
from .orchestrator import BatchOrchestrator

__all__ = [
    # Errors
    "PipelineError",
    "UnknownModelError",
    "JobNotFoundError",
    "ImageRejectedError",
    "InferenceError",
    "RateLimited",
    "Unavailable",
    "Invalid",
    "Unauthorized",
    # Quota
    "QuotaStore",
    "MemoryQuotaStore",
    "SQLiteQuotaStore",
    "QuotaDecision",
    "QuotaLedger",
    "QuotaWindow",
    # Rate limiting and retry
    "RateBucket",
    "RateLimiter",
    "RetryDecision",
    "RetryPolicy",
    # Inference
    "BaseInferenceClient",
    "GeminiInferenceClient",
    "ProxyInferenceClient",
    # Telemetry
    "TelemetrySink",
    "LoggingTelemetrySink",
    "HttpTelemetrySink",
    # Orchestration
    "BatchOrchestrator",
]

"""
Stockify Pipeline - batch metadata generation for stock photography.

This package sends batches of images to a vision model and collects
per-image titles, keywords and categories:
- BatchOrchestrator: fan-out under per-model quota and rate limits, with retry
- GeminiInferenceClient / ProxyInferenceClient: one call per image
- export_batch: Shutterstock / Adobe Stock CSV output
"""

__version__ = "0.1.0"

# Core classes
from .core.orchestrator import BatchOrchestrator
from .core.inference_client import (
    BaseInferenceClient,
    GeminiInferenceClient,
    ProxyInferenceClient,
)
from .core.quota import MemoryQuotaStore, QuotaLedger, SQLiteQuotaStore
from .core.rate_limiter import RateLimiter
from .core.retry import RetryPolicy
from .core.telemetry import HttpTelemetrySink, LoggingTelemetrySink

# Errors
from .core.errors import (
    ImageRejectedError,
    Invalid,
    JobNotFoundError,
    PipelineError,
    RateLimited,
    Unauthorized,
    Unavailable,
    UnknownModelError,
)

# Schemas
from .schemas.config import (
    DEFAULT_MODEL,
    InferenceConfig,
    ModelCatalog,
    ModelConfig,
    PipelineConfig,
)
from .schemas.common import ImageRef, Metadata
from .schemas.job import BatchJob, BatchResult, ErrorKind, TaskResult, TaskState

# I/O
from .preprocessing.image_loader import load_image, load_images
from .export import export_batch, generate_csv

__all__ = [
    # Version
    "__version__",

    # Core classes
    "BatchOrchestrator",
    "BaseInferenceClient",
    "GeminiInferenceClient",
    "ProxyInferenceClient",
    "QuotaLedger",
    "MemoryQuotaStore",
    "SQLiteQuotaStore",
    "RateLimiter",
    "RetryPolicy",
    "LoggingTelemetrySink",
    "HttpTelemetrySink",

    # Errors
    "PipelineError",
    "UnknownModelError",
    "JobNotFoundError",
    "ImageRejectedError",
    "RateLimited",
    "Unavailable",
    "Invalid",
    "Unauthorized",

    # Schemas - Config
    "DEFAULT_MODEL",
    "InferenceConfig",
    "ModelCatalog",
    "ModelConfig",
    "PipelineConfig",

    # Schemas - Jobs
    "ImageRef",
    "Metadata",
    "BatchJob",
    "BatchResult",
    "ErrorKind",
    "TaskResult",
    "TaskState",

    # I/O
    "load_image",
    "load_images",
    "export_batch",
    "generate_csv",
]

"""Data schemas for the Stockify metadata pipeline."""

from .common import ImageRef, Metadata
from .job import (
    BatchJob,
    BatchResult,
    ErrorKind,
    ImageTask,
    TaskError,
    TaskResult,
    TaskState,
)
from .config import (
    DEFAULT_MODEL,
    InferenceConfig,
    ModelCatalog,
    ModelConfig,
    PipelineConfig,
)

__all__ = [
    "ImageRef",
    "Metadata",
    "BatchJob",
    "BatchResult",
    "ErrorKind",
    "ImageTask",
    "TaskError",
    "TaskResult",
    "TaskState",
    "DEFAULT_MODEL",
    "InferenceConfig",
    "ModelCatalog",
    "ModelConfig",
    "PipelineConfig",
]

"""Configuration schemas for the pipeline, the model catalog and the clients."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

import yaml

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

DAY_SECONDS = 24 * 60 * 60


@dataclass
class ModelConfig:
    """Catalog entry for one model.

    Attributes:
        model_id: Model identifier sent upstream
        name: Display name
        endpoint: generateContent URL (defaults to the public Gemini endpoint)
        daily_limit: Calls allowed per quota window
        window_s: Quota window length in seconds
        rate_capacity: Token bucket capacity (burst size)
        rate_refill_per_s: Token bucket refill rate (tokens per second)
    """
    model_id: str
    name: str = ""
    endpoint: str = ""
    daily_limit: int = 1000
    window_s: float = DAY_SECONDS
    rate_capacity: float = 30.0
    rate_refill_per_s: float = 0.5

    def __post_init__(self):
        if not self.name:
            self.name = self.model_id
        if not self.endpoint:
            self.endpoint = GEMINI_ENDPOINT.format(model=self.model_id)
        if self.daily_limit < 0:
            raise ValueError(f"daily_limit must be >= 0, got {self.daily_limit}")
        if self.rate_capacity <= 0 or self.rate_refill_per_s <= 0:
            raise ValueError(
                f"Rate limit for {self.model_id} needs positive capacity and refill"
            )


class ModelCatalog:
    """Read-only mapping of model id -> ModelConfig."""

    def __init__(self, models: List[ModelConfig]):
        self._models: Dict[str, ModelConfig] = {m.model_id: m for m in models}

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._models

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def get(self, model_id: str) -> ModelConfig:
        """Get model config.

        Raises:
            KeyError: If model is not in the catalog
        """
        return self._models[model_id]

    @classmethod
    def default(cls) -> "ModelCatalog":
        """Gemini models served by the metadata proxy (1000 calls/day, 30/min)."""
        return cls([
            ModelConfig("gemini-3-flash-preview", name="Gemini 3 Flash Preview"),
            ModelConfig("gemini-3-flash", name="Gemini 3 Flash"),
            ModelConfig("gemini-2.5-flash", name="Gemini 2.5 Flash"),
            ModelConfig("gemini-2.5-flash-lite", name="Gemini 2.5 Flash Lite"),
        ])

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ModelCatalog":
        """Load catalog from a YAML file.

        Expected format:
            models:
              - model_id: gemini-2.5-flash
                daily_limit: 1000
                rate_capacity: 30
                rate_refill_per_s: 0.5

        Raises:
            ValueError: If the file has no models list
        """
        with Path(path).open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        entries = data.get("models")
        if not isinstance(entries, list) or not entries:
            raise ValueError(f"No 'models' list in catalog file {path}")

        return cls([ModelConfig(**entry) for entry in entries])


DEFAULT_MODEL = "gemini-3-flash-preview"


@dataclass
class PipelineConfig:
    """Configuration for the batch orchestrator.

    Attributes:
        fan_out: Max concurrent inference calls per batch
        max_attempts: Max inference calls per image before giving up
        backoff_base_s: First retry delay
        backoff_max_s: Cap on computed retry delay
        jitter_fraction: Random extra delay as a fraction of the computed one
        fallback_models: Models tried in order when the selected one is out of quota
        state_dir: Directory for the persistent quota ledger (None = in-memory)
        log_level: Logging level
    """
    fan_out: int = 4
    max_attempts: int = 5
    backoff_base_s: float = 1.0
    backoff_max_s: float = 60.0
    jitter_fraction: float = 0.25
    fallback_models: Tuple[str, ...] = ()
    state_dir: Optional[Path] = None
    log_level: str = "INFO"

    def __post_init__(self):
        if self.fan_out < 1:
            raise ValueError(f"fan_out must be >= 1, got {self.fan_out}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        self.fallback_models = tuple(self.fallback_models)


@dataclass
class InferenceConfig:
    """Configuration for inference clients.

    Attributes:
        api_key: Gemini API key (from GEMINI_API_KEY if not provided)
        timeout_sec: Request timeout in seconds
        platform: Target stock platform ("shutterstock" or "adobe_stock")
        proxy_url: Metadata proxy URL (from STOCKIFY_PROXY_URL if not provided)
        temperature: Sampling temperature
        max_output_tokens: Response token cap
    """
    api_key: Optional[str] = None
    timeout_sec: int = 60
    platform: str = "shutterstock"
    proxy_url: Optional[str] = None
    temperature: float = 0.1
    max_output_tokens: int = 1024

    def __post_init__(self):
        if self.api_key is None:
            self.api_key = os.getenv("GEMINI_API_KEY")
        if self.proxy_url is None:
            self.proxy_url = os.getenv("STOCKIFY_PROXY_URL")
        if self.platform not in ("shutterstock", "adobe_stock"):
            raise ValueError(f"Unknown platform: {self.platform}")

"""Tests for configuration schemas and the model catalog."""

from pathlib import Path

import pytest
import yaml

from stockify_pipeline.schemas.config import (
    DEFAULT_MODEL,
    GEMINI_ENDPOINT,
    InferenceConfig,
    ModelCatalog,
    ModelConfig,
    PipelineConfig,
)


class TestModelConfig:
    """Test ModelConfig defaults and validation."""

    def test_defaults(self):
        config = ModelConfig("gemini-2.5-flash")
        assert config.name == "gemini-2.5-flash"
        assert config.endpoint == GEMINI_ENDPOINT.format(model="gemini-2.5-flash")
        assert config.daily_limit == 1000
        assert config.window_s == 86400

    def test_rejects_negative_limit(self):
        with pytest.raises(ValueError):
            ModelConfig("m", daily_limit=-1)

    def test_rejects_zero_refill(self):
        with pytest.raises(ValueError):
            ModelConfig("m", rate_refill_per_s=0)


class TestModelCatalog:
    """Test ModelCatalog lookup and loading."""

    def test_default_catalog(self):
        catalog = ModelCatalog.default()
        assert DEFAULT_MODEL in catalog
        assert len(catalog) == 4
        assert all(catalog.get(m).daily_limit == 1000 for m in catalog)

    def test_get_unknown(self):
        with pytest.raises(KeyError):
            ModelCatalog.default().get("nope")

    def test_from_yaml(self, tmp_path: Path):
        path = tmp_path / "models.yaml"
        path.write_text(yaml.safe_dump({"models": [
            {"model_id": "a", "daily_limit": 5, "rate_capacity": 2, "rate_refill_per_s": 1},
            {"model_id": "b"},
        ]}), encoding="utf-8")

        catalog = ModelCatalog.from_yaml(path)

        assert list(catalog) == ["a", "b"]
        assert catalog.get("a").daily_limit == 5
        assert catalog.get("b").rate_capacity == 30.0

    def test_from_yaml_without_models(self, tmp_path: Path):
        path = tmp_path / "empty.yaml"
        path.write_text("other: 1\n", encoding="utf-8")
        with pytest.raises(ValueError):
            ModelCatalog.from_yaml(path)


class TestPipelineConfig:
    """Test PipelineConfig validation."""

    def test_defaults(self):
        config = PipelineConfig()
        assert config.fan_out == 4
        assert config.max_attempts == 5
        assert config.fallback_models == ()
        assert config.state_dir is None

    def test_fallback_models_become_tuple(self):
        assert PipelineConfig(fallback_models=["a", "b"]).fallback_models == ("a", "b")

    @pytest.mark.parametrize("kwargs", [{"fan_out": 0}, {"max_attempts": 0}])
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ValueError):
            PipelineConfig(**kwargs)


class TestInferenceConfig:
    """Test InferenceConfig environment defaults."""

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        monkeypatch.setenv("STOCKIFY_PROXY_URL", "https://proxy.test")
        config = InferenceConfig()
        assert config.api_key == "env-key"
        assert config.proxy_url == "https://proxy.test"

    def test_explicit_values_win(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        assert InferenceConfig(api_key="explicit").api_key == "explicit"

    def test_rejects_unknown_platform(self):
        with pytest.raises(ValueError):
            InferenceConfig(api_key="k", platform="getty")

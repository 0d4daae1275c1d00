"""Tests for pipeline configuration loading."""

import json
from pathlib import Path

import pytest

from clip_gate.config import PipelineConfig, load_pipeline_config, save_pipeline_config
from clip_gate.errors import ConfigurationError


class TestPipelineConfig:
    """Tests for PipelineConfig defaults and validation."""

    def test_defaults(self):
        config = PipelineConfig()

        assert config.retry_budget == 3
        assert config.inference.provider == "claude"
        assert config.overlay.ring_brand == "HomeCam"
        assert config.review_dir == Path("review")
        assert config.alert_webhook_url is None

    @pytest.mark.parametrize("field", ["retry_budget", "keyframe_count", "max_concurrent_scenes"])
    def test_counts_must_be_positive(self, field):
        with pytest.raises(ValueError):
            PipelineConfig(**{field: 0})

    def test_timeouts_must_be_positive(self):
        with pytest.raises(ValueError):
            PipelineConfig(inference_timeout=0)


class TestLoadPipelineConfig:
    """Tests for layered config loading."""

    def test_no_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        config = load_pipeline_config(environ={})

        assert config == PipelineConfig()

    def test_file_values(self, tmp_path):
        path = tmp_path / "clip_gate.json"
        path.write_text(json.dumps({"retry_budget": 5, "inference": {"provider": "openai"}}), encoding="utf-8")

        config = load_pipeline_config(path, environ={})

        assert config.retry_budget == 5
        assert config.inference.provider == "openai"
        assert config.inference.max_tokens == 1024

    def test_env_overrides_file(self, tmp_path):
        """Test environment variables win over the file, including nested keys."""
        path = tmp_path / "clip_gate.json"
        path.write_text(json.dumps({"retry_budget": 5, "inference": {"max_tokens": 512}}), encoding="utf-8")
        environ = {
            "CLIP_GATE_RETRY_BUDGET": "2",
            "CLIP_GATE_INFERENCE__PROVIDER": "openai",
            "UNRELATED": "x",
        }

        config = load_pipeline_config(path, environ=environ)

        assert config.retry_budget == 2
        assert config.inference.provider == "openai"
        assert config.inference.max_tokens == 512

    def test_config_path_from_env(self, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"keyframe_count": 8}), encoding="utf-8")

        config = load_pipeline_config(environ={"CLIP_GATE_CONFIG": str(path)})

        assert config.keyframe_count == 8

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_pipeline_config(tmp_path / "missing.json", environ={})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "clip_gate.json"
        path.write_text("{broken", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            load_pipeline_config(path, environ={})

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "clip_gate.json"
        path.write_text(json.dumps({"retry_budget": 0}), encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid pipeline configuration"):
            load_pipeline_config(path, environ={})


class TestSavePipelineConfig:
    """Tests for saving config."""

    def test_save_and_reload(self, tmp_path):
        original = PipelineConfig(retry_budget=4, alert_webhook_url="https://hooks.example.com/x")
        path = save_pipeline_config(original, tmp_path / "nested" / "clip_gate.json")

        assert path.exists()
        assert not (path.parent / "clip_gate.json.tmp").exists()
        assert load_pipeline_config(path, environ={}) == original

"""Unit tests for settings and pipeline configuration."""

import pytest
from pydantic import ValidationError

from scenegen.config.settings import PipelineConfig, Settings


class TestPipelineConfig:
    def test_defaults_are_valid(self):
        config = PipelineConfig()
        assert config.renew_interval < config.lease_ttl / 2
        assert config.max_attempts == 5

    def test_renew_interval_must_be_under_half_ttl(self):
        with pytest.raises(ValidationError):
            PipelineConfig(lease_ttl=10.0, renew_interval=5.0)

    def test_poll_bounds(self):
        with pytest.raises(ValidationError):
            PipelineConfig(poll_interval=5.0, poll_max_interval=1.0)

    def test_retry_bounds(self):
        with pytest.raises(ValidationError):
            PipelineConfig(retry_base_delay=10.0, retry_max_delay=1.0)


class TestSettings:
    def test_env_prefix_and_nested_pipeline(self, monkeypatch):
        monkeypatch.setenv("SCENEGEN_LEASE_BACKEND", "memory")
        monkeypatch.setenv("SCENEGEN_PIPELINE__WORKERS", "7")
        monkeypatch.setenv("SCENEGEN_PIPELINE__MAX_ATTEMPTS", "2")

        settings = Settings(_env_file=None)

        assert settings.lease_backend == "memory"
        assert settings.pipeline.workers == 7
        assert settings.pipeline.max_attempts == 2

    def test_chunking_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.chunk_size == 2000
        assert settings.chunk_overlap == 100
        assert settings.chunk_separator == "\n\n"
        assert settings.max_name_length == 50

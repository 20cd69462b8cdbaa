"""Tests for environment configuration."""

import pytest

from eobflow.config import Config

REQUIRED = {
    "DATABASE_URL": "postgresql://localhost/eob",
    "S3_ENDPOINT": "https://r2.example.com",
    "AWS_ACCESS_KEY_ID": "key",
    "AWS_SECRET_ACCESS_KEY": "secret",
    "EXTRACTION_API_URL": "https://extract.example.com/v1",
    "EXTRACTION_API_KEY": "token",
}


@pytest.fixture
def env(monkeypatch):
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    for name in ("ANALYTICS_DATABASE_URL", "GCS_ACCESS_KEY_ID", "GCS_SECRET_ACCESS_KEY", "MAX_PAGES_PER_DOC"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfig:

    def test_defaults(self, env):
        config = Config.from_env()

        assert config.database_url == "postgresql://localhost/eob"
        assert config.analytics_url == config.database_url
        assert config.max_pages_per_doc == 500
        assert config.page_max_attempts == 3
        assert config.dispatch_batch_size == 5
        assert config.dispatch_batch_delay_sec == 2.5
        assert config.sweep_stale_queued_sec == 300
        assert config.sweep_retry_cooldown_sec == 120
        assert config.low_confidence_threshold == 85.0
        assert config.gcs_enabled is False

    def test_overrides(self, env):
        env.setenv("ANALYTICS_DATABASE_URL", "postgresql://warehouse/eob")
        env.setenv("MAX_PAGES_PER_DOC", "50")
        env.setenv("GCS_ACCESS_KEY_ID", "hmac")
        env.setenv("GCS_SECRET_ACCESS_KEY", "hmac-secret")

        config = Config.from_env()

        assert config.analytics_url == "postgresql://warehouse/eob"
        assert config.max_pages_per_doc == 50
        assert config.gcs_enabled is True

    def test_missing_required_variables_are_listed(self, env):
        env.delenv("DATABASE_URL")
        env.delenv("EXTRACTION_API_KEY")

        with pytest.raises(ValueError) as exc_info:
            Config.from_env()

        assert "DATABASE_URL" in str(exc_info.value)
        assert "EXTRACTION_API_KEY" in str(exc_info.value)

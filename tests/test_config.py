"""
Tests for configuration loading and validation.
"""

from pathlib import Path

import pytest

from statement_pipeline.config import Config, create_default_config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "STATEMENT_BUCKET",
        "S3_ENDPOINT_URL",
        "EXTRACTION_URL",
        "EXTRACTION_TIMEOUT",
        "PIPELINE_JOB_TIMEOUT",
        "STATE_DB_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Tests for YAML loading and environment overrides."""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.storage.bucket == "statements"
        assert config.extraction.max_attempts == 4
        assert config.extraction.timeout_seconds == 120.0
        assert config.pipeline.job_timeout_seconds == 150.0
        assert config.pipeline.requeue_statuses == [429]
        assert config.state_db_path == Path("data/state.db")
        assert config.validate() == []

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "storage:\n"
            "  bucket: uploads\n"
            "extraction:\n"
            "  base_url: http://gpu-box:11434\n"
            "  max_attempts: 2\n"
            "pipeline:\n"
            "  requeue_statuses: [429, 503]\n"
            "  transaction_batch_size: 100\n"
            f"state_db_path: {tmp_path / 'state.db'}\n"
        )

        config = load_config(path)

        assert config.storage.bucket == "uploads"
        assert config.extraction.base_url == "http://gpu-box:11434"
        assert config.extraction.max_attempts == 2
        assert config.pipeline.requeue_statuses == [429, 503]
        assert config.pipeline.transaction_batch_size == 100
        assert config.state_db_path == tmp_path / "state.db"

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("extraction:\n  timeout_seconds: 60\n")
        monkeypatch.setenv("EXTRACTION_URL", "https://extract.example.com")
        monkeypatch.setenv("EXTRACTION_TIMEOUT", "45")
        monkeypatch.setenv("PIPELINE_JOB_TIMEOUT", "not-a-number")
        monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "env.db"))

        config = load_config(path)

        assert config.extraction.base_url == "https://extract.example.com"
        assert config.extraction.timeout_seconds == 45.0
        assert config.pipeline.job_timeout_seconds == 150.0
        assert config.state_db_path == tmp_path / "env.db"

    def test_default_config_round_trips(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"

        create_default_config(path)

        assert load_config(path).validate() == []


class TestValidate:
    """Tests for validation messages."""

    def test_invalid_values(self):
        config = Config()
        config.storage.bucket = ""
        config.extraction.max_attempts = 0
        config.pipeline.transaction_batch_size = 1000

        errors = config.validate()

        assert "storage.bucket is required" in errors
        assert "extraction.max_attempts must be at least 1" in errors
        assert "pipeline.transaction_batch_size must be between 1 and 500" in errors


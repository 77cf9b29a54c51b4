"""Tests for pipeline configuration."""

from pathlib import Path

import pytest

from facecue.config import PLACEHOLDER_ACCESS_KEY, PLACEHOLDER_SECRET_KEY, PipelineConfig

ENV_VARS = [
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_REGION",
    "FACECUE_SIMILARITY_THRESHOLD",
    "FACECUE_STABILITY_THRESHOLD",
    "FACECUE_COOLDOWN",
    "FACECUE_QUALITY_POLICY",
    "FACECUE_AUTO_RECOGNITION",
    "FACECUE_OFFLINE_CACHE",
    "FACECUE_HISTORY",
    "FACECUE_PHOTO_DIR",
    "FACECUE_CAMERA_MODE",
    "FACECUE_CLOUD_CONCURRENCY",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Unset every config variable and restore them afterwards."""
    for name in ENV_VARS:
        # setenv first so teardown also removes values loaded from .env files
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestFromEnv:
    """Tests for environment loading."""

    def test_defaults(self, clean_env, tmp_path):
        """Test defaults with no environment."""
        config = PipelineConfig.from_env(tmp_path / "missing.env")
        assert config.aws_region == "us-east-1"
        assert config.similarity_threshold == 70.0
        assert config.stability_threshold_seconds == 1.5
        assert config.recognition_cooldown_seconds == 5.0
        assert config.quality_policy == "reset"
        assert config.auto_recognition is True
        assert config.offline_cache_path is None
        assert config.photo_dir == Path("photos")
        assert config.camera_mode == "auto"
        assert not config.cloud_configured

    def test_overrides(self, clean_env, tmp_path):
        """Test that environment variables are parsed."""
        clean_env.setenv("AWS_ACCESS_KEY_ID", "AKIDREAL")
        clean_env.setenv("AWS_SECRET_ACCESS_KEY", "realsecret")
        clean_env.setenv("AWS_REGION", "eu-west-1")
        clean_env.setenv("FACECUE_SIMILARITY_THRESHOLD", "82.5")
        clean_env.setenv("FACECUE_QUALITY_POLICY", "pause")
        clean_env.setenv("FACECUE_AUTO_RECOGNITION", "FALSE")
        clean_env.setenv("FACECUE_OFFLINE_CACHE", str(tmp_path / "faces.json"))
        clean_env.setenv("FACECUE_CAMERA_MODE", "glasses")
        clean_env.setenv("FACECUE_CLOUD_CONCURRENCY", "3")

        config = PipelineConfig.from_env(tmp_path / "missing.env")

        assert config.similarity_threshold == 82.5
        assert config.quality_policy == "pause"
        assert config.auto_recognition is False
        assert config.offline_cache_path == tmp_path / "faces.json"
        assert config.camera_mode == "glasses"
        assert config.cloud_max_concurrency == 3
        credentials = config.credentials()
        assert credentials.access_key_id == "AKIDREAL"
        assert credentials.region == "eu-west-1"

    def test_dotenv_file(self, clean_env, tmp_path):
        """Test that values are read from a .env file."""
        dotenv = tmp_path / ".env"
        dotenv.write_text("AWS_REGION=ap-south-1\nFACECUE_COOLDOWN=8\n")
        config = PipelineConfig.from_env(dotenv)
        assert config.aws_region == "ap-south-1"
        assert config.recognition_cooldown_seconds == 8.0

    def test_environment_beats_dotenv(self, clean_env, tmp_path):
        """Test that real variables take precedence."""
        dotenv = tmp_path / ".env"
        dotenv.write_text("AWS_REGION=ap-south-1\n")
        clean_env.setenv("AWS_REGION", "us-west-2")
        assert PipelineConfig.from_env(dotenv).aws_region == "us-west-2"


class TestCredentials:
    """Tests for credential handling."""

    @pytest.mark.parametrize(
        "key,secret",
        [
            (None, "secret"),
            ("AKID", None),
            ("", "secret"),
            (PLACEHOLDER_ACCESS_KEY, "secret"),
            ("AKID", PLACEHOLDER_SECRET_KEY),
        ],
    )
    def test_unusable_credentials(self, key, secret):
        """Test that missing or placeholder keys mean not configured."""
        config = PipelineConfig(aws_access_key_id=key, aws_secret_access_key=secret)
        assert config.credentials() is None
        assert not config.cloud_configured

    def test_usable_credentials(self):
        """Test that real keys are configured."""
        config = PipelineConfig(aws_access_key_id="AKID", aws_secret_access_key="s3cr3t")
        assert config.cloud_configured

    def test_repr_masks_key(self):
        """Test that repr never shows credentials."""
        config = PipelineConfig(aws_access_key_id="AKIDREAL", aws_secret_access_key="s3cr3t")
        text = repr(config)
        assert "AKIDREAL" not in text
        assert "s3cr3t" not in text
        assert "***" in text


class TestValidate:
    """Tests for validation."""

    def test_default_is_valid(self):
        """Test that defaults validate."""
        assert PipelineConfig().is_valid()

    @pytest.mark.parametrize(
        "field,value",
        [
            ("similarity_threshold", 120.0),
            ("stability_threshold_seconds", 0.0),
            ("recognition_cooldown_seconds", -1.0),
            ("quality_policy", "sometimes"),
            ("camera_mode", "drone"),
            ("cloud_max_concurrency", 0),
            ("cloud_attempt_budget_seconds", 0.0),
            ("offline_match_threshold", 1.5),
            ("frame_channel_size", 0),
        ],
    )
    def test_invalid_values(self, field, value):
        """Test that each bad value is reported."""
        config = PipelineConfig(**{field: value})
        assert not config.is_valid()
        assert len(config.validate()) == 1

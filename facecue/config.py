"""
Facecue - Pipeline Configuration
Configuration for the recognition pipeline with environment variable support.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv

from .constants import (
    CLOUD_ATTEMPT_BUDGET_SECONDS,
    CLOUD_DEFAULT_REGION,
    CLOUD_MAX_CONCURRENCY,
    CLOUD_REQUEST_TIMEOUT_SECONDS,
    CLOUD_SIMILARITY_THRESHOLD,
    FRAME_CHANNEL_SIZE,
    MIN_DETECTION_CONFIDENCE,
    OFFLINE_MATCH_THRESHOLD,
    OFFLINE_MAX_AGE_SECONDS,
    OFFLINE_MAX_RECORDS_PER_PERSON,
    OFFLINE_MAX_RECORDS_TOTAL,
    RECOGNITION_COOLDOWN_SECONDS,
    STABILITY_THRESHOLD_SECONDS,
)
from .matching.sigv4 import AwsCredentials

PLACEHOLDER_ACCESS_KEY = "YOUR_AWS_ACCESS_KEY_ID"
PLACEHOLDER_SECRET_KEY = "YOUR_AWS_SECRET_ACCESS_KEY"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class PipelineConfig:
    """Configuration for the face-recognition pipeline."""

    # Cloud credentials
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_region: str = CLOUD_DEFAULT_REGION

    # Cloud matching
    similarity_threshold: float = CLOUD_SIMILARITY_THRESHOLD
    request_timeout_seconds: float = CLOUD_REQUEST_TIMEOUT_SECONDS
    cloud_max_concurrency: int = CLOUD_MAX_CONCURRENCY
    cloud_attempt_budget_seconds: float = CLOUD_ATTEMPT_BUDGET_SECONDS

    # Stability tracking
    stability_threshold_seconds: float = STABILITY_THRESHOLD_SECONDS
    recognition_cooldown_seconds: float = RECOGNITION_COOLDOWN_SECONDS
    quality_policy: Literal["reset", "pause", "ignore"] = "reset"
    auto_recognition: bool = True
    min_detection_confidence: float = MIN_DETECTION_CONFIDENCE

    # Offline cache
    offline_cache_path: Path | None = None
    offline_max_per_person: int = OFFLINE_MAX_RECORDS_PER_PERSON
    offline_max_total: int = OFFLINE_MAX_RECORDS_TOTAL
    offline_max_age_seconds: float = OFFLINE_MAX_AGE_SECONDS
    offline_match_threshold: float = OFFLINE_MATCH_THRESHOLD

    # History and reference photos
    history_path: Path | None = None
    photo_dir: Path = Path("photos")

    # Frame sources
    camera_mode: Literal["phone", "glasses", "auto"] = "auto"
    webcam_device: int = 0
    frame_channel_size: int = FRAME_CHANNEL_SIZE

    @classmethod
    def from_env(cls, dotenv_path: str | Path | None = None) -> "PipelineConfig":
        """
        Load configuration from environment variables.

        A .env file is loaded first if present; real environment variables
        take precedence over its values.

        Environment variables:
            AWS_ACCESS_KEY_ID: Cloud access key
            AWS_SECRET_ACCESS_KEY: Cloud secret key
            AWS_REGION: Cloud region (default us-east-1)
            FACECUE_SIMILARITY_THRESHOLD: Cloud similarity threshold (0-100)
            FACECUE_REQUEST_TIMEOUT: Per-request timeout (seconds)
            FACECUE_CLOUD_CONCURRENCY: Max concurrent comparisons per attempt
            FACECUE_CLOUD_BUDGET: Per-attempt time budget (seconds)
            FACECUE_STABILITY_THRESHOLD: Seconds a face must be stable
            FACECUE_COOLDOWN: Seconds between attempts
            FACECUE_QUALITY_POLICY: "reset", "pause" or "ignore"
            FACECUE_AUTO_RECOGNITION: Enable automatic recognition
            FACECUE_MIN_CONFIDENCE: Landmark detector confidence floor
            FACECUE_OFFLINE_CACHE: Path of the offline face cache JSON file
            FACECUE_OFFLINE_THRESHOLD: Offline similarity threshold (0-1)
            FACECUE_HISTORY: Path of the recognition history JSON file
            FACECUE_PHOTO_DIR: Directory of reference photos
            FACECUE_CAMERA_MODE: "phone", "glasses" or "auto"
            FACECUE_WEBCAM_DEVICE: OpenCV device index for the phone camera
        """
        load_dotenv(dotenv_path)

        cache_path = os.getenv("FACECUE_OFFLINE_CACHE")
        history_path = os.getenv("FACECUE_HISTORY")

        return cls(
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            aws_region=os.getenv("AWS_REGION", CLOUD_DEFAULT_REGION),
            similarity_threshold=float(
                os.getenv("FACECUE_SIMILARITY_THRESHOLD", str(CLOUD_SIMILARITY_THRESHOLD))
            ),
            request_timeout_seconds=float(
                os.getenv("FACECUE_REQUEST_TIMEOUT", str(CLOUD_REQUEST_TIMEOUT_SECONDS))
            ),
            cloud_max_concurrency=int(
                os.getenv("FACECUE_CLOUD_CONCURRENCY", str(CLOUD_MAX_CONCURRENCY))
            ),
            cloud_attempt_budget_seconds=float(
                os.getenv("FACECUE_CLOUD_BUDGET", str(CLOUD_ATTEMPT_BUDGET_SECONDS))
            ),
            stability_threshold_seconds=float(
                os.getenv("FACECUE_STABILITY_THRESHOLD", str(STABILITY_THRESHOLD_SECONDS))
            ),
            recognition_cooldown_seconds=float(
                os.getenv("FACECUE_COOLDOWN", str(RECOGNITION_COOLDOWN_SECONDS))
            ),
            quality_policy=os.getenv("FACECUE_QUALITY_POLICY", "reset"),  # type: ignore
            auto_recognition=_env_bool("FACECUE_AUTO_RECOGNITION", "true"),
            min_detection_confidence=float(
                os.getenv("FACECUE_MIN_CONFIDENCE", str(MIN_DETECTION_CONFIDENCE))
            ),
            offline_cache_path=Path(cache_path) if cache_path else None,
            offline_match_threshold=float(
                os.getenv("FACECUE_OFFLINE_THRESHOLD", str(OFFLINE_MATCH_THRESHOLD))
            ),
            history_path=Path(history_path) if history_path else None,
            photo_dir=Path(os.getenv("FACECUE_PHOTO_DIR", "photos")),
            camera_mode=os.getenv("FACECUE_CAMERA_MODE", "auto"),  # type: ignore
            webcam_device=int(os.getenv("FACECUE_WEBCAM_DEVICE", "0")),
        )

    @property
    def cloud_configured(self) -> bool:
        """True if real (non-placeholder) cloud credentials are present."""
        return self.credentials() is not None

    def credentials(self) -> AwsCredentials | None:
        """
        Build cloud credentials.

        Returns:
            AwsCredentials, or None if keys are missing or still placeholders
        """
        if not self.aws_access_key_id or not self.aws_secret_access_key:
            return None
        if self.aws_access_key_id == PLACEHOLDER_ACCESS_KEY:
            return None
        if self.aws_secret_access_key == PLACEHOLDER_SECRET_KEY:
            return None
        return AwsCredentials(
            access_key_id=self.aws_access_key_id,
            secret_access_key=self.aws_secret_access_key,
            region=self.aws_region,
        )

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of issues.

        Returns:
            List of validation error messages (empty if valid)
        """
        issues = []

        if not 0 <= self.similarity_threshold <= 100:
            issues.append("Similarity threshold must be between 0 and 100")

        if self.stability_threshold_seconds <= 0:
            issues.append("Stability threshold must be positive")

        if self.recognition_cooldown_seconds < 0:
            issues.append("Recognition cooldown cannot be negative")

        if self.quality_policy not in ("reset", "pause", "ignore"):
            issues.append(f"Unknown quality policy: {self.quality_policy}")

        if self.camera_mode not in ("phone", "glasses", "auto"):
            issues.append(f"Unknown camera mode: {self.camera_mode}")

        if self.cloud_max_concurrency < 1:
            issues.append("Cloud concurrency must be >= 1")

        if self.cloud_attempt_budget_seconds <= 0:
            issues.append("Cloud attempt budget must be positive")

        if self.request_timeout_seconds < 1:
            issues.append("Request timeout must be >= 1 second")

        if not 0 < self.offline_match_threshold < 1:
            issues.append("Offline match threshold must be between 0 and 1")

        if self.offline_max_per_person < 1 or self.offline_max_total < 1:
            issues.append("Offline cache limits must be >= 1")

        if self.frame_channel_size < 1:
            issues.append("Frame channel size must be >= 1")

        return issues

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return len(self.validate()) == 0

    def __repr__(self) -> str:
        key_display = "***" if self.aws_access_key_id else "None"
        return (
            f"PipelineConfig(region={self.aws_region}, "
            f"aws_key={key_display}, camera={self.camera_mode}, "
            f"auto={self.auto_recognition}, policy={self.quality_policy})"
        )

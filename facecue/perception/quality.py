"""
Facecue - Quality Scorer
Scores how usable a frame is for face recognition before any network call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

import numpy as np

from ..constants import (
    BRIGHTNESS_SAMPLE_MAX,
    QUALITY_ACCEPTABLE_SCORE,
    QUALITY_GOOD_SCORE,
    SHARPNESS_SAMPLE_MAX_EDGE,
)
from .types import FaceObservation

logger = logging.getLogger(__name__)

# Fallbacks when an image cannot be measured
DEFAULT_BRIGHTNESS = 128.0
DEFAULT_SHARPNESS = 100.0


class IssueKind(str, Enum):
    """Kinds of frame quality problems."""

    NO_FACE = "no_face"
    MULTIPLE_FACES = "multiple_faces"
    TOO_DARK = "too_dark"
    TOO_BRIGHT = "too_bright"
    TOO_FAR = "too_far"
    TOO_CLOSE = "too_close"
    OFF_CENTER = "off_center"
    NOT_FACING_CAMERA = "not_facing_camera"
    BLURRY = "blurry"
    PERFECT = "perfect"


_MESSAGES = {
    IssueKind.NO_FACE: "No face detected",
    IssueKind.TOO_DARK: "Too dark - find better lighting",
    IssueKind.TOO_BRIGHT: "Too bright - reduce lighting",
    IssueKind.TOO_FAR: "Move closer",
    IssueKind.TOO_CLOSE: "Move back a bit",
    IssueKind.OFF_CENTER: "Center your face",
    IssueKind.NOT_FACING_CAMERA: "Look at the camera",
    IssueKind.BLURRY: "Hold still",
    IssueKind.PERFECT: "Perfect! Hold steady",
}

_SEVERITY = {
    IssueKind.NO_FACE: 3,
    IssueKind.MULTIPLE_FACES: 3,
    IssueKind.TOO_DARK: 2,
    IssueKind.TOO_BRIGHT: 2,
    IssueKind.TOO_FAR: 2,
    IssueKind.TOO_CLOSE: 2,
    IssueKind.OFF_CENTER: 1,
    IssueKind.NOT_FACING_CAMERA: 2,
    IssueKind.BLURRY: 2,
    IssueKind.PERFECT: 0,
}


@dataclass(frozen=True)
class QualityIssue:
    """
    A single detected quality issue.

    Attributes:
        kind: Issue kind
        count: Number of faces, only set for MULTIPLE_FACES
    """

    kind: IssueKind
    count: int | None = None

    @classmethod
    def multiple_faces(cls, count: int) -> QualityIssue:
        return cls(IssueKind.MULTIPLE_FACES, count)

    @property
    def message(self) -> str:
        """User-facing guidance for this issue."""
        if self.kind == IssueKind.MULTIPLE_FACES:
            return f"Only one face please ({self.count} detected)"
        return _MESSAGES[self.kind]

    @property
    def severity(self) -> int:
        return _SEVERITY[self.kind]

    @property
    def is_problem(self) -> bool:
        return self.kind != IssueKind.PERFECT

    def __str__(self) -> str:
        if self.kind == IssueKind.MULTIPLE_FACES:
            return f"multiple_faces({self.count})"
        return self.kind.value


NO_FACE = QualityIssue(IssueKind.NO_FACE)
TOO_DARK = QualityIssue(IssueKind.TOO_DARK)
TOO_BRIGHT = QualityIssue(IssueKind.TOO_BRIGHT)
TOO_FAR = QualityIssue(IssueKind.TOO_FAR)
TOO_CLOSE = QualityIssue(IssueKind.TOO_CLOSE)
OFF_CENTER = QualityIssue(IssueKind.OFF_CENTER)
NOT_FACING_CAMERA = QualityIssue(IssueKind.NOT_FACING_CAMERA)
BLURRY = QualityIssue(IssueKind.BLURRY)
PERFECT = QualityIssue(IssueKind.PERFECT)


@dataclass(frozen=True)
class QualityThresholds:
    """Tunable acceptance and ideal ranges with their penalties."""

    # Brightness (0-255 grayscale mean)
    min_brightness: float = 40.0
    max_brightness: float = 220.0
    ideal_min_brightness: float = 80.0
    ideal_max_brightness: float = 180.0
    brightness_penalty: float = 30.0
    brightness_ideal_penalty: float = 10.0

    # Face width as a fraction of frame width
    min_face_size: float = 0.15
    max_face_size: float = 0.8
    ideal_min_face_size: float = 0.25
    ideal_max_face_size: float = 0.6
    too_far_penalty: float = 25.0
    too_close_penalty: float = 20.0
    face_size_ideal_penalty: float = 10.0

    # Distance of face center from frame center
    max_center_offset: float = 0.25
    ideal_center_offset: float = 0.10
    center_penalty: float = 15.0
    center_ideal_penalty: float = 5.0

    # Head angles (radians)
    max_yaw: float = 0.4
    max_roll: float = 0.3
    angle_penalty: float = 25.0

    # Laplacian variance
    min_sharpness: float = 50.0
    ideal_sharpness: float = 100.0
    blur_penalty: float = 25.0
    sharpness_ideal_penalty: float = 10.0


@dataclass(frozen=True)
class QualityMetrics:
    """Raw measurements behind a quality assessment."""

    brightness: float = 0.0
    sharpness: float = 0.0
    face_size: float = 0.0
    center_offset: float = 0.0
    yaw: float = 0.0
    roll: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "brightness": self.brightness,
            "sharpness": self.sharpness,
            "face_size": self.face_size,
            "center_offset": self.center_offset,
            "yaw": self.yaw,
            "roll": self.roll,
        }


@dataclass(frozen=True)
class QualityAssessment:
    """
    Verdict on a single frame.

    Attributes:
        issues: Detected issues in evaluation order ({PERFECT} if none)
        score: Overall score clamped to [0, 100]
        metrics: Raw measurements that produced the score
    """

    issues: tuple[QualityIssue, ...]
    score: float
    metrics: QualityMetrics = QualityMetrics()

    @property
    def is_acceptable(self) -> bool:
        return self.score >= QUALITY_ACCEPTABLE_SCORE

    @property
    def is_good(self) -> bool:
        return self.score >= QUALITY_GOOD_SCORE

    @property
    def is_perfect(self) -> bool:
        return self.issues == (PERFECT,)

    @property
    def primary_issue(self) -> QualityIssue:
        """Most severe issue (first one wins ties)."""
        if not self.issues:
            return PERFECT
        return max(self.issues, key=lambda issue: issue.severity)

    @property
    def face_count(self) -> int | None:
        """Face count if this is a multiple-faces verdict."""
        for issue in self.issues:
            if issue.kind == IssueKind.MULTIPLE_FACES:
                return issue.count
        return None

    def has_issue(self, kind: IssueKind) -> bool:
        return any(issue.kind == kind for issue in self.issues)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for status reporting."""
        return {
            "issues": [str(issue) for issue in self.issues],
            "score": self.score,
            "acceptable": self.is_acceptable,
            "message": self.primary_issue.message,
            "metrics": self.metrics.to_dict(),
        }


def _to_gray(image: np.ndarray) -> np.ndarray:
    import cv2

    if image.ndim == 2:
        return image
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2GRAY)
    return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)


def _is_measurable(image: np.ndarray | None) -> bool:
    return (
        image is not None
        and image.ndim in (2, 3)
        and image.shape[0] > 0
        and image.shape[1] > 0
        and (image.ndim == 2 or image.shape[2] in (3, 4))
    )


def measure_brightness(image: np.ndarray, max_sample: int = BRIGHTNESS_SAMPLE_MAX) -> float:
    """
    Mean grayscale brightness (0-255) on a downsampled copy.

    Args:
        image: RGB numpy array (H, W, 3) or grayscale (H, W)
        max_sample: Cap on each sampled dimension

    Returns:
        Mean brightness, or 128 if the image cannot be measured
    """
    if not _is_measurable(image):
        return DEFAULT_BRIGHTNESS

    import cv2

    height, width = image.shape[:2]
    sample_w = min(width, max_sample)
    sample_h = min(height, max_sample)

    gray = _to_gray(image)
    if (sample_w, sample_h) != (width, height):
        gray = cv2.resize(gray, (sample_w, sample_h), interpolation=cv2.INTER_AREA)

    return float(np.mean(gray))


def measure_sharpness(image: np.ndarray, max_edge: int = SHARPNESS_SAMPLE_MAX_EDGE) -> float:
    """
    Laplacian variance on a downsampled grayscale copy (higher = sharper).

    Uses the 4-neighbour kernel [[0, 1, 0], [1, -4, 1], [0, 1, 0]] over the
    interior pixels.

    Args:
        image: RGB numpy array (H, W, 3) or grayscale (H, W)
        max_edge: Cap on the long edge of the sampled image

    Returns:
        Laplacian variance, or 100 if the image is too small to measure
    """
    if not _is_measurable(image):
        return DEFAULT_SHARPNESS

    import cv2

    height, width = image.shape[:2]
    scale = min(1.0, max_edge / max(width, height))
    sample_w = max(1, int(width * scale))
    sample_h = max(1, int(height * scale))

    gray = _to_gray(image)
    if scale < 1.0:
        gray = cv2.resize(gray, (sample_w, sample_h), interpolation=cv2.INTER_AREA)

    pixels = gray.astype(np.float64)
    if pixels.shape[0] < 3 or pixels.shape[1] < 3:
        return DEFAULT_SHARPNESS

    laplacian = (
        pixels[:-2, 1:-1]
        + pixels[2:, 1:-1]
        + pixels[1:-1, :-2]
        + pixels[1:-1, 2:]
        - 4.0 * pixels[1:-1, 1:-1]
    )
    return float(laplacian.var())


class QualityScorer:
    """
    Frame quality scoring used as a gate before recognition.

    Each metric is checked independently. An acceptance violation adds an
    issue and a large penalty; otherwise falling outside the ideal range
    costs a smaller penalty without an issue.

    Usage:
        scorer = QualityScorer()
        assessment = scorer.score(frame.image, faces)
        if assessment.is_acceptable:
            ...
    """

    def __init__(self, thresholds: QualityThresholds | None = None) -> None:
        self._thresholds = thresholds or QualityThresholds()

    @property
    def thresholds(self) -> QualityThresholds:
        return self._thresholds

    def score(
        self,
        image: np.ndarray,
        faces: Sequence[FaceObservation],
    ) -> QualityAssessment:
        """
        Score a frame given the faces found in it.

        Multiple faces short-circuit to MULTIPLE_FACES with score 0 before
        any other metric is computed.
        """
        if len(faces) > 1:
            return QualityAssessment(
                issues=(QualityIssue.multiple_faces(len(faces)),),
                score=0.0,
            )

        brightness = measure_brightness(image)
        sharpness = measure_sharpness(image)

        if not faces:
            return QualityAssessment(
                issues=(NO_FACE,),
                score=0.0,
                metrics=QualityMetrics(brightness=brightness, sharpness=sharpness),
            )

        face = faces[0]
        return self.assess(
            brightness=brightness,
            sharpness=sharpness,
            face_size=face.width,
            center_offset=face.center_offset,
            yaw=face.yaw,
            roll=face.roll,
        )

    def assess(
        self,
        brightness: float,
        sharpness: float,
        face_size: float,
        center_offset: float,
        yaw: float = 0.0,
        roll: float = 0.0,
    ) -> QualityAssessment:
        """
        Score precomputed metrics for a single face.

        Args:
            brightness: Grayscale mean (0-255)
            sharpness: Laplacian variance
            face_size: Face width as a fraction of frame width
            center_offset: Normalized distance of face center from frame center
            yaw: Head yaw in radians
            roll: Head roll in radians

        Returns:
            QualityAssessment with issues in evaluation order
        """
        t = self._thresholds
        issues: list[QualityIssue] = []
        score = 100.0

        if brightness < t.min_brightness:
            issues.append(TOO_DARK)
            score -= t.brightness_penalty
        elif brightness > t.max_brightness:
            issues.append(TOO_BRIGHT)
            score -= t.brightness_penalty
        elif brightness < t.ideal_min_brightness or brightness > t.ideal_max_brightness:
            score -= t.brightness_ideal_penalty

        if face_size < t.min_face_size:
            issues.append(TOO_FAR)
            score -= t.too_far_penalty
        elif face_size > t.max_face_size:
            issues.append(TOO_CLOSE)
            score -= t.too_close_penalty
        elif face_size < t.ideal_min_face_size or face_size > t.ideal_max_face_size:
            score -= t.face_size_ideal_penalty

        if center_offset > t.max_center_offset:
            issues.append(OFF_CENTER)
            score -= t.center_penalty
        elif center_offset > t.ideal_center_offset:
            score -= t.center_ideal_penalty

        if abs(yaw) > t.max_yaw or abs(roll) > t.max_roll:
            issues.append(NOT_FACING_CAMERA)
            score -= t.angle_penalty

        if sharpness < t.min_sharpness:
            issues.append(BLURRY)
            score -= t.blur_penalty
        elif sharpness < t.ideal_sharpness:
            score -= t.sharpness_ideal_penalty

        if not issues:
            issues.append(PERFECT)

        return QualityAssessment(
            issues=tuple(issues),
            score=max(0.0, min(100.0, score)),
            metrics=QualityMetrics(
                brightness=brightness,
                sharpness=sharpness,
                face_size=face_size,
                center_offset=center_offset,
                yaw=yaw,
                roll=roll,
            ),
        )

"""
Facecue - Face Geometry
Landmark-ratio fingerprints and their heuristic similarity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..constants import OFFLINE_ORIENTATION_TOLERANCE
from ..perception.types import FaceObservation

# (sensitivity, weight) per feature
FEATURE_WEIGHTS: dict[str, tuple[float, float]] = {
    "aspect_ratio": (5.0, 1.0),
    "eye_distance": (10.0, 1.5),
    "nose_position": (8.0, 1.0),
    "mouth_position": (8.0, 1.0),
}


@dataclass(frozen=True)
class GeometryFingerprint:
    """
    Scale-free description of a face.

    Attributes:
        aspect_ratio: Bounding box width over height
        eye_distance: Horizontal eye distance relative to box width
        nose_position: Nose y relative to box height
        mouth_position: Inner-mouth y relative to box height
        roll: Head roll in radians
        yaw: Head yaw in radians
    """

    aspect_ratio: float
    eye_distance: float | None = None
    nose_position: float | None = None
    mouth_position: float | None = None
    roll: float = 0.0
    yaw: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "aspect_ratio": self.aspect_ratio,
            "eye_distance": self.eye_distance,
            "nose_position": self.nose_position,
            "mouth_position": self.mouth_position,
            "roll": self.roll,
            "yaw": self.yaw,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GeometryFingerprint":
        return cls(
            aspect_ratio=float(data["aspect_ratio"]),
            eye_distance=data.get("eye_distance"),
            nose_position=data.get("nose_position"),
            mouth_position=data.get("mouth_position"),
            roll=float(data.get("roll", 0.0)),
            yaw=float(data.get("yaw", 0.0)),
        )


def fingerprint_from_observation(face: FaceObservation) -> GeometryFingerprint:
    """Extract a fingerprint from a detected face."""
    landmarks = face.landmarks
    eye_distance = nose = mouth = None
    if landmarks is not None:
        eye_distance = landmarks.eye_distance
        if landmarks.nose is not None:
            nose = landmarks.nose.y
        if landmarks.inner_mouth is not None:
            mouth = landmarks.inner_mouth.y

    return GeometryFingerprint(
        aspect_ratio=face.aspect_ratio,
        eye_distance=eye_distance,
        nose_position=nose,
        mouth_position=mouth,
        roll=face.roll,
        yaw=face.yaw,
    )


def _feature_score(a: float, b: float, sensitivity: float) -> float:
    return max(0.0, 1.0 - abs(a - b) * sensitivity)


def fingerprint_similarity(
    a: GeometryFingerprint,
    b: GeometryFingerprint,
    orientation_tolerance: float = OFFLINE_ORIENTATION_TOLERANCE,
) -> float:
    """
    Similarity in [0, 1] between two fingerprints.

    Pairs whose roll or yaw differ by more than the tolerance score 0.
    Otherwise the result is the weighted mean of per-feature scores over
    the features both fingerprints have, so identical fingerprints
    score exactly 1.
    """
    if abs(a.roll - b.roll) > orientation_tolerance:
        return 0.0
    if abs(a.yaw - b.yaw) > orientation_tolerance:
        return 0.0

    total = 0.0
    weight_sum = 0.0
    for name, (sensitivity, weight) in FEATURE_WEIGHTS.items():
        va = getattr(a, name)
        vb = getattr(b, name)
        if va is None or vb is None:
            continue
        total += _feature_score(va, vb, sensitivity) * weight
        weight_sum += weight

    if weight_sum == 0:
        return 0.0
    return total / weight_sum

"""
Facecue - Perception Types
Data classes flowing from frame capture through landmark detection.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


class SourceTag(str, Enum):
    """Which camera produced a frame."""

    PRIMARY = "primary"  # Phone camera
    SECONDARY = "secondary"  # Wearable glasses stream


@dataclass(frozen=True)
class Frame:
    """
    A captured camera frame.

    Attributes:
        image: RGB image as numpy array (H, W, 3), dtype uint8
        timestamp: Capture time (seconds, time.time() clock)
        source: Camera that produced the frame
    """

    image: np.ndarray
    timestamp: float = field(default_factory=time.time)
    source: SourceTag = SourceTag.PRIMARY

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


@dataclass(frozen=True)
class Point:
    """A 2D point in normalized (0-1) coordinates."""

    x: float
    y: float

    def distance_to(self, other: Point) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class FaceLandmarks:
    """
    Landmark subset used for quality and geometry fingerprinting.

    All points are normalized to the face bounding box: (0, 0) is the
    box's top-left corner and (1, 1) its bottom-right corner.
    """

    left_eye: Point | None = None
    right_eye: Point | None = None
    nose: Point | None = None
    inner_mouth: Point | None = None

    @property
    def eye_distance(self) -> float | None:
        """Horizontal eye distance relative to face width."""
        if self.left_eye is None or self.right_eye is None:
            return None
        return abs(self.right_eye.x - self.left_eye.x)


@dataclass(frozen=True)
class FaceObservation:
    """
    A face found in a frame by the landmark detector.

    Attributes:
        bbox: Normalized bounding box as (x, y, width, height), origin top-left
        confidence: Detection confidence (0-1)
        landmarks: Landmark subset, or None if not detected
        yaw: Head yaw in radians (0 = facing camera)
        roll: Head roll in radians (0 = upright)
    """

    bbox: tuple[float, float, float, float]
    confidence: float = 1.0
    landmarks: FaceLandmarks | None = None
    yaw: float = 0.0
    roll: float = 0.0

    @property
    def width(self) -> float:
        return self.bbox[2]

    @property
    def height(self) -> float:
        return self.bbox[3]

    @property
    def area(self) -> float:
        """Normalized bounding box area."""
        return self.bbox[2] * self.bbox[3]

    @property
    def center(self) -> Point:
        """Center of the bounding box."""
        x, y, w, h = self.bbox
        return Point(x + w / 2, y + h / 2)

    @property
    def center_offset(self) -> float:
        """Euclidean distance of the box center from the frame center."""
        return self.center.distance_to(Point(0.5, 0.5))

    @property
    def aspect_ratio(self) -> float:
        """Width over height of the bounding box (0 for degenerate boxes)."""
        if self.bbox[3] <= 0:
            return 0.0
        return self.bbox[2] / self.bbox[3]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "bbox": list(self.bbox),
            "confidence": self.confidence,
            "yaw": self.yaw,
            "roll": self.roll,
            "has_landmarks": self.landmarks is not None,
        }

"""
Facecue - Landmark Detector
MTCNN-based face and landmark detection producing normalized observations.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from ..constants import MIN_DETECTION_CONFIDENCE
from .types import FaceLandmarks, FaceObservation, Point

logger = logging.getLogger(__name__)


class LandmarkDetector(ABC):
    """Finds faces in an RGB frame."""

    @abstractmethod
    def detect(self, image: np.ndarray) -> list[FaceObservation]:
        """
        Detect faces in an image.

        Args:
            image: RGB image as numpy array (H, W, 3), dtype uint8

        Returns:
            Observations sorted by area (largest first)
        """


class MTCNNLandmarkDetector(LandmarkDetector):
    """
    Face detection using MTCNN from facenet-pytorch.

    The five MTCNN keypoints (eyes, nose, mouth corners) are mapped to the
    landmark subset used by quality scoring and offline fingerprinting.
    Head roll comes from the eye line; yaw from how far the nose sits off
    the eye midpoint.

    Usage:
        detector = MTCNNLandmarkDetector()
        faces = detector.detect(frame)
    """

    def __init__(
        self,
        device: str | None = None,
        min_confidence: float = MIN_DETECTION_CONFIDENCE,
        min_face_size: int = 40,
        mtcnn: Any = None,
    ) -> None:
        """
        Initialize the detector.

        Args:
            device: 'cuda' or 'cpu'. Auto-detects if None.
            min_confidence: Detection confidence floor (default 0.7)
            min_face_size: Minimum face size in pixels (default 40)
            mtcnn: Pre-built MTCNN-compatible backend (skips model loading)
        """
        self._min_confidence = min_confidence

        if mtcnn is not None:
            self._mtcnn = mtcnn
            self._device = device or "cpu"
        else:
            import torch
            from facenet_pytorch import MTCNN

            if device is None:
                device = "cuda" if torch.cuda.is_available() else "cpu"
            self._device = device
            self._mtcnn = MTCNN(
                margin=0,
                min_face_size=min_face_size,
                thresholds=[0.6, 0.7, 0.7],
                factor=0.709,
                device=device,
                keep_all=True,
                selection_method=None,
            )

        logger.info(
            f"MTCNNLandmarkDetector initialized on {self._device}, "
            f"min_confidence={min_confidence}"
        )

    @property
    def device(self) -> str:
        """Return the compute device being used."""
        return self._device

    def detect(self, image: np.ndarray) -> list[FaceObservation]:
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected RGB image (H, W, 3), got shape {image.shape}")

        height, width = image.shape[:2]

        # boxes: Nx4 [x1, y1, x2, y2] in pixels, points: Nx5x2
        boxes, probs, points = self._mtcnn.detect(image, landmarks=True)
        if boxes is None:
            return []

        faces = []
        for i in range(len(boxes)):
            prob = float(probs[i])
            if prob < self._min_confidence:
                continue

            x1, y1, x2, y2 = (float(v) for v in boxes[i])
            x1, y1 = max(0.0, x1), max(0.0, y1)
            x2, y2 = min(float(width), x2), min(float(height), y2)
            box_w, box_h = x2 - x1, y2 - y1
            if box_w <= 0 or box_h <= 0:
                continue

            bbox = (x1 / width, y1 / height, box_w / width, box_h / height)
            keypoints = points[i] if points is not None else None

            landmarks = None
            roll = 0.0
            yaw = 0.0
            if keypoints is not None:
                landmarks = self._to_landmarks(keypoints, x1, y1, box_w, box_h)
                roll, yaw = self._estimate_pose(keypoints)

            faces.append(
                FaceObservation(
                    bbox=bbox,
                    confidence=prob,
                    landmarks=landmarks,
                    yaw=yaw,
                    roll=roll,
                )
            )

        faces.sort(key=lambda f: f.area, reverse=True)

        logger.debug(f"Detected {len(faces)} faces in frame")
        return faces

    @staticmethod
    def _to_landmarks(
        keypoints: np.ndarray,
        x1: float,
        y1: float,
        box_w: float,
        box_h: float,
    ) -> FaceLandmarks:
        def rel(pt: np.ndarray) -> Point:
            return Point((float(pt[0]) - x1) / box_w, (float(pt[1]) - y1) / box_h)

        mouth = (np.asarray(keypoints[3]) + np.asarray(keypoints[4])) / 2
        return FaceLandmarks(
            left_eye=rel(keypoints[0]),
            right_eye=rel(keypoints[1]),
            nose=rel(keypoints[2]),
            inner_mouth=rel(mouth),
        )

    @staticmethod
    def _estimate_pose(keypoints: np.ndarray) -> tuple[float, float]:
        """Return (roll, yaw) in radians from pixel keypoints."""
        left_eye = np.asarray(keypoints[0], dtype=float)
        right_eye = np.asarray(keypoints[1], dtype=float)
        nose = np.asarray(keypoints[2], dtype=float)

        dx, dy = right_eye - left_eye
        roll = math.atan2(dy, dx)

        eye_distance = math.hypot(dx, dy)
        if eye_distance == 0:
            return roll, 0.0

        mid_x = (left_eye[0] + right_eye[0]) / 2
        offset = 2 * (nose[0] - mid_x) / eye_distance
        yaw = math.asin(float(np.clip(offset, -1.0, 1.0)))
        return roll, yaw

"""
Facecue - Perception Module
Landmark detection, frame quality scoring and stability tracking.
"""

from .landmark_detector import LandmarkDetector, MTCNNLandmarkDetector
from .quality import IssueKind, QualityAssessment, QualityIssue, QualityScorer
from .stability import (
    QualityPolicy,
    RecognitionAttempt,
    StabilitySnapshot,
    StabilityTracker,
    TrackerPhase,
)
from .types import FaceLandmarks, FaceObservation, Frame, Point, SourceTag

__all__ = [
    "LandmarkDetector",
    "MTCNNLandmarkDetector",
    "IssueKind",
    "QualityAssessment",
    "QualityIssue",
    "QualityScorer",
    "QualityPolicy",
    "RecognitionAttempt",
    "StabilitySnapshot",
    "StabilityTracker",
    "TrackerPhase",
    "FaceLandmarks",
    "FaceObservation",
    "Frame",
    "Point",
    "SourceTag",
]

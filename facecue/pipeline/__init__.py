"""
Facecue - Pipeline Module
Coordinates frames, recognition attempts and result delivery.
"""

from .coordinator import RecognitionPipeline
from .events import FrameReport, MatchOutcome, announcement_for

__all__ = [
    "RecognitionPipeline",
    "FrameReport",
    "MatchOutcome",
    "announcement_for",
]

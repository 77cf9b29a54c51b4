"""
Facecue - Face Recognition Pipeline
Recognizes known people in a live camera feed and announces who they are.
"""

from .config import PipelineConfig
from .collaborators import KnownPerson
from .pipeline import FrameReport, MatchOutcome, RecognitionPipeline, announcement_for

__version__ = "0.1.0"

__all__ = [
    "PipelineConfig",
    "KnownPerson",
    "FrameReport",
    "MatchOutcome",
    "RecognitionPipeline",
    "announcement_for",
]

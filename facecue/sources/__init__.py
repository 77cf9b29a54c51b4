"""
Facecue - Frame Sources
Camera capture and phone/glasses arbitration.
"""

from .arbiter import CameraMode, GlassesRegistration, SourceArbiter
from .frame_source import FrameChannel, FrameSource, PushFrameSource, WebcamFrameSource

__all__ = [
    "CameraMode",
    "GlassesRegistration",
    "SourceArbiter",
    "FrameChannel",
    "FrameSource",
    "PushFrameSource",
    "WebcamFrameSource",
]

"""
Facecue - Stability Tracker
Decides when a face has been held steady long enough to recognize.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

from ..constants import RECOGNITION_COOLDOWN_SECONDS, STABILITY_THRESHOLD_SECONDS
from .quality import QualityAssessment
from .types import FaceObservation, Frame

logger = logging.getLogger(__name__)


class TrackerPhase(str, Enum):
    """States of the stability state machine."""

    IDLE = "idle"
    TRACKING = "tracking"
    RECOGNIZING = "recognizing"
    COOLDOWN = "cooldown"


class QualityPolicy(str, Enum):
    """What an unacceptable-quality frame does to an ongoing track."""

    RESET = "reset"  # Back to IDLE, progress lost
    PAUSE = "pause"  # Accumulation stops until quality recovers
    IGNORE = "ignore"  # Quality does not gate stability


@dataclass(frozen=True)
class RecognitionAttempt:
    """
    A recognition attempt fired by the tracker.

    Attributes:
        attempt_id: Monotonic attempt number
        frame: Frame captured when the attempt fired
        face: Face observation in that frame, if known
        started_at: Tracker clock time of the trigger
        manual: True if requested explicitly rather than by stability
    """

    attempt_id: int
    frame: Frame
    face: FaceObservation | None
    started_at: float
    manual: bool = False


@dataclass(frozen=True)
class StabilitySnapshot:
    """Point-in-time tracker state for UI feedback."""

    phase: TrackerPhase
    progress: float
    tracking_since: float | None = None
    cooldown_until: float | None = None
    paused: bool = False

    @property
    def is_recognizing(self) -> bool:
        return self.phase == TrackerPhase.RECOGNIZING

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "progress": self.progress,
            "tracking_since": self.tracking_since,
            "cooldown_until": self.cooldown_until,
            "paused": self.paused,
        }


@dataclass
class _TrackerStats:
    frames: int = 0
    attempts: int = 0
    resets: int = 0
    cooldown_frames: int = 0


class StabilityTracker:
    """
    State machine: IDLE -> TRACKING -> RECOGNIZING -> COOLDOWN -> IDLE.

    Progress is never stored. It is recomputed from the tracking start
    time on every read, so it cannot drift from the clock. At most one
    attempt is in flight: the RECOGNIZING phase is checked and set under
    the same lock.

    Usage:
        tracker = StabilityTracker()
        attempt = tracker.update(frame, faces, assessment)
        if attempt:
            ...  # run recognition
            tracker.complete_attempt()
    """

    def __init__(
        self,
        stability_threshold: float = STABILITY_THRESHOLD_SECONDS,
        recognition_cooldown: float = RECOGNITION_COOLDOWN_SECONDS,
        quality_policy: QualityPolicy | str = QualityPolicy.RESET,
        auto_recognition: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            stability_threshold: Seconds a face must be held (default 1.5)
            recognition_cooldown: Seconds after an attempt before the next (default 5)
            quality_policy: Handling of unacceptable-quality frames
            auto_recognition: Fire attempts automatically when stable
            clock: Wall-clock source in seconds
        """
        if stability_threshold <= 0:
            raise ValueError("stability_threshold must be positive")

        self._threshold = stability_threshold
        self._cooldown = recognition_cooldown
        self._policy = QualityPolicy(quality_policy)
        self._auto = auto_recognition
        self._clock = clock
        self._lock = threading.Lock()
        self._attempt_ids = itertools.count(1)

        self._phase = TrackerPhase.IDLE
        self._since: float | None = None
        self._paused_at: float | None = None
        self._cooldown_until: float | None = None
        self._current_attempt: RecognitionAttempt | None = None
        self._stats = _TrackerStats()

    @property
    def stability_threshold(self) -> float:
        return self._threshold

    @property
    def recognition_cooldown(self) -> float:
        return self._cooldown

    @property
    def auto_recognition(self) -> bool:
        return self._auto

    def set_auto_recognition(self, enabled: bool) -> None:
        with self._lock:
            self._auto = enabled

    @property
    def phase(self) -> TrackerPhase:
        return self._phase

    @property
    def is_recognizing(self) -> bool:
        return self._phase == TrackerPhase.RECOGNIZING

    @property
    def current_attempt(self) -> RecognitionAttempt | None:
        return self._current_attempt

    def progress(self, now: float | None = None) -> float:
        """Stability progress in [0, 1], derived from elapsed time."""
        with self._lock:
            return self._progress(self._now(now))

    def snapshot(self, now: float | None = None) -> StabilitySnapshot:
        """Current state for UI feedback."""
        with self._lock:
            return StabilitySnapshot(
                phase=self._phase,
                progress=self._progress(self._now(now)),
                tracking_since=self._since,
                cooldown_until=self._cooldown_until,
                paused=self._paused_at is not None,
            )

    def update(
        self,
        frame: Frame,
        faces: Sequence[FaceObservation],
        assessment: QualityAssessment,
        now: float | None = None,
    ) -> RecognitionAttempt | None:
        """
        Feed one frame's detection and quality verdict.

        Args:
            frame: The frame that was scored
            faces: Faces detected in the frame
            assessment: Quality verdict for the frame
            now: Override clock time (seconds)

        Returns:
            A RecognitionAttempt if this frame fires one, else None
        """
        with self._lock:
            now = self._now(now)
            self._stats.frames += 1

            if self._phase == TrackerPhase.RECOGNIZING:
                return None

            if self._phase == TrackerPhase.COOLDOWN:
                if self._cooldown_until is not None and now < self._cooldown_until:
                    self._stats.cooldown_frames += 1
                    return None
                self._to_idle()

            if len(faces) != 1:
                self._reset_track()
                return None

            if not assessment.is_acceptable and self._policy != QualityPolicy.IGNORE:
                if self._policy == QualityPolicy.PAUSE and self._phase == TrackerPhase.TRACKING:
                    if self._paused_at is None:
                        self._paused_at = now
                else:
                    self._reset_track()
                return None

            if self._phase == TrackerPhase.IDLE:
                self._phase = TrackerPhase.TRACKING
                self._since = now
                logger.debug(f"Face tracking started at {now:.3f}")
            elif self._paused_at is not None and self._since is not None:
                # Shift the start forward so paused time does not count
                self._since += now - self._paused_at
                self._paused_at = None

            elapsed = now - self._since if self._since is not None else 0.0
            if elapsed >= self._threshold and self._auto:
                return self._begin_attempt(frame, faces[0], now, manual=False)

            return None

    def trigger_manual(
        self,
        frame: Frame,
        face: FaceObservation | None = None,
        now: float | None = None,
    ) -> RecognitionAttempt | None:
        """
        Request an attempt regardless of stability or cooldown.

        Returns:
            The new attempt, or None if one is already in flight
        """
        with self._lock:
            if self._phase == TrackerPhase.RECOGNIZING:
                logger.debug("Manual trigger ignored: attempt already in flight")
                return None
            return self._begin_attempt(frame, face, self._now(now), manual=True)

    def complete_attempt(self, now: float | None = None) -> None:
        """Finish the in-flight attempt and start the cooldown."""
        with self._lock:
            if self._phase != TrackerPhase.RECOGNIZING:
                logger.warning(f"complete_attempt called in phase {self._phase.value}")
                return
            now = self._now(now)
            self._phase = TrackerPhase.COOLDOWN
            self._cooldown_until = now + self._cooldown
            self._since = None
            self._paused_at = None
            self._current_attempt = None

    def cancel_attempt(self) -> None:
        """Abandon the in-flight attempt without a cooldown."""
        with self._lock:
            self._to_idle()

    def reset(self) -> None:
        """Return to IDLE (call on teardown)."""
        with self._lock:
            self._to_idle()

    def get_stats(self) -> dict[str, Any]:
        """Get tracker statistics."""
        with self._lock:
            return {
                "phase": self._phase.value,
                "frames": self._stats.frames,
                "attempts": self._stats.attempts,
                "resets": self._stats.resets,
                "cooldown_frames": self._stats.cooldown_frames,
                "stability_threshold": self._threshold,
                "recognition_cooldown": self._cooldown,
                "quality_policy": self._policy.value,
                "auto_recognition": self._auto,
            }

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now

    def _progress(self, now: float) -> float:
        if self._phase == TrackerPhase.RECOGNIZING:
            return 1.0
        if self._phase != TrackerPhase.TRACKING or self._since is None:
            return 0.0
        reference = self._paused_at if self._paused_at is not None else now
        elapsed = max(0.0, reference - self._since)
        return min(elapsed / self._threshold, 1.0)

    def _begin_attempt(
        self,
        frame: Frame,
        face: FaceObservation | None,
        now: float,
        manual: bool,
    ) -> RecognitionAttempt:
        attempt = RecognitionAttempt(
            attempt_id=next(self._attempt_ids),
            frame=frame,
            face=face,
            started_at=now,
            manual=manual,
        )
        self._phase = TrackerPhase.RECOGNIZING
        self._current_attempt = attempt
        self._cooldown_until = None
        self._paused_at = None
        self._stats.attempts += 1
        logger.info(f"Recognition attempt {attempt.attempt_id} fired (manual={manual})")
        return attempt

    def _reset_track(self) -> None:
        if self._phase == TrackerPhase.TRACKING:
            self._stats.resets += 1
        self._to_idle()

    def _to_idle(self) -> None:
        self._phase = TrackerPhase.IDLE
        self._since = None
        self._paused_at = None
        self._cooldown_until = None
        self._current_attempt = None

    def __repr__(self) -> str:
        return (
            f"StabilityTracker(phase={self._phase.value}, "
            f"threshold={self._threshold}s, cooldown={self._cooldown}s)"
        )

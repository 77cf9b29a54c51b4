"""
Facecue - Recognition Pipeline
Drives frames through detection, scoring, stability and matching.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Callable

from ..collaborators import KnownPerson, KnownPersonRegistry, PhotoStorage
from ..matching.cloud import CloudAvailable, CloudCapability, CloudUnavailable
from ..matching.errors import NetworkError, NotConfigured, RecognitionError
from ..matching.offline import OfflineMatcher
from ..matching.types import MatchCandidate, MatchSource
from ..perception.landmark_detector import LandmarkDetector
from ..perception.quality import QualityScorer
from ..perception.stability import RecognitionAttempt, StabilityTracker
from ..perception.types import FaceObservation, Frame
from ..sources.frame_source import FrameChannel
from .events import FrameReport, MatchOutcome

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]


class RecognitionPipeline:
    """
    Coordinates one recognition pipeline on a single event loop.

    Detection runs in a worker thread; scoring, tracker transitions and
    offline-cache writes run on the loop. Each recognition attempt runs
    as its own task, and the handle is kept so shutdown can cancel it.

    Attempt flow:
    - No candidates with photos: offline cache if it has records
    - Cloud unavailable or disabled: offline cache
    - Cloud match: announce, then cache the face offline
    - Cloud clean no-match: no match
    - Cloud error: one offline fallback, no retry

    Usage:
        pipeline = RecognitionPipeline(channel, detector, scorer, tracker,
                                       cloud, offline, registry, photos)
        pipeline.on_match_result(history.handle_outcome)
        await pipeline.run()
    """

    def __init__(
        self,
        channel: FrameChannel,
        detector: LandmarkDetector,
        scorer: QualityScorer,
        tracker: StabilityTracker,
        cloud: CloudCapability,
        offline: OfflineMatcher,
        registry: KnownPersonRegistry,
        photos: PhotoStorage,
        similarity_threshold: float | None = None,
        poll_timeout: float = 0.5,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            channel: Frame channel fed by the source arbiter
            detector: Landmark detector (run off-loop)
            scorer: Quality scorer
            tracker: Stability tracker
            cloud: Cloud capability (available matcher or reason it is not)
            offline: Offline matcher
            registry: Known persons
            photos: Reference photo storage
            similarity_threshold: Cloud threshold override (0-100)
            poll_timeout: Channel wait before re-checking for shutdown
        """
        self._channel = channel
        self._detector = detector
        self._scorer = scorer
        self._tracker = tracker
        self._cloud = cloud
        self._offline = offline
        self._registry = registry
        self._photos = photos
        self._threshold = similarity_threshold
        self._poll_timeout = poll_timeout

        self._cloud_disabled_reason: str | None = None
        self._attempt_task: asyncio.Task[MatchOutcome | None] | None = None
        self._last_report: FrameReport | None = None
        self._last_outcome: MatchOutcome | None = None
        self._stopping = False

        self._ready_listeners: list[Listener] = []
        self._match_listeners: list[Listener] = []
        self._frame_listeners: list[Listener] = []

        # Stats
        self._frames_processed = 0
        self._detection_errors = 0
        self._attempts = 0
        self._cloud_matches = 0
        self._offline_matches = 0
        self._no_matches = 0
        self._fallbacks = 0

    # Listener registration

    def on_ready_to_recognize(self, listener: Callable[[Frame], Any]) -> None:
        """Called with the attempt frame when an attempt starts."""
        self._ready_listeners.append(listener)

    def on_match_result(self, listener: Callable[[MatchOutcome], Any]) -> None:
        """Called with every attempt outcome, including no-match."""
        self._match_listeners.append(listener)

    def on_frame_scored(self, listener: Callable[[FrameReport], Any]) -> None:
        """Called for every processed frame."""
        self._frame_listeners.append(listener)

    # State

    @property
    def cloud_configured(self) -> bool:
        """True while cloud matching can be used."""
        return isinstance(self._cloud, CloudAvailable) and self._cloud_disabled_reason is None

    @property
    def cloud(self) -> CloudCapability:
        return self._cloud

    @property
    def attempt_task(self) -> asyncio.Task[MatchOutcome | None] | None:
        return self._attempt_task

    @property
    def last_report(self) -> FrameReport | None:
        return self._last_report

    @property
    def last_outcome(self) -> MatchOutcome | None:
        return self._last_outcome

    # Frame processing

    async def run(self) -> None:
        """Drain the frame channel until shutdown."""
        self._stopping = False
        self._channel.bind()
        logger.info("Recognition pipeline running")

        while not self._stopping:
            frame = await self._channel.get(timeout=self._poll_timeout)
            if frame is None:
                continue
            await self.process_frame(frame)

        logger.info("Recognition pipeline stopped")

    async def process_frame(self, frame: Frame) -> FrameReport:
        """
        Run one frame through detection, scoring and the tracker.

        Returns:
            The frame's report
        """
        faces = await self._detect(frame)
        assessment = self._scorer.score(frame.image, faces)
        attempt = self._tracker.update(frame, faces, assessment)

        report = FrameReport(
            frame=frame,
            faces=tuple(faces),
            assessment=assessment,
            stability=self._tracker.snapshot(),
        )
        self._last_report = report
        self._frames_processed += 1

        await self._dispatch(self._frame_listeners, report)

        if attempt is not None:
            await self._launch(attempt)

        return report

    async def recognize_now(self, frame: Frame | None = None) -> bool:
        """
        Manually trigger recognition on a frame (default: the last one seen).

        Returns:
            True if an attempt was started
        """
        face: FaceObservation | None = None
        if frame is None:
            if self._last_report is None:
                logger.debug("Manual recognition requested before any frame")
                return False
            frame = self._last_report.frame
            if self._last_report.faces:
                face = self._last_report.faces[0]

        attempt = self._tracker.trigger_manual(frame, face)
        if attempt is None:
            return False
        return await self._launch(attempt)

    async def wait_for_attempt(self) -> MatchOutcome | None:
        """Wait for the in-flight attempt, if any, and return its outcome."""
        task = self._attempt_task
        if task is None:
            return None
        try:
            return await task
        except asyncio.CancelledError:
            return None

    async def reset(self) -> None:
        """Cancel any in-flight attempt, then return the tracker to idle."""
        await self._cancel_attempt_task()
        self._tracker.reset()
        logger.info("Recognition pipeline reset")

    async def shutdown(self) -> None:
        """Stop the run loop, cancel any in-flight attempt and reset the tracker."""
        self._stopping = True
        await self._cancel_attempt_task()
        self._tracker.reset()
        logger.info("Recognition pipeline shut down")

    async def reconfigure_cloud(self, cloud: CloudCapability) -> None:
        """Swap in a new cloud capability and re-enable cloud matching."""
        previous = self._cloud
        self._cloud = cloud
        self._cloud_disabled_reason = None

        if isinstance(previous, CloudAvailable) and previous is not cloud:
            await previous.matcher.close()

        if isinstance(cloud, CloudAvailable):
            self._offline.set_offline_mode(False)
            logger.info("Cloud matching reconfigured")
        else:
            logger.info(f"Cloud matching unavailable: {cloud.reason}")

    # Attempts

    async def _detect(self, frame: Frame) -> list[FaceObservation]:
        try:
            return await asyncio.to_thread(self._detector.detect, frame.image)
        except Exception as e:
            self._detection_errors += 1
            logger.error(f"Face detection failed: {e}")
            return []

    async def _cancel_attempt_task(self) -> None:
        task = self._attempt_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._attempt_task = None

    def _is_current(self, attempt: RecognitionAttempt) -> bool:
        current = self._tracker.current_attempt
        return current is not None and current.attempt_id == attempt.attempt_id

    async def _launch(self, attempt: RecognitionAttempt) -> bool:
        task = self._attempt_task
        if task is not None and not task.done():
            logger.warning(
                f"Recognition attempt {attempt.attempt_id} refused: "
                f"{task.get_name()} still in flight"
            )
            if self._is_current(attempt):
                self._tracker.cancel_attempt()
            return False

        self._attempts += 1
        await self._dispatch(self._ready_listeners, attempt.frame)
        self._attempt_task = asyncio.create_task(
            self._run_attempt(attempt),
            name=f"recognition-attempt-{attempt.attempt_id}",
        )
        return True

    async def _run_attempt(self, attempt: RecognitionAttempt) -> MatchOutcome | None:
        try:
            outcome = await self._recognize(attempt)
        except asyncio.CancelledError:
            logger.info(f"Recognition attempt {attempt.attempt_id} cancelled")
            raise
        except Exception as e:
            logger.exception(f"Recognition attempt {attempt.attempt_id} failed: {e}")
            outcome = self._no_match(attempt)

        # The tracker may have moved on (reset or a newer attempt)
        if self._is_current(attempt):
            self._tracker.complete_attempt()
        self._record(outcome)
        self._last_outcome = outcome
        await self._dispatch(self._match_listeners, outcome)
        return outcome

    async def _recognize(self, attempt: RecognitionAttempt) -> MatchOutcome:
        candidates = await asyncio.to_thread(self._load_candidates)

        if not candidates:
            logger.info("No known persons with photos")
            if self._offline.has_cache:
                return await self._match_offline(attempt)
            return self._no_match(attempt)

        cloud = self._cloud
        if isinstance(cloud, CloudUnavailable) or self._cloud_disabled_reason is not None:
            return await self._match_offline(attempt)

        try:
            match = await cloud.matcher.find_best_match(
                attempt.frame.image, candidates, self._threshold
            )
        except NotConfigured as e:
            self._cloud_disabled_reason = str(e)
            self._offline.set_offline_mode(True)
            logger.warning(f"Cloud matching disabled: {e}")
            return await self._match_offline(attempt)
        except RecognitionError as e:
            if isinstance(e, NetworkError):
                self._offline.set_offline_mode(True)
            self._fallbacks += 1
            logger.warning(f"Cloud matching failed, trying offline: {e}")
            return await self._match_offline(attempt)

        self._offline.set_offline_mode(False)

        if match is None:
            return self._no_match(attempt)

        person = self._registry.get(match.person_id)
        if person is None:
            logger.warning(f"Cloud matched unknown person {match.person_id}")
            return self._no_match(attempt)

        await self._cache_offline(person, attempt)

        return MatchOutcome(
            attempt_id=attempt.attempt_id,
            source=MatchSource.CLOUD,
            person_id=person.person_id,
            similarity=match.similarity,
            person=person,
            frame=attempt.frame,
            manual=attempt.manual,
        )

    async def _attempt_face(self, attempt: RecognitionAttempt) -> FaceObservation | None:
        # Manual triggers may carry no face; detect off-loop
        if attempt.face is not None:
            return attempt.face
        faces = await self._detect(attempt.frame)
        return faces[0] if faces else None

    async def _match_offline(self, attempt: RecognitionAttempt) -> MatchOutcome:
        face = await self._attempt_face(attempt)
        if face is None:
            logger.debug(f"No face for offline match in attempt {attempt.attempt_id}")
            return self._no_match(attempt)

        match = self._offline.match(attempt.frame.image, face)
        if match is None:
            return self._no_match(attempt)

        person = self._registry.get(match.person_id) or KnownPerson(
            person_id=match.person_id,
            full_name=match.person_name,
            relationship=match.relationship,
        )
        return MatchOutcome(
            attempt_id=attempt.attempt_id,
            source=MatchSource.OFFLINE,
            person_id=match.person_id,
            similarity=match.similarity,
            person=person,
            frame=attempt.frame,
            manual=attempt.manual,
        )

    async def _cache_offline(self, person: KnownPerson, attempt: RecognitionAttempt) -> None:
        face = await self._attempt_face(attempt)
        if face is None:
            logger.debug(f"No face to cache for {person.person_id}")
            return
        try:
            self._offline.add(person, attempt.frame.image, face)
        except OSError as e:
            logger.warning(f"Could not cache face for {person.person_id}: {e}")

    def _load_candidates(self) -> list[MatchCandidate]:
        candidates = []
        for person in self._registry.persons():
            photo_ids = self._registry.reference_photos(person.person_id)
            if not photo_ids:
                continue
            images = []
            for photo_id in photo_ids:
                image = self._photos.load_photo(photo_id)
                if image is not None:
                    images.append(image)
            if images:
                candidates.append(MatchCandidate(person.person_id, images))
        return candidates

    @staticmethod
    def _no_match(attempt: RecognitionAttempt) -> MatchOutcome:
        return MatchOutcome(
            attempt_id=attempt.attempt_id,
            frame=attempt.frame,
            manual=attempt.manual,
        )

    def _record(self, outcome: MatchOutcome) -> None:
        if outcome.source == MatchSource.CLOUD:
            self._cloud_matches += 1
        elif outcome.source == MatchSource.OFFLINE:
            self._offline_matches += 1
        else:
            self._no_matches += 1

    async def _dispatch(self, listeners: list[Listener], payload: Any) -> None:
        for listener in listeners:
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Pipeline listener {listener!r} failed: {e}")

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        return {
            "frames_processed": self._frames_processed,
            "detection_errors": self._detection_errors,
            "attempts": self._attempts,
            "cloud_matches": self._cloud_matches,
            "offline_matches": self._offline_matches,
            "no_matches": self._no_matches,
            "fallbacks": self._fallbacks,
            "cloud_configured": self.cloud_configured,
            "cloud_disabled_reason": self._cloud_disabled_reason,
            "attempt_in_flight": self._attempt_task is not None and not self._attempt_task.done(),
            "last_outcome": self._last_outcome.to_dict() if self._last_outcome else None,
            "timestamp": time.time(),
        }

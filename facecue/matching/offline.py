"""
Facecue - Offline Matcher
JSON-persisted cache of face fingerprints for recognition without network.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import numpy as np

from ..constants import (
    OFFLINE_MATCH_THRESHOLD,
    OFFLINE_MAX_AGE_SECONDS,
    OFFLINE_MAX_RECORDS_PER_PERSON,
    OFFLINE_MAX_RECORDS_TOTAL,
    OFFLINE_THUMBNAIL_QUALITY,
    OFFLINE_THUMBNAIL_SIZE,
)
from ..perception.types import FaceObservation
from .geometry import GeometryFingerprint, fingerprint_from_observation, fingerprint_similarity
from .types import OfflineMatch

if TYPE_CHECKING:
    from ..collaborators import KnownPerson
    from ..perception.landmark_detector import LandmarkDetector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedFaceRecord:
    """
    A cached face of a known person.

    Attributes:
        record_id: Unique record id
        person_id: Person the face belongs to
        person_name: Name to announce
        relationship: Relationship to the user
        fingerprint: Geometry fingerprint of the face
        thumbnail: Base64 JPEG thumbnail, if captured
        created_at: Creation time (seconds, time.time() clock)
    """

    person_id: str
    person_name: str
    relationship: str
    fingerprint: GeometryFingerprint
    thumbnail: str | None = None
    created_at: float = field(default_factory=time.time)
    record_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "person_id": self.person_id,
            "person_name": self.person_name,
            "relationship": self.relationship,
            "fingerprint": self.fingerprint.to_dict(),
            "thumbnail": self.thumbnail,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CachedFaceRecord":
        return cls(
            record_id=str(data["record_id"]),
            person_id=str(data["person_id"]),
            person_name=str(data.get("person_name", "")),
            relationship=str(data.get("relationship", "")),
            fingerprint=GeometryFingerprint.from_dict(data["fingerprint"]),
            thumbnail=data.get("thumbnail"),
            created_at=float(data["created_at"]),
        )


@dataclass(frozen=True)
class CacheLimits:
    """Eviction limits for the offline cache."""

    max_per_person: int = OFFLINE_MAX_RECORDS_PER_PERSON
    max_total: int = OFFLINE_MAX_RECORDS_TOTAL
    max_age_seconds: float = OFFLINE_MAX_AGE_SECONDS


def encode_thumbnail(
    image: np.ndarray,
    size: int,
    quality: int,
    bbox: tuple[float, float, float, float] | None = None,
) -> str | None:
    """
    Crop (optionally), resize and JPEG-encode an RGB image as base64.

    Returns:
        Base64 JPEG string, or None if encoding failed
    """
    import cv2

    if bbox is not None:
        height, width = image.shape[:2]
        x, y, w, h = bbox
        x1, y1 = max(0, int(x * width)), max(0, int(y * height))
        x2, y2 = min(width, int((x + w) * width)), min(height, int((y + h) * height))
        if x2 > x1 and y2 > y1:
            image = image[y1:y2, x1:x2]

    try:
        resized = cv2.resize(image, (size, size), interpolation=cv2.INTER_AREA)
        if resized.ndim == 3 and resized.shape[2] == 3:
            resized = cv2.cvtColor(resized, cv2.COLOR_RGB2BGR)
        ok, buffer = cv2.imencode(".jpg", resized, [cv2.IMWRITE_JPEG_QUALITY, quality])
    except cv2.error as e:
        logger.warning(f"Thumbnail encoding failed: {e}")
        return None

    if not ok:
        return None
    return base64.b64encode(buffer.tobytes()).decode("ascii")


class OfflineMatcher:
    """
    Geometry-based face matcher backed by a JSON cache file.

    The cache is loaded eagerly and rewritten in full after every
    mutation. Eviction on insert keeps the newest records per person,
    drops records past the age limit, then keeps the newest overall.

    Usage:
        matcher = OfflineMatcher(Path("faces.json"), detector=detector)
        matcher.add(person, image, observation)
        match = matcher.match(image, observation)
    """

    def __init__(
        self,
        cache_path: Path | None = None,
        detector: LandmarkDetector | None = None,
        limits: CacheLimits | None = None,
        match_threshold: float = OFFLINE_MATCH_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the matcher and load the cache.

        Args:
            cache_path: JSON cache file (None keeps the cache in memory)
            detector: Landmark detector used when no observation is supplied
            limits: Eviction limits
            match_threshold: Minimum similarity (0-1) to report a match
            clock: Wall-clock source in seconds
        """
        self._path = Path(cache_path) if cache_path is not None else None
        self._detector = detector
        self._limits = limits or CacheLimits()
        self._threshold = match_threshold
        self._clock = clock
        self._records: list[CachedFaceRecord] = []
        self._offline_mode = False

        # Stats
        self._matches = 0
        self._misses = 0
        self._evictions = 0

        self.load()

    @property
    def records(self) -> list[CachedFaceRecord]:
        return list(self._records)

    @property
    def has_cache(self) -> bool:
        return len(self._records) > 0

    @property
    def offline_mode(self) -> bool:
        """True while recognition runs without cloud access."""
        return self._offline_mode

    def set_offline_mode(self, enabled: bool) -> None:
        if enabled != self._offline_mode:
            logger.info(f"Offline mode {'enabled' if enabled else 'disabled'}")
        self._offline_mode = enabled

    def load(self) -> None:
        """Load records from disk, dropping expired ones."""
        self._records = []
        if self._path is None or not self._path.exists():
            return

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            records = [CachedFaceRecord.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Could not read offline cache {self._path}: {e}")
            return

        self._records = sorted(records, key=lambda r: r.created_at)
        removed = self._purge_expired(self._clock())
        if removed:
            self._save()

        logger.info(f"Loaded {len(self._records)} cached faces from {self._path}")

    def add(
        self,
        person: KnownPerson,
        image: np.ndarray,
        observation: FaceObservation | None = None,
    ) -> CachedFaceRecord | None:
        """
        Cache a face of a known person.

        Args:
            person: Person the face belongs to
            image: RGB frame containing the face
            observation: Detected face (re-detected if None)

        Returns:
            The stored record, or None if no face could be found
        """
        if observation is None:
            observation = self._detect(image)
            if observation is None:
                logger.debug(f"No face found to cache for {person.person_id}")
                return None

        record = CachedFaceRecord(
            person_id=person.person_id,
            person_name=person.display_name,
            relationship=person.relationship,
            fingerprint=fingerprint_from_observation(observation),
            thumbnail=encode_thumbnail(
                image,
                OFFLINE_THUMBNAIL_SIZE,
                OFFLINE_THUMBNAIL_QUALITY,
                bbox=observation.bbox,
            ),
            created_at=self._clock(),
        )
        self.insert(record)
        return record

    def insert(self, record: CachedFaceRecord) -> None:
        """Store a record, enforce the limits and persist."""
        self._records.append(record)
        self._records.sort(key=lambda r: r.created_at)
        self._enforce_limits(record.person_id, self._clock())
        self._save()
        logger.debug(f"Cached face for {record.person_id} ({len(self._records)} total)")

    def match(
        self,
        image: np.ndarray,
        observation: FaceObservation | None = None,
    ) -> OfflineMatch | None:
        """
        Match a face against the cache.

        Args:
            image: RGB frame containing the face
            observation: Detected face (re-detected if None)

        Returns:
            Best OfflineMatch above the threshold, or None
        """
        if observation is None:
            observation = self._detect(image)
            if observation is None:
                self._misses += 1
                return None
        return self.match_fingerprint(fingerprint_from_observation(observation))

    def match_fingerprint(self, fingerprint: GeometryFingerprint) -> OfflineMatch | None:
        """Return the best cached record whose similarity exceeds the threshold."""
        best: CachedFaceRecord | None = None
        best_similarity = 0.0
        for record in self._records:
            similarity = fingerprint_similarity(fingerprint, record.fingerprint)
            if similarity > best_similarity:
                best = record
                best_similarity = similarity

        if best is None or best_similarity <= self._threshold:
            self._misses += 1
            return None

        self._matches += 1
        logger.info(f"Offline match: {best.person_id} ({best_similarity:.2f})")
        return OfflineMatch(
            person_id=best.person_id,
            person_name=best.person_name,
            relationship=best.relationship,
            similarity=best_similarity * 100,
            record_id=best.record_id,
        )

    def records_for(self, person_id: str) -> list[CachedFaceRecord]:
        return [r for r in self._records if r.person_id == person_id]

    def clear_person(self, person_id: str) -> int:
        """Remove every record of a person. Returns the number removed."""
        before = len(self._records)
        self._records = [r for r in self._records if r.person_id != person_id]
        removed = before - len(self._records)
        if removed:
            self._save()
        return removed

    def clear(self) -> None:
        """Remove all records."""
        self._records = []
        self._save()

    def _detect(self, image: np.ndarray) -> FaceObservation | None:
        if self._detector is None:
            logger.warning("No landmark detector configured for offline matching")
            return None
        faces = self._detector.detect(image)
        return faces[0] if faces else None

    def _enforce_limits(self, person_id: str, now: float) -> None:
        # Newest N for this person
        own = [r for r in self._records if r.person_id == person_id]
        if len(own) > self._limits.max_per_person:
            drop = {r.record_id for r in own[: len(own) - self._limits.max_per_person]}
            self._records = [r for r in self._records if r.record_id not in drop]
            self._evictions += len(drop)

        self._purge_expired(now)

        # Newest M overall
        overflow = len(self._records) - self._limits.max_total
        if overflow > 0:
            self._records = self._records[overflow:]
            self._evictions += overflow

    def _purge_expired(self, now: float) -> int:
        cutoff = now - self._limits.max_age_seconds
        before = len(self._records)
        self._records = [r for r in self._records if r.created_at >= cutoff]
        removed = before - len(self._records)
        self._evictions += removed
        return removed

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps([r.to_dict() for r in self._records]),
            encoding="utf-8",
        )
        os.replace(tmp_path, self._path)

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        return {
            "records": len(self._records),
            "persons": len({r.person_id for r in self._records}),
            "offline_mode": self._offline_mode,
            "matches": self._matches,
            "misses": self._misses,
            "evictions": self._evictions,
            "max_per_person": self._limits.max_per_person,
            "max_total": self._limits.max_total,
        }

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"OfflineMatcher(records={len(self._records)}, path={self._path})"

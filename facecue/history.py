"""
Facecue - Recognition History
JSON-persisted log of who was recognized and when.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

import numpy as np

from .constants import (
    HISTORY_MAX_AGE_SECONDS,
    HISTORY_MAX_EVENTS,
    HISTORY_THUMBNAIL_QUALITY,
    HISTORY_THUMBNAIL_SIZE,
)
from .matching.offline import encode_thumbnail
from .matching.types import MatchSource

if TYPE_CHECKING:
    from .collaborators import KnownPerson
    from .pipeline.events import MatchOutcome

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class RecognitionEvent:
    """One announced recognition."""

    person_id: str
    person_name: str
    relationship: str
    confidence: float
    was_offline: bool = False
    thumbnail: str | None = None
    timestamp: float = field(default_factory=time.time)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "person_id": self.person_id,
            "person_name": self.person_name,
            "relationship": self.relationship,
            "confidence": self.confidence,
            "was_offline": self.was_offline,
            "thumbnail": self.thumbnail,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecognitionEvent":
        return cls(
            event_id=str(data["event_id"]),
            person_id=str(data["person_id"]),
            person_name=str(data.get("person_name", "")),
            relationship=str(data.get("relationship", "")),
            confidence=float(data.get("confidence", 0.0)),
            was_offline=bool(data.get("was_offline", False)),
            thumbnail=data.get("thumbnail"),
            timestamp=float(data["timestamp"]),
        )


@dataclass(frozen=True)
class RecognitionSummary:
    """Per-person aggregate over the history."""

    person_id: str
    person_name: str
    relationship: str
    total_recognitions: int
    last_seen: float
    average_confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "person_id": self.person_id,
            "person_name": self.person_name,
            "relationship": self.relationship,
            "total_recognitions": self.total_recognitions,
            "last_seen": self.last_seen,
            "average_confidence": self.average_confidence,
        }


class RecognitionHistory:
    """
    Newest-first event log, capped by count and age.

    Usage:
        history = RecognitionHistory(Path("history.json"))
        history.log_recognition(person, confidence=92.5)
        summaries = history.summaries()
    """

    def __init__(
        self,
        path: Path | None = None,
        max_events: int = HISTORY_MAX_EVENTS,
        max_age_seconds: float = HISTORY_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._max_events = max_events
        self._max_age = max_age_seconds
        self._clock = clock
        self._events: list[RecognitionEvent] = []
        self._load()

    @property
    def events(self) -> list[RecognitionEvent]:
        return list(self._events)

    def log_recognition(
        self,
        person: KnownPerson,
        confidence: float,
        image: np.ndarray | None = None,
        was_offline: bool = False,
    ) -> RecognitionEvent:
        """Record a recognition, trim and persist."""
        thumbnail = None
        if image is not None:
            thumbnail = encode_thumbnail(image, HISTORY_THUMBNAIL_SIZE, HISTORY_THUMBNAIL_QUALITY)

        event = RecognitionEvent(
            person_id=person.person_id,
            person_name=person.display_name,
            relationship=person.relationship,
            confidence=confidence,
            was_offline=was_offline,
            thumbnail=thumbnail,
            timestamp=self._clock(),
        )
        self._events.insert(0, event)
        self._trim()
        self._save()
        return event

    def handle_outcome(self, outcome: MatchOutcome) -> RecognitionEvent | None:
        """Match-result subscriber: log announced matches."""
        if outcome.person is None or outcome.source == MatchSource.NONE:
            return None
        image = outcome.frame.image if outcome.frame is not None else None
        return self.log_recognition(
            outcome.person,
            confidence=outcome.similarity or 0.0,
            image=image,
            was_offline=outcome.source == MatchSource.OFFLINE,
        )

    def events_for(self, person_id: str) -> list[RecognitionEvent]:
        return [e for e in self._events if e.person_id == person_id]

    def last_recognition(self, person_id: str) -> RecognitionEvent | None:
        for event in self._events:
            if event.person_id == person_id:
                return event
        return None

    def recent_events(self) -> list[RecognitionEvent]:
        """Events from the last 24 hours."""
        cutoff = self._clock() - DAY_SECONDS
        return [e for e in self._events if e.timestamp > cutoff]

    def today_events(self) -> list[RecognitionEvent]:
        """Events from the current local calendar day."""
        today = dt.datetime.fromtimestamp(self._clock()).date()
        return [e for e in self._events if dt.datetime.fromtimestamp(e.timestamp).date() == today]

    def summaries(self) -> list[RecognitionSummary]:
        """Per-person summaries, most recently seen first."""
        grouped: dict[str, list[RecognitionEvent]] = {}
        for event in self._events:
            grouped.setdefault(event.person_id, []).append(event)

        summaries = []
        for person_id, events in grouped.items():
            newest = events[0]
            summaries.append(
                RecognitionSummary(
                    person_id=person_id,
                    person_name=newest.person_name,
                    relationship=newest.relationship,
                    total_recognitions=len(events),
                    last_seen=max(e.timestamp for e in events),
                    average_confidence=sum(e.confidence for e in events) / len(events),
                )
            )
        summaries.sort(key=lambda s: s.last_seen, reverse=True)
        return summaries

    def clear(self) -> None:
        self._events = []
        self._save()

    def delete_person(self, person_id: str) -> int:
        """Drop all events of a person. Returns the number removed."""
        before = len(self._events)
        self._events = [e for e in self._events if e.person_id != person_id]
        removed = before - len(self._events)
        if removed:
            self._save()
        return removed

    def _trim(self) -> None:
        cutoff = self._clock() - self._max_age
        self._events = [e for e in self._events if e.timestamp >= cutoff]
        del self._events[self._max_events :]

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            events = [RecognitionEvent.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Could not read history {self._path}: {e}")
            return

        self._events = sorted(events, key=lambda e: e.timestamp, reverse=True)
        before = len(self._events)
        self._trim()
        if len(self._events) != before:
            self._save()
        logger.info(f"Loaded {len(self._events)} history events from {self._path}")

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps([e.to_dict() for e in self._events]), encoding="utf-8")
        os.replace(tmp_path, self._path)

    def get_stats(self) -> dict[str, Any]:
        return {
            "events": len(self._events),
            "persons": len({e.person_id for e in self._events}),
            "max_events": self._max_events,
        }

    def __len__(self) -> int:
        return len(self._events)

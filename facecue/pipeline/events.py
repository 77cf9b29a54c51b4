"""
Facecue - Pipeline Events
Payloads delivered to pipeline listeners.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..collaborators import KnownPerson
from ..matching.types import MatchSource
from ..perception.quality import QualityAssessment
from ..perception.stability import StabilitySnapshot
from ..perception.types import FaceObservation, Frame


def announcement_for(person: KnownPerson) -> str:
    """Sentence spoken when a person is recognized."""
    if person.relationship:
        return f"I think this is {person.display_name}, your {person.relationship}."
    return f"I think this is {person.display_name}."


@dataclass(frozen=True)
class FrameReport:
    """Per-frame feedback: what was seen and how close recognition is."""

    frame: Frame
    faces: tuple[FaceObservation, ...]
    assessment: QualityAssessment
    stability: StabilitySnapshot

    @property
    def face_count(self) -> int:
        return len(self.faces)

    @property
    def guidance(self) -> str:
        """User-facing hint for the most severe quality issue."""
        return self.assessment.primary_issue.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.frame.timestamp,
            "source": self.frame.source.value,
            "faces": [f.to_dict() for f in self.faces],
            "quality": self.assessment.to_dict(),
            "stability": self.stability.to_dict(),
            "guidance": self.guidance,
        }


@dataclass(frozen=True)
class MatchOutcome:
    """
    Result of one recognition attempt.

    Attributes:
        attempt_id: Attempt that produced the outcome
        source: CLOUD, OFFLINE or NONE (no match)
        person_id: Matched person, if any
        similarity: Similarity on a 0-100 scale, if matched
        person: Matched person's details, if known
        frame: Frame the attempt was run on
        manual: True for a user-requested attempt
    """

    attempt_id: int
    source: MatchSource = MatchSource.NONE
    person_id: str | None = None
    similarity: float | None = None
    person: KnownPerson | None = None
    frame: Frame | None = None
    manual: bool = False

    @property
    def is_match(self) -> bool:
        return self.source != MatchSource.NONE and self.person_id is not None

    @property
    def announcement(self) -> str | None:
        if not self.is_match or self.person is None:
            return None
        return announcement_for(self.person)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "source": self.source.value,
            "person_id": self.person_id,
            "similarity": self.similarity,
            "person_name": self.person.display_name if self.person else None,
            "announcement": self.announcement,
            "manual": self.manual,
        }

"""
Facecue - Matching Types
Results produced by the cloud and offline matchers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


class MatchSource(str, Enum):
    """Where a match came from."""

    CLOUD = "cloud"
    OFFLINE = "offline"
    NONE = "none"


@dataclass(frozen=True)
class MatchCandidate:
    """A known person with decoded reference photos, ready for cloud comparison."""

    person_id: str
    reference_images: list[np.ndarray] = field(default_factory=list)


@dataclass(frozen=True)
class CloudMatch:
    """
    Best cloud comparison result.

    Attributes:
        person_id: Matched person
        similarity: Best similarity across the person's photos (0-100)
    """

    person_id: str
    similarity: float
    source: MatchSource = MatchSource.CLOUD

    def to_dict(self) -> dict[str, Any]:
        return {
            "person_id": self.person_id,
            "similarity": self.similarity,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class OfflineMatch:
    """
    Best offline cache match.

    Attributes:
        person_id: Matched person
        person_name: Name stored with the cached record
        relationship: Relationship stored with the cached record
        similarity: Geometry similarity rescaled to 0-100
        record_id: Cached record that matched
    """

    person_id: str
    person_name: str
    relationship: str
    similarity: float
    record_id: str
    source: MatchSource = MatchSource.OFFLINE

    def to_dict(self) -> dict[str, Any]:
        return {
            "person_id": self.person_id,
            "person_name": self.person_name,
            "relationship": self.relationship,
            "similarity": self.similarity,
            "record_id": self.record_id,
            "source": self.source.value,
        }

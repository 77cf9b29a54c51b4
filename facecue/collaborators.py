"""
Facecue - Collaborators
Read-only interfaces to the people registry and photo storage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownPerson:
    """
    A person the user should be able to recognize.

    Attributes:
        person_id: Stable identifier
        full_name: Full name
        familiar_name: Name the user knows them by, if different
        relationship: Relationship to the user (e.g. "daughter")
        photo_ids: Reference photo identifiers in PhotoStorage
    """

    person_id: str
    full_name: str
    relationship: str = ""
    familiar_name: str | None = None
    photo_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def display_name(self) -> str:
        return self.familiar_name or self.full_name

    @property
    def has_photos(self) -> bool:
        return len(self.photo_ids) > 0


@runtime_checkable
class KnownPersonRegistry(Protocol):
    """Source of known persons."""

    def get(self, person_id: str) -> KnownPerson | None: ...

    def persons(self) -> list[KnownPerson]: ...

    def reference_photos(self, person_id: str) -> list[str]: ...


@runtime_checkable
class PhotoStorage(Protocol):
    """Decoded reference photos by id."""

    def load_photo(self, photo_id: str) -> np.ndarray | None: ...


class InMemoryPersonRegistry:
    """Dict-backed registry."""

    def __init__(self, persons: Iterable[KnownPerson] = ()) -> None:
        self._persons: dict[str, KnownPerson] = {p.person_id: p for p in persons}

    def get(self, person_id: str) -> KnownPerson | None:
        return self._persons.get(person_id)

    def persons(self) -> list[KnownPerson]:
        return list(self._persons.values())

    def reference_photos(self, person_id: str) -> list[str]:
        person = self._persons.get(person_id)
        return list(person.photo_ids) if person else []

    def upsert(self, person: KnownPerson) -> None:
        self._persons[person.person_id] = person

    def remove(self, person_id: str) -> bool:
        return self._persons.pop(person_id, None) is not None

    def __len__(self) -> int:
        return len(self._persons)


class DirectoryPhotoStorage:
    """
    Reads reference photos from a directory with OpenCV.

    A photo id maps to "<root>/<photo_id>" (with or without a .jpg suffix).
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)

    def _resolve(self, photo_id: str) -> Path | None:
        for candidate in (self._root / photo_id, self._root / f"{photo_id}.jpg"):
            # Ids must not escape the photo directory
            if candidate.resolve().parent != self._root.resolve():
                return None
            if candidate.is_file():
                return candidate
        return None

    def load_photo(self, photo_id: str) -> np.ndarray | None:
        import cv2

        path = self._resolve(photo_id)
        if path is None:
            logger.debug(f"Photo not found: {photo_id}")
            return None

        bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if bgr is None:
            logger.warning(f"Could not decode photo {path}")
            return None
        return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)

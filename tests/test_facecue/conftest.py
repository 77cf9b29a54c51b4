"""Shared fixtures for facecue tests."""

import numpy as np
import pytest

from facecue.collaborators import InMemoryPersonRegistry, KnownPerson
from facecue.perception.landmark_detector import LandmarkDetector
from facecue.perception.types import FaceLandmarks, FaceObservation, Frame, Point


def make_face(
    bbox=(0.35, 0.3, 0.3, 0.4),
    yaw=0.0,
    roll=0.0,
    with_landmarks=True,
    eye_gap=0.4,
    nose_y=0.55,
    mouth_y=0.78,
):
    """Build a centered, well-sized face observation."""
    landmarks = None
    if with_landmarks:
        landmarks = FaceLandmarks(
            left_eye=Point(0.5 - eye_gap / 2, 0.35),
            right_eye=Point(0.5 + eye_gap / 2, 0.35),
            nose=Point(0.5, nose_y),
            inner_mouth=Point(0.5, mouth_y),
        )
    return FaceObservation(bbox=bbox, confidence=0.99, landmarks=landmarks, yaw=yaw, roll=roll)


def make_image(seed=0, shape=(240, 320, 3)):
    """Mid-brightness noise image (sharp, well lit)."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, shape, dtype=np.uint8)


class FakeDetector(LandmarkDetector):
    """Detector returning a scripted list of faces."""

    def __init__(self, faces=None):
        self.faces = list(faces) if faces is not None else [make_face()]
        self.calls = 0

    def detect(self, image):
        self.calls += 1
        return list(self.faces)


@pytest.fixture
def image():
    return make_image()


@pytest.fixture
def frame(image):
    return Frame(image=image, timestamp=1000.0)


@pytest.fixture
def face():
    return make_face()


@pytest.fixture
def detector():
    return FakeDetector()


@pytest.fixture
def alice():
    return KnownPerson(
        person_id="p-alice",
        full_name="Alice Smith",
        familiar_name="Ally",
        relationship="daughter",
        photo_ids=("alice-1", "alice-2"),
    )


@pytest.fixture
def bob():
    return KnownPerson(
        person_id="p-bob",
        full_name="Bob Jones",
        relationship="neighbor",
        photo_ids=("bob-1",),
    )


@pytest.fixture
def registry(alice, bob):
    return InMemoryPersonRegistry([alice, bob])


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()

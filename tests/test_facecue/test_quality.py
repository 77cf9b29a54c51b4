"""Tests for frame quality scoring."""

import numpy as np
import pytest

from conftest import make_face, make_image
from facecue.perception.quality import (
    BLURRY,
    NO_FACE,
    NOT_FACING_CAMERA,
    OFF_CENTER,
    PERFECT,
    TOO_BRIGHT,
    TOO_CLOSE,
    TOO_DARK,
    TOO_FAR,
    IssueKind,
    QualityAssessment,
    QualityIssue,
    QualityScorer,
    measure_brightness,
    measure_sharpness,
)


def assess(**overrides):
    metrics = dict(brightness=128.0, sharpness=150.0, face_size=0.3, center_offset=0.0)
    metrics.update(overrides)
    return QualityScorer().assess(**metrics)


class TestAssess:
    """Tests for the pure scoring function."""

    def test_ideal_metrics_are_perfect(self):
        """Test that ideal metrics score 100 with only PERFECT."""
        result = assess()
        assert result.issues == (PERFECT,)
        assert result.score == 100.0
        assert result.is_acceptable
        assert result.is_good
        assert result.is_perfect

    @pytest.mark.parametrize("brightness", [0.0, 10.0, 39.9])
    def test_too_dark(self, brightness):
        """Test that brightness below 40 adds TOO_DARK and costs 30."""
        result = assess(brightness=brightness)
        assert TOO_DARK in result.issues
        assert result.score <= 70

    @pytest.mark.parametrize("brightness", [220.1, 240.0, 255.0])
    def test_too_bright(self, brightness):
        """Test that brightness above 220 adds TOO_BRIGHT and costs 30."""
        result = assess(brightness=brightness)
        assert TOO_BRIGHT in result.issues
        assert result.score <= 70

    def test_brightness_outside_ideal_costs_ten_without_issue(self):
        """Test the ideal-range brightness penalty."""
        result = assess(brightness=60.0)
        assert result.issues == (PERFECT,)
        assert result.score == 90.0

    def test_face_too_far(self):
        """Test that a small face adds TOO_FAR with a 25 penalty."""
        result = assess(face_size=0.1)
        assert result.issues == (TOO_FAR,)
        assert result.score == 75.0

    def test_face_too_close(self):
        """Test that a large face adds TOO_CLOSE with a 20 penalty."""
        result = assess(face_size=0.9)
        assert result.issues == (TOO_CLOSE,)
        assert result.score == 80.0

    @pytest.mark.parametrize("face_size", [0.2, 0.7])
    def test_face_size_outside_ideal(self, face_size):
        """Test that both sides of the ideal size range cost 10."""
        result = assess(face_size=face_size)
        assert result.issues == (PERFECT,)
        assert result.score == 90.0

    def test_off_center(self):
        """Test center offset rejection and ideal penalties."""
        assert assess(center_offset=0.3).issues == (OFF_CENTER,)
        assert assess(center_offset=0.3).score == 85.0
        assert assess(center_offset=0.2).score == 95.0

    @pytest.mark.parametrize("yaw,roll", [(0.5, 0.0), (-0.5, 0.0), (0.0, 0.35), (0.0, -0.35)])
    def test_not_facing_camera(self, yaw, roll):
        """Test yaw and roll limits."""
        result = assess(yaw=yaw, roll=roll)
        assert result.issues == (NOT_FACING_CAMERA,)
        assert result.score == 75.0

    def test_blurry(self):
        """Test sharpness rejection and ideal penalties."""
        assert assess(sharpness=20.0).issues == (BLURRY,)
        assert assess(sharpness=20.0).score == 75.0
        assert assess(sharpness=70.0).score == 90.0

    def test_issues_in_evaluation_order(self):
        """Test that all triggered issues are collected in order."""
        result = assess(brightness=10.0, face_size=0.1, center_offset=0.4, yaw=1.0, sharpness=5.0)
        assert result.issues == (TOO_DARK, TOO_FAR, OFF_CENTER, NOT_FACING_CAMERA, BLURRY)

    def test_score_clamped_to_zero(self):
        """Test that stacked penalties never go below zero."""
        result = assess(brightness=10.0, face_size=0.1, center_offset=0.4, yaw=1.0, sharpness=5.0)
        assert result.score == 0.0
        assert not result.is_acceptable

    def test_bright_end_to_end_scenario(self):
        """Test brightness 200, size 0.3, offset 0.05, yaw 0.05, sharpness 120."""
        result = assess(brightness=200.0, face_size=0.3, center_offset=0.05, yaw=0.05, sharpness=120.0)
        assert result.issues == (PERFECT,)
        assert result.score >= 90
        assert result.is_acceptable

    def test_acceptable_boundary(self):
        """Test that a score of exactly 60 is acceptable."""
        assert QualityAssessment(issues=(TOO_DARK,), score=60.0).is_acceptable
        assert not QualityAssessment(issues=(TOO_DARK,), score=59.9).is_acceptable


class TestScore:
    """Tests for full-frame scoring."""

    def test_no_face(self, image):
        """Test that an empty face list scores 0 with NO_FACE."""
        result = QualityScorer().score(image, [])
        assert result.issues == (NO_FACE,)
        assert result.score == 0.0
        assert result.metrics.brightness > 0

    def test_multiple_faces_short_circuit(self, image):
        """Test that two faces yield MULTIPLE_FACES(2) and score 0."""
        result = QualityScorer().score(image, [make_face(), make_face()])
        assert result.issues == (QualityIssue.multiple_faces(2),)
        assert result.score == 0.0
        assert result.face_count == 2
        assert str(result.issues[0]) == "multiple_faces(2)"

    def test_multiple_faces_skips_measurement(self, monkeypatch):
        """Test that no metric is computed for multiple faces."""
        import facecue.perception.quality as quality

        def fail(*args, **kwargs):
            raise AssertionError("metric computed")

        monkeypatch.setattr(quality, "measure_brightness", fail)
        monkeypatch.setattr(quality, "measure_sharpness", fail)

        result = QualityScorer().score(make_image(), [make_face()] * 3)
        assert result.face_count == 3

    def test_single_well_placed_face(self, image, face):
        """Test a sharp, well lit, centered face."""
        result = QualityScorer().score(image, [face])
        assert result.is_perfect
        assert result.metrics.face_size == pytest.approx(0.3)
        assert result.metrics.center_offset == pytest.approx(0.0)

    def test_dark_frame(self):
        """Test that a black frame is too dark and blurry."""
        black = np.zeros((120, 160, 3), dtype=np.uint8)
        result = QualityScorer().score(black, [make_face()])
        assert result.has_issue(IssueKind.TOO_DARK)
        assert result.has_issue(IssueKind.BLURRY)


class TestMeasurements:
    """Tests for brightness and sharpness measurement."""

    def test_brightness_of_uniform_image(self):
        """Test that a uniform image measures its gray value."""
        gray = np.full((400, 600, 3), 90, dtype=np.uint8)
        assert measure_brightness(gray) == pytest.approx(90.0, abs=1.0)

    def test_brightness_of_unmeasurable_image(self):
        """Test the fallback for an empty image."""
        assert measure_brightness(np.zeros((0, 0, 3), dtype=np.uint8)) == 128.0

    def test_uniform_image_has_zero_sharpness(self):
        """Test that a flat image has no Laplacian response."""
        flat = np.full((100, 100, 3), 128, dtype=np.uint8)
        assert measure_sharpness(flat) == pytest.approx(0.0)

    def test_noise_is_sharp(self):
        """Test that high-frequency noise measures as sharp."""
        assert measure_sharpness(make_image()) > 100

    def test_tiny_image_fallback(self):
        """Test the fallback for images smaller than the kernel."""
        assert measure_sharpness(np.zeros((2, 2, 3), dtype=np.uint8)) == 100.0


class TestQualityIssue:
    """Tests for issue metadata."""

    def test_severity_ordering(self):
        """Test that primary_issue picks the most severe issue."""
        result = QualityAssessment(issues=(OFF_CENTER, BLURRY), score=60.0)
        assert result.primary_issue == BLURRY

    def test_primary_issue_ties_pick_first(self):
        """Test that ties keep evaluation order."""
        result = QualityAssessment(issues=(TOO_DARK, TOO_FAR), score=45.0)
        assert result.primary_issue == TOO_DARK

    def test_messages(self):
        """Test user-facing guidance strings."""
        assert TOO_FAR.message == "Move closer"
        assert BLURRY.message == "Hold still"
        assert "2" in QualityIssue.multiple_faces(2).message

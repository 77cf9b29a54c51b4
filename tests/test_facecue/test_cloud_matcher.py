"""Tests for the cloud face matcher."""

import asyncio
import datetime as dt
import json
from unittest.mock import AsyncMock

import pytest

from conftest import make_image
from facecue.matching.cloud import (
    CloudAvailable,
    CloudMatcher,
    CloudUnavailable,
    ErrorResponse,
    connect_cloud_matcher,
)
from facecue.matching.errors import (
    ApiError,
    InvalidResponse,
    NetworkError,
    NoFaceDetected,
    NotConfigured,
)
from facecue.matching.sigv4 import AwsCredentials
from facecue.matching.types import MatchCandidate, MatchSource

CREDS = AwsCredentials("AKIDEXAMPLE", "secret", "us-east-1")
FIXED = dt.datetime(2024, 3, 9, 14, 5, 7, tzinfo=dt.timezone.utc)


def ok(similarities):
    return 200, json.dumps({"FaceMatches": [{"Similarity": s} for s in similarities]})


def error(error_type, message="bad", status=400):
    return status, json.dumps({"__type": f"com.amazonaws.rekognition#{error_type}", "Message": message})


@pytest.fixture
def matcher():
    m = CloudMatcher(CREDS, clock=lambda: FIXED)
    m._post = AsyncMock()
    return m


@pytest.fixture
def probe():
    return make_image(seed=1, shape=(64, 64, 3))


def candidates(*counts):
    return [
        MatchCandidate(f"p{i}", [make_image(seed=10 + i * 5 + j, shape=(32, 32, 3)) for j in range(n)])
        for i, n in enumerate(counts)
    ]


class TestFindBestMatch:
    """Tests for best-match selection."""

    @pytest.mark.asyncio
    async def test_max_similarity_wins(self, matcher, probe):
        """Test that the highest similarity across candidates is chosen."""
        matcher._post.side_effect = [ok([72.0]), ok([95.5]), ok([80.0])]
        match = await matcher.find_best_match(probe, candidates(1, 1, 1))
        assert match.person_id == "p1"
        assert match.similarity == 95.5
        assert match.source == MatchSource.CLOUD

    @pytest.mark.asyncio
    async def test_no_matches(self, matcher, probe):
        """Test that empty FaceMatches everywhere yields None."""
        matcher._post.side_effect = [ok([]), ok([])]
        assert await matcher.find_best_match(probe, candidates(2)) is None

    @pytest.mark.asyncio
    async def test_below_threshold_is_ignored(self, matcher, probe):
        """Test that similarity under the threshold does not match."""
        matcher._post.side_effect = [ok([65.0])]
        assert await matcher.find_best_match(probe, candidates(1)) is None

    @pytest.mark.asyncio
    async def test_no_candidates(self, matcher, probe):
        """Test that an empty candidate list makes no calls."""
        assert await matcher.find_best_match(probe, []) is None
        matcher._post.assert_not_called()

    @pytest.mark.asyncio
    async def test_ties_keep_earliest_candidate(self, matcher, probe):
        """Test tie breaking in candidate order."""
        matcher._post.side_effect = [ok([90.0]), ok([90.0])]
        match = await matcher.find_best_match(probe, candidates(1, 1))
        assert match.person_id == "p0"

    @pytest.mark.asyncio
    async def test_no_face_reference_is_skipped(self, matcher, probe):
        """Test that a photo without a face does not abort the attempt."""
        matcher._post.side_effect = [error("InvalidParameterException"), ok([88.0])]
        match = await matcher.find_best_match(probe, candidates(1, 1))
        assert match.person_id == "p1"

    @pytest.mark.asyncio
    async def test_api_error_propagates(self, matcher, probe):
        """Test that other service errors fail the attempt."""
        matcher._post.side_effect = [error("ThrottlingException", "slow down")]
        with pytest.raises(ApiError) as exc:
            await matcher.find_best_match(probe, candidates(1))
        assert exc.value.error_type == "ThrottlingException"
        assert exc.value.status == 400
        assert str(exc.value) == "ThrottlingException: slow down"

    @pytest.mark.asyncio
    async def test_network_error_propagates(self, matcher, probe):
        """Test that transport failures surface as NetworkError."""
        matcher._post.side_effect = NetworkError("connection refused")
        with pytest.raises(NetworkError):
            await matcher.find_best_match(probe, candidates(1))
        assert matcher.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_budget_exceeded(self, probe):
        """Test that a slow service exhausts the attempt budget."""
        matcher = CloudMatcher(CREDS, attempt_budget_seconds=0.05)

        async def slow(url, body, headers):
            await asyncio.sleep(1.0)
            return ok([99.0])

        matcher._post = slow
        with pytest.raises(NetworkError, match="budget"):
            await matcher.find_best_match(probe, candidates(1))

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, probe):
        """Test that no more than max_concurrency calls are in flight."""
        matcher = CloudMatcher(CREDS, max_concurrency=2)
        in_flight = 0
        peak = 0

        async def tracked(url, body, headers):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return ok([75.0])

        matcher._post = tracked
        await matcher.find_best_match(probe, candidates(3, 2))
        assert peak == 2


class TestCall:
    """Tests for request handling and error mapping."""

    @pytest.mark.asyncio
    async def test_signed_request_sent(self, matcher, probe):
        """Test the outgoing URL, target and body."""
        matcher._post.return_value = ok([80.0])
        await matcher.compare_faces(probe, probe)

        url, body, headers = matcher._post.call_args.args
        assert url == "https://rekognition.us-east-1.amazonaws.com/"
        assert headers["X-Amz-Target"] == "RekognitionService.CompareFaces"
        assert headers["X-Amz-Date"] == "20240309T140507Z"
        payload = json.loads(body)
        assert payload["SimilarityThreshold"] == 70.0
        assert payload["SourceImage"]["Bytes"]

    @pytest.mark.asyncio
    async def test_not_configured(self, probe):
        """Test that empty credentials fail before any request."""
        matcher = CloudMatcher(AwsCredentials("", ""))
        matcher._post = AsyncMock()
        with pytest.raises(NotConfigured):
            await matcher.find_best_match(probe, candidates(1))
        matcher._post.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, matcher, probe):
        """Test that an auth failure maps to NotConfigured."""
        matcher._post.return_value = error("UnrecognizedClientException", status=400)
        with pytest.raises(NotConfigured):
            await matcher.compare_faces(probe, probe)

    @pytest.mark.asyncio
    async def test_no_face_error(self, matcher, probe):
        """Test that an invalid-parameter reply maps to NoFaceDetected."""
        matcher._post.return_value = error("InvalidParameterException", "no face")
        with pytest.raises(NoFaceDetected):
            await matcher.compare_faces(probe, probe)

    @pytest.mark.asyncio
    async def test_non_json_body(self, matcher, probe):
        """Test that garbage responses raise InvalidResponse."""
        matcher._post.return_value = (200, "<html>oops</html>")
        with pytest.raises(InvalidResponse):
            await matcher.compare_faces(probe, probe)

    @pytest.mark.asyncio
    async def test_non_object_body(self, matcher, probe):
        """Test that a JSON array is rejected."""
        matcher._post.return_value = (200, "[1, 2]")
        with pytest.raises(InvalidResponse):
            await matcher.compare_faces(probe, probe)

    @pytest.mark.asyncio
    async def test_out_of_range_similarity(self, matcher, probe):
        """Test that a similarity over 100 fails validation."""
        matcher._post.return_value = ok([120.0])
        with pytest.raises(InvalidResponse):
            await matcher.compare_faces(probe, probe)

    @pytest.mark.asyncio
    async def test_detect_face(self, matcher, probe):
        """Test face detection result parsing."""
        matcher._post.return_value = (200, json.dumps({"FaceDetails": [{"Confidence": 99.0}]}))
        assert await matcher.detect_face(probe) is True

        matcher._post.return_value = (200, json.dumps({"FaceDetails": []}))
        assert await matcher.detect_face(probe) is False

    def test_error_response_type_prefix(self):
        """Test that the namespace prefix is stripped from error types."""
        parsed = ErrorResponse.model_validate({"__type": "ns#ResourceNotFoundException"})
        assert parsed.short_type == "ResourceNotFoundException"
        assert ErrorResponse.model_validate({"code": "Plain"}).short_type == "Plain"

    def test_repr_masks_secret(self, matcher):
        """Test that the secret never appears in repr."""
        assert "secret" not in repr(matcher)


class TestConnect:
    """Tests for capability construction."""

    def test_missing_credentials(self):
        """Test that no credentials means unavailable."""
        cap = connect_cloud_matcher(None)
        assert isinstance(cap, CloudUnavailable)
        assert "not configured" in cap.reason

    def test_incomplete_credentials(self):
        """Test that a missing secret means unavailable."""
        assert isinstance(connect_cloud_matcher(AwsCredentials("AKID", "")), CloudUnavailable)

    def test_missing_region(self):
        """Test that an empty region means unavailable."""
        assert isinstance(connect_cloud_matcher(AwsCredentials("AKID", "s", "")), CloudUnavailable)

    def test_available(self):
        """Test that complete credentials produce a matcher."""
        cap = connect_cloud_matcher(AwsCredentials("AKID", "s", "eu-west-1"), similarity_threshold=80)
        assert isinstance(cap, CloudAvailable)
        assert cap.matcher.host == "rekognition.eu-west-1.amazonaws.com"
        assert cap.matcher.similarity_threshold == 80

"""
Facecue - Cloud Matcher
Signed calls to the cloud face-comparison API over aiohttp.
"""

from __future__ import annotations

import asyncio
import base64
import datetime as dt
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence, Union

import numpy as np
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..constants import (
    CLOUD_ATTEMPT_BUDGET_SECONDS,
    CLOUD_JPEG_QUALITY,
    CLOUD_MAX_CONCURRENCY,
    CLOUD_REQUEST_TIMEOUT_SECONDS,
    CLOUD_SERVICE,
    CLOUD_SIMILARITY_THRESHOLD,
    CLOUD_TARGET_PREFIX,
)
from .errors import (
    ApiError,
    ImageEncodingFailed,
    InvalidResponse,
    NetworkError,
    NoFaceDetected,
    NotConfigured,
)
from .sigv4 import AwsCredentials, sign_request
from .types import CloudMatch, MatchCandidate

logger = logging.getLogger(__name__)

# Service error types that carry a special meaning
_NO_FACE_ERRORS = ("InvalidParameterException",)
_AUTH_ERRORS = ("UnrecognizedClientException", "InvalidSignatureException")


# Response payloads


class FaceMatch(BaseModel):
    """One matched face in a CompareFaces response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    similarity: float = Field(alias="Similarity", ge=0, le=100)


class CompareFacesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    face_matches: list[FaceMatch] = Field(default_factory=list, alias="FaceMatches")
    unmatched_faces: list[dict[str, Any]] = Field(default_factory=list, alias="UnmatchedFaces")

    @property
    def best_similarity(self) -> float | None:
        if not self.face_matches:
            return None
        return max(m.similarity for m in self.face_matches)


class DetectFacesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    face_details: list[dict[str, Any]] = Field(default_factory=list, alias="FaceDetails")


class ErrorResponse(BaseModel):
    """Error body: {"__type": "...", "Message": "..."}."""

    model_config = ConfigDict(extra="ignore")

    error_type: str = Field(default="", validation_alias=AliasChoices("__type", "code"))
    message: str = Field(default="", validation_alias=AliasChoices("Message", "message"))

    @property
    def short_type(self) -> str:
        """Error type without the "namespace#" prefix."""
        return self.error_type.rsplit("#", 1)[-1]


@dataclass
class MatcherStats:
    """Statistics for the cloud matcher."""

    calls: int = 0
    errors: int = 0
    total_latency_ms: float = 0.0

    @property
    def avg_latency_ms(self) -> float:
        if self.calls == 0:
            return 0.0
        return self.total_latency_ms / self.calls

    def record_call(self, latency_ms: float) -> None:
        self.calls += 1
        self.total_latency_ms += latency_ms

    def record_error(self) -> None:
        self.errors += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "calls": self.calls,
            "errors": self.errors,
            "avg_latency_ms": self.avg_latency_ms,
        }


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class CloudMatcher:
    """
    Face comparison against the cloud vision API.

    Every request is signed with the configured credentials and sent as
    JSON to a single regional endpoint. The HTTP session is created on
    first use and must be released with close().

    Usage:
        matcher = CloudMatcher(credentials)
        match = await matcher.find_best_match(probe, candidates)
        await matcher.close()
    """

    def __init__(
        self,
        credentials: AwsCredentials,
        similarity_threshold: float = CLOUD_SIMILARITY_THRESHOLD,
        request_timeout: float = CLOUD_REQUEST_TIMEOUT_SECONDS,
        max_concurrency: int = CLOUD_MAX_CONCURRENCY,
        attempt_budget_seconds: float = CLOUD_ATTEMPT_BUDGET_SECONDS,
        jpeg_quality: int = CLOUD_JPEG_QUALITY,
        clock: Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        """
        Initialize the matcher.

        Args:
            credentials: Access key, secret key and region
            similarity_threshold: Default minimum similarity (0-100)
            request_timeout: Per-request timeout (seconds)
            max_concurrency: Max comparisons in flight per attempt
            attempt_budget_seconds: Time budget for find_best_match
            jpeg_quality: JPEG quality used for uploaded images
            clock: Signing time source
        """
        self._credentials = credentials
        self._threshold = similarity_threshold
        self._timeout = request_timeout
        self._max_concurrency = max(1, max_concurrency)
        self._budget = attempt_budget_seconds
        self._jpeg_quality = jpeg_quality
        self._clock = clock
        self._session: Any = None  # aiohttp.ClientSession
        self._stats = MatcherStats()

    @property
    def host(self) -> str:
        return f"{CLOUD_SERVICE}.{self._credentials.region}.amazonaws.com"

    @property
    def similarity_threshold(self) -> float:
        return self._threshold

    @property
    def is_configured(self) -> bool:
        return bool(self._credentials.access_key_id and self._credentials.secret_access_key)

    async def _ensure_session(self) -> Any:
        """Lazy-initialize HTTP session."""
        if self._session is None or self._session.closed:
            import aiohttp

            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def encode_image(self, image: np.ndarray) -> str:
        """
        Encode an RGB image as base64 JPEG.

        Raises:
            ImageEncodingFailed: If OpenCV cannot encode the image
        """
        import cv2

        try:
            if image.ndim == 3 and image.shape[2] == 3:
                bgr = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
            else:
                bgr = image
            ok, buffer = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, self._jpeg_quality])
        except (cv2.error, AttributeError, ValueError) as e:
            raise ImageEncodingFailed(f"Failed to encode image as JPEG: {e}") from e

        if not ok:
            raise ImageEncodingFailed()
        return base64.b64encode(buffer.tobytes()).decode("ascii")

    async def detect_face(self, image: np.ndarray) -> bool:
        """Return True if the service finds at least one face in the image."""
        payload = {
            "Image": {"Bytes": self.encode_image(image)},
            "Attributes": ["DEFAULT"],
        }
        data = await self._call("DetectFaces", payload)
        try:
            response = DetectFacesResponse.model_validate(data)
        except ValidationError as e:
            raise InvalidResponse(str(e)) from e
        return len(response.face_details) > 0

    async def compare_faces(
        self,
        source: np.ndarray,
        target: np.ndarray,
        threshold: float | None = None,
    ) -> float | None:
        """
        Compare the face in source against faces in target.

        Returns:
            Highest similarity (0-100), or None if nothing met the threshold
        """
        return await self._compare_encoded(
            self.encode_image(source),
            self.encode_image(target),
            self._threshold if threshold is None else threshold,
        )

    async def find_best_match(
        self,
        probe: np.ndarray,
        candidates: Sequence[MatchCandidate],
        threshold: float | None = None,
    ) -> CloudMatch | None:
        """
        Compare a probe face against every candidate's reference photos.

        Photos rejected with NoFaceDetected are skipped. The earliest
        candidate wins ties.

        Args:
            probe: RGB image of the face to identify
            candidates: Known persons with decoded reference photos
            threshold: Minimum similarity (defaults to the configured one)

        Returns:
            Best CloudMatch, or None if no photo matched

        Raises:
            NetworkError: On transport failure or when the attempt budget runs out
            RecognitionError: Any other non-skippable failure
        """
        threshold = self._threshold if threshold is None else threshold
        try:
            return await asyncio.wait_for(
                self._find_best_match(probe, candidates, threshold),
                timeout=self._budget,
            )
        except asyncio.TimeoutError as e:
            self._stats.record_error()
            raise NetworkError(f"Attempt budget of {self._budget}s exceeded") from e

    async def _find_best_match(
        self,
        probe: np.ndarray,
        candidates: Sequence[MatchCandidate],
        threshold: float,
    ) -> CloudMatch | None:
        probe_b64 = self.encode_image(probe)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def compare_one(person_id: str, reference: np.ndarray) -> tuple[str, float | None]:
            async with semaphore:
                try:
                    target_b64 = self.encode_image(reference)
                    similarity = await self._compare_encoded(probe_b64, target_b64, threshold)
                except (NoFaceDetected, ImageEncodingFailed) as e:
                    logger.debug(f"Skipping reference photo for {person_id}: {e}")
                    return person_id, None
                return person_id, similarity

        tasks = [
            asyncio.ensure_future(compare_one(c.person_id, image))
            for c in candidates
            for image in c.reference_images
        ]
        if not tasks:
            return None

        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        best: CloudMatch | None = None
        for person_id, similarity in results:
            if similarity is None or similarity < threshold:
                continue
            if best is None or similarity > best.similarity:
                best = CloudMatch(person_id=person_id, similarity=similarity)

        if best:
            logger.info(f"Cloud match: {best.person_id} ({best.similarity:.1f}%)")
        return best

    async def _compare_encoded(
        self,
        source_b64: str,
        target_b64: str,
        threshold: float,
    ) -> float | None:
        payload = {
            "SourceImage": {"Bytes": source_b64},
            "TargetImage": {"Bytes": target_b64},
            "SimilarityThreshold": threshold,
        }
        data = await self._call("CompareFaces", payload)
        try:
            response = CompareFacesResponse.model_validate(data)
        except ValidationError as e:
            raise InvalidResponse(str(e)) from e
        return response.best_similarity

    async def _call(self, action: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Sign and send one API call, returning the decoded JSON body."""
        if not self.is_configured:
            raise NotConfigured()

        body = json.dumps(payload).encode("utf-8")
        signed = sign_request(
            method="POST",
            host=self.host,
            target=f"{CLOUD_TARGET_PREFIX}.{action}",
            body=body,
            timestamp=self._clock(),
            credentials=self._credentials,
        )

        start = time.time()
        try:
            status, text = await self._post(signed.url, signed.body, signed.headers)
        except NetworkError:
            self._stats.record_error()
            raise
        latency_ms = (time.time() - start) * 1000

        try:
            data = json.loads(text) if text else {}
        except ValueError as e:
            self._stats.record_error()
            raise InvalidResponse(f"Response is not JSON: {e}", status) from e

        if not isinstance(data, dict):
            self._stats.record_error()
            raise InvalidResponse("Response is not a JSON object", status)

        if status != 200:
            self._stats.record_error()
            raise self._error_from(status, data)

        self._stats.record_call(latency_ms)
        return data

    async def _post(self, url: str, body: bytes, headers: dict[str, str]) -> tuple[int, str]:
        """POST the signed body. Returns (status, text)."""
        import aiohttp

        session = await self._ensure_session()
        try:
            async with session.post(url, data=body, headers=headers) as resp:
                return resp.status, await resp.text()
        except asyncio.TimeoutError as e:
            raise NetworkError(f"Request timed out after {self._timeout}s") from e
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request failed: {e}") from e

    @staticmethod
    def _error_from(status: int, data: dict[str, Any]) -> ApiError | NotConfigured:
        try:
            error = ErrorResponse.model_validate(data)
        except ValidationError:
            return ApiError("Unknown", f"HTTP {status}", status)

        error_type = error.short_type or f"HTTP{status}"
        logger.warning(f"Cloud API error {status}: {error_type} {error.message}")

        if error_type in _NO_FACE_ERRORS:
            return NoFaceDetected(error.message or "No face detected", status)
        if error_type in _AUTH_ERRORS:
            return NotConfigured(f"Credentials rejected: {error.message or error_type}")
        return ApiError(error_type, error.message, status)

    def get_stats(self) -> dict[str, Any]:
        """Get matcher statistics."""
        return {
            "region": self._credentials.region,
            "configured": self.is_configured,
            "similarity_threshold": self._threshold,
            "max_concurrency": self._max_concurrency,
            "attempt_budget_seconds": self._budget,
            **self._stats.to_dict(),
        }

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def __repr__(self) -> str:
        return f"CloudMatcher(region={self._credentials.region}, key=***)"


@dataclass(frozen=True)
class CloudAvailable:
    """Cloud matching can be used."""

    matcher: CloudMatcher


@dataclass(frozen=True)
class CloudUnavailable:
    """Cloud matching cannot be used; recognition is offline-only."""

    reason: str


CloudCapability = Union[CloudAvailable, CloudUnavailable]


def connect_cloud_matcher(
    credentials: AwsCredentials | None,
    similarity_threshold: float = CLOUD_SIMILARITY_THRESHOLD,
    request_timeout: float = CLOUD_REQUEST_TIMEOUT_SECONDS,
    max_concurrency: int = CLOUD_MAX_CONCURRENCY,
    attempt_budget_seconds: float = CLOUD_ATTEMPT_BUDGET_SECONDS,
) -> CloudCapability:
    """
    Build the cloud capability from credentials.

    Returns:
        CloudAvailable with a matcher, or CloudUnavailable with the reason
    """
    if credentials is None:
        return CloudUnavailable("Cloud credentials are not configured")
    if not credentials.access_key_id or not credentials.secret_access_key:
        return CloudUnavailable("Cloud credentials are incomplete")
    if not credentials.region:
        return CloudUnavailable("Cloud region is not configured")

    matcher = CloudMatcher(
        credentials,
        similarity_threshold=similarity_threshold,
        request_timeout=request_timeout,
        max_concurrency=max_concurrency,
        attempt_budget_seconds=attempt_budget_seconds,
    )
    logger.info(f"Cloud matching available in {credentials.region}")
    return CloudAvailable(matcher)

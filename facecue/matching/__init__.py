"""
Facecue - Matching Module
Cloud face comparison with an offline geometry fallback.
"""

from .cloud import CloudAvailable, CloudMatcher, CloudUnavailable, connect_cloud_matcher
from .errors import (
    ApiError,
    ImageEncodingFailed,
    InvalidResponse,
    NetworkError,
    NoFaceDetected,
    NotConfigured,
    RecognitionError,
)
from .geometry import GeometryFingerprint, fingerprint_from_observation, fingerprint_similarity
from .offline import CachedFaceRecord, CacheLimits, OfflineMatcher
from .sigv4 import AwsCredentials, SignedRequest, sign_request
from .types import CloudMatch, MatchCandidate, MatchSource, OfflineMatch

__all__ = [
    # Cloud
    "CloudAvailable",
    "CloudMatcher",
    "CloudUnavailable",
    "connect_cloud_matcher",
    "AwsCredentials",
    "SignedRequest",
    "sign_request",
    # Offline
    "CachedFaceRecord",
    "CacheLimits",
    "OfflineMatcher",
    "GeometryFingerprint",
    "fingerprint_from_observation",
    "fingerprint_similarity",
    # Errors
    "ApiError",
    "ImageEncodingFailed",
    "InvalidResponse",
    "NetworkError",
    "NoFaceDetected",
    "NotConfigured",
    "RecognitionError",
    # Types
    "CloudMatch",
    "MatchCandidate",
    "MatchSource",
    "OfflineMatch",
]

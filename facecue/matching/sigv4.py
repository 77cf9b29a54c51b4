"""
Facecue - Request Signer
AWS Signature Version 4 for the cloud face API's JSON protocol.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import hmac
from dataclasses import dataclass, field

from ..constants import CLOUD_CONTENT_TYPE, CLOUD_SERVICE

ALGORITHM = "AWS4-HMAC-SHA256"
SIGNED_HEADERS = "content-type;host;x-amz-date;x-amz-target"


@dataclass(frozen=True)
class AwsCredentials:
    """Static cloud credentials."""

    access_key_id: str
    secret_access_key: str = field(repr=False)
    region: str = "us-east-1"


@dataclass(frozen=True)
class SignedRequest:
    """
    Output of request signing.

    Attributes:
        url: Full request URL
        headers: Headers to send, including Authorization
        body: Exact body bytes that were signed
        canonical_request: Canonical request text (for debugging)
        string_to_sign: String that was signed (for debugging)
        signature: Hex signature
    """

    url: str
    headers: dict[str, str]
    body: bytes
    canonical_request: str
    string_to_sign: str
    signature: str


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    """Four-step HMAC chain: date, region, service, "aws4_request"."""
    k_date = hmac_sha256(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, "aws4_request")


def amz_timestamps(timestamp: dt.datetime) -> tuple[str, str]:
    """
    Format a timestamp for signing.

    Naive datetimes are taken as UTC.

    Returns:
        (amz_date "YYYYMMDDTHHMMSSZ", date_stamp "YYYYMMDD")
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=dt.timezone.utc)
    else:
        timestamp = timestamp.astimezone(dt.timezone.utc)
    return timestamp.strftime("%Y%m%dT%H%M%SZ"), timestamp.strftime("%Y%m%d")


def canonical_request(
    method: str,
    host: str,
    target: str,
    amz_date: str,
    body: bytes,
    content_type: str = CLOUD_CONTENT_TYPE,
) -> str:
    """Build the canonical request for a root-path JSON call."""
    canonical_headers = (
        f"content-type:{content_type}\n"
        f"host:{host}\n"
        f"x-amz-date:{amz_date}\n"
        f"x-amz-target:{target}\n"
    )
    return "\n".join([
        method.upper(),
        "/",
        "",  # empty query string
        canonical_headers,
        SIGNED_HEADERS,
        sha256_hex(body),
    ])


def credential_scope(date_stamp: str, region: str, service: str) -> str:
    return f"{date_stamp}/{region}/{service}/aws4_request"


def string_to_sign(amz_date: str, scope: str, canonical: str) -> str:
    return "\n".join([
        ALGORITHM,
        amz_date,
        scope,
        sha256_hex(canonical.encode("utf-8")),
    ])


def sign_request(
    method: str,
    host: str,
    target: str,
    body: bytes,
    timestamp: dt.datetime,
    credentials: AwsCredentials,
    service: str = CLOUD_SERVICE,
) -> SignedRequest:
    """
    Sign a JSON-protocol request.

    Pure: the same inputs always give the same headers.

    Args:
        method: HTTP method (POST for the face API)
        host: Endpoint host, e.g. rekognition.us-east-1.amazonaws.com
        target: X-Amz-Target value, e.g. RekognitionService.CompareFaces
        body: Exact request body bytes
        timestamp: Signing time
        credentials: Access key, secret key and region
        service: Service name in the credential scope

    Returns:
        SignedRequest with URL, headers and signature
    """
    amz_date, date_stamp = amz_timestamps(timestamp)

    canonical = canonical_request(method, host, target, amz_date, body)
    scope = credential_scope(date_stamp, credentials.region, service)
    to_sign = string_to_sign(amz_date, scope, canonical)

    signing_key = derive_signing_key(
        credentials.secret_access_key, date_stamp, credentials.region, service
    )
    signature = hmac.new(signing_key, to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    authorization = (
        f"{ALGORITHM} Credential={credentials.access_key_id}/{scope}, "
        f"SignedHeaders={SIGNED_HEADERS}, Signature={signature}"
    )

    headers = {
        "Content-Type": CLOUD_CONTENT_TYPE,
        "Host": host,
        "X-Amz-Date": amz_date,
        "X-Amz-Target": target,
        "Authorization": authorization,
    }

    return SignedRequest(
        url=f"https://{host}/",
        headers=headers,
        body=body,
        canonical_request=canonical,
        string_to_sign=to_sign,
        signature=signature,
    )

"""
Facecue - Recognition Errors
Error taxonomy for cloud and offline face matching.
"""

from __future__ import annotations


class RecognitionError(Exception):
    """Base class for recognition failures."""


class NotConfigured(RecognitionError):
    """Cloud credentials are missing or still placeholders."""

    def __init__(self, message: str = "Cloud face matching is not configured") -> None:
        super().__init__(message)


class ImageEncodingFailed(RecognitionError):
    """An image could not be encoded as JPEG."""

    def __init__(self, message: str = "Failed to encode image as JPEG") -> None:
        super().__init__(message)


class NetworkError(RecognitionError):
    """Transport failure, timeout or exhausted attempt budget."""


class ApiError(RecognitionError):
    """
    The cloud service returned an error payload.

    Attributes:
        error_type: Service error type (the "__type" field)
        message: Service error message
        status: HTTP status code, if known
    """

    def __init__(
        self,
        error_type: str,
        message: str = "",
        status: int | None = None,
    ) -> None:
        self.error_type = error_type
        self.message = message
        self.status = status
        super().__init__(f"{error_type}: {message}" if message else error_type)


class NoFaceDetected(ApiError):
    """The service found no face in one of the submitted images."""

    def __init__(self, message: str = "No face detected", status: int | None = None) -> None:
        super().__init__("NoFaceDetected", message, status)


class InvalidResponse(ApiError):
    """The service response could not be parsed."""

    def __init__(self, message: str = "Invalid response", status: int | None = None) -> None:
        super().__init__("InvalidResponse", message, status)

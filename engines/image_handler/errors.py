"""Error taxonomy for the image handler.

Every failure that aborts a ``process`` call is an ``ImageHandlerError`` carrying
an HTTP-style status, a machine-readable code and a human-readable message.
``to_envelope`` renders the canonical engines error envelope:

{
  "error": {
    "code": "string",
    "message": "string",
    "http_status": 400,
    "details": {}
  }
}
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    code: str
    message: str
    http_status: int
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorEnvelope(BaseModel):
    error: ErrorDetail


class ImageHandlerError(Exception):
    def __init__(self, status: int, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status = int(status)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(
            error=ErrorDetail(
                code=self.code,
                message=self.message,
                http_status=self.status,
                details=self.details,
            )
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, code={self.code!r}, message={self.message!r})"


class TooLargeImageError(ImageHandlerError):
    def __init__(self, size: int, limit: int):
        super().__init__(
            413,
            "TooLargeImageException",
            "The converted image is too large to return.",
            details={"size": size, "limit": limit},
        )


class FaceIndexOutOfRangeError(ImageHandlerError):
    def __init__(self, face_index: int, detected: int):
        super().__init__(
            400,
            "SmartCrop::FaceIndexOutOfRange",
            "You have provided a FaceIndex value that exceeds the length of the zero-based "
            "detectedFaces array. Please specify a value that is in-range.",
            details={"face_index": face_index, "detected_faces": detected},
        )


class PaddingOutOfBoundsError(ImageHandlerError):
    def __init__(self, crop_area: Dict[str, int]):
        super().__init__(
            400,
            "SmartCrop::PaddingOutOfBounds",
            "The padding value you provided exceeds the boundaries of the original image. "
            "Please try choosing a smaller value or applying padding via the resize edit for greater specificity.",
            details={"crop_area": crop_area},
        )


class CollaboratorError(ImageHandlerError):
    """A storage or analysis call failed; status defaults to 500 when the service gives none."""

    def __init__(self, status: Optional[int], code: Optional[str], message: str, service: str):
        super().__init__(
            status or 500,
            code or "InternalError",
            message,
            details={"service": service},
        )
        self.service = service


def collaborator_error(exc: Exception, service: str) -> CollaboratorError:
    """Wrap a boto3/botocore exception, keeping the service's status, code and message."""
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        err = response.get("Error") or {}
        meta = response.get("ResponseMetadata") or {}
        status = meta.get("HTTPStatusCode") or err.get("StatusCode")
        return CollaboratorError(
            int(status) if status else None,
            err.get("Code"),
            err.get("Message") or str(exc),
            service,
        )
    status = getattr(exc, "status_code", None) or getattr(exc, "statusCode", None)
    return CollaboratorError(
        int(status) if status else None,
        getattr(exc, "code", None) or exc.__class__.__name__,
        str(exc),
        service,
    )

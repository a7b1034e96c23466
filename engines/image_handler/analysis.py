"""Face-detection and content-moderation collaborators."""
from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

from engines.image_handler import config
from engines.image_handler.errors import collaborator_error
from engines.image_handler.models import FaceDetail, ModerationLabel

logger = logging.getLogger(__name__)


class ImageAnalysis(Protocol):
    def detect_faces(self, image_bytes: bytes) -> List[FaceDetail]:
        ...

    def detect_moderation_labels(self, image_bytes: bytes, min_confidence: float) -> List[ModerationLabel]:
        ...


class RekognitionAnalysis:
    """Amazon Rekognition client wrapper."""

    def __init__(self, client: Optional[object] = None, region: Optional[str] = None) -> None:
        if client is not None:
            self.client = client
        else:
            try:
                import boto3  # type: ignore
            except Exception as exc:  # pragma: no cover - import error path
                raise RuntimeError("boto3 is required for Rekognition analysis") from exc
            self.client = boto3.client("rekognition", region_name=region or config.get_aws_region())

    def detect_faces(self, image_bytes: bytes) -> List[FaceDetail]:
        try:
            response = self.client.detect_faces(Image={"Bytes": image_bytes})
        except Exception as exc:
            err = collaborator_error(exc, "rekognition")
            logger.warning("Rekognition detect_faces failed: %s %s", err.status, err.code)
            raise err from exc
        return [FaceDetail.model_validate(detail) for detail in response.get("FaceDetails", [])]

    def detect_moderation_labels(self, image_bytes: bytes, min_confidence: float) -> List[ModerationLabel]:
        try:
            response = self.client.detect_moderation_labels(
                Image={"Bytes": image_bytes},
                MinConfidence=float(min_confidence),
            )
        except Exception as exc:
            err = collaborator_error(exc, "rekognition")
            logger.warning("Rekognition detect_moderation_labels failed: %s %s", err.status, err.code)
            raise err from exc
        return [ModerationLabel.model_validate(label) for label in response.get("ModerationLabels", [])]


class StaticImageAnalysis:
    """Returns canned results; useful for local runs and tests."""

    def __init__(
        self,
        faces: Optional[Sequence[FaceDetail]] = None,
        labels: Optional[Sequence[ModerationLabel]] = None,
    ) -> None:
        self.faces = list(faces or [])
        self.labels = list(labels or [])
        self.calls: List[str] = []

    def detect_faces(self, image_bytes: bytes) -> List[FaceDetail]:
        self.calls.append("detect_faces")
        return list(self.faces)

    def detect_moderation_labels(self, image_bytes: bytes, min_confidence: float) -> List[ModerationLabel]:
        self.calls.append("detect_moderation_labels")
        return [label for label in self.labels if label.confidence is None or label.confidence >= min_confidence]

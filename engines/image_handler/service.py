from __future__ import annotations

import base64
import logging
from typing import List, Optional

from engines.image_handler import config
from engines.image_handler.analysis import ImageAnalysis, RekognitionAnalysis
from engines.image_handler.backend import WorkingImage
from engines.image_handler.errors import TooLargeImageError
from engines.image_handler.models import (
    EDIT_ROTATE,
    ContentModerationEdit,
    Edit,
    ImageRequest,
    OverlayEdit,
    PassthroughEdit,
    ResizeEdit,
    RotateEdit,
    RoundCropEdit,
    SmartCropEdit,
    WatermarkEdit,
    parse_edits,
)
from engines.image_handler.moderation import ModerationGate
from engines.image_handler.overlay import OverlayCompositor
from engines.image_handler.round_crop import RoundCropMasker
from engines.image_handler.smart_crop import SmartCropResolver
from engines.image_handler.storage import ObjectStorage, S3ObjectStorage
from engines.image_handler.watermark import WatermarkPlacer

logger = logging.getLogger(__name__)


class ImageHandler:
    """Applies an ordered list of edits to one image and returns it base64-encoded."""

    def __init__(
        self,
        storage: Optional[ObjectStorage] = None,
        analysis: Optional[ImageAnalysis] = None,
        max_payload_bytes: Optional[int] = None,
    ):
        self._storage = storage
        self._analysis = analysis
        self.max_payload_bytes = max_payload_bytes or config.get_max_payload_bytes()
        self.round_crop = RoundCropMasker()
        self.watermark = WatermarkPlacer()

    @property
    def storage(self) -> ObjectStorage:
        if self._storage is None:
            self._storage = S3ObjectStorage()
        return self._storage

    @property
    def analysis(self) -> ImageAnalysis:
        if self._analysis is None:
            self._analysis = RekognitionAnalysis()
        return self._analysis

    def process(self, request: ImageRequest) -> str:
        if not request.has_edits():
            encoded = base64.b64encode(request.original_image).decode("ascii")
        else:
            edits = request.edits or {}
            auto_orient = EDIT_ROTATE in edits and edits[EDIT_ROTATE] is None
            image = WorkingImage.open(request.original_image, auto_orient=auto_orient)
            image = self.apply_edits(image, parse_edits(edits))
            if request.output_format is not None:
                image.to_format(request.output_format)
            encoded = base64.b64encode(image.to_buffer()).decode("ascii")

        self.enforce_payload_limit(encoded)
        return encoded

    def enforce_payload_limit(self, encoded: str) -> None:
        if len(encoded) > self.max_payload_bytes:
            logger.warning("Encoded image is %s bytes, over the %s byte limit", len(encoded), self.max_payload_bytes)
            raise TooLargeImageError(len(encoded), self.max_payload_bytes)

    def apply_edits(self, image: WorkingImage, edits: List[Edit]) -> WorkingImage:
        resize = next((edit for edit in edits if isinstance(edit, ResizeEdit)), None)
        logger.debug("Applying edits: %s", [type(edit).__name__ for edit in edits])
        for edit in edits:
            image = self.apply_edit(image, edit, resize)
        return image

    def apply_edit(self, image: WorkingImage, edit: Edit, resize: Optional[ResizeEdit] = None) -> WorkingImage:
        if isinstance(edit, ResizeEdit):
            return image.apply_operation("resize", edit)
        if isinstance(edit, RotateEdit):
            return image.apply_operation("rotate", edit.angle)
        if isinstance(edit, OverlayEdit):
            return OverlayCompositor(self.storage).apply(image, edit, resize)
        if isinstance(edit, SmartCropEdit):
            return SmartCropResolver(self.analysis).apply(image, edit)
        if isinstance(edit, RoundCropEdit):
            return self.round_crop.apply(image, edit)
        if isinstance(edit, ContentModerationEdit):
            return ModerationGate(self.analysis).apply(image, edit)
        if isinstance(edit, WatermarkEdit):
            return self.watermark.apply(image, edit, resize)
        if isinstance(edit, PassthroughEdit):
            return image.apply_operation(edit.operation, edit.value)
        raise TypeError(f"Unhandled edit type {type(edit).__name__}")


_default_handler: Optional[ImageHandler] = None


def get_image_handler() -> ImageHandler:
    global _default_handler
    if _default_handler is None:
        _default_handler = ImageHandler()
    return _default_handler


def set_image_handler(handler: Optional[ImageHandler]) -> None:
    global _default_handler
    _default_handler = handler

from __future__ import annotations

import logging

from engines.image_handler.analysis import ImageAnalysis
from engines.image_handler.backend import WorkingImage
from engines.image_handler.errors import FaceIndexOutOfRangeError, PaddingOutOfBoundsError
from engines.image_handler.geometry import clamp_bounding_box, crop_area
from engines.image_handler.models import BoundingBox, CropArea, SmartCropEdit

logger = logging.getLogger(__name__)


class SmartCropResolver:
    """Crops the working image to a detected face (``smartCrop``)."""

    def __init__(self, analysis: ImageAnalysis):
        self.analysis = analysis

    def bounding_box(self, image_bytes: bytes, face_index: int) -> BoundingBox:
        faces = self.analysis.detect_faces(image_bytes)
        if not faces:
            logger.info("No faces detected; smart crop falls back to the full frame")
            return BoundingBox.full_frame()
        if face_index < 0 or face_index >= len(faces):
            raise FaceIndexOutOfRangeError(face_index, len(faces))
        return clamp_bounding_box(faces[face_index].bounding_box)

    def crop_area(self, image: WorkingImage, edit: SmartCropEdit) -> CropArea:
        box = self.bounding_box(image.to_analysis_buffer(), edit.face_index)
        return crop_area(box, edit.padding, image.width, image.height)

    def apply(self, image: WorkingImage, edit: SmartCropEdit) -> WorkingImage:
        area = self.crop_area(image, edit)
        try:
            return image.extract(area)
        except ValueError as exc:
            raise PaddingOutOfBoundsError(area.model_dump()) from exc

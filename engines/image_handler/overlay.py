from __future__ import annotations

import logging
from typing import Any, Dict, Optional, get_args

from PIL import Image

from engines.image_handler.backend import WorkingImage
from engines.image_handler.errors import ImageHandlerError
from engines.image_handler.geometry import alpha_mask_value, overlay_resize, resolve_placement
from engines.image_handler.models import BlendMode, ImageMetadata, OverlayEdit, ResizeEdit
from engines.image_handler.storage import ObjectStorage

logger = logging.getLogger(__name__)

_BLEND_MODES = set(get_args(BlendMode))


class OverlayCompositor:
    """Composites a stored asset over the working image (``overlayWith``)."""

    def __init__(self, storage: ObjectStorage):
        self.storage = storage

    def apply(self, image: WorkingImage, edit: OverlayEdit, resize: Optional[ResizeEdit] = None) -> WorkingImage:
        # Placement is resolved against the post-resize dimensions.
        reference = image.resized_metadata(resize)
        overlay = self.prepare_overlay(edit, reference)

        options, placement = resolve_placement(edit.options, reference, overlay.size)
        blend, tile = self._composite_options(options)
        logger.debug(
            "Overlay s3://%s/%s %sx%s at left=%s top=%s blend=%s",
            edit.bucket,
            edit.key,
            overlay.width,
            overlay.height,
            placement.left,
            placement.top,
            blend,
        )
        return image.composite(overlay, left=placement.left, top=placement.top, blend=blend, tile=tile)

    def prepare_overlay(self, edit: OverlayEdit, reference: ImageMetadata) -> WorkingImage:
        """Fetch the asset, scale it by ratio and apply the uniform alpha mask."""
        data = self.storage.get(edit.bucket, edit.key)
        overlay = WorkingImage.open(data)
        overlay.resize(overlay_resize(reference, edit.w_ratio, edit.h_ratio))

        mask = Image.new("RGBA", (1, 1), (255, 255, 255, alpha_mask_value(edit.alpha)))
        return overlay.composite(mask, blend="dest-in", tile=True)

    def _composite_options(self, options: Dict[str, Any]):
        blend = options.get("blend") or "over"
        if blend not in _BLEND_MODES:
            raise ImageHandlerError(400, "ImageEdits::InvalidEdit", f"Unsupported overlay blend mode '{blend}'.")
        ignored = sorted(set(options) - {"left", "top", "blend", "tile"})
        if ignored:
            logger.debug("Ignoring unsupported composite options: %s", ignored)
        return blend, bool(options.get("tile", False))

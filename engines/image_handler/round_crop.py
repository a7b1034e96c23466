from __future__ import annotations

import logging
from typing import Any, Optional

from PIL import Image

from engines.image_handler.backend import WorkingImage
from engines.image_handler.models import RoundCropEdit
from engines.image_handler.vector import render_svg

logger = logging.getLogger(__name__)

ELLIPSE_TEMPLATE = '<svg viewBox="0 0 {width} {height}"><ellipse cx="{cx}" cy="{cy}" rx="{rx}" ry="{ry}" /></svg>'


def _non_negative(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def ellipse_mask(width: int, height: int, edit: RoundCropEdit) -> Image.Image:
    """Opaque ellipse on a transparent canvas the size of the working image."""
    default_radius = min(width, height) / 2
    rx = _non_negative(edit.rx)
    ry = _non_negative(edit.ry)
    cy = _non_negative(edit.top)
    cx = _non_negative(edit.left)
    svg = ELLIPSE_TEMPLATE.format(
        width=width,
        height=height,
        cx=width / 2 if cx is None else cx,
        cy=height / 2 if cy is None else cy,
        rx=default_radius if rx is None else rx,
        ry=default_radius if ry is None else ry,
    )
    return render_svg(svg, width=width, height=height)


class RoundCropMasker:
    """Masks the working image to an ellipse and trims the empty margins (``roundCrop``)."""

    def apply(self, image: WorkingImage, edit: RoundCropEdit) -> WorkingImage:
        mask = ellipse_mask(image.width, image.height, edit)
        image.composite(mask, left=0, top=0, blend="dest-in")
        logger.debug("Round crop mask applied to %sx%s image", image.width, image.height)
        return image.trim()

"""Geometry resolution: offsets, ratios, bounding boxes and resize dimensions.

Everything here is pure arithmetic on numbers and pydantic models; no image I/O.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from engines.image_handler.models import BoundingBox, CropArea, ImageMetadata, OverlayPlacement, ResizeEdit

logger = logging.getLogger(__name__)

ZERO_TO_HUNDRED = re.compile(r"^(100|[1-9]?[0-9])$")
_PERCENT_OFFSET = re.compile(r"^\s*([+-]?\d+(?:\.\d+)?)\s*[p%]\s*$")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_percentage(value: Any) -> Optional[int]:
    """Return ``value`` as an int in [0, 100] if its literal form is an integer 0-100."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    text = str(value)
    if not ZERO_TO_HUNDRED.match(text):
        return None
    return int(text)


@dataclass(frozen=True)
class Pixels:
    value: int


@dataclass(frozen=True)
class PercentOfDimension:
    value: float


Offset = Union[Pixels, PercentOfDimension]


def parse_offset(raw: Any) -> Optional[Offset]:
    """Parse a placement offset: ``12``, ``"-12"``, ``"10p"``, ``"-5%"``.

    Plain values are read by their leading integer; anything unparsable is ``None``.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            return None
        return Pixels(int(raw))
    text = str(raw)
    match = _PERCENT_OFFSET.match(text)
    if match:
        return PercentOfDimension(float(match.group(1)))
    match = _LEADING_INT.match(text)
    if match:
        return Pixels(int(match.group(1)))
    return None


def resolve_offset(offset: Offset, ref_dimension: int, overlay_dimension: int) -> int:
    """Absolute pixel offset; negative values anchor the overlay from the far edge."""
    if isinstance(offset, PercentOfDimension):
        if offset.value < 0:
            resolved = ref_dimension + (ref_dimension * offset.value / 100) - overlay_dimension
        else:
            resolved = ref_dimension * offset.value / 100
        return int(resolved)
    if offset.value < 0:
        return ref_dimension + offset.value - overlay_dimension
    return offset.value


def resolve_placement(
    options: Dict[str, Any],
    reference: ImageMetadata,
    overlay_size: Tuple[int, int],
) -> Tuple[Dict[str, Any], OverlayPlacement]:
    """Resolve ``left``/``top`` in composite options against the reference image.

    Returns a copy of the options with resolved offsets, dropping any key that does
    not parse, plus the resolved placement.
    """
    resolved = dict(options)
    placement = OverlayPlacement()
    axes = (
        ("left", reference.width, overlay_size[0]),
        ("top", reference.height, overlay_size[1]),
    )
    for key, ref_dimension, overlay_dimension in axes:
        if key not in resolved:
            continue
        offset = parse_offset(resolved[key])
        if offset is None:
            logger.debug("Dropping unparsable %s offset %r", key, resolved[key])
            del resolved[key]
            continue
        value = resolve_offset(offset, ref_dimension, overlay_dimension)
        resolved[key] = value
        setattr(placement, key, value)
    return resolved, placement


def overlay_resize(reference: ImageMetadata, w_ratio: Any, h_ratio: Any) -> ResizeEdit:
    """Resize for an overlay scaled to a percentage of the reference image."""
    width = height = None
    w_pct = parse_percentage(w_ratio)
    if w_pct is not None:
        width = max(1, int(reference.width * w_pct / 100))
    h_pct = parse_percentage(h_ratio)
    if h_pct is not None:
        height = max(1, int(reference.height * h_pct / 100))
    return ResizeEdit(width=width, height=height, fit="inside")


def alpha_mask_value(alpha: Any) -> int:
    """Alpha byte for the uniform opacity mask; invalid ``alpha`` counts as 0 (opaque)."""
    pct = parse_percentage(alpha)
    if pct is None:
        pct = 0
    return int(255 * (1 - pct / 100))


def clamp_bounding_box(box: BoundingBox) -> BoundingBox:
    def clamp(value: float) -> float:
        return min(1.0, max(0.0, value))

    left = clamp(box.left)
    top = clamp(box.top)
    width = clamp(box.width)
    height = clamp(box.height)
    if left + width > 1:
        width = 1 - left
    if top + height > 1:
        height = 1 - top
    return BoundingBox(left=left, top=top, width=width, height=height)


def crop_area(box: BoundingBox, padding: float, width: int, height: int) -> CropArea:
    return CropArea(
        left=int(box.left * width - padding),
        top=int(box.top * height - padding),
        width=int(box.width * width + padding * 2),
        height=int(box.height * height + padding * 2),
    )


def resized_dimensions(width: int, height: int, resize: ResizeEdit) -> Tuple[int, int]:
    """Output canvas size of ``resize`` applied to a ``width`` x ``height`` image."""
    target_w, target_h = resize.width, resize.height
    if target_w is None and target_h is None:
        return width, height

    if target_h is None:
        out = (target_w, max(1, round_half_up(height * target_w / width)))
    elif target_w is None:
        out = (max(1, round_half_up(width * target_h / height)), target_h)
    elif resize.fit in ("cover", "contain", "fill"):
        out = (target_w, target_h)
    else:
        pick = min if resize.fit == "inside" else max
        scale = pick(target_w / width, target_h / height)
        out = (max(1, round_half_up(width * scale)), max(1, round_half_up(height * scale)))

    if resize.without_enlargement and (out[0] > width or out[1] > height):
        return width, height
    return out

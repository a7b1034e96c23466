from __future__ import annotations

import logging
import math
from typing import Any, Optional

from engines.image_handler.analysis import ImageAnalysis
from engines.image_handler.backend import WorkingImage
from engines.image_handler.models import ContentModerationEdit

logger = logging.getLogger(__name__)

DEFAULT_BLUR = 50
DEFAULT_MIN_CONFIDENCE = 75.0
MIN_BLUR_SIGMA = 0.3
MAX_BLUR_SIGMA = 1000


def resolve_blur(value: Any) -> Optional[int]:
    """Blur sigma rounded up, or ``None`` when it cannot take effect."""
    if value is None:
        value = DEFAULT_BLUR
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    sigma = math.ceil(number)
    if not MIN_BLUR_SIGMA <= sigma <= MAX_BLUR_SIGMA:
        return None
    return sigma


def resolve_min_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_MIN_CONFIDENCE
    if not number or not math.isfinite(number):
        return DEFAULT_MIN_CONFIDENCE
    return number


class ModerationGate:
    """Blurs the working image when moderation labels come back (``contentModeration``)."""

    def __init__(self, analysis: ImageAnalysis):
        self.analysis = analysis

    def apply(self, image: WorkingImage, edit: ContentModerationEdit) -> WorkingImage:
        min_confidence = resolve_min_confidence(edit.min_confidence)
        labels = self.analysis.detect_moderation_labels(image.to_analysis_buffer(), min_confidence)

        sigma = resolve_blur(edit.blur)
        if sigma is None:
            logger.info("Moderation blur %r is outside [%s, %s]; blur suppressed", edit.blur, MIN_BLUR_SIGMA, MAX_BLUR_SIGMA)
            return image

        names = [label.name for label in labels]
        if edit.moderation_labels is not None:
            wanted = set(edit.moderation_labels)
            matched = any(name in wanted for name in names)
        else:
            matched = bool(names)

        if matched:
            logger.info("Moderation labels %s triggered blur sigma=%s", names, sigma)
            image.blur(sigma)
        return image

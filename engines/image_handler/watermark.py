from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Optional, Tuple
from xml.sax.saxutils import escape

from PIL import Image

from engines.image_handler import config
from engines.image_handler.backend import WorkingImage
from engines.image_handler.geometry import resolve_placement
from engines.image_handler.models import ResizeEdit, WatermarkEdit
from engines.image_handler.vector import render_svg

logger = logging.getLogger(__name__)

ASSET_DIR = Path(__file__).resolve().parent / "assets"


class WatermarkStyle(str, Enum):
    COMPACT = "compact"
    BANNER = "banner"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "WatermarkStyle":
        if (value or "").lower() in ("compact", "cute"):
            return cls.COMPACT
        return cls.BANNER

    @property
    def asset_name(self) -> str:
        return f"watermark_{self.value}.svg"

    @property
    def natural_size(self) -> Tuple[int, int]:
        return (150, 50) if self is WatermarkStyle.COMPACT else (340, 140)

    @property
    def anchor(self) -> str:
        return "top-left" if self is WatermarkStyle.COMPACT else "top-right"


@lru_cache(maxsize=None)
def load_template(style: WatermarkStyle) -> Template:
    return Template((ASSET_DIR / style.asset_name).read_text(encoding="utf-8"))


def render_watermark(style: WatermarkStyle, name: str) -> Image.Image:
    svg = load_template(style).safe_substitute(name=escape(name))
    width, height = style.natural_size
    return render_svg(svg, width=width, height=height, font_path=config.get_watermark_font_path())


class WatermarkPlacer:
    """Stamps a named watermark onto images wide enough to carry it."""

    def should_apply(self, reference_width: int, style: WatermarkStyle) -> bool:
        return reference_width > style.natural_size[0]

    def apply(self, image: WorkingImage, edit: WatermarkEdit, resize: Optional[ResizeEdit] = None) -> WorkingImage:
        style = WatermarkStyle.from_value(edit.style)
        reference = image.resized_metadata(resize)
        if not self.should_apply(reference.width, style):
            logger.debug("Watermark %s skipped: reference width %s is too small", style.value, reference.width)
            return image

        mark = render_watermark(style, edit.name)
        left, top = self._anchor(image, style, mark)
        if edit.options:
            _, placement = resolve_placement(edit.options, image.metadata(), mark.size)
            left = placement.left if placement.left is not None else left
            top = placement.top if placement.top is not None else top
        logger.debug("Watermark %s placed at left=%s top=%s", style.value, left, top)
        return image.composite(mark, left=left, top=top)

    def _anchor(self, image: WorkingImage, style: WatermarkStyle, mark: Image.Image) -> Tuple[int, int]:
        if style.anchor == "top-right":
            return max(0, image.width - mark.width), 0
        return 0, 0

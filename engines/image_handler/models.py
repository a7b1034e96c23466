from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from engines.image_handler.errors import ImageHandlerError

FitMode = Literal["cover", "contain", "fill", "inside", "outside"]
BlendMode = Literal["over", "dest-in", "multiply", "screen", "darken", "lighten", "add", "overlay"]

EDIT_OVERLAY = "overlayWith"
EDIT_SMART_CROP = "smartCrop"
EDIT_ROUND_CROP = "roundCrop"
EDIT_CONTENT_MODERATION = "contentModeration"
EDIT_WATERMARK = "watermark"
EDIT_WATERMARK_LEGACY = "TEPWatermark"
EDIT_RESIZE = "resize"
EDIT_ROTATE = "rotate"

# Largest width or height a resize may request (the JPEG limit).
MAX_RESIZE_DIMENSION = 65535


class ImageRequest(BaseModel):
    """A decoded request: source bytes plus an ordered mapping of edits."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    original_image: bytes = Field(..., alias="originalImage")
    edits: Optional[Dict[str, Any]] = None
    output_format: Optional[str] = Field(default=None, alias="outputFormat")

    def has_edits(self) -> bool:
        return bool(self.edits)


class ImageMetadata(BaseModel):
    width: int
    height: int
    format: Optional[str] = None
    orientation: Optional[int] = None
    channels: int = 3
    has_alpha: bool = False


class BoundingBox(BaseModel):
    """Fractional rectangle relative to the image's top-left corner."""

    model_config = ConfigDict(populate_by_name=True)

    left: float = Field(default=0.0, alias="Left")
    top: float = Field(default=0.0, alias="Top")
    width: float = Field(default=1.0, alias="Width")
    height: float = Field(default=1.0, alias="Height")

    @classmethod
    def full_frame(cls) -> "BoundingBox":
        return cls(left=0.0, top=0.0, width=1.0, height=1.0)


class CropArea(BaseModel):
    left: int
    top: int
    width: int
    height: int

    def within(self, width: int, height: int) -> bool:
        return (
            self.left >= 0
            and self.top >= 0
            and self.width > 0
            and self.height > 0
            and self.left + self.width <= width
            and self.top + self.height <= height
        )


class OverlayPlacement(BaseModel):
    left: Optional[int] = None
    top: Optional[int] = None


class FaceDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bounding_box: BoundingBox = Field(default_factory=BoundingBox.full_frame, alias="BoundingBox")
    confidence: Optional[float] = Field(default=None, alias="Confidence")


class ModerationLabel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., alias="Name")
    confidence: Optional[float] = Field(default=None, alias="Confidence")
    parent_name: Optional[str] = Field(default=None, alias="ParentName")


# --- Edit variants ---------------------------------------------------------


class ResizeEdit(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    width: Optional[int] = None
    height: Optional[int] = None
    fit: FitMode = "cover"
    background: Optional[Any] = None
    without_enlargement: bool = Field(default=False, alias="withoutEnlargement")

    @field_validator("width", "height", mode="before")
    @classmethod
    def round_dimension(cls, value):
        # Falsy dimensions (0, "", None) leave the axis unconstrained.
        if value in (None, "", 0, False):
            return None
        try:
            number = float(value)
        except OverflowError:
            raise ValueError("Resize dimensions must be finite") from None
        if number != number:
            return None
        if not math.isfinite(number) or abs(number) > MAX_RESIZE_DIMENSION:
            raise ValueError(f"Resize dimensions must be at most {MAX_RESIZE_DIMENSION}")
        return int(number + 0.5) if number >= 0 else -int(-number + 0.5)

    @field_validator("width", "height")
    @classmethod
    def positive_dimension(cls, value):
        if value is not None and value <= 0:
            raise ValueError("Resize dimensions must be positive")
        return value

    @classmethod
    def default(cls) -> "ResizeEdit":
        return cls(fit="inside")


class RotateEdit(BaseModel):
    angle: Optional[float] = None

    @property
    def auto_orient(self) -> bool:
        return self.angle is None


class OverlayEdit(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bucket: str
    key: str
    w_ratio: Optional[Any] = Field(default=None, alias="wRatio")
    h_ratio: Optional[Any] = Field(default=None, alias="hRatio")
    alpha: Optional[Any] = None
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("options", mode="before")
    @classmethod
    def none_is_empty(cls, value):
        return value or {}


class SmartCropEdit(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    face_index: int = Field(default=0, alias="faceIndex")
    padding: float = 0.0

    @field_validator("face_index", mode="before")
    @classmethod
    def default_face_index(cls, value):
        return 0 if value is None else value

    @field_validator("padding", mode="before")
    @classmethod
    def parse_padding(cls, value):
        return 0.0 if value in (None, "") else float(value)


class RoundCropEdit(BaseModel):
    rx: Optional[Any] = None
    ry: Optional[Any] = None
    top: Optional[Any] = None
    left: Optional[Any] = None


class ContentModerationEdit(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    blur: Optional[Any] = 50
    min_confidence: Optional[Any] = Field(default=None, alias="minConfidence")
    moderation_labels: Optional[List[str]] = Field(default=None, alias="moderationLabels")


class WatermarkEdit(BaseModel):
    name: str = ""
    style: str = ""
    options: Dict[str, Any] = Field(default_factory=dict)


class PassthroughEdit(BaseModel):
    operation: str
    value: Any = None


Edit = Union[
    ResizeEdit,
    RotateEdit,
    OverlayEdit,
    SmartCropEdit,
    RoundCropEdit,
    ContentModerationEdit,
    WatermarkEdit,
    PassthroughEdit,
]


def _mapping(name: str, value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ImageHandlerError(400, "ImageEdits::InvalidEdit", f"Edit '{name}' expects an object value.")
    return value


def _watermark_edit(value: Dict[str, Any]) -> WatermarkEdit:
    # Legacy requests nest the template fields under "options" with composite options.
    options = dict(value.get("options") or {})
    name = options.pop("name", value.get("name", "")) or ""
    style = options.pop("style", value.get("style", "")) or ""
    return WatermarkEdit(name=str(name), style=str(style), options=options)


def parse_edit(name: str, value: Any) -> Edit:
    """Convert one raw ``name -> value`` pair into a typed edit variant."""
    try:
        if name == EDIT_RESIZE:
            if isinstance(value, dict):
                return ResizeEdit.model_validate(value)
            return PassthroughEdit(operation=name, value=value)
        if name == EDIT_ROTATE:
            if value is None:
                return RotateEdit()
            if isinstance(value, bool) or not isinstance(value, (int, float, str)):
                return PassthroughEdit(operation=name, value=value)
            return RotateEdit(angle=float(value))
        if name == EDIT_OVERLAY:
            return OverlayEdit.model_validate(_mapping(name, value))
        if name == EDIT_SMART_CROP:
            return SmartCropEdit.model_validate(_mapping(name, value))
        if name == EDIT_ROUND_CROP:
            return RoundCropEdit.model_validate(_mapping(name, value))
        if name == EDIT_CONTENT_MODERATION:
            return ContentModerationEdit.model_validate(_mapping(name, value))
        if name in (EDIT_WATERMARK, EDIT_WATERMARK_LEGACY):
            return _watermark_edit(_mapping(name, value))
    except (ValidationError, ValueError, TypeError, OverflowError) as exc:
        raise ImageHandlerError(400, "ImageEdits::InvalidEdit", f"Edit '{name}' is invalid: {exc}") from exc
    return PassthroughEdit(operation=name, value=value)


def parse_edits(edits: Optional[Dict[str, Any]]) -> List[Edit]:
    """Typed edits in request order, with a default ``inside`` resize appended when none is given."""
    parsed = [parse_edit(name, value) for name, value in (edits or {}).items()]
    if not any(isinstance(edit, ResizeEdit) for edit in parsed) and EDIT_RESIZE not in (edits or {}):
        parsed.append(ResizeEdit.default())
    return parsed

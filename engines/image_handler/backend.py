"""Pillow-backed image-transform collaborator.

``WorkingImage`` owns one decoded image for the length of a ``process`` call and
exposes the primitives the edit handlers need. Named edits without bespoke
handling reach it through ``apply_operation``.
"""
from __future__ import annotations

import io
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Union

from PIL import Image, ImageChops, ImageColor, ImageFilter, ImageOps, UnidentifiedImageError

from engines.image_handler.errors import ImageHandlerError
from engines.image_handler.geometry import resized_dimensions
from engines.image_handler.models import BlendMode, CropArea, ImageMetadata, ResizeEdit

logger = logging.getLogger(__name__)

ORIENTATION_TAG = 0x0112

# EXIF orientation -> transpose that restores upright pixels.
_ORIENTATION_TRANSPOSE = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_270,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_90,
}

OUTPUT_FORMATS = {
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "tiff": "TIFF",
    "tif": "TIFF",
    "gif": "GIF",
}

_EXIF_FORMATS = {"JPEG", "PNG", "WEBP", "TIFF"}
_ANALYSIS_FORMATS = {"JPEG", "PNG"}
_FILTER_MODES = {"L", "LA", "RGB", "RGBA"}

Color = Union[str, Dict[str, Any], Tuple[int, ...], None]


def parse_color(value: Color, default: Tuple[int, int, int, int] = (0, 0, 0, 255)) -> Tuple[int, int, int, int]:
    """Accept ``"#ff0000"``, ``{"r": 255, "g": 0, "b": 0, "alpha": 0.5}`` or a tuple."""
    if value is None:
        return default
    if isinstance(value, dict):
        alpha = value.get("alpha", 1)
        return (
            int(value.get("r", 0)),
            int(value.get("g", 0)),
            int(value.get("b", 0)),
            int(round(float(alpha) * 255)),
        )
    if isinstance(value, (tuple, list)):
        rgba = tuple(int(v) for v in value)
        return rgba + (255,) if len(rgba) == 3 else rgba[:4]
    return ImageColor.getcolor(str(value), "RGBA")


class WorkingImage:
    def __init__(
        self,
        image: Image.Image,
        source_format: Optional[str] = None,
        orientation: Optional[int] = None,
        exif: Optional[Image.Exif] = None,
        icc_profile: Optional[bytes] = None,
        keep_metadata: bool = True,
    ):
        self.image = image
        self.source_format = source_format
        self.orientation = orientation
        self.exif = exif
        self.icc_profile = icc_profile
        self.keep_metadata = keep_metadata
        self.output_format: Optional[str] = None

    @classmethod
    def open(cls, data: bytes, auto_orient: bool = False) -> "WorkingImage":
        """Decode ``data``.

        With ``auto_orient`` the source metadata is not carried to the output and an
        explicit ``rotate`` edit applies the EXIF orientation. Otherwise EXIF (with its
        orientation tag) and the ICC profile are preserved on encode.
        """
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ImageHandlerError(400, "ImageEdits::UnsupportedImage", "The source image could not be decoded.") from exc

        exif = image.getexif()
        orientation = exif.get(ORIENTATION_TAG)
        return cls(
            image,
            source_format=image.format,
            orientation=orientation,
            exif=exif,
            icc_profile=image.info.get("icc_profile"),
            keep_metadata=not auto_orient,
        )

    @classmethod
    def from_image(cls, image: Image.Image) -> "WorkingImage":
        return cls(image, source_format="PNG", keep_metadata=False)

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size

    def metadata(self) -> ImageMetadata:
        bands = self.image.getbands()
        return ImageMetadata(
            width=self.image.width,
            height=self.image.height,
            format=(self.output_format or self.source_format or "PNG").lower(),
            orientation=self.orientation,
            channels=len(bands),
            has_alpha="A" in bands or "transparency" in self.image.info,
        )

    def resized_metadata(self, resize: Optional[ResizeEdit]) -> ImageMetadata:
        """Metadata as it will be once ``resize`` has been applied."""
        meta = self.metadata()
        if resize is None:
            return meta
        width, height = resized_dimensions(meta.width, meta.height, resize)
        return meta.model_copy(update={"width": width, "height": height})

    # --- encoding ---------------------------------------------------------------

    def to_format(self, fmt: str) -> "WorkingImage":
        name = OUTPUT_FORMATS.get(str(fmt).lower())
        if not name:
            raise ImageHandlerError(400, "ImageEdits::UnsupportedOutputFormat", f"Output format '{fmt}' is not supported.")
        self.output_format = name
        return self

    def _encode_format(self) -> str:
        fmt = self.output_format or self.source_format or "PNG"
        if fmt == "MPO":
            return "JPEG"
        if fmt not in OUTPUT_FORMATS.values():
            return "PNG"
        return fmt

    def encode(self, fmt: Optional[str] = None) -> bytes:
        fmt = fmt or self._encode_format()
        img = self.image
        if fmt == "JPEG":
            if img.mode == "LA":
                img = img.convert("L")
            elif img.mode not in ("RGB", "L", "CMYK"):
                img = img.convert("RGB")
        elif fmt == "WEBP" and img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")

        save_kwargs: Dict[str, Any] = {}
        if fmt in ("JPEG", "WEBP"):
            save_kwargs["quality"] = 80
        if self.keep_metadata and fmt in _EXIF_FORMATS:
            if self.exif is not None and len(self.exif):
                save_kwargs["exif"] = self.exif.tobytes()
            if self.icc_profile:
                save_kwargs["icc_profile"] = self.icc_profile

        out = io.BytesIO()
        img.save(out, format=fmt, **save_kwargs)
        return out.getvalue()

    def to_buffer(self) -> bytes:
        return self.encode()

    def to_analysis_buffer(self) -> bytes:
        """Encoded bytes in a format the analysis service accepts (JPEG or PNG)."""
        fmt = self._encode_format()
        return self.encode(fmt if fmt in _ANALYSIS_FORMATS else "PNG")

    # --- primitives ---------------------------------------------------------------

    def _rgba(self) -> Image.Image:
        return self.image if self.image.mode == "RGBA" else self.image.convert("RGBA")

    def _filterable(self) -> Image.Image:
        """The image in a mode ImageFilter accepts (palette, bilevel and 16-bit sources are converted)."""
        img = self.image
        if img.mode in _FILTER_MODES:
            return img
        if img.mode.startswith("I") or img.mode == "F":
            return img.convert("I").point(lambda v: v * (1 / 256)).convert("L")
        if "A" in img.getbands() or "transparency" in img.info:
            return img.convert("RGBA")
        return img.convert("RGB")

    def resize(self, value: Union[ResizeEdit, Dict[str, Any], int, None]) -> "WorkingImage":
        if isinstance(value, ResizeEdit):
            resize = value
        elif isinstance(value, dict):
            resize = ResizeEdit.model_validate(value)
        elif value is None:
            return self
        else:
            resize = ResizeEdit(width=value)

        target = resized_dimensions(self.width, self.height, resize)
        if target == self.size:
            return self
        if resize.fit == "cover" and resize.width and resize.height:
            self.image = ImageOps.fit(self.image, target, Image.Resampling.LANCZOS)
        elif resize.fit == "contain" and resize.width and resize.height:
            fill = parse_color(resize.background, (0, 0, 0, 0))
            self.image = ImageOps.pad(self._rgba(), target, Image.Resampling.LANCZOS, color=fill)
        else:
            self.image = self.image.resize(target, Image.Resampling.LANCZOS)
        return self

    def rotate(self, value: Optional[float] = None) -> "WorkingImage":
        if value is None:
            transpose = _ORIENTATION_TRANSPOSE.get(self.orientation or 1)
            if transpose is not None:
                self.image = self.image.transpose(transpose)
            self.orientation = 1
            if self.exif is not None and ORIENTATION_TAG in self.exif:
                self.exif[ORIENTATION_TAG] = 1
            return self

        angle = float(value) % 360
        quarter = {90.0: Image.Transpose.ROTATE_270, 180.0: Image.Transpose.ROTATE_180, 270.0: Image.Transpose.ROTATE_90}
        if angle == 0:
            return self
        if angle in quarter:
            self.image = self.image.transpose(quarter[angle])
        else:
            rgba = self._rgba()
            self.image = rgba.rotate(-angle, resample=Image.Resampling.BICUBIC, expand=True, fillcolor=(0, 0, 0, 255))
        return self

    def flip(self, value: Any = True) -> "WorkingImage":
        if value or value is None:
            self.image = self.image.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
        return self

    def flop(self, value: Any = True) -> "WorkingImage":
        if value or value is None:
            self.image = self.image.transpose(Image.Transpose.FLIP_LEFT_RIGHT)
        return self

    def blur(self, sigma: Any = None) -> "WorkingImage":
        if sigma is None or sigma is True:
            self.image = self._filterable().filter(ImageFilter.BoxBlur(1))
            return self
        if sigma is False:
            return self
        sigma = float(sigma)
        if not 0.3 <= sigma <= 1000:
            raise ValueError("blur sigma must be between 0.3 and 1000")
        self.image = self._filterable().filter(ImageFilter.GaussianBlur(radius=sigma))
        return self

    def sharpen(self, value: Any = True) -> "WorkingImage":
        if value is False:
            return self
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            self.image = self._filterable().filter(ImageFilter.UnsharpMask(radius=float(value), percent=150, threshold=3))
        else:
            self.image = self._filterable().filter(ImageFilter.SHARPEN)
        return self

    def median(self, size: Any = 3) -> "WorkingImage":
        size = 3 if size in (None, True) else int(size)
        if size % 2 == 0:
            size += 1
        self.image = self._filterable().filter(ImageFilter.MedianFilter(size))
        return self

    def _map_color_bands(self, fn: Callable[[Image.Image], Image.Image]) -> Image.Image:
        img = self.image
        if "A" in img.getbands():
            alpha = img.getchannel("A")
            base = fn(img.convert("RGB"))
            mode = "LA" if base.mode == "L" else "RGBA"
            base = base.convert(mode[:-1])
            base.putalpha(alpha)
            return base
        return fn(img.convert("RGB") if img.mode not in ("RGB", "L") else img)

    def grayscale(self, value: Any = True) -> "WorkingImage":
        if value is not False:
            self.image = self._map_color_bands(ImageOps.grayscale)
        return self

    greyscale = grayscale

    def negate(self, value: Any = True) -> "WorkingImage":
        if value is not False:
            self.image = self._map_color_bands(ImageOps.invert)
        return self

    def normalise(self, value: Any = True) -> "WorkingImage":
        if value is not False:
            self.image = self._map_color_bands(ImageOps.autocontrast)
        return self

    normalize = normalise

    def tint(self, color: Color) -> "WorkingImage":
        rgb = parse_color(color)[:3]
        self.image = self._map_color_bands(lambda img: ImageOps.colorize(ImageOps.grayscale(img), (0, 0, 0), rgb))
        return self

    def flatten(self, value: Any = None) -> "WorkingImage":
        background = value.get("background") if isinstance(value, dict) else None
        fill = parse_color(background, (0, 0, 0, 255))
        canvas = Image.new("RGBA", self.size, fill[:3] + (255,))
        self.image = Image.alpha_composite(canvas, self._rgba()).convert("RGB")
        return self

    def extract(self, area: Union[CropArea, Dict[str, Any]]) -> "WorkingImage":
        if not isinstance(area, CropArea):
            area = CropArea.model_validate(area)
        if not area.within(self.width, self.height):
            raise ValueError(f"extract area {area.model_dump()} is outside a {self.width}x{self.height} image")
        self.image = self.image.crop((area.left, area.top, area.left + area.width, area.top + area.height))
        return self

    def extend(self, value: Any) -> "WorkingImage":
        if isinstance(value, dict):
            border = (
                int(value.get("left", 0)),
                int(value.get("top", 0)),
                int(value.get("right", 0)),
                int(value.get("bottom", 0)),
            )
            fill = parse_color(value.get("background"), (0, 0, 0, 255))
        else:
            border = (int(value),) * 4
            fill = (0, 0, 0, 255)
        if min(border) < 0:
            raise ValueError("extend values must be non-negative")
        self.image = ImageOps.expand(self._rgba(), border=border, fill=fill)
        return self

    def trim(self, threshold: Any = 10) -> "WorkingImage":
        """Remove margins that match the top-left pixel."""
        threshold = 10 if threshold in (None, True) else float(threshold)
        img = self.image
        bbox = None
        if "A" in img.getbands() and img.getchannel("A").getpixel((0, 0)) == 0:
            bbox = img.getchannel("A").getbbox()
        else:
            rgba = self._rgba()
            background = Image.new("RGBA", rgba.size, rgba.getpixel((0, 0)))
            diff = ImageChops.difference(rgba, background)
            strongest = diff.getchannel(0)
            for band in range(1, 4):
                strongest = ImageChops.lighter(strongest, diff.getchannel(band))
            bbox = strongest.point(lambda p: 255 if p > threshold else 0).getbbox()
        if bbox and bbox != (0, 0, img.width, img.height):
            self.image = img.crop(bbox)
        return self

    def composite(
        self,
        overlay: Union[Image.Image, "WorkingImage"],
        left: Optional[int] = None,
        top: Optional[int] = None,
        blend: BlendMode = "over",
        tile: bool = False,
    ) -> "WorkingImage":
        if isinstance(overlay, WorkingImage):
            overlay = overlay.image
        top_img = overlay.convert("RGBA")
        base = self._rgba()
        layer = self._layer_for(top_img, base.size, left, top, tile)

        if blend == "over":
            self.image = Image.alpha_composite(base, layer)
        elif blend == "dest-in":
            r, g, b, a = base.split()
            a = ImageChops.multiply(a, layer.getchannel("A"))
            self.image = Image.merge("RGBA", (r, g, b, a))
        else:
            self.image = Image.alpha_composite(base, self._apply_blend_mode(base, layer, blend))
        return self

    def _layer_for(
        self,
        overlay: Image.Image,
        size: Tuple[int, int],
        left: Optional[int],
        top: Optional[int],
        tile: bool,
    ) -> Image.Image:
        if tile and overlay.size == (1, 1):
            return Image.new("RGBA", size, overlay.getpixel((0, 0)))
        layer = Image.new("RGBA", size, (0, 0, 0, 0))
        if tile:
            row = Image.new("RGBA", (size[0], overlay.height), (0, 0, 0, 0))
            for x in range(0, size[0], overlay.width):
                row.paste(overlay, (x, 0))
            for y in range(0, size[1], overlay.height):
                layer.paste(row, (0, y))
            return layer
        if left is None and top is None:
            x = (size[0] - overlay.width) // 2
            y = (size[1] - overlay.height) // 2
        else:
            x, y = int(left or 0), int(top or 0)
        layer.paste(overlay, (x, y))
        return layer

    def _apply_blend_mode(self, base: Image.Image, top: Image.Image, mode: BlendMode) -> Image.Image:
        if mode == "multiply":
            return ImageChops.multiply(base, top)
        if mode == "screen":
            return ImageChops.screen(base, top)
        if mode == "darken":
            return ImageChops.darker(base, top)
        if mode == "lighten":
            return ImageChops.lighter(base, top)
        if mode == "add":
            return ImageChops.add(base, top)
        if mode == "overlay":
            return ImageChops.overlay(base, top)
        raise ValueError(f"unsupported blend mode '{mode}'")

    # --- passthrough --------------------------------------------------------------

    def apply_operation(self, name: str, value: Any) -> "WorkingImage":
        """Invoke a named primitive with ``value`` as its sole argument."""
        method_name = PASSTHROUGH_OPERATIONS.get(name)
        if method_name is None:
            raise ImageHandlerError(400, "ImageEdits::UnsupportedOperation", f"Edit '{name}' is not a supported operation.")
        logger.debug("Applying passthrough operation %s", name)
        try:
            return getattr(self, method_name)(value)
        except ImageHandlerError:
            raise
        except (ValueError, TypeError, KeyError, OverflowError) as exc:
            raise ImageHandlerError(400, "ImageEdits::InvalidEdit", f"Edit '{name}' is invalid: {exc}") from exc


PASSTHROUGH_OPERATIONS: Dict[str, str] = {
    "resize": "resize",
    "rotate": "rotate",
    "flip": "flip",
    "flop": "flop",
    "blur": "blur",
    "sharpen": "sharpen",
    "median": "median",
    "grayscale": "grayscale",
    "greyscale": "greyscale",
    "negate": "negate",
    "normalise": "normalise",
    "normalize": "normalize",
    "tint": "tint",
    "flatten": "flatten",
    "extract": "extract",
    "extend": "extend",
    "trim": "trim",
    "toFormat": "to_format",
}

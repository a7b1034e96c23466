import io
import unittest

from PIL import Image

from engines.image_handler.backend import ORIENTATION_TAG, WorkingImage, parse_color
from engines.image_handler.errors import ImageHandlerError
from engines.image_handler.models import CropArea, ResizeEdit


def _encode(img: Image.Image, fmt: str = "PNG", **kwargs) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def _rotated_jpeg(size=(200, 100), orientation=6) -> bytes:
    exif = Image.Exif()
    exif[ORIENTATION_TAG] = orientation
    return _encode(Image.new("RGB", size, "#336699"), "JPEG", exif=exif.tobytes())


class TestWorkingImageDecode(unittest.TestCase):
    def test_undecodable_bytes(self):
        with self.assertRaises(ImageHandlerError) as ctx:
            WorkingImage.open(b"not an image")
        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(ctx.exception.code, "ImageEdits::UnsupportedImage")

    def test_metadata(self):
        image = WorkingImage.open(_encode(Image.new("RGBA", (30, 20))))
        meta = image.metadata()
        self.assertEqual((meta.width, meta.height), (30, 20))
        self.assertEqual(meta.format, "png")
        self.assertTrue(meta.has_alpha)
        self.assertEqual(meta.channels, 4)

    def test_resized_metadata_does_not_touch_pixels(self):
        image = WorkingImage.open(_encode(Image.new("RGB", (400, 200))))
        meta = image.resized_metadata(ResizeEdit(width=100))
        self.assertEqual((meta.width, meta.height), (100, 50))
        self.assertEqual(image.size, (400, 200))


class TestWorkingImagePrimitives(unittest.TestCase):
    def setUp(self):
        self.image = WorkingImage.from_image(Image.new("RGB", (200, 100), "white"))

    def test_resize_cover(self):
        self.image.resize(ResizeEdit(width=50, height=50))
        self.assertEqual(self.image.size, (50, 50))

    def test_resize_contain_pads_transparent(self):
        self.image.resize(ResizeEdit(width=50, height=50, fit="contain"))
        self.assertEqual(self.image.size, (50, 50))
        self.assertEqual(self.image.image.getpixel((0, 0))[3], 0)
        self.assertEqual(self.image.image.getpixel((25, 25))[3], 255)

    def test_resize_from_dict_and_int(self):
        self.image.resize({"width": 100})
        self.assertEqual(self.image.size, (100, 50))
        self.image.resize(50)
        self.assertEqual(self.image.size, (50, 25))

    def test_rotate_quarter_turn(self):
        self.image.rotate(90)
        self.assertEqual(self.image.size, (100, 200))

    def test_rotate_none_applies_exif_orientation(self):
        image = WorkingImage.open(_rotated_jpeg(), auto_orient=True)
        self.assertEqual(image.orientation, 6)
        image.rotate(None)
        self.assertEqual(image.size, (100, 200))
        self.assertEqual(image.orientation, 1)

    def test_extract(self):
        self.image.extract(CropArea(left=10, top=10, width=20, height=30))
        self.assertEqual(self.image.size, (20, 30))

    def test_extract_out_of_bounds(self):
        with self.assertRaises(ValueError):
            self.image.extract({"left": 190, "top": 0, "width": 20, "height": 10})

    def test_trim_uniform_background(self):
        img = Image.new("RGB", (20, 20), "white")
        img.paste((0, 0, 0), (5, 5, 11, 11))
        image = WorkingImage.from_image(img).trim()
        self.assertEqual(image.size, (6, 6))

    def test_trim_transparent_margins(self):
        img = Image.new("RGBA", (20, 20), (0, 0, 0, 0))
        img.paste((255, 0, 0, 255), (8, 8, 12, 12))
        image = WorkingImage.from_image(img).trim()
        self.assertEqual(image.size, (4, 4))

    def test_parse_color(self):
        self.assertEqual(parse_color("#ff0000"), (255, 0, 0, 255))
        self.assertEqual(parse_color({"r": 0, "g": 0, "b": 255, "alpha": 1}), (0, 0, 255, 255))
        self.assertEqual(parse_color((1, 2, 3)), (1, 2, 3, 255))
        self.assertEqual(parse_color(None, (9, 9, 9, 9)), (9, 9, 9, 9))


class TestComposite(unittest.TestCase):
    def setUp(self):
        self.base = WorkingImage.from_image(Image.new("RGB", (10, 10), "white"))
        self.red = Image.new("RGBA", (2, 2), (255, 0, 0, 255))

    def test_centred_without_offsets(self):
        self.base.composite(self.red)
        self.assertEqual(self.base.image.getpixel((4, 4)), (255, 0, 0, 255))
        self.assertEqual(self.base.image.getpixel((0, 0)), (255, 255, 255, 255))

    def test_single_offset_defaults_other_to_zero(self):
        self.base.composite(self.red, left=3)
        self.assertEqual(self.base.image.getpixel((3, 0)), (255, 0, 0, 255))
        self.assertEqual(self.base.image.getpixel((3, 4)), (255, 255, 255, 255))

    def test_dest_in_with_tiled_mask(self):
        mask = Image.new("RGBA", (1, 1), (255, 255, 255, 0))
        self.base.composite(mask, blend="dest-in", tile=True)
        self.assertEqual(self.base.image.getchannel("A").getextrema(), (0, 0))

    def test_multiply_blend(self):
        black = Image.new("RGBA", (10, 10), (0, 0, 0, 255))
        self.base.composite(black, left=0, top=0, blend="multiply")
        self.assertEqual(self.base.image.getpixel((5, 5)), (0, 0, 0, 255))


class TestPassthrough(unittest.TestCase):
    def setUp(self):
        self.image = WorkingImage.from_image(Image.new("RGB", (20, 10), "white"))

    def test_unknown_operation(self):
        with self.assertRaises(ImageHandlerError) as ctx:
            self.image.apply_operation("sepia", True)
        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(ctx.exception.code, "ImageEdits::UnsupportedOperation")

    def test_invalid_value(self):
        with self.assertRaises(ImageHandlerError) as ctx:
            self.image.apply_operation("blur", 5000)
        self.assertEqual(ctx.exception.code, "ImageEdits::InvalidEdit")

    def test_extract_out_of_bounds_is_invalid_edit(self):
        with self.assertRaises(ImageHandlerError) as ctx:
            self.image.apply_operation("extract", {"left": 0, "top": 0, "width": 500, "height": 5})
        self.assertEqual(ctx.exception.code, "ImageEdits::InvalidEdit")

    def test_unsupported_output_format(self):
        with self.assertRaises(ImageHandlerError) as ctx:
            self.image.apply_operation("toFormat", "bmp")
        self.assertEqual(ctx.exception.code, "ImageEdits::UnsupportedOutputFormat")

    def test_filters_accept_palette_bilevel_and_sixteen_bit(self):
        sources = {
            "P": Image.new("RGB", (20, 10), "red").convert("P"),
            "1": Image.new("1", (20, 10), 1),
            "I;16": Image.new("I;16", (20, 10), 512),
        }
        for mode, img in sources.items():
            for name, value in (("blur", 2), ("blur", True), ("sharpen", True), ("sharpen", 1.5), ("median", 3)):
                image = WorkingImage.from_image(img)
                image.apply_operation(name, value)
                self.assertIn(image.image.mode, ("L", "RGB"), (mode, name))
                self.assertEqual(image.size, (20, 10))

    def test_sixteen_bit_is_scaled_to_eight_bit(self):
        image = WorkingImage.from_image(Image.new("I;16", (20, 10), 512)).median(3)
        self.assertEqual(image.image.getpixel((5, 5)), 2)

    def test_flop_and_grayscale(self):
        self.image.apply_operation("flop", True).apply_operation("grayscale", True)
        self.assertEqual(self.image.image.mode, "L")
        self.assertEqual(self.image.size, (20, 10))


class TestEncoding(unittest.TestCase):
    def test_jpeg_drops_alpha(self):
        image = WorkingImage.from_image(Image.new("RGBA", (8, 8), (255, 0, 0, 128)))
        data = image.to_format("jpeg").to_buffer()
        decoded = Image.open(io.BytesIO(data))
        self.assertEqual(decoded.format, "JPEG")
        self.assertEqual(decoded.mode, "RGB")

    def test_exif_kept_without_auto_orient(self):
        image = WorkingImage.open(_rotated_jpeg())
        decoded = Image.open(io.BytesIO(image.to_buffer()))
        self.assertEqual(decoded.getexif().get(ORIENTATION_TAG), 6)

    def test_exif_dropped_with_auto_orient(self):
        image = WorkingImage.open(_rotated_jpeg(), auto_orient=True)
        decoded = Image.open(io.BytesIO(image.rotate(None).to_buffer()))
        self.assertIsNone(decoded.getexif().get(ORIENTATION_TAG))

    def test_analysis_buffer_is_png_for_other_formats(self):
        image = WorkingImage.from_image(Image.new("RGB", (8, 8))).to_format("webp")
        self.assertEqual(Image.open(io.BytesIO(image.to_analysis_buffer())).format, "PNG")


if __name__ == "__main__":
    unittest.main()

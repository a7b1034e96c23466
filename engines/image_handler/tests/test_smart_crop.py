import unittest
from unittest.mock import MagicMock

from botocore.exceptions import ClientError
from PIL import Image

from engines.image_handler.analysis import RekognitionAnalysis, StaticImageAnalysis
from engines.image_handler.backend import WorkingImage
from engines.image_handler.errors import CollaboratorError, ImageHandlerError
from engines.image_handler.models import BoundingBox, FaceDetail, SmartCropEdit
from engines.image_handler.smart_crop import SmartCropResolver


def _face(left, top, width, height):
    return FaceDetail(bounding_box=BoundingBox(left=left, top=top, width=width, height=height), confidence=99.0)


class TestSmartCropResolver(unittest.TestCase):
    def setUp(self):
        self.image = WorkingImage.from_image(Image.new("RGB", (200, 100), "white"))

    def test_no_faces_keeps_full_frame(self):
        resolver = SmartCropResolver(StaticImageAnalysis())
        result = resolver.apply(self.image, SmartCropEdit())
        self.assertEqual(result.size, (200, 100))

    def test_crops_to_selected_face(self):
        analysis = StaticImageAnalysis(faces=[_face(0.0, 0.0, 0.1, 0.1), _face(0.25, 0.25, 0.5, 0.5)])
        result = SmartCropResolver(analysis).apply(self.image, SmartCropEdit(faceIndex=1))
        self.assertEqual(result.size, (100, 50))
        self.assertEqual(analysis.calls, ["detect_faces"])

    def test_face_index_out_of_range(self):
        analysis = StaticImageAnalysis(faces=[_face(0, 0, 0.5, 0.5), _face(0.5, 0.5, 0.5, 0.5)])
        with self.assertRaises(ImageHandlerError) as ctx:
            SmartCropResolver(analysis).apply(self.image, SmartCropEdit(faceIndex=5))
        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(ctx.exception.code, "SmartCrop::FaceIndexOutOfRange")

    def test_overflowing_box_is_clamped(self):
        analysis = StaticImageAnalysis(faces=[_face(0.5, 0.0, 0.6, 1.0)])
        resolver = SmartCropResolver(analysis)
        area = resolver.crop_area(self.image, SmartCropEdit())
        self.assertEqual((area.left, area.top, area.width, area.height), (100, 0, 100, 100))

    def test_padding_out_of_bounds(self):
        analysis = StaticImageAnalysis(faces=[_face(0.0, 0.0, 0.5, 0.5)])
        with self.assertRaises(ImageHandlerError) as ctx:
            SmartCropResolver(analysis).apply(self.image, SmartCropEdit(padding=10))
        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(ctx.exception.code, "SmartCrop::PaddingOutOfBounds")

    def test_padding_within_bounds(self):
        analysis = StaticImageAnalysis(faces=[_face(0.25, 0.25, 0.5, 0.5)])
        result = SmartCropResolver(analysis).apply(self.image, SmartCropEdit(padding=10))
        self.assertEqual(result.size, (120, 70))


class TestRekognitionAnalysis(unittest.TestCase):
    def test_detect_faces_parses_response(self):
        client = MagicMock()
        client.detect_faces.return_value = {
            "FaceDetails": [
                {"BoundingBox": {"Left": 0.1, "Top": 0.2, "Width": 0.3, "Height": 0.4}, "Confidence": 98.5}
            ]
        }
        faces = RekognitionAnalysis(client=client).detect_faces(b"img")
        self.assertEqual(len(faces), 1)
        self.assertAlmostEqual(faces[0].bounding_box.left, 0.1)
        self.assertAlmostEqual(faces[0].bounding_box.height, 0.4)
        client.detect_faces.assert_called_once_with(Image={"Bytes": b"img"})

    def test_detect_faces_error_is_propagated(self):
        client = MagicMock()
        client.detect_faces.side_effect = ClientError(
            {
                "Error": {"Code": "InvalidImageFormatException", "Message": "Request has invalid image format"},
                "ResponseMetadata": {"HTTPStatusCode": 400},
            },
            "DetectFaces",
        )
        with self.assertRaises(CollaboratorError) as ctx:
            RekognitionAnalysis(client=client).detect_faces(b"img")
        self.assertEqual(ctx.exception.status, 400)
        self.assertEqual(ctx.exception.code, "InvalidImageFormatException")
        self.assertEqual(ctx.exception.service, "rekognition")

    def test_error_without_status_defaults_to_500(self):
        client = MagicMock()
        client.detect_faces.side_effect = RuntimeError("connection reset")
        with self.assertRaises(CollaboratorError) as ctx:
            RekognitionAnalysis(client=client).detect_faces(b"img")
        self.assertEqual(ctx.exception.status, 500)
        self.assertEqual(ctx.exception.message, "connection reset")


if __name__ == "__main__":
    unittest.main()

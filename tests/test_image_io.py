import io
import unittest
from unittest import mock

import numpy as np
from PIL import Image, features

from qrecompress.errors import CodecError, InputError
from qrecompress.image_io import decode_image, decode_luma, detect_filetype, encode_jpeg, encode_webp
from tests.fixtures import jpeg_bytes, make_rgb, ppm_bytes


def _is_progressive(data):
    with Image.open(io.BytesIO(data)) as im:
        return bool(im.info.get("progressive") or im.info.get("progression"))


class TestDetectFiletype(unittest.TestCase):
    def test_magic_bytes(self):
        arr = make_rgb(16, 16)
        self.assertEqual(detect_filetype(jpeg_bytes(arr)), "jpeg")
        self.assertEqual(detect_filetype(ppm_bytes(arr)), "ppm")
        self.assertEqual(detect_filetype(b"GIF89a"), "unknown")
        self.assertEqual(detect_filetype(b""), "unknown")


class TestDecodeImage(unittest.TestCase):
    def test_decodes_jpeg_to_rgb(self):
        arr = decode_image(jpeg_bytes(make_rgb(40, 30)), "jpeg")
        self.assertEqual(arr.shape, (30, 40, 3))
        self.assertEqual(arr.dtype, np.uint8)

    def test_decodes_ppm_losslessly(self):
        src = make_rgb(20, 10)
        np.testing.assert_array_equal(decode_image(ppm_bytes(src), "ppm"), src)

    def test_greyscale_jpeg_becomes_rgb(self):
        buf = io.BytesIO()
        Image.new("L", (12, 8), 90).save(buf, format="JPEG")
        arr = decode_image(buf.getvalue(), "jpeg")
        self.assertEqual(arr.shape, (8, 12, 3))

    def test_wrong_filetype_is_rejected(self):
        with self.assertRaises(InputError):
            decode_image(ppm_bytes(make_rgb(8, 8)), "jpeg")

    def test_unknown_filetype(self):
        with self.assertRaises(InputError):
            decode_image(b"GIF89a", "unknown", name="x.gif")

    def test_garbage(self):
        with self.assertRaises(InputError) as ctx:
            decode_image(b"\xff\xd8 not really a jpeg", "jpeg", name="broken.jpg")
        self.assertIn("broken.jpg", str(ctx.exception))

    def test_decompression_bomb(self):
        data = jpeg_bytes(make_rgb(64, 48))
        with mock.patch.object(Image, "MAX_IMAGE_PIXELS", 10):
            with self.assertRaises(InputError):
                decode_image(data, "jpeg", name="huge.jpg")
            with self.assertRaises(CodecError):
                decode_luma(data)


class TestEncodeJpeg(unittest.TestCase):
    def setUp(self):
        self.img = Image.fromarray(make_rgb(64, 48))

    def test_quality_controls_size(self):
        self.assertLess(len(encode_jpeg(self.img, 30)), len(encode_jpeg(self.img, 90)))

    def test_search_rounds_are_baseline(self):
        self.assertFalse(_is_progressive(encode_jpeg(self.img, 80, final=False)))

    def test_final_round_is_progressive(self):
        self.assertTrue(_is_progressive(encode_jpeg(self.img, 80, final=True)))
        self.assertFalse(_is_progressive(encode_jpeg(self.img, 80, final=True, progressive=False)))

    def test_starts_with_soi_and_app0(self):
        data = encode_jpeg(self.img, 80)
        self.assertEqual(data[:4], b"\xff\xd8\xff\xe0")

    def test_disable_subsampling(self):
        data = encode_jpeg(self.img, 80, subsampling=0)
        with Image.open(io.BytesIO(data)) as im:
            self.assertEqual(im.layer[0][1:3], (1, 1))
            self.assertEqual(im.layer[1][1:3], (1, 1))


class TestDecodeLuma(unittest.TestCase):
    def test_round_trip_shape(self):
        luma = decode_luma(jpeg_bytes(make_rgb(40, 30)))
        self.assertEqual(luma.shape, (30, 40))
        self.assertEqual(luma.dtype, np.uint8)

    def test_empty(self):
        with self.assertRaises(CodecError):
            decode_luma(b"")

    def test_garbage(self):
        with self.assertRaises(CodecError):
            decode_luma(b"definitely not an image")


@unittest.skipUnless(features.check("webp"), "Pillow built without WebP")
class TestEncodeWebp(unittest.TestCase):
    def test_produces_webp(self):
        data = encode_webp(Image.fromarray(make_rgb(64, 48)), 75)
        self.assertEqual(data[:4], b"RIFF")
        self.assertEqual(data[8:12], b"WEBP")
        self.assertEqual(decode_luma(data).shape, (48, 64))


if __name__ == "__main__":
    unittest.main()

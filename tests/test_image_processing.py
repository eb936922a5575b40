import unittest

import numpy as np

from qrecompress.image_processing import defish, rgb_to_luma
from tests.fixtures import make_rgb


class TestRgbToLuma(unittest.TestCase):
    def test_shape_and_dtype(self):
        luma = rgb_to_luma(make_rgb(40, 30))
        self.assertEqual(luma.shape, (30, 40))
        self.assertEqual(luma.dtype, np.uint8)

    def test_grey_pixels_keep_their_value(self):
        arr = np.full((4, 4, 3), 77, np.uint8)
        self.assertTrue(np.all(rgb_to_luma(arr) == 77))

    def test_green_weighs_most(self):
        arr = np.zeros((1, 3, 3), np.uint8)
        arr[0, 0, 0] = 255
        arr[0, 1, 1] = 255
        arr[0, 2, 2] = 255
        r, g, b = rgb_to_luma(arr)[0]
        self.assertGreater(g, r)
        self.assertGreater(r, b)

    def test_greyscale_passes_through(self):
        grey = np.arange(16, dtype=np.uint8).reshape(4, 4)
        self.assertIs(rgb_to_luma(grey), grey)


class TestDefish(unittest.TestCase):
    def test_zero_strength_is_identity(self):
        arr = make_rgb(33, 21)
        np.testing.assert_array_equal(defish(arr, 0.0), arr)

    def test_keeps_shape_and_dtype(self):
        arr = make_rgb(64, 48)
        out = defish(arr, 2.5, zoom=1.2)
        self.assertEqual(out.shape, arr.shape)
        self.assertEqual(out.dtype, np.uint8)

    def test_centre_pixel_is_fixed(self):
        arr = make_rgb(65, 49)
        out = defish(arr, 3.0)
        np.testing.assert_array_equal(out[24, 32], arr[24, 32])

    def test_corners_are_pulled_inward(self):
        # a white frame on black: defishing samples corners from nearer the centre
        arr = np.zeros((51, 51), np.uint8)
        arr[0, :] = arr[-1, :] = arr[:, 0] = arr[:, -1] = 255
        out = defish(arr, 4.0)
        self.assertLess(out[0, 0], 255)
        self.assertEqual(out[25, 25], 0)

    def test_zoom_out_leaves_black_border(self):
        arr = np.full((40, 40), 200, np.uint8)
        out = defish(arr, 0.0, zoom=2.0)
        self.assertEqual(out[0, 0], 0)
        self.assertEqual(out[20, 20], 200)


if __name__ == "__main__":
    unittest.main()

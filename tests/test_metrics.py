import unittest

import numpy as np
from PIL import Image

from qrecompress.errors import CodecError, InputError, UsageError
from qrecompress.image_io import decode_luma, encode_jpeg
from qrecompress.image_processing import rgb_to_luma
from qrecompress.metrics import (
    METRICS,
    MeanPixelErrorMetric,
    MSSSIMMetric,
    SmallFryMetric,
    SSIMMetric,
    get_metric,
    preset_target,
)
from tests.fixtures import make_rgb


def _luma_pair(quality, seed=0):
    rgb = make_rgb(96, 80, seed=seed)
    ref = rgb_to_luma(rgb)
    cand = decode_luma(encode_jpeg(Image.fromarray(rgb), quality))
    return ref, cand


class TestMetricScores(unittest.TestCase):
    def setUp(self):
        self.ref = rgb_to_luma(make_rgb(96, 80))

    def test_identical_images(self):
        self.assertAlmostEqual(SSIMMetric().compute(self.ref, self.ref), 1.0, places=6)
        self.assertAlmostEqual(MSSSIMMetric().compute(self.ref, self.ref), 1.0, places=6)
        self.assertEqual(MeanPixelErrorMetric().compute(self.ref, self.ref), 0.0)

    def test_scores_are_python_floats(self):
        for cls in METRICS.values():
            self.assertIsInstance(cls().compute(self.ref, self.ref), float)

    def test_higher_quality_scores_better(self):
        lo_ref, lo = _luma_pair(20)
        _, hi = _luma_pair(95)
        self.assertGreater(SSIMMetric().compute(lo_ref, hi), SSIMMetric().compute(lo_ref, lo))
        self.assertGreater(MSSSIMMetric().compute(lo_ref, hi), MSSSIMMetric().compute(lo_ref, lo))
        self.assertGreater(SmallFryMetric().compute(lo_ref, hi), SmallFryMetric().compute(lo_ref, lo))
        self.assertLess(MeanPixelErrorMetric().compute(lo_ref, hi),
                        MeanPixelErrorMetric().compute(lo_ref, lo))

    def test_mpe_is_mean_absolute_difference(self):
        a = np.zeros((16, 16), np.uint8)
        b = np.zeros((16, 16), np.uint8)
        b[:8] = 4
        self.assertAlmostEqual(MeanPixelErrorMetric().compute(a, b), 2.0)
        # order does not matter and no uint8 wraparound
        self.assertAlmostEqual(MeanPixelErrorMetric().compute(b, a), 2.0)

    def test_smallfry_identical_is_high(self):
        score = SmallFryMetric().compute(self.ref, self.ref)
        # PSNR factor of a lossless copy plus an artifact-free edge factor
        self.assertGreater(score, 100.0)
        self.assertLess(score, 116.0)

    def test_small_image_ssim_falls_back_to_uniform_window(self):
        ref = rgb_to_luma(make_rgb(8, 8))
        self.assertAlmostEqual(SSIMMetric().compute(ref, ref), 1.0, places=6)
        self.assertAlmostEqual(MSSSIMMetric().compute(ref, ref), 1.0, places=6)

    def test_image_too_small_raises(self):
        tiny = np.zeros((2, 2), np.uint8)
        for metric in (SSIMMetric(), MSSSIMMetric()):
            with self.subTest(metric=metric.name), self.assertRaises(InputError) as ctx:
                metric.compute(tiny, tiny)
            self.assertIn("2x2", str(ctx.exception))

    def test_shape_mismatch_raises(self):
        with self.assertRaises(CodecError):
            SSIMMetric().compute(self.ref, self.ref[:-1])


class TestDirection(unittest.TestCase):
    def test_higher_is_better_metrics(self):
        for name in ("ssim", "ms-ssim", "smallfry"):
            m = get_metric(name)
            self.assertTrue(m.higher_is_better)
            self.assertTrue(m.is_acceptable(0.9, 0.9))
            self.assertFalse(m.is_acceptable(0.8, 0.9))

    def test_mpe_lower_is_better(self):
        m = get_metric("mpe")
        self.assertFalse(m.higher_is_better)
        self.assertTrue(m.is_acceptable(0.5, 1.0))
        self.assertFalse(m.is_acceptable(1.0, 1.0))
        self.assertFalse(m.is_acceptable(2.0, 1.0))


class TestRegistry(unittest.TestCase):
    def test_get_metric(self):
        self.assertIsInstance(get_metric("ms-ssim"), MSSSIMMetric)
        self.assertEqual(set(METRICS), {"ssim", "ms-ssim", "smallfry", "mpe"})

    def test_unknown_metric(self):
        with self.assertRaises(UsageError):
            get_metric("psnr")

    def test_preset_targets(self):
        self.assertEqual(preset_target("ssim", "medium"), 0.9999)
        self.assertEqual(preset_target("ssim", "medium", "webp"), 0.999)
        self.assertEqual(preset_target("ms-ssim", "veryhigh"), 0.98)
        self.assertEqual(preset_target("smallfry", "low"), 100.75)
        self.assertEqual(preset_target("mpe", "high"), 0.8)

    def test_preset_errors(self):
        with self.assertRaises(UsageError):
            preset_target("ssim", "ultra")
        with self.assertRaises(UsageError):
            preset_target("psnr", "low")


if __name__ == "__main__":
    unittest.main()

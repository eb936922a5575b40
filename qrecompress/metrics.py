"""
Similarity metrics for qRecompress.

Four full-reference metrics over 8-bit luma planes (SSIM, MS-SSIM, SmallFry,
mean pixel error) behind a common Metric interface, plus the preset target
tables used when no explicit target is given.
"""

from typing import Dict, Tuple, Type
import numpy as np
from scipy.ndimage import gaussian_filter
from skimage.metrics import structural_similarity as ssim

from .errors import CodecError, InputError, UsageError

QUALITY_PRESETS: Tuple[str, ...] = ("low", "medium", "high", "veryhigh")

# Per-container preset targets: metric -> (low, medium, high, veryhigh)
PRESET_TARGETS: Dict[str, Dict[str, Tuple[float, float, float, float]]] = {
    "jpeg": {
        "ssim": (0.999, 0.9999, 0.99995, 0.99999),
        "ms-ssim": (0.85, 0.94, 0.96, 0.98),
        "smallfry": (100.75, 102.25, 103.8, 105.5),
        "mpe": (1.5, 1.0, 0.8, 0.6),
    },
    "webp": {
        "ssim": (0.995, 0.999, 0.9995, 0.9999),
        "ms-ssim": (0.85, 0.94, 0.96, 0.98),
        "smallfry": (100.75, 102.25, 103.8, 105.5),
        "mpe": (1.5, 1.0, 0.8, 0.6),
    },
}

# Gaussian window shared by SSIM and MS-SSIM (11x11, sigma 1.5)
_SIGMA = 1.5
_TRUNCATE = 3.5
_RADIUS = int(_TRUNCATE * _SIGMA + 0.5)
_WINDOW = 2 * _RADIUS + 1

_MS_SSIM_WEIGHTS = (0.0448, 0.2856, 0.3001, 0.2363, 0.1333)
_C1 = (0.01 * 255) ** 2
_C2 = (0.03 * 255) ** 2


class Metric:
    """
    Full-reference similarity metric over two equally sized uint8 luma planes.

    Subclasses set ``name`` and ``higher_is_better`` and implement ``_score``.
    """
    name: str = ""
    higher_is_better: bool = True

    def compute(self, reference: np.ndarray, candidate: np.ndarray) -> float:
        """
        Score ``candidate`` against ``reference``.

        Args:
            reference: Original luma plane (H, W) uint8
            candidate: Decoded luma plane of the re-encoded image

        Returns:
            Metric value as a Python float
        """
        if reference.shape != candidate.shape:
            raise CodecError(
                f"decoded image is {candidate.shape[1]}x{candidate.shape[0]}, "
                f"expected {reference.shape[1]}x{reference.shape[0]}"
            )
        return float(self._score(reference, candidate))

    def is_acceptable(self, score: float, target: float) -> bool:
        """True when ``score`` meets ``target`` in this metric's direction."""
        if self.higher_is_better:
            return score >= target
        return score < target

    def _score(self, reference: np.ndarray, candidate: np.ndarray) -> float:
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class SSIMMetric(Metric):
    """Structural similarity (Wang et al. 2004) with an 11x11 Gaussian window."""
    name = "ssim"
    higher_is_better = True

    def _score(self, reference, candidate):
        side = min(reference.shape)
        if side >= _WINDOW:
            return ssim(reference, candidate, data_range=255, gaussian_weights=True,
                        sigma=_SIGMA, use_sample_covariance=False)
        # Tiny images: largest odd uniform window that fits
        win = side if side % 2 else side - 1
        if win < 3:
            raise InputError(f"image too small for {self.name}: {reference.shape[1]}x{reference.shape[0]}")
        return ssim(reference, candidate, data_range=255, win_size=win, use_sample_covariance=False)


def _halve(a: np.ndarray) -> np.ndarray:
    """2x2 box downsample, dropping an odd trailing row/column."""
    h, w = a.shape[0] // 2 * 2, a.shape[1] // 2 * 2
    a = a[:h, :w]
    return 0.25 * (a[0::2, 0::2] + a[1::2, 0::2] + a[0::2, 1::2] + a[1::2, 1::2])


def _luminance_and_contrast(x: np.ndarray, y: np.ndarray) -> Tuple[float, float]:
    """Mean luminance term and contrast-structure term over the valid region."""
    def blur(a):
        return gaussian_filter(a, _SIGMA, truncate=_TRUNCATE)

    mu_x, mu_y = blur(x), blur(y)
    sxx = blur(x * x) - mu_x * mu_x
    syy = blur(y * y) - mu_y * mu_y
    sxy = blur(x * y) - mu_x * mu_y
    r = _RADIUS
    valid = (slice(r, -r), slice(r, -r))
    lum = (2 * mu_x * mu_y + _C1) / (mu_x * mu_x + mu_y * mu_y + _C1)
    cs = (2 * sxy + _C2) / (sxx + syy + _C2)
    return float(lum[valid].mean()), float(cs[valid].mean())


class MSSSIMMetric(Metric):
    """
    Multi-scale SSIM (Wang, Simoncelli & Bovik 2003).

    Uses up to five dyadic scales; scales whose plane would be smaller than the
    Gaussian window are dropped and the remaining weights renormalised.
    """
    name = "ms-ssim"
    higher_is_better = True

    def _score(self, reference, candidate):
        x = reference.astype(np.float64)
        y = candidate.astype(np.float64)
        scales = 0
        side = min(x.shape)
        while scales < len(_MS_SSIM_WEIGHTS) and side >= _WINDOW:
            scales += 1
            side //= 2
        if scales == 0:
            return SSIMMetric()._score(reference, candidate)

        weights = np.asarray(_MS_SSIM_WEIGHTS[:scales])
        weights = weights / weights.sum()
        result = 1.0
        for i, w in enumerate(weights):
            lum, cs = _luminance_and_contrast(x, y)
            if i == scales - 1:
                result *= max(lum * cs, 0.0) ** w
            else:
                result *= max(cs, 0.0) ** w
                x, y = _halve(x), _halve(y)
        return result


class SmallFryMetric(Metric):
    """
    SmallFry perceptual score: a clipped PSNR factor plus an 8x8 block-edge
    artifact factor, combined with fixed weights. Typical values sit around
    100 for visually lossless JPEGs.
    """
    name = "smallfry"
    higher_is_better = True

    def _score(self, reference, candidate):
        maxv = int(reference.max())
        p = _smallfry_psnr_factor(reference, candidate, maxv)
        a = _smallfry_aae_factor(reference, candidate, maxv)
        return p * 37.1891885161239 + a * 78.5328607296973


def _smallfry_psnr_factor(orig: np.ndarray, cmp: np.ndarray, maxv: int) -> float:
    diff = orig.astype(np.int32) - cmp.astype(np.int32)
    mse = float(np.mean(diff * diff))
    ret = 10.0 * np.log10(65025.0 / (mse if mse != 0 else 1))
    if maxv > 128:
        ret /= 50.0
    else:
        ret /= (0.0016 * (maxv ** 2)) - (0.38 * maxv + 72.5)
    return max(min(ret, 1.0), 0.0)


def _edge_artifacts(d0: np.ndarray, d1: np.ndarray, d2: np.ndarray, d3: np.ndarray) -> Tuple[float, int]:
    """
    Score the error step across a block edge (between d1 and d2) relative to
    the steps on either side of it.
    """
    calc = np.abs(d1 - d2)
    denom = (np.abs(d0 - d1) + np.abs(d2 - d3) + 0.0001) / 2.0
    ratio = calc / denom
    hits = np.where(ratio > 5.0, 1.0, np.where(ratio > 2.0, (ratio - 2.0) / 3.0, 0.0))
    return float(hits.sum()), int(ratio.size)


def _smallfry_aae_factor(orig: np.ndarray, cmp: np.ndarray, maxv: int) -> float:
    d = np.abs(orig.astype(np.int32) - cmp.astype(np.int32))
    height, width = d.shape

    total, cnt = 0.0, 0
    cols = np.arange(7, width - 2, 8)
    if cols.size:
        s, n = _edge_artifacts(d[:, cols - 1], d[:, cols], d[:, cols + 1], d[:, cols + 2])
        total += s; cnt += n
    rows = np.arange(7, height - 2, 8)
    if rows.size:
        s, n = _edge_artifacts(d[rows - 1, :], d[rows, :], d[rows + 1, :], d[rows + 2, :])
        total += s; cnt += n

    ret = 1.0 - (total / cnt if cnt else 0.0)
    if maxv > 128:
        cfmax = 0.65
    else:
        cfmax = 0.65 + 0.35 * ((128.0 - maxv) / 128.0)
    cf = max(cfmax, min(1.0, 0.25 + (1000.0 * cnt) / (total if total != 0 else 1)))
    return ret * cf


class MeanPixelErrorMetric(Metric):
    """Mean absolute luma difference in 0-255 units. Lower is better."""
    name = "mpe"
    higher_is_better = False

    def _score(self, reference, candidate):
        return np.mean(np.abs(reference.astype(np.int16) - candidate.astype(np.int16)))


METRICS: Dict[str, Type[Metric]] = {
    cls.name: cls for cls in (SSIMMetric, MSSSIMMetric, SmallFryMetric, MeanPixelErrorMetric)
}


def get_metric(name: str) -> Metric:
    """Instantiate the metric registered under ``name`` (e.g. 'ms-ssim')."""
    try:
        return METRICS[name]()
    except KeyError:
        raise UsageError(f"invalid method: {name} (choose from {', '.join(METRICS)})") from None


def preset_target(method: str, preset: str, container: str = "jpeg") -> float:
    """
    Look up the target value for a metric/preset pair.

    Args:
        method: Metric name ('ssim', 'ms-ssim', 'smallfry', 'mpe')
        preset: 'low', 'medium', 'high' or 'veryhigh'
        container: 'jpeg' or 'webp' (the SSIM presets differ)

    Returns:
        Target metric value
    """
    if preset not in QUALITY_PRESETS:
        raise UsageError(f"unknown quality preset: {preset}")
    try:
        table = PRESET_TARGETS[container][method]
    except KeyError:
        raise UsageError(f"invalid method: {method}") from None
    return table[QUALITY_PRESETS.index(preset)]

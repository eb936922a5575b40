"""
Pixel-level transformations for qRecompress.

Fisheye lens correction (defish) and luma extraction for metric comparison.
"""

import numpy as np
from PIL import Image
from scipy.ndimage import map_coordinates


def rgb_to_luma(arr: np.ndarray) -> np.ndarray:
    """
    Convert an RGB uint8 array to 8-bit luma.

    Uses Pillow's ITU-R 601-2 conversion so the reference and the decoded
    candidates go through the same code path.
    """
    if arr.ndim == 2:
        return arr
    return np.asarray(Image.fromarray(arr).convert("L"))


def defish(arr: np.ndarray, strength: float, zoom: float = 1.0) -> np.ndarray:
    """
    Undo barrel (fisheye) distortion.

    Each output pixel samples the source at a radius compressed by
    ``atan(r) / r``, where ``r`` is the normalised distance from the image
    centre scaled by ``strength``. Samples falling outside the source are black.

    Args:
        arr: uint8 image, (H, W) or (H, W, C)
        strength: Correction strength (0 leaves the geometry untouched)
        zoom: Scale applied to the sampling offsets (>1 zooms out)

    Returns:
        Corrected uint8 image of the same shape
    """
    h, w = arr.shape[:2]
    cx, cy = w // 2, h // 2
    length = np.hypot(w, h)

    ys, xs = np.mgrid[0:h, 0:w].astype(np.float64)
    dx = (cx - xs) * zoom
    dy = (cy - ys) * zoom
    r = np.hypot(dx, dy) / length * strength
    theta = np.ones_like(r)
    nz = r != 0
    theta[nz] = np.arctan(r[nz]) / r[nz]
    coords = [cy - theta * dy, cx - theta * dx]

    def _sample(plane):
        out = map_coordinates(plane.astype(np.float64), coords, order=1, mode="constant", cval=0.0)
        return np.clip(out + 0.5, 0, 255).astype(np.uint8)

    if arr.ndim == 2:
        return _sample(arr)
    return np.stack([_sample(arr[..., c]) for c in range(arr.shape[2])], axis=-1)

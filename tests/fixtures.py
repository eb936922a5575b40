"""Synthetic images and JPEG byte streams shared by the tests."""

import io
import struct

import numpy as np
from PIL import Image

EXIF_PAYLOAD = b"Exif\x00\x00II*\x00\x08\x00\x00\x00\x00\x00" + b"\x00" * 16
XMP_PAYLOAD = b"http://ns.adobe.com/xap/1.0/\x00<x:xmpmeta xmlns:x='adobe:ns:meta/'/>"
IPTC_PAYLOAD = b"IPTC-TEST\x00" + bytes(range(40))
COMMENT_PAYLOAD = b"shot on the test rig"


def make_rgb(width=128, height=96, seed=0, noise=12.0):
    """Colour gradient with Gaussian noise, uint8 (H, W, 3)."""
    rng = np.random.default_rng(seed)
    y, x = np.mgrid[0:height, 0:width].astype(np.float64)
    base = np.stack([
        x * 255.0 / (width - 1),
        y * 255.0 / (height - 1),
        (x + y) * 255.0 / (width + height - 2),
    ], axis=-1)
    arr = base + rng.normal(0.0, noise, base.shape)
    return np.clip(arr, 0, 255).astype(np.uint8)


def jpeg_bytes(arr, quality=95, **kwargs):
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="JPEG", quality=quality, **kwargs)
    return buf.getvalue()


def ppm_bytes(arr):
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PPM")
    return buf.getvalue()


def segment(marker, payload):
    """Raw bytes of a length-prefixed marker segment."""
    return bytes([0xFF, marker]) + struct.pack(">H", len(payload) + 2) + payload


def metadata_segments():
    """APP1 (EXIF), APP1 (XMP), APP13 and COM segments, in file order."""
    return [
        segment(0xE1, EXIF_PAYLOAD),
        segment(0xE1, XMP_PAYLOAD),
        segment(0xED, IPTC_PAYLOAD),
        segment(0xFE, COMMENT_PAYLOAD),
    ]


def with_segments(jpeg, segments):
    """Insert raw segments right after the APP0 header of ``jpeg``."""
    assert jpeg[2:4] == b"\xff\xe0"
    (app0_len,) = struct.unpack(">H", jpeg[4:6])
    head_end = 4 + app0_len
    return jpeg[:head_end] + b"".join(segments) + jpeg[head_end:]

"""
Image decoding and encoding for qRecompress.

Thin wrappers around Pillow: decode the input container to RGB pixels,
encode candidates to JPEG or WebP bytes, and decode candidates back to luma.
"""

import io
from typing import Optional
import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import CodecError, InputError

FILETYPES = ("auto", "jpeg", "ppm")

# Pillow format names accepted for each input filetype
_PIL_FORMATS = {
    "jpeg": ["JPEG"],
    "ppm": ["PPM"],
}

# --subsample values -> Pillow subsampling argument (None = encoder default, 4:2:0)
SUBSAMPLING = {
    "default": None,
    "disable": 0,
}


def detect_filetype(data: bytes) -> str:
    """Guess the input filetype from its magic bytes ('jpeg', 'ppm' or 'unknown')."""
    if data[:2] == b"\xff\xd8":
        return "jpeg"
    if data[:1] == b"P" and data[1:2] in (b"2", b"3", b"5", b"6"):
        return "ppm"
    return "unknown"


def decode_image(data: bytes, filetype: str, name: str = "<input>") -> np.ndarray:
    """
    Decode input bytes to an RGB uint8 array.

    Args:
        data: Raw file contents
        filetype: 'jpeg' or 'ppm'
        name: Path used in error messages

    Returns:
        (H, W, 3) uint8 array
    """
    formats = _PIL_FORMATS.get(filetype)
    if formats is None:
        raise InputError(f"invalid input file: {name} (unsupported file type)")
    try:
        with Image.open(io.BytesIO(data), formats=formats) as im:
            arr = np.array(im.convert("RGB"))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise InputError(f"invalid input file: {name} ({e})") from e
    if arr.size == 0:
        raise InputError(f"invalid input file: {name} (empty image)")
    return arr


def encode_jpeg(img: Image.Image, quality: int, final: bool = True, progressive: bool = True,
                accurate: bool = False, subsampling: Optional[int] = None) -> bytes:
    """
    Encode an RGB image to JPEG bytes.

    Search rounds use a plain baseline encode for speed; the final round turns
    on progressive mode (if allowed) and Huffman optimisation.

    Args:
        img: Source PIL Image (RGB)
        quality: JPEG quality (1-100)
        final: Whether this is the last round of the search
        progressive: Allow progressive encoding on the final round
        accurate: Optimise Huffman tables on every round
        subsampling: Pillow chroma subsampling (0=4:4:4) or None for default

    Returns:
        Encoded JPEG bytes
    """
    buf = io.BytesIO()
    save_kwargs = dict(format="JPEG", quality=quality, optimize=bool(accurate or final))
    if final and progressive:
        save_kwargs["progressive"] = True
    if subsampling is not None:
        save_kwargs["subsampling"] = subsampling
    try:
        img.save(buf, **save_kwargs)
    except (OSError, ValueError) as e:
        raise CodecError(f"could not encode JPEG at q={quality}: {e}") from e
    return buf.getvalue()


def encode_webp(img: Image.Image, quality: int, final: bool = True) -> bytes:
    """Encode an RGB image to lossy WebP bytes."""
    buf = io.BytesIO()
    try:
        img.save(buf, format="WEBP", quality=quality)
    except (OSError, ValueError, KeyError) as e:
        raise CodecError(f"could not encode image to WebP at q={quality}: {e}") from e
    return buf.getvalue()


def decode_luma(data: bytes) -> np.ndarray:
    """Decode an encoded candidate to an 8-bit luma plane."""
    if not data:
        raise CodecError("unable to decode file that was just encoded: no data")
    try:
        with Image.open(io.BytesIO(data)) as im:
            luma = np.array(im.convert("L"))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise CodecError(f"unable to decode file that was just encoded: {e}") from e
    if luma.size == 0:
        raise CodecError("unable to decode file that was just encoded: empty image")
    return luma

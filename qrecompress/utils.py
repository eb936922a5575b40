"""
Utility functions for qRecompress.

File I/O with error reporting, logging setup, and path helpers for batch mode.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional, Set, Union

from .errors import InputError, OutputError

PathLike = Union[str, Path]

# Inputs picked up by batch mode
IMG_EXTS: Set[str] = {".jpg", ".jpeg", ".ppm", ".pgm", ".pnm"}


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None):
    """
    Configure root logging for the command-line tools.

    Messages go to stderr (stdout may carry image data). ``quiet`` keeps only
    warnings and errors, ``verbose`` adds per-round debug output.
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handlers.append(file_handler)
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)


def ensure_dir(path: Path):
    """Ensure parent directory exists for given path."""
    path.parent.mkdir(parents=True, exist_ok=True)


def read_input(path: PathLike) -> bytes:
    """Read a whole input file; '-' reads stdin."""
    if str(path) == "-":
        data = sys.stdin.buffer.read()
    else:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise InputError(f"could not read input file: {path} ({e.strerror})") from e
    if not data:
        raise InputError(f"input file is empty: {path}")
    return data


def write_output(path: PathLike, data: bytes):
    """
    Write ``data`` to ``path`` with a single write; '-' writes to stdout.

    Succeeds only if the whole buffer was written and the file closed cleanly.
    A partially written file is left in place.
    """
    if str(path) == "-":
        out = sys.stdout.buffer
        try:
            written = out.write(data)
            out.flush()
        except OSError as e:
            raise OutputError(f"could not write to output: stdout ({e.strerror})") from e
        if written != len(data):
            raise OutputError("could not write to output: stdout")
        return

    try:
        f = open(path, "wb")
    except OSError as e:
        raise OutputError(f"could not open output file: {path} ({e.strerror})") from e
    try:
        written = f.write(data)
    except OSError as e:
        f.close()
        raise OutputError(f"could not write to output file: {path} ({e.strerror})") from e
    if written != len(data):
        f.close()
        raise OutputError(f"could not write to output file: {path}")
    try:
        f.close()
    except OSError as e:
        raise OutputError(f"could not close the output file: {path} ({e.strerror})") from e


def dest_path_for(src_path: Path, input_root: Path, out_root: Path, container: str = "jpeg") -> Path:
    """Mirror ``src_path`` under ``out_root`` with the output container's extension."""
    rel = src_path.relative_to(input_root)
    suffix = ".webp" if container == "webp" else ".jpg"
    if rel.suffix.lower() in (".jpg", ".jpeg") and container == "jpeg":
        return out_root / rel
    return out_root / rel.with_suffix(suffix)


def collect_sources(input_root: Path, allow_exts: Optional[Set[str]] = None) -> List[Path]:
    """
    Collect all source image files from input directory.

    Args:
        input_root: Root directory to search
        allow_exts: Set of allowed extensions (e.g., {'.jpg'}), None for all supported

    Returns:
        Sorted list of source file paths
    """
    files: List[Path] = []
    for p in input_root.rglob("*"):
        if p.is_dir():
            continue
        ext = p.suffix.lower()
        if allow_exts is not None and ext not in allow_exts:
            continue
        if ext in IMG_EXTS:
            files.append(p)
    return sorted(files)


def format_kb(size: int) -> str:
    return f"{size / 1024:.1f} kb"

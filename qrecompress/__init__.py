"""
qRecompress - metric-guided JPEG/WebP recompressor.

Re-encodes an image at the lowest quality whose SSIM / MS-SSIM / SmallFry /
mean pixel error stays on target, carries JPEG metadata over, and marks its
output so it is never compressed twice.
"""

__version__ = "1.0.0"

# Core functionality
from .pipeline import recompress_file, recompress_bytes, process_tree, process_one, RunResult
from .config import RecompressConfig, parse_args, config_from_args
from .search import quality_search, SearchResult, SearchState, SizeBudget, Candidate, MIN_DELTA
from .metrics import Metric, get_metric, preset_target, METRICS
from .metadata import SENTINEL, Segment, SegmentReader, scan_metadata, splice
from .errors import (
    RecompressError,
    InputError,
    OutputError,
    CodecError,
    JpegFormatError,
    UsageError,
    Outcome,
)

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "recompress_file",
    "recompress_bytes",
    "process_tree",
    "process_one",
    "RunResult",
    # Config
    "RecompressConfig",
    "parse_args",
    "config_from_args",
    # Search
    "quality_search",
    "SearchResult",
    "SearchState",
    "SizeBudget",
    "Candidate",
    "MIN_DELTA",
    # Metrics
    "Metric",
    "get_metric",
    "preset_target",
    "METRICS",
    # Metadata
    "SENTINEL",
    "Segment",
    "SegmentReader",
    "scan_metadata",
    "splice",
    # Errors
    "RecompressError",
    "InputError",
    "OutputError",
    "CodecError",
    "JpegFormatError",
    "UsageError",
    "Outcome",
]

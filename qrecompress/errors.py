"""
Error types for qRecompress.

Every fatal condition raised by the package derives from RecompressError and
carries the process exit status the CLI should return.
"""

from enum import Enum


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ALREADY_PROCESSED = 2
EXIT_USAGE = 255


class RecompressError(Exception):
    """Base class for fatal errors. Unwinds to the CLI, never retried."""
    exit_code = EXIT_FAILURE


class InputError(RecompressError):
    """Input could not be opened, read or decoded."""


class OutputError(RecompressError):
    """Output could not be opened, fully written or closed."""


class CodecError(RecompressError):
    """Encoder or decoder returned no usable data."""


class JpegFormatError(RecompressError):
    """A JPEG stream is missing required markers or is truncated."""


class UsageError(RecompressError):
    """Invalid command-line arguments or configuration values."""
    exit_code = EXIT_USAGE


class Outcome(Enum):
    """Non-exceptional results of a single file run."""
    WRITTEN = "written"
    ALREADY_PROCESSED = "already_processed"
    OVERSIZE = "oversize"

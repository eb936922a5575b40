"""
Command-line entry points for qRecompress.

``qrecompress`` (JPEG), ``qrecompress-webp`` (WebP) and ``qrecompress-tree``
(batch). Each returns the process exit status.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import config_from_args, parse_args
from .errors import EXIT_FAILURE, EXIT_OK, RecompressError, UsageError
from .pipeline import process_tree, recompress_file
from .utils import setup_logging

log = logging.getLogger(__name__)


def _parse(argv: Optional[List[str]], tool: str):
    try:
        return parse_args(argv, tool)
    except UsageError as e:
        setup_logging()
        log.error("%s", e)
        return None


def _run_single(argv: Optional[List[str]], tool: str, container: str) -> int:
    args = _parse(argv, tool)
    if args is None:
        return UsageError.exit_code
    setup_logging(args.verbose, args.quiet, args.log_file)

    try:
        config = config_from_args(args, container)
        result = recompress_file(args.input, args.output, config)
    except RecompressError as e:
        log.error("%s", e)
        return e.exit_code
    return result.exit_code


def main(argv: Optional[List[str]] = None) -> int:
    """Recompress one JPEG (or PPM) to JPEG."""
    return _run_single(argv, "jpeg", "jpeg")


def main_webp(argv: Optional[List[str]] = None) -> int:
    """Convert one JPEG (or PPM) to WebP."""
    return _run_single(argv, "webp", "webp")


def main_tree(argv: Optional[List[str]] = None) -> int:
    """Recompress every supported image below a folder."""
    args = _parse(argv, "tree")
    if args is None:
        return UsageError.exit_code
    setup_logging(args.verbose, args.quiet, args.log_file)

    input_root = Path(args.input_root)
    try:
        config = config_from_args(args, "jpeg")
        if not input_root.is_dir():
            raise UsageError(f"input root is not a directory: {input_root}")
        if isinstance(args.workers, bool) or not isinstance(args.workers, int) or args.workers < 1:
            raise UsageError("--workers must be at least 1")
    except RecompressError as e:
        log.error("%s", e)
        return e.exit_code

    results = process_tree(input_root, config, workers=args.workers,
                           show_progress=not args.no_progress, resume=args.resume)
    failed = any(r and "error" in r for r in results)
    return EXIT_FAILURE if failed else EXIT_OK


def run():
    sys.exit(main())


def run_webp():
    sys.exit(main_webp())


def run_tree():
    sys.exit(main_tree())


if __name__ == "__main__":
    run()

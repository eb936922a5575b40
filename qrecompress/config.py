"""
Configuration and argument parsing for qRecompress.

Handles YAML config files, command-line parsing for the three tools, and
validation into an immutable RecompressConfig.
"""

import argparse
import os
import sys
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import __version__
from .errors import UsageError
from .image_io import FILETYPES, SUBSAMPLING
from .metrics import METRICS, QUALITY_PRESETS, get_metric, preset_target
from .search import FINALIZE_MODES

PRESETS_DIR = Path(__file__).resolve().parent / "presets"

TOOLS = ("jpeg", "webp", "tree")


@dataclass(frozen=True)
class RecompressConfig:
    """Settings for one run, shared read-only by every stage."""
    container: str = "jpeg"
    method: str = "ssim"
    target: float = 0.9999
    preset: str = "medium"
    qmin: int = 1
    qmax: int = 99
    attempts: int = 8
    accurate: bool = False
    strip: bool = False
    defish_strength: float = 0.0
    defish_zoom: float = 1.0
    input_filetype: str = "auto"
    copy_files: bool = True
    progressive: bool = True
    subsample: str = "default"
    finalize: str = "last"

    @property
    def metric(self):
        return get_metric(self.method)

    @property
    def subsampling(self) -> Optional[int]:
        return SUBSAMPLING[self.subsample]


class ArgumentParser(argparse.ArgumentParser):
    """argparse parser that raises UsageError instead of exiting with status 2."""

    def error(self, message):
        self.print_usage(sys.stderr)
        raise UsageError(f"{self.prog}: error: {message}")


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load YAML config file and return dict of settings.

    Automatically searches the bundled presets/ directory if the file is not
    found directly.

    Args:
        config_path: Path to config file or preset name

    Returns:
        Dict of configuration settings
    """
    p = Path(config_path)
    if not p.exists():
        preset_path = PRESETS_DIR / config_path
        if not preset_path.exists():
            preset_path = PRESETS_DIR / f"{config_path}.yaml"
        if not preset_path.exists():
            raise UsageError(f"config file not found: {config_path}")
        p = preset_path

    try:
        with open(p, "r") as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise UsageError(f"failed to load config {p}: {e}") from e
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise UsageError(f"config {p} must be a mapping of option names to values")
    return {str(k).replace("-", "_"): v for k, v in config.items()}


def save_config(config_path: str, args: argparse.Namespace):
    """
    Save current args to a YAML config file.

    Args:
        config_path: Path to save config file
        args: Parsed arguments namespace
    """
    skip = {"input", "output", "input_root", "config", "save_config"}
    config = {k: v for k, v in vars(args).items()
              if k not in skip and v is not None and v != argparse.SUPPRESS}

    p = Path(config_path)
    p.parent.mkdir(parents=True, exist_ok=True)

    # Inline lists ([x, y]) instead of block style
    class FlowListDumper(yaml.SafeDumper):
        pass

    def represent_list(dumper, data):
        return dumper.represent_sequence("tag:yaml.org,2002:seq", data, flow_style=True)
    FlowListDumper.add_representer(list, represent_list)

    with open(p, "w") as f:
        yaml.dump(config, f, Dumper=FlowListDumper, default_flow_style=False, sort_keys=False)
    print(f"[CONFIG] Saved to: {p}", file=sys.stderr)


def _add_search_options(p: argparse.ArgumentParser, tool: str):
    """Options shared by all tools: metric, target, bracket, geometry, logging."""
    p.add_argument("-t", "--target", type=float, default=0.0,
                   help="Target metric value; 0 selects it from --quality (default: 0).")
    p.add_argument("-q", "--quality", type=str, choices=QUALITY_PRESETS, default="medium",
                   help="Quality preset: low, medium, high, veryhigh (default: medium).")
    p.add_argument("-n", "--min", dest="qmin", type=int, default=1,
                   help="Minimum encoder quality (default: 1).")
    p.add_argument("-x", "--max", dest="qmax", type=int, default=99,
                   help="Maximum encoder quality (default: 99).")
    p.add_argument("-l", "--loops", dest="attempts", type=int, default=8,
                   help="Number of bisection rounds to attempt (default: 8).")
    p.add_argument("-m", "--method", type=str, choices=list(METRICS), default="ssim",
                   help="Comparison method: ssim, ms-ssim, smallfry or mpe (default: ssim).")
    p.add_argument("-d", "--defish", dest="defish_strength", type=float, default=0.0,
                   help="Fisheye correction strength (default: 0.0).")
    p.add_argument("-z", "--zoom", dest="defish_zoom", type=float, default=1.0,
                   help="Fisheye correction zoom (default: 1.0).")
    p.add_argument("-r", "--ppm", action="store_true",
                   help="Parse input as PPM.")
    p.add_argument("-T", "--input-filetype", type=str, choices=FILETYPES, default=None,
                   help="Input file type: auto, jpeg or ppm (default: auto).")
    p.add_argument("--finalize", type=str, choices=FINALIZE_MODES, default="last",
                   help="Write the last searched candidate or re-encode at the best one (default: last).")
    if tool in ("jpeg", "tree"):
        p.add_argument("-a", "--accurate", action="store_true",
                       help="Favor accuracy over speed (optimize every round).")
        p.add_argument("-s", "--strip", action="store_true",
                       help="Strip metadata.")
        p.add_argument("-c", "--no-copy", action="store_true",
                       help="Fail instead of copying files that cannot be made smaller.")
        p.add_argument("-p", "--no-progressive", action="store_true",
                       help="Disable progressive encoding.")
        p.add_argument("-S", "--subsample", type=str, choices=list(SUBSAMPLING), default="default",
                       help="Chroma subsampling: 'default' (4:2:0) or 'disable' (4:4:4).")
    p.add_argument("-Q", "--quiet", action="store_true", help="Only print out errors.")
    p.add_argument("-v", "--verbose", action="store_true", help="Print per-round debug details.")
    p.add_argument("--log-file", type=str, default=None, help="Also write log messages to this file.")
    p.add_argument("--config", type=str, default=None,
                   help="Load settings from YAML config file. Can be a path or preset name (e.g., 'web').")
    p.add_argument("--save-config", type=str, default=None,
                   help="Save current settings to YAML config file and exit.")


def build_parser(tool: str = "jpeg") -> ArgumentParser:
    """Create the argument parser for 'jpeg', 'webp' or 'tree'."""
    if tool not in TOOLS:
        raise ValueError(f"unknown tool: {tool}")
    if tool == "jpeg":
        p = ArgumentParser(prog="qrecompress", description=(
            "Recompress a JPEG at the lowest quality that keeps the chosen similarity "
            "metric on target; metadata is carried over."))
        p.add_argument("input", type=str, help="Input JPEG or PPM ('-' for stdin).")
        p.add_argument("output", type=str, help="Output JPEG ('-' for stdout).")
    elif tool == "webp":
        p = ArgumentParser(prog="qrecompress-webp", description=(
            "Convert a JPEG or PPM to WebP at the lowest quality that keeps the chosen "
            "similarity metric on target."))
        p.add_argument("input", type=str, help="Input JPEG or PPM ('-' for stdin).")
        p.add_argument("output", type=str, help="Output WebP ('-' for stdout).")
    else:
        p = ArgumentParser(prog="qrecompress-tree", description=(
            "Recompress every JPEG/PPM under a folder into <folder>_recompressed, "
            "one process per file."))
        p.add_argument("input_root", type=str, help="Folder to process recursively.")
        p.add_argument("--workers", type=int, default=max(1, (os.cpu_count() or 2) // 2),
                       help="Parallel workers (default: half your CPUs).")
        p.add_argument("--resume", action="store_true",
                       help="Skip files whose outputs already exist and are up-to-date.")
        p.add_argument("--no-progress", action="store_true",
                       help="Disable progress bar / ETA output.")
    p.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    _add_search_options(p, tool)
    return p


def parse_args(argv: Optional[List[str]] = None, tool: str = "jpeg") -> argparse.Namespace:
    """
    Parse command-line arguments with config file support.

    Two passes: the config file named by --config is loaded first and its
    values become parser defaults, then the full command line overrides them.

    Args:
        argv: Argument list (default: sys.argv[1:])
        tool: 'jpeg', 'webp' or 'tree'

    Returns:
        Parsed arguments namespace
    """
    p = build_parser(tool)

    args_temp, _ = p.parse_known_args(argv)

    if args_temp.config:
        config_dict = load_config(args_temp.config)
        known = {action.dest for action in p._actions}
        unknown = sorted(set(config_dict) - known)
        if unknown:
            raise UsageError(f"unknown option(s) in config {args_temp.config}: {', '.join(unknown)}")
        for action in p._actions:
            if action.dest in config_dict and action.dest not in ("config", "save_config"):
                action.default = config_dict[action.dest]

    args = p.parse_args(argv)

    if args.save_config:
        save_config(args.save_config, args)
        sys.exit(0)

    return args


# Values loaded from a config file become parser defaults, which argparse
# never runs through type= or choices=.
_NUMBER_OPTIONS = {
    "qmin": int,
    "qmax": int,
    "attempts": int,
    "target": (int, float),
    "defish_strength": (int, float),
    "defish_zoom": (int, float),
}
_FLAG_OPTIONS = ("ppm", "accurate", "strip", "no_copy", "no_progressive")
_NAME_OPTIONS = ("method", "quality", "input_filetype", "subsample", "finalize")


def _check_types(args: argparse.Namespace):
    for name, kind in _NUMBER_OPTIONS.items():
        value = getattr(args, name)
        if isinstance(value, bool) or not isinstance(value, kind):
            expected = "an integer" if kind is int else "a number"
            raise UsageError(f"{name} must be {expected}, got {value!r}")
    for name in _FLAG_OPTIONS:
        value = getattr(args, name, False)
        if not isinstance(value, bool):
            raise UsageError(f"{name} must be true or false, got {value!r}")
    for name in _NAME_OPTIONS:
        value = getattr(args, name, None)
        if value is not None and not isinstance(value, str):
            raise UsageError(f"{name} must be a name, got {value!r}")


def config_from_args(args: argparse.Namespace, container: str = "jpeg") -> RecompressConfig:
    """
    Validate parsed arguments and freeze them into a RecompressConfig.

    Raises:
        UsageError: On unknown names, inverted bounds or conflicting options
    """
    _check_types(args)
    method = args.method
    if method not in METRICS:
        raise UsageError(f"invalid method: {method}")
    if args.quality not in QUALITY_PRESETS:
        raise UsageError(f"unknown quality preset: {args.quality}")

    if not 1 <= args.qmin <= 100 or not 1 <= args.qmax <= 100:
        raise UsageError("JPEG quality bounds must be between 1 and 100")
    if args.qmin > args.qmax:
        raise UsageError("maximum quality must not be smaller than minimum quality!")

    if args.ppm and args.input_filetype not in (None, "ppm"):
        raise UsageError("multiple file types specified for the input file")
    filetype = "ppm" if args.ppm else (args.input_filetype or "auto")
    if filetype not in FILETYPES:
        raise UsageError(f"unknown input file type: {filetype}")

    subsample = getattr(args, "subsample", "default")
    if subsample not in SUBSAMPLING:
        raise UsageError(f"unknown sampling method: {subsample}")
    if args.finalize not in FINALIZE_MODES:
        raise UsageError(f"unknown finalize mode: {args.finalize} (choose from {', '.join(FINALIZE_MODES)})")

    target = args.target if args.target else preset_target(method, args.quality, container)

    return RecompressConfig(
        container=container,
        method=method,
        target=float(target),
        preset=args.quality,
        qmin=args.qmin,
        qmax=args.qmax,
        attempts=args.attempts,
        accurate=getattr(args, "accurate", False),
        strip=getattr(args, "strip", False),
        defish_strength=args.defish_strength,
        defish_zoom=args.defish_zoom,
        input_filetype=filetype,
        copy_files=not getattr(args, "no_copy", False),
        progressive=not getattr(args, "no_progressive", False),
        subsample=subsample,
        finalize=args.finalize,
    )


def describe(config: RecompressConfig) -> Dict[str, Any]:
    """Plain-dict view of a config (for debug logging)."""
    return asdict(config)

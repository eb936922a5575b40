"""
Processing pipeline orchestration for qRecompress.

Runs one file through decode, optional defish, quality search, size guard,
metadata splicing and output, and coordinates whole directory trees with
multiprocessing support.
"""

import functools
import logging
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from PIL import Image
from tqdm.auto import tqdm

from .config import RecompressConfig, describe
from .errors import (EXIT_ALREADY_PROCESSED, EXIT_FAILURE, EXIT_OK, InputError,
                     JpegFormatError, Outcome, RecompressError)
from .image_io import decode_image, decode_luma, detect_filetype, encode_jpeg, encode_webp
from .image_processing import defish, rgb_to_luma
from .metadata import SENTINEL, scan_metadata, sentinel_overhead, splice
from .search import MIN_DELTA, SizeBudget, quality_search
from .utils import PathLike, collect_sources, dest_path_for, ensure_dir, format_kb, read_input, write_output

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunResult:
    """What happened to one input file."""
    outcome: Outcome
    exit_code: int = EXIT_OK
    copied: bool = False
    quality: Optional[int] = None
    score: Optional[float] = None
    original_size: int = 0
    output_size: int = 0
    metadata_size: int = 0

    @property
    def saved_pct(self) -> float:
        if not self.original_size:
            return 0.0
        return (1 - self.output_size / self.original_size) * 100


def _fallback(outcome: Outcome, data: bytes, output_path: PathLike, config: RecompressConfig,
              message: str, **fields) -> RunResult:
    """
    Route a policy outcome: copy the input through, or report failure.
    """
    if config.copy_files:
        log.info("%s!", message)
        write_output(output_path, data)
        return RunResult(outcome, EXIT_OK, copied=True, original_size=len(data),
                         output_size=len(data), **fields)
    log.error("%s!", message.lower())
    code = EXIT_ALREADY_PROCESSED if outcome is Outcome.ALREADY_PROCESSED else EXIT_FAILURE
    return RunResult(outcome, code, original_size=len(data), **fields)


def recompress_file(input_path: PathLike, output_path: PathLike, config: RecompressConfig) -> RunResult:
    """
    Recompress a single image file.

    Args:
        input_path: Source file ('-' for stdin)
        output_path: Destination file ('-' for stdout)
        config: Run settings

    Returns:
        RunResult describing the outcome and the exit status to report
    """
    log.debug("Settings: %s", describe(config))
    data = read_input(input_path)
    return recompress_bytes(data, output_path, config, name=str(input_path))


def recompress_bytes(data: bytes, output_path: PathLike, config: RecompressConfig,
                     name: str = "<input>") -> RunResult:
    """Recompress already-loaded input bytes and write the result to ``output_path``."""
    original_size = len(data)
    filetype = config.input_filetype
    if filetype == "auto":
        filetype = detect_filetype(data)

    # Metadata and the processed-marker only exist on the JPEG -> JPEG path
    segments = []
    splicing = config.container == "jpeg"
    if splicing and filetype == "jpeg":
        try:
            scan = scan_metadata(data, SENTINEL)
        except JpegFormatError as e:
            raise InputError(f"invalid input file: {name} ({e})") from e
        if scan.already_processed:
            return _fallback(Outcome.ALREADY_PROCESSED, data, output_path, config,
                             "File already processed by qrecompress")
        segments = scan.segments

    if segments and config.strip:
        log.debug("Stripping %d metadata segment(s)", len(segments))
        segments = []
    meta_size = sum(seg.size for seg in segments)
    if splicing and not config.strip:
        log.info("Metadata size is %ukb", meta_size // 1024)

    rgb = decode_image(data, filetype, name=name)
    if config.defish_strength:
        log.info("Defishing...")
        rgb = defish(rgb, config.defish_strength, config.defish_zoom)
    reference = rgb_to_luma(rgb)
    img = Image.fromarray(rgb)
    del rgb

    if config.container == "webp":
        encode = encode_webp
        overhead = 0
        budget = None
    else:
        encode = functools.partial(encode_jpeg, progressive=config.progressive,
                                   accurate=config.accurate, subsampling=config.subsampling)
        overhead = sentinel_overhead(SENTINEL) + meta_size
        budget = SizeBudget(original_size, overhead, MIN_DELTA)

    result = quality_search(
        lambda quality, final: encode(img, quality, final),
        decode_luma,
        config.metric,
        config.target,
        reference,
        qmin=config.qmin,
        qmax=config.qmax,
        attempts=config.attempts,
        size_budget=budget,
        finalize=config.finalize,
    )
    fields = dict(quality=result.quality, score=result.score, metadata_size=meta_size)

    if result.oversize:
        return _fallback(Outcome.OVERSIZE, data, output_path, config,
                         "Output file would be larger than input", **fields)

    total_size = result.candidate.size + overhead
    percent = total_size * 100 // original_size
    saved = max(original_size - total_size, 0)
    log.info("New size is %d%% of original (saved %d kb)", percent, saved // 1024)

    if budget is not None and budget.exceeded_by(result.candidate.size):
        return _fallback(Outcome.OVERSIZE, data, output_path, config,
                         "Output file is not smaller than input", **fields)

    if splicing:
        out = splice(result.candidate.data, segments, SENTINEL)
    else:
        out = result.candidate.data
    write_output(output_path, out)
    return RunResult(Outcome.WRITTEN, EXIT_OK, original_size=original_size,
                     output_size=len(out), **fields)


def process_one(src_path: str, input_root: str, out_root: str, config: RecompressConfig,
                resume: bool = False) -> Optional[Dict[str, Any]]:
    """
    Process a single file of a batch run.

    Args:
        src_path: Source image path (as string for multiprocessing)
        input_root: Input root directory
        out_root: Output root directory
        config: Run settings
        resume: Skip existing, up-to-date outputs

    Returns:
        Result dict with quality, score, size savings, etc.
    """
    src_path_p = Path(src_path)
    dst_path = dest_path_for(src_path_p, Path(input_root), Path(out_root), config.container)

    if resume and dst_path.exists():
        st = dst_path.stat()
        if st.st_size > 0 and st.st_mtime >= src_path_p.stat().st_mtime:
            return {"skipped": True, "src": str(src_path_p), "dst": str(dst_path)}

    ensure_dir(dst_path)
    try:
        res = recompress_file(src_path_p, dst_path, config)
    except RecompressError as e:
        return {"error": str(e), "src": str(src_path_p)}

    if res.exit_code != EXIT_OK:
        return {"error": f"{src_path_p}: {res.outcome.value}", "src": str(src_path_p)}
    return {
        "src": str(src_path_p),
        "dst": str(dst_path),
        "outcome": res.outcome.value,
        "quality": res.quality,
        "score": res.score,
        "saved_pct": res.saved_pct,
    }


def _report(res: Optional[Dict[str, Any]], method: str):
    if res and "error" in res:
        print(f"[ERR] {res['error']}")
    elif res and res.get("skipped"):
        print(f"[SKIP] {res['src']}")
    elif res:
        detail = (f"quality={res['quality']}, {method}={res['score']:.5f}"
                  if res["outcome"] == Outcome.WRITTEN.value else res["outcome"])
        print(f"[OK] {res['src']} -> {res['dst']}  {detail} | saved {res['saved_pct']:.1f}%")


def process_tree(input_root: Path, config: RecompressConfig, workers: int = 1,
                 show_progress: bool = True, resume: bool = False) -> List[Optional[Dict[str, Any]]]:
    """
    Process an entire directory tree of images.

    Outputs mirror the input structure under ``<input_root>_recompressed``.
    Each file is an independent run; with ``workers > 1`` runs are spread
    over a process pool.

    Args:
        input_root: Root directory to process
        config: Run settings applied to every file
        workers: Number of parallel workers
        show_progress: Show progress bar
        resume: Skip up-to-date outputs

    Returns:
        List of result dicts
    """
    out_root = input_root.parent / f"{input_root.name}_recompressed"
    out_root.mkdir(parents=True, exist_ok=True)

    files = collect_sources(input_root)
    total = len(files)
    print(f"Discovered {total} image(s). Processing with {workers} worker(s)...")

    start = time.time()
    pbar = tqdm(total=total, unit="img") if (show_progress and total > 0) else None

    def _tick():
        if pbar is None:
            return
        elapsed = time.time() - start
        sofar = pbar.n + 1
        rate = sofar / elapsed if elapsed > 0 else 0.0
        eta = (total - sofar) / rate if rate > 0 else 0.0
        pbar.update(1)
        pbar.set_postfix_str(
            f"elapsed {int(elapsed//60)}m{int(elapsed%60):02d}s | eta {int(eta//60)}m{int(eta%60):02d}s"
        )

    task_kwargs = dict(input_root=str(input_root), out_root=str(out_root), config=config, resume=resume)
    results: List[Optional[Dict[str, Any]]] = []

    if workers <= 1:
        for f in files:
            res = process_one(str(f), **task_kwargs)
            _report(res, config.method)
            _tick()
            results.append(res)
    else:
        with ProcessPoolExecutor(max_workers=workers) as ex:
            futs = [ex.submit(process_one, str(f), **task_kwargs) for f in files]
            for fut in as_completed(futs):
                res = fut.result()
                _report(res, config.method)
                _tick()
                results.append(res)

    if pbar is not None:
        pbar.close()

    done = sum(1 for r in results if r and not r.get("skipped") and "error" not in r)
    skipped = sum(1 for r in results if r and r.get("skipped"))
    failed = sum(1 for r in results if r and "error" in r)
    print("\n=== Summary ===")
    print(f"Input root:  {input_root}")
    print(f"Output root: {out_root}")
    print(f"Processed:   {done}  |  Skipped: {skipped}  |  Failed: {failed}")
    print(f"Saved:       {format_kb(_bytes_saved(results))}")

    return results


def _bytes_saved(results: List[Optional[Dict[str, Any]]]) -> int:
    saved = 0
    for r in results:
        if not r or "dst" not in r or r.get("skipped"):
            continue
        saved += Path(r["src"]).stat().st_size - Path(r["dst"]).stat().st_size
    return saved

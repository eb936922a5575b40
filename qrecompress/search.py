"""
Quality search for qRecompress.

Bisects the encoder quality range, comparing each decoded candidate against
the reference with the configured metric, and keeps the quality whose score
lands closest to the target.
"""

from dataclasses import dataclass, field
import logging
import math
from typing import Callable, List, Optional, Tuple
import numpy as np

from .errors import CodecError
from .metrics import Metric

log = logging.getLogger(__name__)

# Output must beat the input by at least this many bytes
MIN_DELTA = 10

FINALIZE_MODES = ("last", "best")

Encoder = Callable[[int, bool], bytes]
Decoder = Callable[[bytes], np.ndarray]


@dataclass(frozen=True)
class Candidate:
    """Encoded bytes produced at one quality setting."""
    quality: int
    data: bytes
    final: bool = False

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class SizeBudget:
    """
    Projected-output limit for the search.

    ``overhead`` covers bytes added around the candidate (sentinel comment and
    preserved metadata).
    """
    original_size: int
    overhead: int = 0
    min_delta: int = MIN_DELTA

    def total(self, candidate_size: int) -> int:
        return candidate_size + self.overhead

    def exceeded_by(self, candidate_size: int) -> bool:
        return self.total(candidate_size) + self.min_delta >= self.original_size


@dataclass
class SearchState:
    """Bisection bracket and best-so-far bookkeeping."""
    low: int
    high: int
    attempts_left: int
    best_quality: Optional[int] = None
    best_diff: float = math.inf

    def next_quality(self) -> int:
        return (self.low + self.high) // 2

    def record(self, quality: int, diff: float) -> bool:
        """Remember ``quality`` if it beats the best difference so far (ties keep the first)."""
        if diff < self.best_diff:
            self.best_diff = diff
            self.best_quality = quality
            return True
        return False

    def narrow(self, quality: int, acceptable: bool):
        """
        Move the bracket toward lower quality when the candidate met the
        target, otherwise toward higher quality. Bounds never cross.
        """
        if acceptable:
            self.high = max(quality - 1, self.low)
        else:
            self.low = min(quality + 1, self.high)


@dataclass
class SearchResult:
    candidate: Candidate
    score: float
    diff: float
    best_quality: int
    best_diff: float
    rounds: int
    history: List[Tuple[int, float, int]] = field(default_factory=list)
    oversize: bool = False

    @property
    def quality(self) -> int:
        return self.candidate.quality


def _evaluate(encode: Encoder, decode: Decoder, metric: Metric, reference: np.ndarray,
              quality: int, final: bool) -> Tuple[Candidate, float]:
    data = encode(quality, final)
    if not data:
        raise CodecError(f"encoder returned no data at q={quality}")
    candidate = Candidate(quality, bytes(data), final)
    luma = decode(candidate.data)
    if luma is None or luma.size == 0:
        raise CodecError("unable to decode file that was just encoded!")
    score = metric.compute(reference, luma)
    return candidate, score


def quality_search(
        encode: Encoder,
        decode: Decoder,
        metric: Metric,
        target: float,
        reference: np.ndarray,
        qmin: int = 1,
        qmax: int = 99,
        attempts: int = 8,
        size_budget: Optional[SizeBudget] = None,
        finalize: str = "last",
) -> SearchResult:
    """
    Bisect [qmin, qmax] for the quality whose metric is closest to ``target``.

    Each round encodes at the bracket midpoint, decodes the result and scores
    it against ``reference``. The round is forced to be the last one once the
    midpoint repeats the best quality found so far or the bracket collapses;
    the last round is encoded with ``final=True``.

    Args:
        encode: ``encode(quality, final) -> bytes``
        decode: ``decode(bytes) -> luma ndarray``
        metric: Similarity metric (its direction drives the bracket update)
        target: Target metric value
        reference: Luma plane of the original image
        qmin: Lowest quality to try
        qmax: Highest quality to try
        attempts: Maximum number of rounds; values below 1 run a single round
        size_budget: Stop early when a candidate that still needs more quality
            is already too large to be worth writing
        finalize: 'last' keeps the last round's candidate, 'best' re-encodes at
            the best quality if the last round ended elsewhere

    Returns:
        SearchResult for the chosen candidate
    """
    if qmin > qmax:
        raise ValueError(f"qmin ({qmin}) must not exceed qmax ({qmax})")
    if finalize not in FINALIZE_MODES:
        raise ValueError(f"finalize must be one of {FINALIZE_MODES}, got {finalize!r}")
    if attempts < 1:
        log.warning("Attempt budget is %d; running a single final round", attempts)
        attempts = 1

    state = SearchState(low=qmin, high=qmax, attempts_left=attempts)
    history: List[Tuple[int, float, int]] = []
    candidate: Optional[Candidate] = None
    score = diff = math.nan
    rounds = 0

    while state.attempts_left > 0:
        state.attempts_left -= 1
        quality = state.next_quality()

        # Revisiting the best quality or a collapsed bracket: make this the final round
        if quality == state.best_quality or state.low == state.high:
            state.attempts_left = 0
        final = state.attempts_left == 0

        candidate = None
        candidate, score = _evaluate(encode, decode, metric, reference, quality, final)
        rounds += 1
        diff = abs(target - score)
        state.record(quality, diff)
        history.append((quality, score, candidate.size))

        if final:
            log.info("Final optimized %s at q=%d (%d - %d): %f (target was %f, difference is %f)",
                     metric.name, quality, state.low, state.high, score, target, diff)
        else:
            log.info("%s at q=%d (%d - %d): %f (target is %f difference is %f)",
                     metric.name, quality, state.low, state.high, score, target, diff)

        acceptable = metric.is_acceptable(score, target)
        if not acceptable and size_budget is not None and size_budget.exceeded_by(candidate.size):
            log.debug("q=%d needs more quality but is already %d bytes (input %d)",
                      quality, size_budget.total(candidate.size), size_budget.original_size)
            return SearchResult(candidate, score, diff, state.best_quality, state.best_diff,
                                rounds, history, oversize=True)

        state.narrow(quality, acceptable)

    if finalize == "best" and candidate.quality != state.best_quality:
        log.info("Re-encoding at best quality q=%d", state.best_quality)
        candidate = None
        candidate, score = _evaluate(encode, decode, metric, reference, state.best_quality, True)
        rounds += 1
        diff = abs(target - score)

    return SearchResult(candidate, score, diff, state.best_quality, state.best_diff, rounds, history)

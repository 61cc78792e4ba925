"""Tempo/pitch parameter derivation and atempo chain decomposition.

ffmpeg's ``atempo`` filter only accepts ratios in ``[0.5, 2.0]``.  Any
other ratio is split into a chain of in-range steps whose product is
the requested ratio.  Every function here is pure.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple

from . import tuning
from .models import ConversionRequest, InvalidParameter


@dataclass(frozen=True)
class DerivedParameters:
    """Engine-facing tempo values for one :class:`ConversionRequest`.

    ``tempo_target`` is the playback speed that produces the requested
    duration scale; ``tempo_fix`` is what remains once a resample-based
    pitch shift (which also speeds playback up by ``pitch_ratio``) has
    been applied.
    """

    tempo_target: float
    tempo_fix: float


def derive(request: ConversionRequest) -> DerivedParameters:
    tempo_target = 1.0 / request.time_scale
    return DerivedParameters(
        tempo_target=tempo_target,
        tempo_fix=tempo_target / request.pitch_ratio,
    )


def _clamp(val: float, min_val: float, max_val: float) -> float:
    """Clamp val between min_val and max_val."""
    return max(min_val, min(max_val, val))


def decompose(ratio: float) -> Tuple[float, ...]:
    """Split ``ratio`` into steps within the native atempo range.

    Each step is ``clamp(sqrt(remaining))``; the square root moves the
    remainder toward 1 fastest while the clamp keeps the step legal.
    """
    try:
        remaining = float(ratio)
    except (TypeError, ValueError):
        raise InvalidParameter(f"tempo ratio must be a number, got {ratio!r}") from None
    if not math.isfinite(remaining) or remaining <= 0:
        raise InvalidParameter(f"tempo ratio must be a positive finite number, got {ratio!r}")

    low, high = tuning.ATEMPO_MIN, tuning.ATEMPO_MAX
    if low <= remaining <= high:
        return (remaining,)

    chain: List[float] = []
    while remaining > high:
        step = _clamp(math.sqrt(remaining), low, high)
        chain.append(step)
        remaining /= step
    while remaining < low:
        step = _clamp(math.sqrt(remaining), low, high)
        chain.append(step)
        remaining /= step
    if abs(remaining - 1.0) > tuning.CHAIN_EPSILON:
        chain.append(remaining)
    return tuple(chain)


def atempo_filter(ratio: float) -> str:
    """Render the decomposition of ``ratio`` as an ffmpeg filter chain."""
    return ",".join(f"atempo={step:.6f}" for step in decompose(ratio))


def format_ratio(value: float) -> str:
    """Shortest stable text for a ratio, used in output file names."""
    return f"{float(value):.10g}"

"""Centralized tuning constants for the stretch benchmark harness.

Defaults for the conversion request, the atempo chain limits, and the
per-scheme filter parameters are defined here and referenced by the
rest of the package (single source of truth).  A ``tuning`` object in
``config.json`` can override the backend parameters named in
:data:`OVERRIDABLE` via :func:`apply_overrides`; everything else here
is fixed.
"""

from __future__ import annotations

from typing import Any, Dict, List

# ---------------------------------------------------------------------------
# User-facing defaults
DEFAULT_PITCH_RATIO = 1.12246
DEFAULT_TIME_SCALE = 0.993
DEFAULT_OUTPUT_DIR = "converted"
DEFAULT_OUTPUT_FORMAT = "float32"
DEFAULT_SCHEMES: List[str] = ["rubberband", "asetrate_atempo", "scaletempo"]
DEFAULT_EXTENSIONS: List[str] = [".wav"]
DEFAULT_PROBE = "ffprobe"

# ---------------------------------------------------------------------------
# Chain decomposition / timing
ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0
CHAIN_EPSILON = 1e-6
MIN_ELAPSED_SECONDS = 1e-6
BYTES_PER_MB = 1048576.0

# ---------------------------------------------------------------------------
# Scheme parameters
SCALETEMPO_PARAMS: Dict[str, float] = {
    "stride": 0.3,
    "overlap": 0.2,
    "search": 14,
}

RUBBERBAND_ENGINE_FLAGS: Dict[str, str] = {
    "r2": "-2",
    "r3": "-3",
}

CAPABILITY_PROBE_TIMEOUT = 10


# Only backend parameters may be tuned from config.  The atempo range,
# epsilons and unit sizes are fixed.
OVERRIDABLE = ("SCALETEMPO_PARAMS", "RUBBERBAND_ENGINE_FLAGS", "CAPABILITY_PROBE_TIMEOUT")


def _positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def apply_overrides(data: Dict[str, Any]) -> List[str]:
    """Merge backend-parameter overrides into module globals.

    Unknown or locked keys and ill-typed values are ignored.  Returns
    the names that were ignored so callers can report them.
    """
    if not isinstance(data, dict):
        return []

    ignored: List[str] = []
    module_globals = globals()
    for key, value in data.items():
        if key not in OVERRIDABLE:
            ignored.append(key)
            continue
        current = module_globals[key]
        if isinstance(current, dict) and isinstance(value, dict):
            for sub_key, sub_value in value.items():
                if sub_key not in current:
                    ignored.append(f"{key}.{sub_key}")
                elif isinstance(current[sub_key], str) and isinstance(sub_value, str) and sub_value:
                    current[sub_key] = sub_value
                elif _positive_number(current[sub_key]) and _positive_number(sub_value):
                    current[sub_key] = sub_value
                else:
                    ignored.append(f"{key}.{sub_key}")
        elif _positive_number(current) and _positive_number(value):
            module_globals[key] = value
        else:
            ignored.append(key)
    return ignored

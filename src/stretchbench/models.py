"""Data model shared by the catalog, schemes, runner and report.

Everything here is an immutable value: files are discovered once,
requests are frozen before a batch starts, and each
:class:`JobResult` is created exactly once by the worker that ran
the job and then handed to the collecting thread.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from . import tuning


class StretchBenchError(Exception):
    """Base class for all harness errors."""


class InvalidParameter(StretchBenchError, ValueError):
    """Raised for a bad ratio, scale, format selector or scheme name."""


class SetupError(StretchBenchError, RuntimeError):
    """Fatal error detected before any job runs."""


class DependencyMissingError(SetupError):
    """Raised when a required external tool is missing or unusable."""


class NoInputFilesError(SetupError):
    """Raised when the input directory holds no candidate files."""


class NoEnabledSchemesError(SetupError):
    """Raised when every configured scheme failed its capability probe."""


class OutputFormat(Enum):
    PCM16 = "pcm16"
    PCM24 = "pcm24"
    PCM32 = "pcm32"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    FLAC = "flac"

    @property
    def codec(self) -> str:
        """ffmpeg ``-c:a`` encoder name."""
        return _CODECS[self]

    @property
    def subtype(self) -> str:
        """soundfile subtype used by in-process backends."""
        return _SUBTYPES[self]

    @property
    def extension(self) -> str:
        return "flac" if self is OutputFormat.FLAC else "wav"

    @classmethod
    def parse(cls, value: Union[str, "OutputFormat"]) -> "OutputFormat":
        """Resolve a selector such as ``float32``, ``pcm24`` or ``16bit``."""
        if isinstance(value, OutputFormat):
            return value
        key = str(value or "").strip().lower()
        key = _ALIASES.get(key, key)
        for member in cls:
            if member.value == key:
                return member
        choices = ", ".join([m.value for m in cls] + sorted(_ALIASES))
        raise InvalidParameter(f"Unsupported output format: {value!r} (choose from {choices})")


_CODECS: Dict[OutputFormat, str] = {
    OutputFormat.PCM16: "pcm_s16le",
    OutputFormat.PCM24: "pcm_s24le",
    OutputFormat.PCM32: "pcm_s32le",
    OutputFormat.FLOAT32: "pcm_f32le",
    OutputFormat.FLOAT64: "pcm_f64le",
    OutputFormat.FLAC: "flac",
}

_SUBTYPES: Dict[OutputFormat, str] = {
    OutputFormat.PCM16: "PCM_16",
    OutputFormat.PCM24: "PCM_24",
    OutputFormat.PCM32: "PCM_32",
    OutputFormat.FLOAT32: "FLOAT",
    OutputFormat.FLOAT64: "DOUBLE",
    OutputFormat.FLAC: "PCM_24",
}

_ALIASES: Dict[str, str] = {
    "16bit": "pcm16",
    "24bit": "pcm24",
    "32bit": "pcm32",
}


def _check_ratio(name: str, value: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number) or number <= 0:
        raise InvalidParameter(f"{name} must be a positive finite number, got {value!r}")
    return number


@dataclass(frozen=True)
class ConversionRequest:
    """User-facing parameters for one batch run."""

    pitch_ratio: float = tuning.DEFAULT_PITCH_RATIO
    time_scale: float = tuning.DEFAULT_TIME_SCALE
    output_format: OutputFormat = OutputFormat.FLOAT32
    output_dir: Path = Path(tuning.DEFAULT_OUTPUT_DIR)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pitch_ratio", _check_ratio("pitch ratio", self.pitch_ratio))
        object.__setattr__(self, "time_scale", _check_ratio("time scale", self.time_scale))
        object.__setattr__(self, "output_format", OutputFormat.parse(self.output_format))
        object.__setattr__(self, "output_dir", Path(self.output_dir))


@dataclass(frozen=True)
class InputFile:
    file_id: int
    path: Path
    size_bytes: int
    sample_rate_hz: int
    # Relative to the scanned directory; keeps recursive outputs apart.
    relative_path: Optional[Path] = None
    # Base for output names; differs from the stem only when stems clash.
    output_stem: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def stem(self) -> str:
        return self.output_stem or self.path.stem

    @property
    def size_mb(self) -> float:
        return self.size_bytes / tuning.BYTES_PER_MB


@dataclass(frozen=True)
class SkippedFile:
    file_id: int
    path: Path
    reason: str

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class Invocation:
    """What a scheme wants executed for one file.

    Exactly one of ``command`` (an argv list for an external process)
    or ``call`` (an in-process callable) is set.
    """

    output_path: Path
    command: Optional[List[str]] = None
    call: Optional[Callable[[], None]] = None

    def __post_init__(self) -> None:
        if (self.command is None) == (self.call is None):
            raise ValueError("Invocation needs exactly one of command or call")

    def describe(self) -> str:
        if self.command is not None:
            return " ".join(_quote(part) for part in self.command)
        name = getattr(self.call, "__qualname__", None) or repr(self.call)
        return f"<in-process {name}> -> {self.output_path}"


def _quote(part: str) -> str:
    if not part or any(ch.isspace() for ch in part):
        return f'"{part}"'
    return part


@dataclass(frozen=True)
class JobResult:
    file_id: int
    scheme_name: str
    success: bool
    elapsed_seconds: float
    throughput_mbps: float
    output_path: Optional[Path] = None
    error: str = ""

"""Processing schemes and their registry.

A scheme is one named strategy for applying the pitch/tempo transform:
an ffmpeg filter graph, the standalone ``rubberband`` CLI, or an
in-process librosa render.  The set is closed: every variant is a
subclass of :class:`Scheme` listed in :data:`SCHEME_TYPES`, whose
order is also the display order used by the report.

Each scheme carries a capability probe (``probe``) evaluated once per
run by :class:`SchemeRegistry`, and a pure ``build_invocation`` that
turns ``(file, derived parameters, request)`` into the concrete
:class:`~stretchbench.models.Invocation`.  Output names encode the
pitch ratio, time scale and scheme name so schemes and files never
collide inside one output directory::

    <output_dir>/<stem>_p1.12246_t0.993_rubberband.wav

When two inputs share a stem (``a.wav`` and ``a.flac``) discovery
hands each a distinct ``output_stem`` such as ``a_wav``.
"""

from __future__ import annotations

import functools
import importlib.util
import math
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Type

import numpy as np
import soundfile as sf

from . import tuning
from .derive import DerivedParameters, atempo_filter, format_ratio
from .models import ConversionRequest, InputFile, InvalidParameter, Invocation


@dataclass
class Toolbox:
    """Locations of the external backends plus a cached filter listing."""

    ffmpeg: str = "ffmpeg"
    rubberband: str = "rubberband"
    _filters: Optional[FrozenSet[str]] = field(default=None, init=False, repr=False)

    def has_binary(self, name: str) -> bool:
        return shutil.which(name) is not None

    def ffmpeg_filters(self) -> FrozenSet[str]:
        """Tokens of ``ffmpeg -filters`` output (fetched once, empty if ffmpeg is unusable)."""
        if self._filters is not None:
            return self._filters
        tokens: FrozenSet[str] = frozenset()
        if self.has_binary(self.ffmpeg):
            try:
                res = subprocess.run(
                    [self.ffmpeg, "-hide_banner", "-filters"],
                    capture_output=True,
                    text=True,
                    timeout=tuning.CAPABILITY_PROBE_TIMEOUT,
                )
                if res.returncode == 0:
                    tokens = frozenset((res.stdout or "").split())
            except (OSError, subprocess.TimeoutExpired):
                tokens = frozenset()
        self._filters = tokens
        return tokens

    def has_filter(self, name: str) -> bool:
        return name in self.ffmpeg_filters()


class Scheme(ABC):
    """One named transformation strategy."""

    name: ClassVar[str]
    label: ClassVar[str]

    def __init__(self, toolbox: Optional[Toolbox] = None) -> None:
        self.toolbox = toolbox or Toolbox()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    @abstractmethod
    def probe(self) -> bool:
        """Return ``True`` when the installed backend supports this scheme."""

    @abstractmethod
    def build_invocation(
        self, file: InputFile, derived: DerivedParameters, request: ConversionRequest
    ) -> Invocation:
        ...

    def output_path(self, file: InputFile, request: ConversionRequest) -> Path:
        rel_parent = file.relative_path.parent if file.relative_path is not None else Path(".")
        pitch = format_ratio(request.pitch_ratio)
        scale = format_ratio(request.time_scale)
        fname = f"{file.stem}_p{pitch}_t{scale}_{self.name}.{request.output_format.extension}"
        return request.output_dir / rel_parent / fname


# ----------------------------------------------------------------------
# ffmpeg filter-graph schemes
class FfmpegFilterScheme(Scheme):
    required_filters: ClassVar[Tuple[str, ...]] = ()

    def probe(self) -> bool:
        return all(self.toolbox.has_filter(f) for f in self.required_filters)

    @abstractmethod
    def filter_graph(self, file: InputFile, derived: DerivedParameters, request: ConversionRequest) -> str:
        ...

    def build_invocation(
        self, file: InputFile, derived: DerivedParameters, request: ConversionRequest
    ) -> Invocation:
        out = self.output_path(file, request)
        cmd = [
            self.toolbox.ffmpeg,
            "-hide_banner",
            "-y",
            "-i",
            str(file.path),
            "-af",
            self.filter_graph(file, derived, request),
            "-c:a",
            request.output_format.codec,
            str(out),
        ]
        return Invocation(output_path=out, command=cmd)


class RubberbandFilterScheme(FfmpegFilterScheme):
    name = "rubberband"
    label = "Rubberband"
    required_filters = ("rubberband",)

    def filter_graph(self, file: InputFile, derived: DerivedParameters, request: ConversionRequest) -> str:
        return f"rubberband=pitch={format_ratio(request.pitch_ratio)}:tempo={derived.tempo_target:.6f}"


class AsetrateAtempoScheme(FfmpegFilterScheme):
    """Resample-based pitch shift, then atempo to restore the target speed."""

    name = "asetrate_atempo"
    label = "Asetrate+Atempo"
    required_filters = ("asetrate", "aresample", "atempo")

    def filter_graph(self, file: InputFile, derived: DerivedParameters, request: ConversionRequest) -> str:
        sr = file.sample_rate_hz
        new_sr = int(sr * request.pitch_ratio)
        return f"asetrate={new_sr},aresample={sr},{atempo_filter(derived.tempo_fix)}"


class ScaletempoScheme(FfmpegFilterScheme):
    """Tempo change only; pitch is left untouched."""

    name = "scaletempo"
    label = "Scaletempo"
    required_filters = ("scaletempo", "atempo")

    def filter_graph(self, file: InputFile, derived: DerivedParameters, request: ConversionRequest) -> str:
        p = tuning.SCALETEMPO_PARAMS
        return (
            f"scaletempo=stride={p['stride']:g}:overlap={p['overlap']:g}:search={p['search']:g},"
            f"{atempo_filter(derived.tempo_target)}"
        )


# ----------------------------------------------------------------------
# Standalone rubberband CLI
class RubberbandCliScheme(Scheme):
    engine: ClassVar[str] = "r3"

    def probe(self) -> bool:
        return self.toolbox.has_binary(self.toolbox.rubberband)

    def build_invocation(
        self, file: InputFile, derived: DerivedParameters, request: ConversionRequest
    ) -> Invocation:
        out = self.output_path(file, request)
        cmd = [
            self.toolbox.rubberband,
            "-t",
            format_ratio(request.time_scale),
            "-f",
            format_ratio(request.pitch_ratio),
            tuning.RUBBERBAND_ENGINE_FLAGS[self.engine],
            "-q",
            str(file.path),
            str(out),
        ]
        return Invocation(output_path=out, command=cmd)


class RubberbandR3Scheme(RubberbandCliScheme):
    name = "rubberband_r3"
    label = "Rubberband CLI R3"
    engine = "r3"


class RubberbandR2Scheme(RubberbandCliScheme):
    name = "rubberband_r2"
    label = "Rubberband CLI R2"
    engine = "r2"


# ----------------------------------------------------------------------
# In-process backend
def _render_with_librosa(src: Path, dst: Path, pitch_ratio: float, tempo: float, subtype: str) -> None:
    import librosa  # heavy import, only paid when the scheme actually runs

    y, sr = librosa.load(str(src), sr=None, mono=False)
    n_steps = 12.0 * math.log2(pitch_ratio)
    if abs(n_steps) > 1e-9:
        y = librosa.effects.pitch_shift(y, sr=sr, n_steps=n_steps)
    if abs(tempo - 1.0) > 1e-9:
        y = librosa.effects.time_stretch(y, rate=tempo)
    sf.write(str(dst), np.asarray(y).T, sr, subtype=subtype)


class LibrosaScheme(Scheme):
    """Phase-vocoder pitch shift and time stretch via librosa."""

    name = "librosa"
    label = "Librosa"
    modules: ClassVar[Tuple[str, ...]] = ("librosa", "soundfile", "numpy")

    def probe(self) -> bool:
        return all(importlib.util.find_spec(m) is not None for m in self.modules)

    def build_invocation(
        self, file: InputFile, derived: DerivedParameters, request: ConversionRequest
    ) -> Invocation:
        out = self.output_path(file, request)
        call = functools.partial(
            _render_with_librosa,
            file.path,
            out,
            request.pitch_ratio,
            derived.tempo_target,
            request.output_format.subtype,
        )
        return Invocation(output_path=out, call=call)


SCHEME_TYPES: Tuple[Type[Scheme], ...] = (
    RubberbandFilterScheme,
    AsetrateAtempoScheme,
    ScaletempoScheme,
    RubberbandR3Scheme,
    RubberbandR2Scheme,
    LibrosaScheme,
)

SCHEMES_BY_NAME: Dict[str, Type[Scheme]] = {cls.name: cls for cls in SCHEME_TYPES}


def scheme_names() -> List[str]:
    return [cls.name for cls in SCHEME_TYPES]


class SchemeRegistry:
    """The configured schemes for one run, with availability probed once.

    ``schemes`` is kept in display order: declaration order of
    :data:`SCHEME_TYPES` for schemes built from names, or the given
    order for pre-built instances.
    """

    def __init__(self, schemes: Sequence[Scheme]) -> None:
        seen: set[str] = set()
        ordered: List[Scheme] = []
        for scheme in schemes:
            if scheme.name in seen:
                continue
            seen.add(scheme.name)
            ordered.append(scheme)
        self.schemes: Tuple[Scheme, ...] = tuple(ordered)
        self._availability: Optional[Dict[str, bool]] = None

    @classmethod
    def from_names(cls, names: Iterable[str], toolbox: Optional[Toolbox] = None) -> "SchemeRegistry":
        toolbox = toolbox or Toolbox()
        wanted: List[str] = []
        for raw in names:
            name = str(raw).strip().lower()
            if not name:
                continue
            if name not in SCHEMES_BY_NAME:
                raise InvalidParameter(f"Unknown scheme: {raw!r} (choose from {', '.join(scheme_names())})")
            wanted.append(name)
        ordered = [SCHEMES_BY_NAME[n](toolbox) for n in scheme_names() if n in wanted]
        return cls(ordered)

    def probe(self) -> Dict[str, bool]:
        """Return ``{name: available}``; probes run on the first call only."""
        if self._availability is None:
            availability: Dict[str, bool] = {}
            for scheme in self.schemes:
                try:
                    availability[scheme.name] = bool(scheme.probe())
                except Exception:
                    availability[scheme.name] = False
            self._availability = availability
        return dict(self._availability)

    def enabled(self) -> List[Scheme]:
        availability = self.probe()
        return [s for s in self.schemes if availability.get(s.name, False)]

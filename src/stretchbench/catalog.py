"""Input discovery for the benchmark harness.

:func:`discover` walks an input directory in deterministic order and
yields one entry per candidate file: an :class:`InputFile` when the
file can be scheduled, or a :class:`SkippedFile` carrying the reason
it cannot.  Skipped files are kept so the final report can list them.

The sample rate comes from a probe collaborator.  Two are provided:
:class:`FfprobeSampleRateProbe` (shells out to ``ffprobe``) and
:class:`SoundfileSampleRateProbe` (reads the header in-process with
``soundfile``).  Whatever the probe returns is taken as-is.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import soundfile as sf

from .models import DependencyMissingError, InputFile, SkippedFile

CatalogEntry = Union[InputFile, SkippedFile]
SampleRateProbe = Callable[[Path], Optional[int]]

IGNORE_RULES: Tuple[str, ...] = ("__MACOSX", ".DS_Store", "._")
PROBE_TIMEOUT_SECONDS = 30


@dataclass
class FfprobeSampleRateProbe:
    """Read the first audio stream's sample rate with ``ffprobe``."""

    binary: str = "ffprobe"
    timeout: float = PROBE_TIMEOUT_SECONDS

    def ensure_available(self) -> None:
        if shutil.which(self.binary) is None:
            raise DependencyMissingError(
                f"ffprobe binary '{self.binary}' was not found. Install FFmpeg or pass --ffprobe with the correct path."
            )

    def __call__(self, path: Path) -> Optional[int]:
        cmd = [
            self.binary,
            "-v",
            "error",
            "-select_streams",
            "a:0",
            "-show_entries",
            "stream=sample_rate",
            "-of",
            "default=nokey=1:noprint_wrappers=1",
            "--",
            str(path),
        ]
        try:
            res = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired):
            return None
        if res.returncode != 0:
            return None
        first = next((line.strip() for line in (res.stdout or "").splitlines() if line.strip()), "")
        try:
            return int(first)
        except ValueError:
            return None


@dataclass
class SoundfileSampleRateProbe:
    """Read the sample rate from the file header via libsndfile."""

    def ensure_available(self) -> None:
        return None

    def __call__(self, path: Path) -> Optional[int]:
        try:
            return int(sf.info(str(path)).samplerate)
        except (RuntimeError, OSError, ValueError):
            # soundfile raises LibsndfileError (a RuntimeError) for undecodable input
            return None


def build_probe(kind: str, ffprobe_binary: str = "ffprobe") -> Union[FfprobeSampleRateProbe, SoundfileSampleRateProbe]:
    kind = (kind or "ffprobe").strip().lower()
    if kind == "soundfile":
        return SoundfileSampleRateProbe()
    if kind == "ffprobe":
        return FfprobeSampleRateProbe(binary=ffprobe_binary)
    raise ValueError(f"Unknown sample rate probe: {kind!r} (choose ffprobe or soundfile)")


def should_ignore(name: str) -> bool:
    for rule in IGNORE_RULES:
        if name == rule or name.startswith(rule):
            return True
    return False


def normalize_extensions(extensions: Iterable[str]) -> Tuple[str, ...]:
    out: List[str] = []
    for ext in extensions:
        token = str(ext).strip().lower()
        if not token:
            continue
        if not token.startswith("."):
            token = "." + token
        if token not in out:
            out.append(token)
    return tuple(out)


def _iter_candidates(
    directory: Path, extensions: Sequence[str], recursive: bool, exclude: Sequence[Path] = ()
) -> Iterator[Path]:
    """Yield matching regular files in sorted, deterministic order."""
    excluded = {p.resolve() for p in exclude}
    if recursive:
        for root, dirs, files in os.walk(directory):
            dirs[:] = sorted(
                d for d in dirs if not should_ignore(d) and (Path(root) / d).resolve() not in excluded
            )
            for fname in sorted(f for f in files if not should_ignore(f)):
                path = Path(root) / fname
                if path.suffix.lower() in extensions and path.is_file():
                    yield path
        return
    for path in sorted(directory.iterdir()):
        if should_ignore(path.name):
            continue
        if path.suffix.lower() in extensions and path.is_file():
            yield path


def output_stems(paths: Sequence[Path], root: Path) -> Dict[Path, str]:
    """Map each candidate to an output stem unique within its output folder.

    Stems are compared case-insensitively.  Clashing files (``a.wav``,
    ``a.WAV``, ``a.flac``) get their source suffix appended
    (``a_wav``, ``a_WAV``, ``a_flac``); names that still clash get a
    1-based counter in visiting order.
    """
    groups: Dict[Tuple[Path, str], List[Path]] = {}
    for path in paths:
        groups.setdefault((path.relative_to(root).parent, path.stem.lower()), []).append(path)

    stems: Dict[Path, str] = {}
    for members in groups.values():
        for path in members:
            if len(members) == 1:
                stems[path] = path.stem
            else:
                stems[path] = f"{path.stem}_{path.suffix.lstrip('.')}"

    taken: Dict[Tuple[Path, str], List[Path]] = {}
    for path in paths:
        taken.setdefault((path.relative_to(root).parent, stems[path].lower()), []).append(path)
    for members in taken.values():
        if len(members) > 1:
            for n, path in enumerate(members, start=1):
                stems[path] = f"{stems[path]}_{n}"
    return stems


def _inspect(file_id: int, path: Path, root: Path, probe: SampleRateProbe, stem: Optional[str] = None) -> CatalogEntry:
    try:
        size_bytes = path.stat().st_size
        with open(path, "rb"):
            pass
    except OSError as exc:
        return SkippedFile(file_id, path, f"file is not readable: {exc.strerror or exc}")
    if size_bytes <= 0:
        return SkippedFile(file_id, path, "file is empty")

    try:
        sample_rate = probe(path)
    except Exception as exc:
        return SkippedFile(file_id, path, f"sample rate could not be determined: {exc}")
    if not sample_rate:
        return SkippedFile(file_id, path, "sample rate could not be determined")
    return InputFile(
        file_id=file_id,
        path=path,
        size_bytes=int(size_bytes),
        sample_rate_hz=int(sample_rate),
        relative_path=path.relative_to(root),
        output_stem=stem,
    )


def discover(
    directory: Path,
    extensions: Iterable[str] = (".wav",),
    probe: Optional[SampleRateProbe] = None,
    recursive: bool = False,
    exclude: Sequence[Path] = (),
) -> Iterator[CatalogEntry]:
    """Lazily yield a catalog entry for every candidate file in ``directory``.

    Each call re-scans the directory.  File ids are 1-based and follow
    the sorted visiting order, so they are stable across runs.
    Directories listed in ``exclude`` (e.g. the output directory) are
    not descended into.  The candidate list is gathered up front so
    clashing stems get unique output names; probing stays lazy.
    """
    directory = Path(directory)
    exts = normalize_extensions(extensions)
    probe = probe or FfprobeSampleRateProbe()
    if not directory.is_dir():
        return
    candidates = list(_iter_candidates(directory, exts, recursive, exclude))
    stems = output_stems(candidates, directory)
    for file_id, path in enumerate(candidates, start=1):
        yield _inspect(file_id, path, directory, probe, stems[path])


def split_catalog(entries: Iterable[CatalogEntry]) -> Tuple[List[InputFile], List[SkippedFile]]:
    files: List[InputFile] = []
    skipped: List[SkippedFile] = []
    for entry in entries:
        if isinstance(entry, InputFile):
            files.append(entry)
        else:
            skipped.append(entry)
    return files, skipped

"""Aggregation of job results into a comparison report.

:func:`aggregate` is a read-only pass over completed results.  The
resulting :class:`RunReport` renders as the human-readable banner
report (:func:`render_text`), serialises to JSON (``to_dict``), and
can be written as a flat CSV of per-job rows (:func:`write_results_csv`).
"""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from . import tuning
from .models import InputFile, JobResult, SkippedFile
from .schemes import Scheme

BANNER_WIDTH = 80


@dataclass(frozen=True)
class SchemeSummary:
    name: str
    label: str
    success_count: int
    failure_count: int
    total_elapsed: float
    average_elapsed: float
    average_throughput: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "succeeded": self.success_count,
            "failed": self.failure_count,
            "total_seconds": round(self.total_elapsed, 6),
            "average_seconds": round(self.average_elapsed, 6),
            "average_throughput_mbps": round(self.average_throughput, 6),
        }


@dataclass(frozen=True)
class FileSummary:
    file: InputFile
    total_elapsed: float
    outcomes: Tuple[JobResult, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_id": self.file.file_id,
            "name": self.file.name,
            "path": str(self.file.path),
            "size_bytes": self.file.size_bytes,
            "sample_rate_hz": self.file.sample_rate_hz,
            "total_seconds": round(self.total_elapsed, 6),
            "outcomes": [_result_dict(r) for r in self.outcomes],
        }


@dataclass
class RunReport:
    run_id: str
    timestamp: str
    parameters: Dict[str, Any]
    availability: Dict[str, bool]
    schemes: List[SchemeSummary]
    files: List[FileSummary]
    skipped: List[SkippedFile]
    results: List[JobResult]
    files_attempted: int
    files_processed: int
    total_bytes: int
    wall_clock_seconds: float
    aggregate_throughput_mbps: float
    fastest: Optional[JobResult] = None
    slowest: Optional[JobResult] = None
    _names: Dict[int, str] = field(default_factory=dict, repr=False)

    @property
    def files_skipped(self) -> int:
        return len(self.skipped)

    @property
    def jobs_total(self) -> int:
        return len(self.results)

    @property
    def jobs_succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def jobs_failed(self) -> int:
        return self.jobs_total - self.jobs_succeeded

    def file_name(self, file_id: int) -> str:
        return self._names.get(file_id, f"file_{file_id}")

    def _job_dict(self, result: Optional[JobResult]) -> Optional[Dict[str, Any]]:
        if result is None:
            return None
        out = _result_dict(result)
        out["file"] = self.file_name(result.file_id)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "parameters": dict(self.parameters),
            "availability": dict(self.availability),
            "schemes": [s.to_dict() for s in self.schemes],
            "files": [f.to_dict() for f in self.files],
            "skipped": [
                {"file_id": s.file_id, "name": s.name, "path": str(s.path), "reason": s.reason}
                for s in self.skipped
            ],
            "totals": {
                "files_attempted": self.files_attempted,
                "files_processed": self.files_processed,
                "files_skipped": self.files_skipped,
                "jobs": self.jobs_total,
                "jobs_succeeded": self.jobs_succeeded,
                "jobs_failed": self.jobs_failed,
                "total_bytes": self.total_bytes,
                "wall_clock_seconds": round(self.wall_clock_seconds, 6),
                "aggregate_throughput_mbps": round(self.aggregate_throughput_mbps, 6),
            },
            "fastest": self._job_dict(self.fastest),
            "slowest": self._job_dict(self.slowest),
        }


def _result_dict(result: JobResult) -> Dict[str, Any]:
    return {
        "file_id": result.file_id,
        "scheme": result.scheme_name,
        "success": result.success,
        "elapsed_seconds": round(result.elapsed_seconds, 6),
        "throughput_mbps": round(result.throughput_mbps, 6),
        "output": str(result.output_path) if result.output_path is not None else None,
        "error": result.error,
    }


def _scheme_summary(name: str, label: str, results: Sequence[JobResult]) -> SchemeSummary:
    ok = [r for r in results if r.success]
    total = sum(r.elapsed_seconds for r in results)
    avg = sum(r.elapsed_seconds for r in ok) / len(ok) if ok else 0.0
    avg_speed = sum(r.throughput_mbps for r in ok) / len(ok) if ok else 0.0
    return SchemeSummary(
        name=name,
        label=label,
        success_count=len(ok),
        failure_count=len(results) - len(ok),
        total_elapsed=total,
        average_elapsed=avg,
        average_throughput=avg_speed,
    )


def aggregate(
    results: Iterable[JobResult],
    files: Sequence[InputFile],
    skipped: Sequence[SkippedFile],
    schemes: Sequence[Scheme],
    wall_clock_seconds: float,
    *,
    run_id: str = "",
    timestamp: str = "",
    parameters: Optional[Dict[str, Any]] = None,
    availability: Optional[Dict[str, bool]] = None,
) -> RunReport:
    """Build a :class:`RunReport` from completed results.

    Display order is file discovery order and scheme declaration
    order, never completion order.
    """
    scheme_order = [s.name for s in schemes]
    rank = {name: i for i, name in enumerate(scheme_order)}
    file_order = {f.file_id: i for i, f in enumerate(files)}

    ordered = sorted(
        results,
        key=lambda r: (file_order.get(r.file_id, len(file_order)), rank.get(r.scheme_name, len(rank)), r.scheme_name),
    )

    by_scheme: Dict[str, List[JobResult]] = {name: [] for name in scheme_order}
    by_file: Dict[int, List[JobResult]] = {f.file_id: [] for f in files}
    for r in ordered:
        by_scheme.setdefault(r.scheme_name, []).append(r)
        by_file.setdefault(r.file_id, []).append(r)

    labels = {s.name: getattr(s, "label", s.name) for s in schemes}
    scheme_summaries = [_scheme_summary(name, labels.get(name, name), rs) for name, rs in by_scheme.items()]

    file_summaries = [
        FileSummary(
            file=f,
            total_elapsed=sum(r.elapsed_seconds for r in by_file.get(f.file_id, [])),
            outcomes=tuple(by_file.get(f.file_id, [])),
        )
        for f in files
    ]

    fastest: Optional[JobResult] = None
    slowest: Optional[JobResult] = None
    for r in ordered:
        if not r.success:
            continue
        if fastest is None or r.elapsed_seconds < fastest.elapsed_seconds:
            fastest = r
        if slowest is None or r.elapsed_seconds > slowest.elapsed_seconds:
            slowest = r

    total_bytes = sum(f.size_bytes for f in files)
    wall = max(0.0, float(wall_clock_seconds))
    total_mb = total_bytes / tuning.BYTES_PER_MB
    names = {f.file_id: f.name for f in files}
    names.update({s.file_id: s.name for s in skipped})

    return RunReport(
        run_id=run_id,
        timestamp=timestamp,
        parameters=dict(parameters or {}),
        availability=dict(availability or {name: True for name in scheme_order}),
        schemes=scheme_summaries,
        files=file_summaries,
        skipped=list(skipped),
        results=ordered,
        files_attempted=len(files) + len(skipped),
        files_processed=len(files),
        total_bytes=total_bytes,
        wall_clock_seconds=wall,
        aggregate_throughput_mbps=total_mb / max(wall, tuning.MIN_ELAPSED_SECONDS) if total_bytes else 0.0,
        fastest=fastest,
        slowest=slowest,
        _names=names,
    )


def render_text(report: RunReport, output_dir: Optional[Path] = None) -> str:
    """Human-readable comparison table for the console."""
    labels = {s.name: s.label for s in report.schemes}
    width = max([len(label) for label in labels.values()] + [8])
    lines: List[str] = []
    rule = "=" * BANNER_WIDTH

    lines.append(rule)
    lines.append("Detailed processing time report")
    lines.append(rule)
    lines.append("")
    lines.append("Overall:")
    lines.append(
        f"- Files attempted: {report.files_attempted} "
        f"(processed {report.files_processed}, skipped {report.files_skipped})"
    )
    lines.append(f"- Jobs: {report.jobs_total} (succeeded {report.jobs_succeeded}, failed {report.jobs_failed})")
    lines.append(f"- Total input: {report.total_bytes / tuning.BYTES_PER_MB:.2f} MB")
    lines.append(
        f"- Total wall time: {report.wall_clock_seconds:.2f}s ({report.wall_clock_seconds / 60.0:.2f} min)"
    )
    lines.append(f"- Aggregate throughput: {report.aggregate_throughput_mbps:.2f} MB/s")

    if report.files:
        lines.append("")
        lines.append("Per-file timing:")
        for fs in report.files:
            lines.append("")
            lines.append(f"File: {fs.file.name}")
            lines.append(
                f"   Size: {fs.file.size_mb:.2f} MB | Sample rate: {fs.file.sample_rate_hz} Hz "
                f"| Total: {fs.total_elapsed:.2f}s"
            )
            for r in fs.outcomes:
                label = labels.get(r.scheme_name, r.scheme_name).ljust(width)
                if r.success:
                    lines.append(f"   ✓ {label}: {r.elapsed_seconds:6.2f}s ({r.throughput_mbps:6.2f} MB/s)")
                else:
                    lines.append(f"   ✗ {label}: {r.elapsed_seconds:6.2f}s (failed: {r.error or 'unknown error'})")

    lines.append("")
    lines.append("Per-scheme summary:")
    lines.append(f"   {'Scheme'.ljust(width)}  {'OK':>4}  {'Fail':>4}  {'Total(s)':>9}  {'Avg(s)':>8}  {'Avg MB/s':>9}")
    for s in report.schemes:
        lines.append(
            f"   {s.label.ljust(width)}  {s.success_count:>4}  {s.failure_count:>4}  "
            f"{s.total_elapsed:>9.2f}  {s.average_elapsed:>8.2f}  {s.average_throughput:>9.2f}"
        )
    unavailable = [name for name, ok in report.availability.items() if not ok]
    if unavailable:
        lines.append(f"   Not available (no jobs): {', '.join(unavailable)}")

    if report.fastest is not None and report.slowest is not None:
        lines.append("")
        for title, r in (("Fastest job", report.fastest), ("Slowest job", report.slowest)):
            lines.append(
                f"{title}: {report.file_name(r.file_id)} / {labels.get(r.scheme_name, r.scheme_name)} "
                f"({r.elapsed_seconds:.2f}s)"
            )

    if report.skipped:
        lines.append("")
        lines.append("Skipped files:")
        for s in report.skipped:
            lines.append(f"   - {s.name}: {s.reason}")

    lines.append("")
    if output_dir is not None:
        lines.append(f"Done. Output directory: {output_dir}")
    lines.append(rule)
    return "\n".join(lines)


def write_results_csv(report: RunReport, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["file", "scheme", "success", "elapsed_seconds", "throughput_mbps", "output", "error"])
        for r in report.results:
            writer.writerow(
                [
                    report.file_name(r.file_id),
                    r.scheme_name,
                    "true" if r.success else "false",
                    f"{r.elapsed_seconds:.6f}",
                    f"{r.throughput_mbps:.6f}",
                    str(r.output_path) if r.output_path is not None else "",
                    r.error,
                ]
            )

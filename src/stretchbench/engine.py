"""Core engine for stretchbench.

The :class:`StretchBenchEngine` ties the pieces together for one batch
run: it checks the required tools, probes which schemes the installed
backends support, discovers the input files, dispatches every
(file, scheme) job over a bounded pool, and aggregates the results
into a :class:`~stretchbench.report.RunReport`.

Design notes / safety defaults:
- Only fatal setup problems raise (missing probe tool, no candidate
  files, no usable scheme).  Skipped files and failed jobs are data
  and always end up in the report.
- Output files are named deterministically, so repeated runs over the
  same inputs overwrite rather than accumulate.
- ``dry_run()`` never writes anything: it only reports what ``run()``
  would execute.
- Each ``run()`` writes ``run_log.txt``, ``run_report.json`` and
  ``results.csv`` under ``<output_dir>/logs/<run_id>/`` unless
  ``write_logs`` is off.
"""

from __future__ import annotations

import datetime
import json
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TextIO, Tuple

from . import tuning
from .catalog import SampleRateProbe, build_probe, discover, split_catalog
from .derive import DerivedParameters, decompose, derive
from .models import (
    ConversionRequest,
    InputFile,
    InvalidParameter,
    JobResult,
    NoEnabledSchemesError,
    NoInputFilesError,
    OutputFormat,
    SkippedFile,
)
from .report import RunReport, aggregate, write_results_csv
from .scheduler import plan_jobs, resolve_concurrency, run_all
from .schemes import Scheme, SchemeRegistry, Toolbox

LogCallback = Callable[[str], None]


@dataclass
class StretchBenchEngine:
    """Batch benchmark engine for one input directory."""

    input_dir: Path
    request: ConversionRequest
    registry: SchemeRegistry
    probe: SampleRateProbe
    extensions: Sequence[str] = field(default_factory=lambda: list(tuning.DEFAULT_EXTENSIONS))
    recursive: bool = False
    concurrency: Optional[int] = None
    job_timeout: Optional[float] = None
    write_logs: bool = True

    def __post_init__(self) -> None:
        self.input_dir = Path(self.input_dir)
        self.concurrency = resolve_concurrency(self.concurrency)

    @classmethod
    def from_settings(cls, input_dir: Path, settings: Dict[str, Any]) -> "StretchBenchEngine":
        """Build an engine from a merged settings dict (config file keys)."""
        if isinstance(settings.get("tuning"), dict):
            ignored = tuning.apply_overrides(settings["tuning"])
            if ignored:
                print(f"Warning: ignoring tuning overrides: {', '.join(ignored)}")

        request = ConversionRequest(
            pitch_ratio=settings.get("pitch_ratio", tuning.DEFAULT_PITCH_RATIO),
            time_scale=settings.get("time_scale", tuning.DEFAULT_TIME_SCALE),
            output_format=OutputFormat.parse(settings.get("output_format", tuning.DEFAULT_OUTPUT_FORMAT)),
            output_dir=Path(settings.get("output_dir") or tuning.DEFAULT_OUTPUT_DIR),
        )
        toolbox = Toolbox(
            ffmpeg=str(settings.get("ffmpeg") or "ffmpeg"),
            rubberband=str(settings.get("rubberband") or "rubberband"),
        )
        registry = SchemeRegistry.from_names(settings.get("schemes") or tuning.DEFAULT_SCHEMES, toolbox)
        try:
            probe = build_probe(
                str(settings.get("probe") or tuning.DEFAULT_PROBE),
                ffprobe_binary=str(settings.get("ffprobe") or "ffprobe"),
            )
        except ValueError as exc:
            raise InvalidParameter(str(exc)) from exc
        return cls(
            input_dir=Path(input_dir),
            request=request,
            registry=registry,
            probe=probe,
            extensions=list(settings.get("extensions") or tuning.DEFAULT_EXTENSIONS),
            recursive=bool(settings.get("recursive", False)),
            concurrency=settings.get("concurrency"),
            job_timeout=settings.get("job_timeout_seconds"),
            write_logs=bool(settings.get("write_logs", True)),
        )

    # ------------------------------------------------------------------
    # Setup helpers
    def _ensure_probe_tool(self) -> None:
        ensure = getattr(self.probe, "ensure_available", None)
        if callable(ensure):
            ensure()

    def _enabled_schemes(self) -> List[Scheme]:
        enabled = self.registry.enabled()
        if not enabled:
            names = ", ".join(s.name for s in self.registry.schemes) or "(none)"
            raise NoEnabledSchemesError(
                f"None of the configured schemes is supported by the installed backends: {names}"
            )
        return enabled

    def _discover(self) -> Tuple[List[InputFile], List[SkippedFile]]:
        entries = list(
            discover(
                self.input_dir,
                self.extensions,
                self.probe,
                recursive=self.recursive,
                exclude=[self.request.output_dir],
            )
        )
        if not entries:
            exts = ", ".join(self.extensions)
            raise NoInputFilesError(f"No input files ({exts}) found in {self.input_dir}")
        return split_catalog(entries)

    def parameters_snapshot(self, derived: DerivedParameters) -> Dict[str, Any]:
        return {
            "input_dir": str(self.input_dir.resolve()),
            "output_dir": str(self.request.output_dir.resolve()),
            "pitch_ratio": self.request.pitch_ratio,
            "time_scale": self.request.time_scale,
            "output_format": self.request.output_format.value,
            "tempo_target": derived.tempo_target,
            "tempo_fix": derived.tempo_fix,
            "tempo_fix_chain": list(decompose(derived.tempo_fix)),
            "concurrency": self.concurrency,
            "extensions": list(self.extensions),
            "recursive": self.recursive,
        }

    # ------------------------------------------------------------------
    def dry_run(
        self,
        log_callback: Optional[LogCallback] = None,
        log_to_console: bool = True,
    ) -> Dict[str, Any]:
        """Return the planned jobs without executing or writing anything."""

        def _emit_log(msg: str) -> None:
            if log_to_console:
                print(msg)
            if log_callback is not None:
                log_callback(msg)

        self._ensure_probe_tool()
        availability = self.registry.probe()
        enabled = self._enabled_schemes()
        files, skipped = self._discover()
        derived = derive(self.request)

        _emit_log(f"stretchbench mode=dry-run input={self.input_dir}")
        planned: List[Dict[str, Any]] = []
        for file, scheme, invocation in plan_jobs(files, enabled, derived, self.request):
            planned.append(
                {
                    "file": file.name,
                    "scheme": scheme.name,
                    "output": str(invocation.output_path),
                    "command": invocation.describe(),
                }
            )
            _emit_log(f"[{scheme.name}] {invocation.describe()}")
        for s in skipped:
            _emit_log(f"Skip: {s.path} ({s.reason})")

        return {
            "mode": "dry-run",
            "parameters": self.parameters_snapshot(derived),
            "availability": availability,
            "jobs": planned,
            "skipped": [{"name": s.name, "path": str(s.path), "reason": s.reason} for s in skipped],
        }

    def run(
        self,
        log_callback: Optional[LogCallback] = None,
        log_to_console: bool = True,
    ) -> RunReport:
        """Execute every schedulable job and return the aggregated report."""
        run_id = datetime.datetime.now().strftime("%Y%m%d_%H%M%S_") + uuid.uuid4().hex[:8]
        timestamp = datetime.datetime.now().isoformat()

        self._ensure_probe_tool()
        availability = self.registry.probe()
        enabled = self._enabled_schemes()

        started = time.perf_counter()
        files, skipped = self._discover()
        derived = derive(self.request)

        output_dir = self.request.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)

        log_dir: Optional[Path] = None
        log_handle: Optional[TextIO] = None
        if self.write_logs:
            log_dir = output_dir / "logs" / run_id
            log_dir.mkdir(parents=True, exist_ok=True)
            log_handle = open(log_dir / "run_log.txt", "w", encoding="utf-8", buffering=1)

        def _log(msg: str) -> None:
            if log_to_console:
                print(msg)
            if log_callback is not None:
                log_callback(msg)
            if log_handle:
                log_handle.write(msg + "\n")

        def _on_result(file: InputFile, scheme: Scheme, result: JobResult) -> None:
            if result.success:
                _log(
                    f"✓ {file.name} [{scheme.name}] {result.elapsed_seconds:.2f}s "
                    f"({result.throughput_mbps:.2f} MB/s)"
                )
            else:
                _log(f"✗ {file.name} [{scheme.name}] {result.elapsed_seconds:.2f}s ({result.error})")

        try:
            _log(f"stretchbench run_id={run_id}")
            _log(f"Input: {self.input_dir}  Output: {output_dir}  Format: {self.request.output_format.value}")
            _log(f"Parameters: pitch_ratio={self.request.pitch_ratio} time_scale={self.request.time_scale}")
            _log(f"Derived: tempo_target={derived.tempo_target:.6f} tempo_fix={derived.tempo_fix:.6f}")
            _log("Schemes: " + ", ".join(f"{name}={'yes' if ok else 'no'}" for name, ok in availability.items()))
            _log(f"Files: {len(files)} schedulable, {len(skipped)} skipped; workers={self.concurrency}")
            for s in skipped:
                _log(f"Skip: {s.path} ({s.reason})")

            results = run_all(
                files,
                enabled,
                derived,
                self.request,
                concurrency=self.concurrency,
                timeout=self.job_timeout,
                on_result=_on_result,
            )
            wall = time.perf_counter() - started

            report = aggregate(
                results,
                files,
                skipped,
                enabled,
                wall,
                run_id=run_id,
                timestamp=timestamp,
                parameters=self.parameters_snapshot(derived),
                availability=availability,
            )
            _log(
                f"Done. jobs={report.jobs_total} succeeded={report.jobs_succeeded} "
                f"failed={report.jobs_failed} skipped_files={report.files_skipped} wall={wall:.2f}s"
            )
        finally:
            if log_handle:
                log_handle.close()

        if log_dir is not None:
            (log_dir / "run_report.json").write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
            write_results_csv(report, log_dir / "results.csv")

        return report

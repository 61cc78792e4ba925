"""Run a single (file, scheme) job and time it."""

from __future__ import annotations

import subprocess
import time
from pathlib import Path
from typing import Optional, Tuple

from . import tuning
from .derive import DerivedParameters
from .models import ConversionRequest, InputFile, Invocation, JobResult
from .schemes import Scheme


def _prepare_output(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # A leftover file from an earlier run would otherwise count as output.
    if path.is_file():
        path.unlink()


def _execute(invocation: Invocation, timeout: Optional[float]) -> Tuple[int, str]:
    """Return ``(status, error)`` for the invocation; never raises for job failures."""
    if invocation.command is not None:
        try:
            res = subprocess.run(
                invocation.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            return -1, f"timed out after {exc.timeout}s"
        except OSError as exc:
            return -1, f"could not start {invocation.command[0]}: {exc}"
        if res.returncode != 0:
            return res.returncode, f"exit status {res.returncode}"
        return 0, ""

    try:
        invocation.call()  # type: ignore[misc]
    except Exception as exc:
        return 1, f"{type(exc).__name__}: {exc}"
    return 0, ""


def _output_ok(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def run_job(
    file: InputFile,
    scheme: Scheme,
    derived: DerivedParameters,
    request: ConversionRequest,
    timeout: Optional[float] = None,
) -> JobResult:
    """Invoke ``scheme`` on ``file`` and return its :class:`JobResult`.

    Success requires a zero exit status *and* a non-empty output file.
    Failures are reported in the result, never raised.
    """
    try:
        invocation = scheme.build_invocation(file, derived, request)
    except Exception as exc:
        return JobResult(
            file_id=file.file_id,
            scheme_name=scheme.name,
            success=False,
            elapsed_seconds=0.0,
            throughput_mbps=0.0,
            error=f"could not build invocation: {exc}",
        )

    out = invocation.output_path
    try:
        _prepare_output(out)
    except OSError as exc:
        return JobResult(
            file_id=file.file_id,
            scheme_name=scheme.name,
            success=False,
            elapsed_seconds=0.0,
            throughput_mbps=0.0,
            output_path=out,
            error=f"could not prepare output path: {exc}",
        )

    started = time.perf_counter()
    status, error = _execute(invocation, timeout)
    elapsed = max(0.0, time.perf_counter() - started)

    success = status == 0 and _output_ok(out)
    if status == 0 and not success:
        error = "backend exited 0 but produced no output file"

    throughput = file.size_mb / max(elapsed, tuning.MIN_ELAPSED_SECONDS) if success else 0.0
    return JobResult(
        file_id=file.file_id,
        scheme_name=scheme.name,
        success=success,
        elapsed_seconds=elapsed,
        throughput_mbps=throughput,
        output_path=out,
        error=error,
    )

"""Dispatch the files x schemes cross product over a bounded worker pool.

Workers only ever return :class:`JobResult` values.  The calling
thread collects them as they complete, so the result set has a single
writer and needs no lock.
"""

from __future__ import annotations

import os
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .derive import DerivedParameters
from .models import ConversionRequest, InputFile, InvalidParameter, Invocation, JobResult
from .runner import run_job
from .schemes import Scheme

JobKey = Tuple[int, str]
ResultCallback = Callable[[InputFile, Scheme, JobResult], None]


def default_concurrency() -> int:
    return max(1, os.cpu_count() or 1)


def resolve_concurrency(value: Optional[int]) -> int:
    if value is None:
        return default_concurrency()
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"concurrency must be an integer, got {value!r}") from None
    if count < 1:
        raise InvalidParameter(f"concurrency must be at least 1, got {value!r}")
    return count


def _crashed(file: InputFile, scheme: Scheme, exc: Exception) -> JobResult:
    return JobResult(
        file_id=file.file_id,
        scheme_name=scheme.name,
        success=False,
        elapsed_seconds=0.0,
        throughput_mbps=0.0,
        error=f"worker crashed: {exc}",
    )


def plan_jobs(
    files: Sequence[InputFile],
    schemes: Sequence[Scheme],
    derived: DerivedParameters,
    request: ConversionRequest,
) -> List[Tuple[InputFile, Scheme, Invocation]]:
    """Return every (file, scheme, invocation) in stable order without running anything."""
    return [(f, s, s.build_invocation(f, derived, request)) for f in files for s in schemes]


def run_all(
    files: Sequence[InputFile],
    schemes: Sequence[Scheme],
    derived: DerivedParameters,
    request: ConversionRequest,
    concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    on_result: Optional[ResultCallback] = None,
) -> List[JobResult]:
    """Run every (file, scheme) pair exactly once.

    The returned list follows file order then scheme order, whatever
    order the jobs actually finished in.
    """
    worker_count = resolve_concurrency(concurrency)
    pairs = [(f, s) for f in files for s in schemes]
    collected: Dict[JobKey, JobResult] = {}
    if not pairs:
        return []

    def _handle(file: InputFile, scheme: Scheme, result: JobResult) -> None:
        collected[(file.file_id, scheme.name)] = result
        if on_result is not None:
            on_result(file, scheme, result)

    if worker_count <= 1 or len(pairs) <= 1:
        for file, scheme in pairs:
            try:
                result = run_job(file, scheme, derived, request, timeout)
            except Exception as exc:
                result = _crashed(file, scheme, exc)
            _handle(file, scheme, result)
    else:
        with ThreadPoolExecutor(max_workers=worker_count) as executor:
            futures: Dict[Future, Tuple[InputFile, Scheme]] = {
                executor.submit(run_job, f, s, derived, request, timeout): (f, s) for f, s in pairs
            }
            for future in as_completed(futures):
                file, scheme = futures[future]
                try:
                    result = future.result()
                except Exception as exc:
                    result = _crashed(file, scheme, exc)
                _handle(file, scheme, result)

    return [collected[(f.file_id, s.name)] for f, s in pairs]

"""stretchbench package

This package contains the conversion engine, scheme registry,
scheduler, report aggregation and command-line interface for batch
pitch/tempo conversion benchmarks.  Every input file is rendered once
per available scheme and each job is timed, so the schemes can be
compared on the same material.

Public classes are re-exported here for convenience so callers can
write ``from stretchbench import StretchBenchEngine``.
"""

from .engine import StretchBenchEngine  # noqa: F401
from .config_service import ConfigService  # noqa: F401
from .models import ConversionRequest, JobResult, OutputFormat  # noqa: F401
from .report import RunReport  # noqa: F401
from .schemes import SchemeRegistry, Toolbox  # noqa: F401

__all__ = [
    "StretchBenchEngine",
    "ConfigService",
    "ConversionRequest",
    "JobResult",
    "OutputFormat",
    "RunReport",
    "SchemeRegistry",
    "Toolbox",
]

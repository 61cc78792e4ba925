"""Command-line interface for stretchbench.

Subcommands:

- ``run``: benchmark every configured scheme over the input directory.
- ``dry-run``: show the commands ``run`` would execute, touching nothing.
- ``probe``: report which schemes the installed backends support.
- ``chain``: print the atempo decomposition of a tempo ratio.
- ``config``: show the effective settings, or store them with ``--save``.

Settings are layered: built-in defaults, then ``config.json`` (see
:mod:`stretchbench.config_service`), then command-line flags.
Run ``python -m stretchbench --help`` for usage.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import tuning
from .config_service import ConfigService
from .derive import atempo_filter, decompose
from .engine import StretchBenchEngine
from .models import InvalidParameter, SetupError
from .report import render_text
from .schemes import SchemeRegistry, Toolbox, scheme_names

EXIT_OK = 0
EXIT_SETUP_ERROR = 1
EXIT_INVALID_PARAMETER = 2

# argparse dest -> settings key
_OVERRIDE_KEYS = {
    "pitch_ratio": "pitch_ratio",
    "time_scale": "time_scale",
    "output_dir": "output_dir",
    "output_format": "output_format",
    "concurrency": "concurrency",
    "schemes": "schemes",
    "extensions": "extensions",
    "recursive": "recursive",
    "probe": "probe",
    "ffmpeg": "ffmpeg",
    "ffprobe": "ffprobe",
    "rubberband": "rubberband",
    "timeout": "job_timeout_seconds",
    "write_logs": "write_logs",
}


def _split_schemes(value: str) -> List[str]:
    return [token.strip() for token in value.split(",") if token.strip()]


def _parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stretchbench",
        description="stretchbench - batch pitch/tempo conversion benchmark",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_backends(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "--schemes",
            type=_split_schemes,
            default=argparse.SUPPRESS,
            help=f"Comma-separated schemes to benchmark ({', '.join(scheme_names())}); "
            f"default {','.join(tuning.DEFAULT_SCHEMES)}",
        )
        subparser.add_argument("--ffmpeg", default=argparse.SUPPRESS, help="ffmpeg binary to use")
        subparser.add_argument("--rubberband", default=argparse.SUPPRESS, help="rubberband binary to use")
        subparser.add_argument(
            "--portable",
            action="store_true",
            help="Force portable mode (ignored if portable.flag is present)",
        )

    # Settings that may also live in config.json
    def add_settings(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument(
            "-p", "--pitch", dest="pitch_ratio", type=float, default=argparse.SUPPRESS,
            help=f"Pitch ratio (default {tuning.DEFAULT_PITCH_RATIO})",
        )
        subparser.add_argument(
            "-t", "--time-scale", dest="time_scale", type=float, default=argparse.SUPPRESS,
            help=f"Duration scale (default {tuning.DEFAULT_TIME_SCALE})",
        )
        subparser.add_argument(
            "-o", "--output-dir", dest="output_dir", default=argparse.SUPPRESS,
            help=f"Output directory (default {tuning.DEFAULT_OUTPUT_DIR})",
        )
        subparser.add_argument(
            "-f", "--format", dest="output_format", default=argparse.SUPPRESS,
            help="Output format: pcm16|pcm24|pcm32|float32|float64|flac "
            f"(16bit/24bit/32bit accepted; default {tuning.DEFAULT_OUTPUT_FORMAT})",
        )
        subparser.add_argument(
            "-j", "--jobs", dest="concurrency", type=int, default=argparse.SUPPRESS,
            help="Concurrent jobs (default: number of CPU cores)",
        )
        subparser.add_argument(
            "--ext", dest="extensions", action="append", default=argparse.SUPPRESS,
            help="Input file extension to include (repeatable; default .wav)",
        )
        subparser.add_argument(
            "--recursive", action="store_true", default=argparse.SUPPRESS, help="Search subfolders too"
        )
        subparser.add_argument(
            "--probe", choices=["ffprobe", "soundfile"], default=argparse.SUPPRESS,
            help=f"Sample rate probe (default {tuning.DEFAULT_PROBE})",
        )
        subparser.add_argument("--ffprobe", default=argparse.SUPPRESS, help="ffprobe binary to use")
        subparser.add_argument(
            "--timeout", type=float, default=argparse.SUPPRESS, help="Per-job timeout in seconds (default none)"
        )
        add_backends(subparser)

    # Common arguments for commands that process an input directory
    def add_common(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument("input_dir", nargs="?", default=".", help="Directory holding the input files")
        add_settings(subparser)
        subparser.add_argument("--quiet", "-q", action="store_true", help="Only print the final report")

    sp = subparsers.add_parser("run", help="Convert every input with every scheme and report timings")
    add_common(sp)
    sp.add_argument("--json", action="store_true", help="Print the structured JSON report instead of the table")
    sp.add_argument(
        "--no-logs", dest="write_logs", action="store_false", default=argparse.SUPPRESS,
        help="Do not write run_log.txt / run_report.json / results.csv",
    )

    sp = subparsers.add_parser("dry-run", help="Show the planned commands without running anything")
    add_common(sp)

    sp = subparsers.add_parser("probe", help="Report which schemes the installed backends support")
    add_backends(sp)
    sp.add_argument("--app-dir", default=".", help="Directory searched for portable.flag/config.json")

    sp = subparsers.add_parser("chain", help="Print the atempo chain for a tempo ratio")
    sp.add_argument("ratio", type=float, help="Tempo ratio to decompose")

    sp = subparsers.add_parser("config", help="Show the effective settings, or save them with --save")
    add_settings(sp)
    sp.add_argument("--app-dir", default=".", help="Directory searched for portable.flag/config.json")
    sp.add_argument("--save", action="store_true", help="Write the merged settings back to config.json")

    return parser.parse_args(argv)


def _resolve_settings(args: argparse.Namespace, config_service: ConfigService) -> Dict[str, Any]:
    settings: Dict[str, Any] = dict(config_service.load_config(cli_portable=bool(getattr(args, "portable", False))))
    given = vars(args)
    for dest, key in _OVERRIDE_KEYS.items():
        if dest in given:
            settings[key] = given[dest]
    return settings


def _cmd_chain(args: argparse.Namespace) -> int:
    payload = {"ratio": args.ratio, "chain": list(decompose(args.ratio)), "filter": atempo_filter(args.ratio)}
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def _cmd_probe(args: argparse.Namespace) -> int:
    config_service = ConfigService(app_dir=Path(args.app_dir).expanduser().resolve())
    settings = _resolve_settings(args, config_service)
    toolbox = Toolbox(
        ffmpeg=str(settings.get("ffmpeg") or "ffmpeg"),
        rubberband=str(settings.get("rubberband") or "rubberband"),
    )
    names = settings.get("schemes") or scheme_names()
    registry = SchemeRegistry.from_names(names, toolbox)
    print(json.dumps(registry.probe(), indent=2))
    return EXIT_OK


def _cmd_config(args: argparse.Namespace) -> int:
    config_service = ConfigService(app_dir=Path(args.app_dir).expanduser().resolve())
    settings = _resolve_settings(args, config_service)
    portable = bool(args.portable)
    if args.save:
        try:
            config_service.save_config(settings, cli_portable=portable)
        except ValueError as exc:
            raise InvalidParameter(str(exc)) from exc
    payload = {
        "mode": config_service.mode_name(portable),
        "config_path": str(config_service.get_config_path(portable)),
        "saved": bool(args.save),
        "settings": settings,
    }
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_arguments(argv)
    command = args.command
    try:
        if command == "chain":
            return _cmd_chain(args)
        if command == "probe":
            return _cmd_probe(args)
        if command == "config":
            return _cmd_config(args)

        input_dir = Path(args.input_dir).expanduser().resolve()
        config_service = ConfigService(app_dir=input_dir)
        settings = _resolve_settings(args, config_service)
        engine = StretchBenchEngine.from_settings(input_dir, settings)

        if command == "dry-run":
            plan = engine.dry_run(log_to_console=False)
            print(json.dumps(plan, indent=2))
            return EXIT_OK
        if command == "run":
            report = engine.run(log_to_console=not args.quiet and not args.json)
            if args.json:
                print(json.dumps(report.to_dict(), indent=2))
            else:
                print(render_text(report, output_dir=engine.request.output_dir))
            return EXIT_OK
    except InvalidParameter as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_INVALID_PARAMETER
    except SetupError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_SETUP_ERROR

    print(f"Error: unrecognized command {command}", file=sys.stderr)
    return EXIT_INVALID_PARAMETER


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

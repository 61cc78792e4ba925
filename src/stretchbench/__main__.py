# src/stretchbench/__main__.py
from __future__ import annotations


def main() -> int:
    """
    Module entrypoint:
      - python -m stretchbench            -> CLI help
      - python -m stretchbench <command>  -> CLI command
    """
    from stretchbench.cli import main as cli_main

    # Let the CLI parse sys.argv itself.
    return int(cli_main())


if __name__ == "__main__":
    raise SystemExit(main())

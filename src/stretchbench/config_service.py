"""Where stretchbench keeps ``config.json`` and how it is checked.

Two locations are possible:

- **portable**: ``<app_dir>/config.json``, chosen when ``<app_dir>``
  holds a ``portable.flag`` file or ``--portable`` is passed (the flag
  file wins);
- **appdata**: ``%APPDATA%/StretchBench`` on Windows, otherwise
  ``$XDG_CONFIG_HOME/StretchBench`` or ``~/.config/StretchBench``.

Every load and save is checked against ``schemas/config.schema.json``
with jsonschema.  A broken file on load is reported and ignored so the
built-in defaults apply; a broken config on save is refused.

    service = ConfigService(app_dir=Path("~/music").expanduser())
    settings = service.load_config()
    service.save_config({**settings, "schemes": ["rubberband", "librosa"]})
"""

from __future__ import annotations

import json
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

PACKAGE_SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"
APP_NAME = "StretchBench"


def appdata_dir(app_name: str = APP_NAME) -> Path:
    if platform.system().lower() == "windows":
        base = os.environ.get("APPDATA")
        return Path(base) / app_name if base else Path.home() / "AppData" / "Roaming" / app_name
    base = os.environ.get("XDG_CONFIG_HOME")
    return Path(base) / app_name if base else Path.home() / ".config" / app_name


def _read_json(path: Path) -> Any:
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json(data: Any, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")


@dataclass
class ConfigService:
    """Locate, validate, load and save the stretchbench settings file."""

    app_dir: Path
    flag_name: str = "portable.flag"
    config_name: str = "config.json"
    schema_path: Path = PACKAGE_SCHEMA_DIR / "config.schema.json"
    _portable: Optional[bool] = field(default=None, init=False, repr=False)
    _schema: Optional[Dict[str, Any]] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.app_dir = Path(self.app_dir)
        self.schema_path = Path(self.schema_path)

    def detect_mode(self, cli_portable: bool = False) -> bool:
        """``True`` for portable mode; decided once and then cached."""
        if self._portable is None:
            self._portable = (self.app_dir / self.flag_name).exists() or bool(cli_portable)
        return self._portable

    def mode_name(self, cli_portable: bool = False) -> str:
        return "portable" if self.detect_mode(cli_portable) else "appdata"

    def get_config_dir(self, cli_portable: bool = False) -> Path:
        return self.app_dir if self.detect_mode(cli_portable) else appdata_dir()

    def get_config_path(self, cli_portable: bool = False) -> Path:
        return self.get_config_dir(cli_portable) / self.config_name

    def validate(self, config: Any) -> None:
        """Raise ``ValueError`` when ``config`` does not match the schema."""
        if self._schema is None:
            self._schema = _read_json(self.schema_path) or {}
        if not self._schema:
            return
        try:
            jsonschema.validate(instance=config, schema=self._schema)
        except jsonschema.ValidationError as exc:
            where = "/".join(str(p) for p in exc.absolute_path) or "<root>"
            raise ValueError(f"Invalid configuration at {where}: {exc.message}") from exc

    def load_config(self, cli_portable: bool = False) -> Dict[str, Any]:
        """Return the stored settings, or ``{}`` when missing or invalid."""
        path = self.get_config_path(cli_portable)
        try:
            data = _read_json(path)
        except (OSError, ValueError) as exc:
            print(f"Warning: could not read {path}: {exc}. Falling back to defaults.")
            return {}
        if data is None:
            return {}
        try:
            self.validate(data)
        except ValueError as exc:
            print(f"Warning: {exc} ({path}). Falling back to defaults.")
            return {}
        return data

    def save_config(self, config: Dict[str, Any], cli_portable: bool = False) -> Path:
        """Validate and write ``config``; returns the path written."""
        self.validate(config)
        path = self.get_config_path(cli_portable)
        _write_json(config, path)
        return path

"""Stand-in schemes and WAV helpers shared by the test modules.

External backends are simulated with tiny ``python -c`` programs run
through the current interpreter, so no ffmpeg or rubberband install is
needed to exercise the runner, scheduler and engine.
"""

import sys
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import soundfile as sf

# Add src to path for imports
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from stretchbench.models import Invocation
from stretchbench.schemes import Scheme

COPY_SCRIPT = "import shutil, sys; shutil.copyfile(sys.argv[1], sys.argv[2])"
NOOP_SCRIPT = "import sys"
FAIL_SCRIPT = "import sys; sys.exit(3)"
SLEEP_SCRIPT = "import time; time.sleep(5)"


class CommandScheme(Scheme):
    """Runs ``python -c <script> <input> <output>`` as the backend."""

    def __init__(self, name: str, script: str, available: bool = True, label: Optional[str] = None) -> None:
        super().__init__()
        self.name = name
        self.label = label or name.title()
        self.script = script
        self.available = available
        self.probe_calls = 0

    def probe(self) -> bool:
        self.probe_calls += 1
        return self.available

    def build_invocation(self, file, derived, request) -> Invocation:
        out = self.output_path(file, request)
        return Invocation(output_path=out, command=[sys.executable, "-c", self.script, str(file.path), str(out)])


class CallScheme(Scheme):
    """In-process backend: calls ``func(src, dst)``."""

    def __init__(self, name: str, func: Callable[[Path, Path], None]) -> None:
        super().__init__()
        self.name = name
        self.label = name.title()
        self.func = func

    def probe(self) -> bool:
        return True

    def build_invocation(self, file, derived, request) -> Invocation:
        out = self.output_path(file, request)
        return Invocation(output_path=out, call=lambda: self.func(file.path, out))


def write_tone(path: Path, sample_rate: int = 44100, seconds: float = 0.25, channels: int = 1) -> Path:
    """Write a short sine tone WAV and return its path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    t = np.arange(int(sample_rate * seconds)) / sample_rate
    tone = (0.5 * np.sin(2.0 * np.pi * 440.0 * t)).astype(np.float32)
    data = tone if channels == 1 else np.stack([tone] * channels, axis=1)
    sf.write(str(path), data, sample_rate, subtype="PCM_16")
    return path

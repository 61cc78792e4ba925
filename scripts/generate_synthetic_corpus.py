from __future__ import annotations

import argparse
import json
from pathlib import Path

import numpy as np
import soundfile as sf

SAMPLE_RATE = 44100


def write_wav(path: Path, samples: np.ndarray, sample_rate: int = SAMPLE_RATE, subtype: str = "PCM_16") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(path), np.clip(samples, -1.0, 1.0), sample_rate, subtype=subtype)


def sine_tone(freq: float, duration_s: float, sample_rate: int = SAMPLE_RATE, amp: float = 0.6) -> np.ndarray:
    t = np.arange(int(duration_s * sample_rate)) / sample_rate
    return (amp * np.sin(2.0 * np.pi * freq * t)).astype(np.float32)


def chord(freqs: list[float], duration_s: float, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    out = sum(sine_tone(f, duration_s, sample_rate, amp=1.0) for f in freqs)
    return normalize(np.asarray(out, dtype=np.float32))


def stereo(left: np.ndarray, right: np.ndarray) -> np.ndarray:
    n = min(len(left), len(right))
    return np.stack([left[:n], right[:n]], axis=1)


def normalize(samples: np.ndarray) -> np.ndarray:
    peak = float(np.max(np.abs(samples))) if samples.size else 0.0
    if peak <= 1e-12:
        return samples
    return samples * (0.95 / peak)


def build_corpus(root: Path) -> list[dict[str, object]]:
    """Write a handful of WAVs with differing rates, channels and subtypes."""
    cases: list[dict[str, object]] = []

    def add(rel: str, data: np.ndarray, sample_rate: int, subtype: str, note: str) -> None:
        write_wav(root / rel, data, sample_rate, subtype)
        cases.append(
            {
                "path": rel,
                "sample_rate": sample_rate,
                "channels": 1 if data.ndim == 1 else int(data.shape[1]),
                "subtype": subtype,
                "note": note,
            }
        )

    add("a440_mono_44k.wav", sine_tone(440.0, 1.0), 44100, "PCM_16", "Plain A4 tone, the reference case.")
    add(
        "chord_stereo_48k.wav",
        stereo(chord([261.63, 329.63, 392.0], 2.0, 48000), chord([220.0, 277.18, 329.63], 2.0, 48000)),
        48000,
        "PCM_24",
        "Stereo chord pair at 48 kHz for asetrate resampling checks.",
    )
    add("tone_float_96k.wav", sine_tone(1000.0, 0.5, 96000), 96000, "FLOAT", "High-rate float input.")
    add("tone_22k.wav", sine_tone(110.0, 3.0, 22050), 22050, "PCM_16", "Longer low-rate input.")

    empty = root / "empty.wav"
    empty.write_bytes(b"")
    cases.append({"path": "empty.wav", "note": "Zero-byte file; expected to be skipped."})

    return cases


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a small deterministic WAV corpus for benchmark runs.")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("examples") / "synthetic_corpus",
        help="Output folder (default: examples/synthetic_corpus)",
    )
    args = parser.parse_args()

    output_root = args.output.resolve()
    output_root.mkdir(parents=True, exist_ok=True)
    cases = build_corpus(output_root)

    manifest = {
        "version": 1,
        "description": "Deterministic synthetic WAV corpus for stretchbench runs and bug reports.",
        "generator": "scripts/generate_synthetic_corpus.py",
        "cases": cases,
    }
    (output_root / "manifest.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    print(f"Generated {len(cases)} files under {output_root}")
    print(f"Wrote manifest: {output_root / 'manifest.json'}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

"""
Tests for scheme invocations, output naming and the registry.

Run with: pytest tests/test_schemes.py -v
"""

from pathlib import Path

import pytest

from fakes import CommandScheme, NOOP_SCRIPT

from stretchbench.derive import atempo_filter, derive
from stretchbench.models import ConversionRequest, InputFile, InvalidParameter, OutputFormat
from stretchbench.schemes import (
    AsetrateAtempoScheme,
    LibrosaScheme,
    RubberbandFilterScheme,
    RubberbandR2Scheme,
    RubberbandR3Scheme,
    ScaletempoScheme,
    SchemeRegistry,
    Toolbox,
    scheme_names,
)


class FakeToolbox(Toolbox):
    """Toolbox with a fixed filter list and binary set."""

    def __init__(self, filters=(), binaries=()):
        super().__init__()
        self._filters = frozenset(filters)
        self.binaries = set(binaries)

    def has_binary(self, name: str) -> bool:
        return name in self.binaries


ALL_FILTERS = ("rubberband", "asetrate", "aresample", "atempo", "scaletempo")


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def song(tmp_path: Path) -> InputFile:
    return InputFile(file_id=1, path=tmp_path / "in" / "song.wav", size_bytes=1024, sample_rate_hz=44100)


@pytest.fixture
def request_(tmp_path: Path) -> ConversionRequest:
    return ConversionRequest(pitch_ratio=1.12246, time_scale=0.993, output_dir=tmp_path / "out")


# ============================================================================
# INVOCATIONS
# ============================================================================

def test_rubberband_filter_invocation(song, request_):
    inv = RubberbandFilterScheme(FakeToolbox()).build_invocation(song, derive(request_), request_)
    cmd = inv.command
    assert cmd[:5] == ["ffmpeg", "-hide_banner", "-y", "-i", str(song.path)]
    assert cmd[cmd.index("-af") + 1] == "rubberband=pitch=1.12246:tempo=1.007049"
    assert cmd[cmd.index("-c:a") + 1] == "pcm_f32le"
    assert inv.output_path == request_.output_dir / "song_p1.12246_t0.993_rubberband.wav"
    assert cmd[-1] == str(inv.output_path)
    assert inv.call is None


def test_asetrate_atempo_invocation(song, request_):
    derived = derive(request_)
    inv = AsetrateAtempoScheme(FakeToolbox()).build_invocation(song, derived, request_)
    graph = inv.command[inv.command.index("-af") + 1]
    assert graph == f"asetrate=49500,aresample=44100,{atempo_filter(derived.tempo_fix)}"
    assert graph.startswith("asetrate=49500,aresample=44100,atempo=0.897")


def test_scaletempo_invocation(song, request_):
    inv = ScaletempoScheme(FakeToolbox()).build_invocation(song, derive(request_), request_)
    graph = inv.command[inv.command.index("-af") + 1]
    assert graph == "scaletempo=stride=0.3:overlap=0.2:search=14,atempo=1.007049"


def test_extreme_tempo_chains_atempo(song, tmp_path):
    req = ConversionRequest(pitch_ratio=1.0, time_scale=0.2, output_dir=tmp_path / "out")
    inv = ScaletempoScheme(FakeToolbox()).build_invocation(song, derive(req), req)
    graph = inv.command[inv.command.index("-af") + 1]
    # tempo 5.0 does not fit a single atempo stage
    assert graph.count("atempo=") >= 2


def test_rubberband_cli_invocations(song, request_):
    toolbox = FakeToolbox()
    toolbox.rubberband = "/usr/local/bin/rubberband"
    r3 = RubberbandR3Scheme(toolbox).build_invocation(song, derive(request_), request_)
    assert r3.command == [
        "/usr/local/bin/rubberband",
        "-t",
        "0.993",
        "-f",
        "1.12246",
        "-3",
        "-q",
        str(song.path),
        str(request_.output_dir / "song_p1.12246_t0.993_rubberband_r3.wav"),
    ]
    r2 = RubberbandR2Scheme(toolbox).build_invocation(song, derive(request_), request_)
    assert "-2" in r2.command


def test_librosa_invocation_is_in_process(song, request_):
    inv = LibrosaScheme(FakeToolbox()).build_invocation(song, derive(request_), request_)
    assert inv.command is None
    assert callable(inv.call)
    assert inv.output_path.name == "song_p1.12246_t0.993_librosa.wav"
    assert "in-process" in inv.describe()


def test_output_format_changes_codec_and_extension(song, tmp_path):
    req = ConversionRequest(output_format=OutputFormat.FLAC, output_dir=tmp_path / "out")
    inv = RubberbandFilterScheme(FakeToolbox()).build_invocation(song, derive(req), req)
    assert inv.command[inv.command.index("-c:a") + 1] == "flac"
    assert inv.output_path.suffix == ".flac"


def test_output_names_distinct_per_scheme_and_stable(song, request_):
    toolbox = FakeToolbox()
    paths = [cls(toolbox).output_path(song, request_) for cls in (
        RubberbandFilterScheme, AsetrateAtempoScheme, ScaletempoScheme, RubberbandR3Scheme, RubberbandR2Scheme,
        LibrosaScheme,
    )]
    assert len(set(paths)) == len(paths)
    again = RubberbandFilterScheme(toolbox).output_path(song, request_)
    assert again == paths[0]


def test_output_keeps_relative_subfolder(tmp_path, request_):
    nested = InputFile(
        file_id=2,
        path=tmp_path / "in" / "sub" / "song.wav",
        size_bytes=10,
        sample_rate_hz=48000,
        relative_path=Path("sub") / "song.wav",
    )
    out = ScaletempoScheme(FakeToolbox()).output_path(nested, request_)
    assert out == request_.output_dir / "sub" / "song_p1.12246_t0.993_scaletempo.wav"


# ============================================================================
# REGISTRY
# ============================================================================

def test_registry_uses_declaration_order():
    registry = SchemeRegistry.from_names(["scaletempo", "rubberband", "scaletempo"], FakeToolbox())
    assert [s.name for s in registry.schemes] == ["rubberband", "scaletempo"]
    assert scheme_names()[:3] == ["rubberband", "asetrate_atempo", "scaletempo"]


def test_registry_rejects_unknown_name():
    with pytest.raises(InvalidParameter):
        SchemeRegistry.from_names(["rubberband", "soundtouch"], FakeToolbox())


def test_registry_probe_with_partial_ffmpeg():
    toolbox = FakeToolbox(filters=("rubberband", "asetrate", "aresample", "atempo"), binaries=())
    registry = SchemeRegistry.from_names(scheme_names(), toolbox)
    availability = registry.probe()
    assert availability["rubberband"] is True
    assert availability["asetrate_atempo"] is True
    assert availability["scaletempo"] is False
    assert availability["rubberband_r3"] is False
    assert availability["rubberband_r2"] is False
    assert "scaletempo" not in [s.name for s in registry.enabled()]


def test_registry_probe_with_rubberband_cli():
    toolbox = FakeToolbox(filters=ALL_FILTERS, binaries=("rubberband",))
    registry = SchemeRegistry.from_names(["rubberband_r3", "rubberband_r2"], toolbox)
    assert registry.probe() == {"rubberband_r3": True, "rubberband_r2": True}


def test_registry_probes_once():
    scheme = CommandScheme("fake", NOOP_SCRIPT)
    registry = SchemeRegistry([scheme])
    registry.probe()
    registry.probe()
    registry.enabled()
    assert scheme.probe_calls == 1


def test_registry_probe_error_means_unavailable():
    class Exploding(CommandScheme):
        def probe(self):
            raise OSError("cannot exec")

    registry = SchemeRegistry([Exploding("boom", NOOP_SCRIPT), CommandScheme("fine", NOOP_SCRIPT)])
    assert registry.probe() == {"boom": False, "fine": True}
    assert [s.name for s in registry.enabled()] == ["fine"]


def test_toolbox_without_ffmpeg(tmp_path):
    toolbox = Toolbox(ffmpeg=str(tmp_path / "no-ffmpeg"))
    assert toolbox.ffmpeg_filters() == frozenset()
    assert toolbox.has_filter("atempo") is False
    assert RubberbandFilterScheme(toolbox).probe() is False

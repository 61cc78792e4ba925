"""
Tests for parameter derivation and atempo chain decomposition.

Run with: pytest tests/test_derive.py -v
"""

import math
from pathlib import Path

import pytest

# Add src to path for imports
import sys
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(SRC_DIR))

from stretchbench import tuning
from stretchbench.derive import atempo_filter, decompose, derive, format_ratio
from stretchbench.models import ConversionRequest, InvalidParameter, OutputFormat


def _product(values) -> float:
    out = 1.0
    for v in values:
        out *= v
    return out


# ============================================================================
# DERIVED PARAMETERS
# ============================================================================

def test_default_request_derives_expected_tempi():
    derived = derive(ConversionRequest(pitch_ratio=1.12246, time_scale=0.993))
    assert derived.tempo_target == pytest.approx(1.007049, abs=1e-6)
    assert derived.tempo_fix == pytest.approx(0.89743, abs=1e-3)
    assert derived.tempo_fix * 1.12246 == pytest.approx(derived.tempo_target, rel=1e-12)


def test_identity_request():
    derived = derive(ConversionRequest(pitch_ratio=1.0, time_scale=1.0))
    assert derived.tempo_target == 1.0
    assert derived.tempo_fix == 1.0


@pytest.mark.parametrize("field", ["pitch_ratio", "time_scale"])
@pytest.mark.parametrize("bad", [0, -1.0, float("nan"), float("inf"), "fast"])
def test_request_rejects_bad_ratios(field, bad):
    with pytest.raises(InvalidParameter):
        ConversionRequest(**{field: bad})


def test_request_accepts_format_alias():
    req = ConversionRequest(output_format="16bit")
    assert req.output_format is OutputFormat.PCM16
    assert OutputFormat.parse("24bit") is OutputFormat.PCM24
    assert OutputFormat.parse("FLAC").extension == "flac"
    with pytest.raises(InvalidParameter):
        OutputFormat.parse("mp3")


# ============================================================================
# CHAIN DECOMPOSITION
# ============================================================================

@pytest.mark.parametrize("ratio", [0.5, 0.897, 1.0, 1.007049, 2.0])
def test_in_range_ratio_is_a_single_step(ratio):
    assert decompose(ratio) == (ratio,)


def test_four_splits_into_two_doublings():
    assert decompose(4.0) == pytest.approx((2.0, 2.0))


def test_small_ratio_chain():
    chain = decompose(0.1)
    assert chain[:3] == (0.5, 0.5, 0.5)
    assert chain[3] == pytest.approx(0.8)
    assert len(chain) == 4


@pytest.mark.parametrize("ratio", [0.01, 0.1, 0.3, 2.5, 3.0, 10.0, 100.0, 1000.0])
def test_chain_steps_in_range_and_product_matches(ratio):
    chain = decompose(ratio)
    assert chain, "chain must not be empty"
    for step in chain:
        assert tuning.ATEMPO_MIN - 1e-12 <= step <= tuning.ATEMPO_MAX + 1e-12
    assert _product(chain) == pytest.approx(ratio, rel=1e-9)
    # Greedy sqrt steps keep the chain close to log2(ratio) long.
    assert len(chain) <= math.ceil(abs(math.log2(ratio))) + 2


@pytest.mark.parametrize("bad", [0, -2.0, float("nan"), float("inf"), None, "x"])
def test_decompose_rejects_invalid(bad):
    with pytest.raises(InvalidParameter):
        decompose(bad)


def test_atempo_filter_rendering():
    assert atempo_filter(1.0) == "atempo=1.000000"
    assert atempo_filter(4.0) == "atempo=2.000000,atempo=2.000000"


def test_format_ratio_is_short_and_stable():
    assert format_ratio(1.12246) == "1.12246"
    assert format_ratio(0.993) == "0.993"
    assert format_ratio(1.0) == "1"


# ============================================================================
# TUNING OVERRIDES
# ============================================================================

@pytest.fixture
def restore_tuning(monkeypatch):
    for name in ("ATEMPO_MIN", "ATEMPO_MAX", "BYTES_PER_MB", "CHAIN_EPSILON", "CAPABILITY_PROBE_TIMEOUT"):
        monkeypatch.setattr(tuning, name, getattr(tuning, name))
    monkeypatch.setattr(tuning, "SCALETEMPO_PARAMS", dict(tuning.SCALETEMPO_PARAMS))
    monkeypatch.setattr(tuning, "RUBBERBAND_ENGINE_FLAGS", dict(tuning.RUBBERBAND_ENGINE_FLAGS))


def test_tuning_overrides_keep_fixed_constants(restore_tuning):
    ignored = tuning.apply_overrides(
        {
            "ATEMPO_MAX": 100.0,
            "BYTES_PER_MB": 0,
            "SCALETEMPO_PARAMS": {"search": 20, "bogus": 1},
            "RUBBERBAND_ENGINE_FLAGS": {"r3": "--fine"},
            "CAPABILITY_PROBE_TIMEOUT": 30,
            "not_a_constant": 1,
        }
    )
    assert sorted(ignored) == ["ATEMPO_MAX", "BYTES_PER_MB", "SCALETEMPO_PARAMS.bogus", "not_a_constant"]
    assert tuning.ATEMPO_MAX == 2.0
    assert tuning.BYTES_PER_MB == 1048576.0
    assert tuning.SCALETEMPO_PARAMS == {"stride": 0.3, "overlap": 0.2, "search": 20}
    assert tuning.RUBBERBAND_ENGINE_FLAGS["r3"] == "--fine"
    assert tuning.CAPABILITY_PROBE_TIMEOUT == 30

    chain = decompose(6.0)
    assert all(tuning.ATEMPO_MIN <= step <= tuning.ATEMPO_MAX for step in chain)
    assert _product(chain) == pytest.approx(6.0)
    print("✓ Locked tuning constants survive config overrides")


@pytest.mark.parametrize(
    "overrides",
    [
        {"SCALETEMPO_PARAMS": {"stride": 0}},
        {"SCALETEMPO_PARAMS": {"overlap": "wide"}},
        {"RUBBERBAND_ENGINE_FLAGS": {"r2": ""}},
        {"CAPABILITY_PROBE_TIMEOUT": -1},
        {"CAPABILITY_PROBE_TIMEOUT": True},
    ],
)
def test_tuning_overrides_reject_bad_values(restore_tuning, overrides):
    before = (dict(tuning.SCALETEMPO_PARAMS), dict(tuning.RUBBERBAND_ENGINE_FLAGS), tuning.CAPABILITY_PROBE_TIMEOUT)
    assert tuning.apply_overrides(overrides)
    after = (dict(tuning.SCALETEMPO_PARAMS), dict(tuning.RUBBERBAND_ENGINE_FLAGS), tuning.CAPABILITY_PROBE_TIMEOUT)
    assert after == before

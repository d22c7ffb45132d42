import math

import pytest

from trailtemps.backend.identity import DEFAULT_CODEC, IdentityCodec, IdentityEncodingError, encode_mile


def test_encode_known_mile():
    assert encode_mile(2190.3) == "at-main-mi2190300"
    assert DEFAULT_CODEC.encode(0) == "at-main-mi0000000"
    assert DEFAULT_CODEC.encode("10.5") == "at-main-mi0010500"


def test_encode_rounds_half_up():
    codec = IdentityCodec(scale=1, width=4)
    # banker's rounding would give 0012
    assert codec.encode(12.5) == "at-main-mi0013"
    assert codec.encode(13.5) == "at-main-mi0014"


def test_distinct_miles_encode_distinctly():
    miles = [i / 1000.0 for i in range(0, 20000, 7)]
    ids = [encode_mile(m) for m in miles]
    assert len(set(ids)) == len(ids), "distinct thousandths must not collide"
    assert ids == [encode_mile(m) for m in miles], "encoding must be deterministic"


@pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf, -1.0, "abc", None, True, 10000.0])
def test_encode_rejects_bad_miles(bad):
    with pytest.raises(IdentityEncodingError):
        encode_mile(bad)


def test_canonical_checks_and_inverse():
    assert DEFAULT_CODEC.is_canonical("at-main-mi2190300")
    assert not DEFAULT_CODEC.is_canonical("GA_0010_0")
    assert not DEFAULT_CODEC.is_canonical("at-main-mi219030")
    assert not DEFAULT_CODEC.is_canonical(None)
    assert DEFAULT_CODEC.mile_for("at-main-mi2190300") == pytest.approx(2190.3)
    with pytest.raises(IdentityEncodingError):
        DEFAULT_CODEC.mile_for("GA_1")


def test_custom_trail_code_and_meta():
    codec = IdentityCodec(trail_code="pct", alignment="alt")
    assert codec.encode(1.234) == "pct-alt-mi0001234"
    assert not codec.is_canonical("at-main-mi0001234")
    meta = codec.meta()
    assert meta["id_scale"] == 1000
    assert meta["id_trail_code"] == "pct"
    assert meta["id_alignment"] == "alt"
    assert meta["id_format"].startswith("pct-alt-mi0000000")

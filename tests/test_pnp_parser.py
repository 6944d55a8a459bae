import math
import struct

import pytest

from conftest import PROBE_1, PROBE_2, build_pnp
from spiroreader.parsers.base import TAG_F1, TAG_F2, TAG_MOD, TAG_MVL, TAG_ZHEL
from spiroreader.parsers.btps import compute_btps_factor, compute_btps_factor_continuous
from spiroreader.parsers.models import BtpsInfo, Demographics, Sex
from spiroreader.parsers.pnp import (
    DEFAULT_BTPS_FACTOR,
    extract_btps,
    extract_btps_ladder,
    extract_demographics,
    parse_fvc_probe,
    parse_mod,
    parse_mvl,
    parse_pnp,
    parse_zhel,
    read_header_name_and_note,
)


# ---------------- Demografía ----------------


def test_header_name_and_note():
    buf = "  ИВАНОВ$Норма.\0".encode("cp1251") + bytes(50)
    assert read_header_name_and_note(buf) == ("ИВАНОВ", "Норма")


def test_header_without_separator_keeps_name_only():
    buf = "ПЕТРОВ П.П.\x1dbasura".encode("cp1251")
    assert read_header_name_and_note(buf) == ("ПЕТРОВ П.П.", "")


def test_vitals_found_at_odd_offset():
    buf = bytearray(300)
    buf[101:110] = struct.pack("<HHfB", 45, 80, 1.75, 1)
    d = extract_demographics(bytes(buf))
    assert (d.age_years, d.weight_kg, d.height_m, d.sex) == (45, 80, 1.75, Sex.Female)


def test_vitals_out_of_range_are_ignored():
    buf = bytearray(300)
    buf[40:49] = struct.pack("<HHfB", 45, 80, 3.5, 1)  # altura imposible
    assert extract_demographics(bytes(buf)) == Demographics()


def test_all_zero_buffer_gives_defaults():
    d = extract_demographics(bytes(1000))
    assert d == Demographics()
    assert d.sex is Sex.Male


# ---------------- BTPS ----------------


def test_btps_triplet_found():
    buf = bytes(40) + struct.pack("<HHH", 22, 45, 755) + bytes(40) + TAG_MOD + bytes(12)
    b = extract_btps(buf)
    assert b.found_in_file is True
    assert (b.temp_c, b.humidity_pct, b.pressure_mmhg) == (22.0, 45.0, 755.0)
    assert b.factor == pytest.approx(compute_btps_factor(22, 755))


def test_btps_prefers_triplet_nearest_to_anchor():
    far = struct.pack("<HHH", 18, 30, 740)
    near = struct.pack("<HHH", 24, 50, 760)
    buf = far + bytes(400) + near + bytes(10) + TAG_MOD + bytes(12)
    b = extract_btps(buf)
    assert (b.temp_c, b.pressure_mmhg) == (24.0, 760.0)


def test_btps_integer_hypothesis_beats_scaled_one():
    h1 = struct.pack("<HHH", 21, 40, 745)
    h2 = struct.pack("<HHH", 235, 550, 750)
    buf = h1 + bytes(200) + TAG_MOD + bytes(4) + h2 + bytes(12)
    b = extract_btps(buf)
    assert (b.temp_c, b.humidity_pct, b.pressure_mmhg) == (21.0, 40.0, 745.0)


def test_btps_scaled_hypothesis():
    buf = bytes(10) + struct.pack("<HHH", 235, 550, 750) + bytes(10)
    b = extract_btps(buf)
    assert (b.temp_c, b.humidity_pct, b.pressure_mmhg) == (23.5, 55.0, 750.0)
    assert b.factor == pytest.approx(compute_btps_factor(23.5, 750))


def test_btps_default_when_missing():
    assert extract_btps(bytes(100)) == BtpsInfo(False, DEFAULT_BTPS_FACTOR)
    assert extract_btps(b"\x01", default_factor=1.1) == BtpsInfo(False, 1.1)


def _ladder_file() -> bytes:
    buf = bytearray(16)
    for v in range(250, 230, -2):  # 10 escalones de T x10
        buf += struct.pack("<HH", v, 0)
    for v in (762, 756, 750, 744):  # escalera de presión
        buf += struct.pack("<HH", v, 0)
    buf += bytes(8) + TAG_F1 + bytes(48)
    return bytes(buf)


def test_ladder_fallback_picks_750_step():
    b = extract_btps_ladder(_ladder_file())
    assert b is not None and b.found_in_file
    assert (b.temp_c, b.pressure_mmhg, b.humidity_pct) == (24.6, 750.0, None)
    assert b.factor == pytest.approx(compute_btps_factor_continuous(24.6, 750))


def test_ladder_fallback_absent():
    assert extract_btps_ladder(bytes(200)) is None


# ---------------- Bloques ----------------


def test_probe_values_and_ui_scaling():
    buf = bytes(16) + TAG_F1 + struct.pack("<12f", *PROBE_1)
    p = parse_fvc_probe(buf, TAG_F1, 1, BtpsInfo(True, 1.1))
    assert p.index == 1
    assert p.fvc_l == pytest.approx(4.0)
    assert p.evd_l == pytest.approx(3.5)
    assert p.fev1_l == pytest.approx(3.2)
    assert p.pef_lps == pytest.approx(8.0)
    assert p.ovnos_l == pytest.approx(0.6)
    assert (p.mos25_lps, p.mos50_lps, p.mos75_lps) == pytest.approx((7.0, 5.0, 2.0))
    # SOS sin escalar
    assert (p.sos25_75_lps, p.sos75_85_lps) == (4.0, 1.5)
    assert p.tfvc_s == pytest.approx(2.5)
    for raw, ui in ((p.fvc_l, p.fvc_ui_l), (p.fev1_l, p.fev1_ui_l), (p.ovnos_l, p.ovnos_ui_l),
                    (p.evd_l, p.evd_ui_l)):
        assert ui == pytest.approx(raw * 1.1)


def test_probe_uses_last_occurrence():
    buf = TAG_F1 + struct.pack("<12f", *PROBE_2) + TAG_F1 + struct.pack("<12f", *PROBE_1)
    p = parse_fvc_probe(buf, TAG_F1, 1, BtpsInfo(False, 1.0))
    assert p.fvc_l == pytest.approx(4.0)


def test_truncated_probe_is_skipped():
    buf = TAG_F2 + bytes(40)
    assert parse_fvc_probe(buf, TAG_F2, 2, BtpsInfo(False, 1.0)) is None


def test_zhel_block():
    z = parse_zhel(TAG_ZHEL + struct.pack("<5f", 3000, 3200, 600, 1500, 1100))
    assert (z.evd_l, z.jhel_l, z.do_l) == pytest.approx((3.0, 3.2, 0.6))
    assert z.do_over_evd_pct == pytest.approx(20.0)


def test_zhel_zero_divisor_is_nan():
    z = parse_zhel(TAG_ZHEL + struct.pack("<5f", 0, 3200, 600, 1500, 1100))
    assert math.isnan(z.do_over_evd_pct)


def test_mod_and_mvl_blocks():
    buf = (
        TAG_MOD + struct.pack("<3f", 15.0, 9.0, 0.6) + struct.pack("<4h", 130, 100, -5, 7)
        + TAG_MVL + struct.pack("<3f", 40.0, 90.0, 2.25)
    )
    m = parse_mod(buf, 25.0)
    assert m.volume_curve == (130, 100, -5, 7)
    assert m.texp_over_tinsp == pytest.approx(1.3)
    assert m.oxygen_uptake_ml_min == pytest.approx(225.0)
    assert m.kio2_vent_eq_l_per_l == pytest.approx(40.0)

    v = parse_mvl(buf, m)
    assert v.max_ventilation_lpm == 90.0
    assert v.breathing_reserve_pct == pytest.approx(90.0)
    assert v.mvl_over_mod == pytest.approx(10.0)


def test_mod_short_curve_and_odd_tail():
    m = parse_mod(TAG_MOD + struct.pack("<3f", 15.0, 9.0, 0.6) + struct.pack("<2h", 1, 2) + b"\x05")
    assert m.volume_curve == (1, 2)
    assert math.isnan(m.texp_over_tinsp)


def test_texp_nan_when_second_sample_is_zero():
    m = parse_mod(TAG_MOD + struct.pack("<3f", 15.0, 9.0, 0.6) + struct.pack("<3h", 40, 0, 5))
    assert m.volume_curve == (40, 0, 5)
    assert math.isnan(m.texp_over_tinsp)


def test_mvl_without_ventilation_is_nan():
    buf = TAG_MOD + struct.pack("<3f", 15.0, 0.0, 0.6) + TAG_MVL + struct.pack("<3f", 40.0, 90.0, 2.25)
    v = parse_mvl(buf, parse_mod(buf))
    assert math.isnan(v.breathing_reserve_pct)
    assert math.isnan(v.mvl_over_mod)
    assert math.isnan(parse_mvl(buf, None).mvl_over_mod)


def test_missing_blocks_are_none():
    assert parse_zhel(bytes(100)) is None
    assert parse_mod(TAG_MOD + bytes(4)) is None
    assert parse_mvl(bytes(100), None) is None


# ---------------- Registro completo ----------------


def test_parse_full_file():
    rec = parse_pnp(build_pnp(), "2-1.PNP")
    assert rec.file_name == "2-1.PNP"
    assert rec.patient.raw_header == "ИВАНОВ ИВАН"
    assert rec.patient.note == "Норма"
    assert (rec.patient.age_years, rec.patient.weight_kg, rec.patient.height_m) == (45, 80, 1.75)
    assert rec.btps.found_in_file
    assert rec.btps.factor == pytest.approx(compute_btps_factor(22, 755))
    assert [p.index for p in rec.probes] == [1, 2]
    assert rec.probes[0].fvc_ui_l == pytest.approx(4.0 * rec.btps.factor)
    assert rec.zhel.do_over_evd_pct == pytest.approx(20.0)
    assert rec.mod.volume_curve == (130, 100, -5, 7)
    assert rec.mvl.mvl_over_mod == pytest.approx(10.0)


def test_parse_file_without_blocks():
    rec = parse_pnp(bytes(64), "empty.pnp", default_btps_factor=1.05)
    assert rec.btps == BtpsInfo(False, 1.05)
    assert rec.probes == ()
    assert rec.zhel is None and rec.mod is None and rec.mvl is None


def test_record_is_immutable_and_renamable():
    rec = parse_pnp(build_pnp(), "a.pnp")
    with pytest.raises(AttributeError):
        rec.file_name = "b.pnp"
    renamed = rec.with_file_name("b.pnp")
    assert renamed.file_name == "b.pnp" and rec.file_name == "a.pnp"
    assert renamed.probes == rec.probes

from typing import List, NamedTuple, Optional, Sequence, Tuple

from .base import (
    ALL_TAGS,
    LEGACY_ENCODING,
    TAG_F1,
    TAG_F2,
    TAG_F3,
    TAG_MOD,
    TAG_MVL,
    TAG_ZHEL,
    best_candidate,
    find_all_tags,
    find_last_tag,
    find_tag,
    read_f32,
    read_f32_array,
    read_i16_array,
    read_u8,
    read_u16,
    scan_offsets,
)
from .btps import PH2O_BODY_MMHG, compute_btps_factor, compute_btps_factor_continuous
from .models import (
    BtpsInfo,
    Demographics,
    FvcProbe,
    ModBlock,
    MvlBlock,
    PnpRecord,
    Sex,
    ZhelBlock,
)

DEFAULT_BTPS_FACTOR = 1.081
DEFAULT_KIO2_ML_PER_L = 25.0

DEMOGRAPHICS_SCAN_LIMIT = 4096
HEADER_LIMIT = 256
_HEADER_CUT = ("\x00", "\x1d", "\x1e", "\x1f")

PROBE_TAGS = ((TAG_F1, 1), (TAG_F2, 2), (TAG_F3, 3))
# Anclas para el triplete T/RH/P: formas "cortas" y "largas" de los tags
BTPS_ANCHORS = (b"MOD", b"* MOD", b"FZhEL", b"* FZhEL", b"FZhE1", b"* FZhE1", b"FZhE2", b"* FZhE2")

NAN = float("nan")


class _EnvCandidate(NamedTuple):
    off: int
    t: float
    rh: float
    p: float
    kind_rank: int  # 0 = H1 enteros (preferido), 1 = H2 x10
    dist: int


def parse_pnp(
    data: bytes,
    file_name: str,
    default_btps_factor: float = DEFAULT_BTPS_FACTOR,
    kio2_ml_per_l: float = DEFAULT_KIO2_ML_PER_L,
    encoding: str = LEGACY_ENCODING,
    ladder_fallback: bool = False,
) -> PnpRecord:
    buf = bytes(data)

    patient = extract_demographics(buf, encoding)
    btps = extract_btps(buf, default_btps_factor)
    if ladder_fallback and not btps.found_in_file:
        btps = extract_btps_ladder(buf) or btps

    probes = tuple(
        p for p in (parse_fvc_probe(buf, tag, idx, btps) for tag, idx in PROBE_TAGS) if p is not None
    )
    zhel = parse_zhel(buf)
    mod = parse_mod(buf, kio2_ml_per_l)
    mvl = parse_mvl(buf, mod)

    return PnpRecord(
        file_name=file_name,
        patient=patient,
        btps=btps,
        zhel=zhel,
        mod=mod,
        mvl=mvl,
        probes=probes,
    )


# ---------------- Bloques ----------------


def parse_fvc_probe(buf: bytes, tag: bytes, index: int, btps: BtpsInfo) -> Optional[FvcProbe]:
    pos = find_last_tag(buf, tag)
    if pos < 0:
        return None
    start = pos + len(tag)
    if start + 48 > len(buf):
        return None
    v = read_f32_array(buf, start, 12)

    # índice 3 reservado
    raw_fvc = v[0] * 1e-3
    raw_evd = v[1] * 1e-3
    raw_fev1 = v[2] * 1e-3
    raw_ovnos = v[5] * 1e-3
    k = btps.factor

    return FvcProbe(
        index=index,
        fvc_l=raw_fvc,
        fev1_l=raw_fev1,
        evd_l=raw_evd,
        pef_lps=v[4] * 1e-3,
        ovnos_l=raw_ovnos,
        mos25_lps=v[6] * 1e-3,
        mos50_lps=v[7] * 1e-3,
        mos75_lps=v[8] * 1e-3,
        sos25_75_lps=v[9],
        sos75_85_lps=v[10],
        tfvc_s=v[11] * 0.01,
        fvc_ui_l=raw_fvc * k,
        fev1_ui_l=raw_fev1 * k,
        ovnos_ui_l=raw_ovnos * k,
        evd_ui_l=raw_evd * k,
    )


def parse_zhel(buf: bytes) -> Optional[ZhelBlock]:
    pos = find_tag(buf, TAG_ZHEL)
    if pos < 0 or pos + len(TAG_ZHEL) + 20 > len(buf):
        return None
    v = read_f32_array(buf, pos + len(TAG_ZHEL), 5)
    return ZhelBlock(
        evd_l=v[0] * 1e-3,
        jhel_l=v[1] * 1e-3,
        do_l=v[2] * 1e-3,
        rovd_l=v[3] * 1e-3,
        rovyd_l=v[4] * 1e-3,
        do_over_evd_pct=100.0 * v[2] / v[0] if v[0] > 0 else NAN,
    )


def parse_mod(buf: bytes, kio2_ml_per_l: float = DEFAULT_KIO2_ML_PER_L) -> Optional[ModBlock]:
    pos = find_tag(buf, TAG_MOD)
    if pos < 0 or pos + len(TAG_MOD) + 12 > len(buf):
        return None
    payload = pos + len(TAG_MOD)
    rate, ve, vt = read_f32_array(buf, payload, 3)
    curve = read_volume_curve(buf, payload + 12)

    return ModBlock(
        respiratory_rate_per_min=rate,
        minute_ventilation_lpm=ve,
        tidal_volume_l=vt,
        oxygen_uptake_ml_min=ve * kio2_ml_per_l,
        kio2_ml_per_l=kio2_ml_per_l,
        kio2_vent_eq_l_per_l=1000.0 / kio2_ml_per_l if kio2_ml_per_l > 0 else NAN,
        texp_over_tinsp=texp_over_tinsp(curve),
        volume_curve=curve,
    )


def parse_mvl(buf: bytes, mod: Optional[ModBlock]) -> Optional[MvlBlock]:
    pos = find_tag(buf, TAG_MVL)
    if pos < 0 or pos + len(TAG_MVL) + 12 > len(buf):
        return None
    rate, mvl, vt = read_f32_array(buf, pos + len(TAG_MVL), 3)

    ve = mod.minute_ventilation_lpm if mod is not None else 0.0
    reserve = 100.0 * (1.0 - ve / mvl) if ve > 0 and mvl > 0 else NAN
    ratio = mvl / ve if ve > 0 else NAN
    return MvlBlock(
        respiratory_rate_per_min=rate,
        max_ventilation_lpm=mvl,
        tidal_volume_l=vt,
        breathing_reserve_pct=reserve,
        mvl_over_mod=ratio,
    )


def read_volume_curve(buf: bytes, start: int) -> Tuple[int, ...]:
    """Int16 samples from ``start`` up to the next known tag or EOF."""
    end = len(buf)
    for tag in ALL_TAGS:
        pos = find_tag(buf, tag, start)
        if 0 <= pos < end:
            end = pos
    count = max(0, end - start) // 2
    return read_i16_array(buf, start, count)


def texp_over_tinsp(curve: Sequence[int]) -> float:
    if len(curve) > 2 and curve[1] != 0:
        return curve[0] / curve[1]
    return NAN


# ---------------- Demografía ----------------


def read_header_name_and_note(buf: bytes, encoding: str = LEGACY_ENCODING) -> Tuple[str, str]:
    """Header layout: [service bytes]<NAME>$<NOTE>\\0 ...

    The note's last character is a filler byte and is always dropped.
    """
    s = buf[:HEADER_LIMIT].decode(encoding, errors="replace")

    cuts = [i for i in (s.find(c) for c in _HEADER_CUT) if i >= 0]
    if cuts:
        s = s[: min(cuts)]
    s = "".join(ch for ch in s if ch == "$" or ch >= " ").strip()

    name, sep, note = s.partition("$")
    if sep:
        name = name.strip()
        note = note.strip()[:-1]
    return _cleanup_name(name), note


def _cleanup_name(s: str) -> str:
    return "".join(ch for ch in s.strip() if ch.isalpha() or ch in " -.'").strip()


def _vitals_at(buf: bytes, off: int) -> Optional[Tuple[int, int, float, int]]:
    age = read_u16(buf, off)
    if not 5 <= age <= 120:
        return None
    kg = read_u16(buf, off + 2)
    if not 20 <= kg <= 200:
        return None
    height = read_f32(buf, off + 4)
    if not 1.2 <= height <= 2.5:
        return None
    sex = read_u8(buf, off + 8)
    if sex not in (0, 1):
        return None
    return age, kg, height, sex


def extract_demographics(buf: bytes, encoding: str = LEGACY_ENCODING) -> Demographics:
    name, note = read_header_name_and_note(buf, encoding)

    # paso de 1 byte: la estructura puede estar en un offset impar
    hit = next(scan_offsets(buf, 9, _vitals_at, stop=DEMOGRAPHICS_SCAN_LIMIT), None)
    if hit is None:
        return Demographics(raw_header=name)

    age, kg, height, sex = hit
    return Demographics(
        raw_header=name,
        age_years=age,
        weight_kg=kg,
        height_m=round(height, 3),
        sex=Sex(sex),
        note=note,
    )


# ---------------- BTPS: triplete T/RH/P ----------------


def collect_anchors(buf: bytes) -> List[int]:
    anchors = []
    for needle in BTPS_ANCHORS:
        anchors.extend(find_all_tags(buf, needle))
    return sorted(anchors)


def distance_to_nearest(off: int, anchors: Sequence[int]) -> int:
    if not anchors:
        return 2**31 - 1
    return min(abs(a - off) for a in anchors)


def _env_at(buf: bytes, off: int, anchors: Sequence[int]) -> Optional[_EnvCandidate]:
    w1 = read_u16(buf, off)
    w2 = read_u16(buf, off + 2)
    w3 = read_u16(buf, off + 4)
    if not 650 <= w3 <= 820:
        return None

    # H1: grados / % enteros
    if 10 <= w1 <= 45 and w2 <= 100:
        return _EnvCandidate(off, float(w1), float(w2), float(w3), 0, distance_to_nearest(off, anchors))
    # H2: T y RH x10
    if 100 <= w1 <= 450 and w2 <= 1000:
        return _EnvCandidate(
            off, w1 / 10.0, min(w2 / 10.0, 100.0), float(w3), 1, distance_to_nearest(off, anchors)
        )
    return None


def extract_btps(buf: bytes, default_factor: float = DEFAULT_BTPS_FACTOR) -> BtpsInfo:
    if len(buf) < 6:
        return BtpsInfo(False, default_factor)

    anchors = collect_anchors(buf)
    candidates = scan_offsets(buf, 6, lambda b, off: _env_at(b, off, anchors))
    best = best_candidate(candidates, key=lambda c: (c.kind_rank, c.dist, c.off))

    if best is None or best.p <= PH2O_BODY_MMHG:
        return BtpsInfo(False, default_factor)

    return BtpsInfo(True, compute_btps_factor(best.t, best.p), best.t, best.rh, best.p)


# ---------------- BTPS: escaleras de calibración (fórmula continua) ----------------


class _Run(NamedTuple):
    s_idx: int
    e_idx: int
    s_off: int
    s_val: int


def _find_runs(seq: Sequence[Tuple[int, int]], step: int, min_len: int) -> List[_Run]:
    """Runs where each value drops by ``step`` and offsets keep increasing."""
    runs = []
    i = 0
    while i + 1 < len(seq):
        j = i
        while j + 1 < len(seq) and seq[j + 1][1] == seq[j][1] - step and seq[j + 1][0] > seq[j][0]:
            j += 1
        if j - i + 1 >= min_len:
            runs.append(_Run(i, j, seq[i][0], seq[i][1]))
        i = max(j + 1, i + 1)
    return runs


def extract_btps_ladder(buf: bytes) -> Optional[BtpsInfo]:
    """Fallback BTPS search over the vendor's T/P calibration ladders.

    Pressure steps by -6 mm Hg (at least 4 values) and T x10 by -2 (at least
    10 values), both before the first probe tag. The factor uses the
    continuous Buck formula; humidity is not available on this path.
    """
    fvc_off = find_tag(buf, TAG_F1)
    win_start = max(0, fvc_off - 32 * 1024) if fvc_off >= 0 else 0
    win_end = min(len(buf), fvc_off + 2048) if fvc_off >= 0 else len(buf)
    if win_start >= win_end:
        return None
    if fvc_off < 0:
        fvc_off = len(buf)

    ts, ps = [], []
    for off in range(win_start, win_end - 1):
        v = read_u16(buf, off)
        if 100 <= v <= 350:
            ts.append((off, v))
        if 650 <= v <= 820:
            ps.append((off, v))
    if not ts or not ps:
        return None

    ps_before = [p for p in ps if p[0] < fvc_off]
    p_runs = _find_runs(ps_before, 6, 4)
    if not p_runs:
        return None
    p_run = p_runs[-1]

    ts_before = [t for t in ts if t[0] < p_run.s_off]
    t_runs = _find_runs(ts_before, 2, 10)
    if not t_runs:
        return None
    # preferimos temperatura ambiente (20..30 °C) y la escalera más tardía
    ambient = [r for r in t_runs if 200 <= r.s_val <= 300]
    t_run = max(ambient or t_runs, key=lambda r: r.s_off)

    idx = None
    last_p = None
    for off in range(win_start, fvc_off - 5):
        t10, rh10, p = read_u16(buf, off), read_u16(buf, off + 2), read_u16(buf, off + 4)
        if 100 <= t10 <= 350 and 200 <= rh10 <= 1000 and 650 <= p <= 820:
            last_p = p
    if last_p is not None:
        for i in range(p_run.s_idx, p_run.e_idx + 1):
            if ps_before[i][1] == last_p:
                idx = i - p_run.s_idx
                break

    if idx is None:
        for run in p_runs:
            if run.s_off > p_run.s_off:
                continue
            delta = run.s_val - 750
            if delta >= 0 and delta % 6 == 0 and delta // 6 <= run.e_idx - run.s_idx:
                idx = delta // 6

    if idx is None:
        idx = 2
    idx = max(0, min(idx, p_run.e_idx - p_run.s_idx, t_run.e_idx - t_run.s_idx))

    p_sel = ps_before[p_run.s_idx + idx][1]
    t_sel = ts_before[t_run.s_idx + idx][1] / 10.0
    if p_sel <= PH2O_BODY_MMHG:
        return None
    return BtpsInfo(True, compute_btps_factor_continuous(t_sel, p_sel), t_sel, None, float(p_sel))

import csv
import io
import json
import math
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from spiroreader.parsers.models import Extras, PatientData, PnpRecord, ZakRecord

SHEET_TITLE = "Спирография"

PATIENT_COLS = ["ФИО", "Возраст", "Вес (кг)", "Рост (м)", "Пол", "Примечание"]
BTPS_COLS = ["BTPS коэффициент", "Температура (°C)", "Влажность (%)", "Давление (мм рт.ст.)"]
ZHEL_COLS = ["ЕВд(л)", "ЖЕЛ(л)", "ДО(л)", "РОвд(л)", "РОвыд(л)", "ДО/ЕВд(%)"]
MOD_COLS = ["ЧД(1/мин)", "МОД(л/мин)", "ДО МОД(л)", "ПО2(мл/мин)", "КИО2(мл/л)", "Твыд/Твд"]
MVL_COLS = ["ЧД МВЛ(1/мин)", "МВЛ(л/мин)", "ДО МВЛ(л)", "РД(%)", "МВЛ/МОД"]
PROBE_COLS = [
    "ФЖЕЛ(л)", "ЖЕЛвд(л)", "ОФВ1(л)", "ОФВ1/ЖЕЛ", "ПОС(л/с)", "ОВпос(л)",
    "МОС25(л/с)", "МОС50(л/с)", "МОС75(л/с)", "СОС25-75(л/с)", "СОС75-85(л/с)", "Тфжел(с)",
]

METRICS_CSV_COLS = ["File", "Section", "Area", "Key", "Side", "Value", "Unit", "Raw"]
CONCLUSION_CSV_COLS = ["File", "Section", "Area", "Key", "Value", "Note", "DeltaPercent", "DeltaDirection"]


def _num(v: Optional[float]):
    """NaN/inf/None -> celda vacía."""
    if v is None or (isinstance(v, float) and not math.isfinite(v)):
        return None
    return v


# ---------------- Excel (PNP) ----------------


def _header_layout() -> Tuple[List[str], List[int]]:
    """Column titles and the 1-based indexes of the grey separator columns."""
    headers = ["Имя файла", "Размер файла", "Время обработки"]
    separators = []

    def section(title: str, cols: Sequence[str]):
        headers.append(title)
        separators.append(len(headers))
        headers.extend(cols)

    section(" Испытуемый ", PATIENT_COLS)
    section(" BTPS ", BTPS_COLS)
    section(" ЖЕЛ ", ZHEL_COLS)
    section(" МОД ", MOD_COLS)
    section(" МВЛ ", MVL_COLS)
    section(" ФЖЕЛ Пробы ", [f"Проба 1 {c}" for c in PROBE_COLS])
    for n in (2, 3):
        section(f"Проба {n}", [f"Проба {n} {c}" for c in PROBE_COLS])
    return headers, separators


def _probe_cells(record: PnpRecord, index: int) -> List:
    probe = next((p for p in record.probes if p.index == index), None)
    if probe is None:
        return [None] * len(PROBE_COLS)
    fvc, fev1 = probe.fvc_ui_l, probe.fev1_ui_l
    return [
        round(fvc, 2),
        round(probe.evd_ui_l, 2),
        fev1,
        round(fev1 / fvc, 2) if fvc > 0 else 0,
        probe.pef_lps,
        probe.ovnos_ui_l,
        probe.mos25_lps,
        probe.mos50_lps,
        probe.mos75_lps,
        probe.sos25_75_lps,
        probe.sos75_85_lps,
        probe.tfvc_s,
    ]


def pnp_row(record: PnpRecord, file_size: int = 0, processed_at: Optional[str] = None) -> List:
    p, b = record.patient, record.btps
    row = [record.file_name, file_size, processed_at, None]
    row += [p.raw_header, p.age_years, p.weight_kg, p.height_m, p.sex.name, p.note, None]
    row += [b.factor, b.temp_c, b.humidity_pct, b.pressure_mmhg, None]

    z = record.zhel
    row += [z.evd_l, z.jhel_l, z.do_l, z.rovd_l, z.rovyd_l, z.do_over_evd_pct] if z else [None] * 6
    row.append(None)

    m = record.mod
    if m:
        row += [
            m.respiratory_rate_per_min,
            m.minute_ventilation_lpm,
            m.tidal_volume_l,
            round(m.oxygen_uptake_ml_min) if math.isfinite(m.oxygen_uptake_ml_min) else None,
            m.kio2_vent_eq_l_per_l,
            m.texp_over_tinsp,
        ]
    else:
        row += [None] * 6
    row.append(None)

    v = record.mvl
    if v:
        row += [
            v.respiratory_rate_per_min,
            v.max_ventilation_lpm,
            v.tidal_volume_l,
            v.breathing_reserve_pct,
            v.mvl_over_mod,
        ]
    else:
        row += [None] * 5

    for n in (1, 2, 3):
        row.append(None)
        row += _probe_cells(record, n)
    return [_num(c) for c in row]


def pnp_workbook(records: Iterable[Tuple[PnpRecord, int, Optional[str]]]) -> Workbook:
    """Workbook with one row per (record, file size, processing time) triple.

    A record whose row cannot be built is logged and left out; the rest of
    the batch is still written.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE

    headers, separators = _header_layout()
    ws.append(headers)
    thin = Side(style="thin")
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.fill = PatternFill("solid", fgColor="D3D3D3")
        cell.border = Border(bottom=thin)
        cell.alignment = Alignment(horizontal="center")

    for record, size, processed_at in records:
        try:
            row = pnp_row(record, size, processed_at)
        except (ArithmeticError, TypeError, ValueError) as e:
            logger.error(f"Fila omitida para {record.file_name}: {e}")
            continue
        ws.append(row)

    for col in separators:
        letter = ws.cell(row=1, column=col).column_letter
        ws.column_dimensions[letter].width = 10
        for (cell,) in ws.iter_rows(min_col=col, max_col=col):
            cell.fill = PatternFill("solid", fgColor="808080")
            cell.font = Font(bold=True, color="FFFFFF")
            cell.alignment = Alignment(horizontal="center", text_rotation=90)
    return wb


def write_pnp_workbook(records: Iterable[Tuple[PnpRecord, int, Optional[str]]], path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pnp_workbook(records).save(str(path))
    return path


# ---------------- CSV (ZAK) ----------------


def _patient_rows(p: PatientData) -> List[Tuple[str, str]]:
    pairs = [
        ("FullName", p.full_name),
        ("Age", p.age),
        ("Sex", p.sex),
        ("Height", p.height),
        ("Weight", p.weight),
        ("Date", p.date.isoformat() if p.date else None),
        ("Comment", p.comment),
    ]
    return [(k, str(v)) for k, v in pairs if v not in (None, "")]


def _extras_rows(e: Extras) -> List[Tuple[str, str, str, str]]:
    rows = []
    if e.asymmetry_coeff_percent is not None:
        rows.append(("Коэффициент асимметрии", str(e.asymmetry_coeff_percent), "%", ""))
    if e.asymmetry_qualitative:
        rows.append(("Асимметрия кровенаполнения (кач.)", e.asymmetry_qualitative, "", ""))
    if e.asymmetry_dominance_code:
        rows.append(("Доминирование (S/D)", e.asymmetry_dominance_code, "", ""))
    if e.heart_rate_bpm is not None:
        rows.append(("ЧСС", str(e.heart_rate_bpm), "в мин.", ""))
    if e.heart_rate_low is not None and e.heart_rate_high is not None:
        rows.append(("ЧСС диапазон", f"{e.heart_rate_low}-{e.heart_rate_high}", "", ""))
    if e.asymmetry_norm_text:
        rows.append(("Норма (для коэф. асим.)", e.asymmetry_norm_text, "", ""))
    return rows


def zak_metrics_csv(records: Iterable[ZakRecord]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(METRICS_CSV_COLS)
    for r in records:
        area = r.area or ""
        for m in r.measurements:
            value = "" if m.value is None else repr(m.value)
            w.writerow([r.file_name, r.section, area, m.key, m.side, value, m.unit, m.raw])
        for k, v in _patient_rows(r.patient):
            w.writerow([r.file_name, "Patient", "", k, "—", v, "", v])
        for k, v, unit, raw in _extras_rows(r.extras):
            w.writerow([r.file_name, r.section, area, k, "—", v, unit, raw])
    return buf.getvalue()


def zak_conclusion_csv(records: Iterable[ZakRecord]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(CONCLUSION_CSV_COLS)
    for r in records:
        for c in r.conclusion:
            delta = "" if c.delta_percent is None else repr(c.delta_percent)
            w.writerow(
                [r.file_name, r.section, r.area or "", c.key, c.value, c.note or "", delta,
                 c.delta_direction or ""]
            )
    return buf.getvalue()


# ---------------- ZIP de JSON ----------------


def json_archive(payloads: Iterable[Dict]) -> bytes:
    """One '<stem>.json' entry per payload."""
    out = io.BytesIO()
    with zipfile.ZipFile(out, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for payload in payloads:
            stem = Path(payload["fileName"]).stem
            body = json.dumps(payload, ensure_ascii=False, indent=2)
            zf.writestr(f"{stem}.json", body.encode("utf-8"))
    return out.getvalue()

import datetime
import re
from typing import List, Optional, Sequence, Tuple, Union

from .base import (
    BROKEN_BAR,
    LEGACY_ENCODING,
    collapse_spaced_caps,
    decode_legacy_text,
    join_single_letter_groups,
    normalize_text,
)
from .models import ConclusionItem, Extras, Measurement, PatientData, ZakRecord

_SECTION_MARKERS = ("РЕО", "РВГ", "РЕОВАЗОГРАФИЯ", "РЕОЭНЦЕФАЛОГРАФИЯ")
_DECOR = set("*=_-¦")

_NUMBER = r"[+-]?\d+(?:[.,]\d+)?"

RE_VALUE_UNIT = re.compile(rf"({_NUMBER})\s*([^\d\s+-].*)?$")
RE_AGE = re.compile(r"Возраст\s*:\s*([0-9]*)")
RE_SEX = re.compile(r"Пол\s*:\s*([ЖМ])")
RE_HEIGHT = re.compile(r"Рост\s*:\s*([0-9]*)")
RE_WEIGHT = re.compile(r"Вес\s*:\s*([0-9]*)")
RE_DATE = re.compile(r"Дата\s*:\s*([0-9]{1,2})[\s./-]+([0-9]{1,2})[\s./-]+([0-9]{2,4})(.*)$")

RE_CONCLUSION = re.compile(r"(З\s*А\s*К\s*Л\s*Ю\s*Ч\s*Е\s*Н\s*И\s*Е|РЕЗЮМЕ)\s*:?", re.IGNORECASE)
RE_SUMMARY_STOP = re.compile(r"^\s*РЕЗЮМЕ\s*:", re.IGNORECASE)
RE_RULER = re.compile(r"^\s*-{5,}\s*$")
RE_NUMBERED = re.compile(r"^\s*(\d+)\.\s*(.*)$")
RE_IN_AREA = re.compile(r"В\s+области", re.IGNORECASE)
RE_TWO_COLUMNS = re.compile(
    r"^\s*[_\-\s]*\s*(Лев[^:]{1,80}?)\s*:\s*(Прав[^:]{1,80}?)\s*$", re.IGNORECASE
)
RE_NOTE_LR = re.compile(r"\)\s*:\s*\(?")
RE_DELTA = re.compile(rf"({_NUMBER})\s*%.*\b(больше|меньше)\s+нормы", re.IGNORECASE)

RE_ASYM_COEF = re.compile(
    rf"Коэфф\w*\s+асимметр\w*\s*[:=]\s*({_NUMBER})\s*%?(?:\s*\(([^)]*Норма[^)]*)\))?",
    re.IGNORECASE,
)
RE_ASYM_QUAL = re.compile(
    r"(Асимметр[^\n()]*кровенаполнени[^\n()]*)\s*\(\s*([SDСД])\s*>\s*([SDСД])\s*\)",
    re.IGNORECASE,
)
RE_HEART_RATE = re.compile(
    r"Частота\s+сердечных\s+сокращени[йя]\s*[:=]\s*(\d+)\s*(?:\((\d+)\s*[-–—]\s*(\d+)\))?"
    r"\s*(?:в\s*мин\.?|уд/мин|bpm)?",
    re.IGNORECASE,
)


def parse_zak(data: Union[bytes, str], file_name: str, encoding: str = LEGACY_ENCODING) -> ZakRecord:
    text = normalize_text(decode_legacy_text(data, encoding))
    lines = text.split("\n")

    section, area = get_section_area(lines)
    conclusion, conclusion_area = parse_conclusion(text)

    return ZakRecord(
        file_name=file_name,
        section=section,
        area=area or conclusion_area,
        patient=parse_patient(lines),
        measurements=tuple(parse_measurements(lines)),
        conclusion=tuple(conclusion),
        extras=parse_extras(text),
    )


def _to_float(s: str) -> Optional[float]:
    try:
        return float(s.replace(",", "."))
    except ValueError:
        return None


def _to_int(s: str) -> Optional[int]:
    return int(s) if s.isdigit() else None


# ---------------- Sección / área ----------------


def get_section_area(lines: Sequence[str]) -> Tuple[str, Optional[str]]:
    for i, ln in enumerate(lines):
        s = ln.strip()
        squeezed = re.sub(r"\s+", "", s)
        if len(squeezed) < 6 or not any(m in squeezed for m in _SECTION_MARKERS):
            continue
        area = None
        if i + 1 < len(lines):
            nxt = lines[i + 1].strip()
            if likely_area_line(nxt):
                area = nxt
        return collapse_spaced_caps(s), area
    return "Unknown", None


def likely_area_line(s: str) -> bool:
    if not s.strip():
        return False
    if "область" in s.lower():
        return True
    if "(" in s and ")" in s and len(s) < 100:
        return True
    if BROKEN_BAR in s:
        return False
    all_decor = all(ch in _DECOR for ch in s.strip())
    return len(s) < 80 and not all_decor


# ---------------- Paciente ----------------


def parse_patient(lines: Sequence[str]) -> PatientData:
    name = sex = comment = None
    age = height = weight = None
    date = None

    for ln in lines:
        if "Фамилия,имя,отчество" in ln and ":" in ln:
            name = ln.split(":", 1)[1].strip() or None

        # una etiqueta repetida sin número no borra el valor ya leído
        m = RE_AGE.search(ln)
        if m and m.group(1):
            age = _to_int(m.group(1))
        m = RE_SEX.search(ln)
        if m:
            sex = m.group(1)
        m = RE_HEIGHT.search(ln)
        if m and m.group(1):
            height = _to_int(m.group(1))
        m = RE_WEIGHT.search(ln)
        if m and m.group(1):
            weight = _to_int(m.group(1))

        m = RE_DATE.search(ln)
        if m:
            dd, mm, yy = int(m.group(1)), int(m.group(2)), m.group(3)
            year = 2000 + int(yy) if len(yy) == 2 else int(yy)
            try:
                date = datetime.date(year, mm, dd)
            except ValueError:
                date = None
            comment = re.sub(r"^[\s.]*", "", m.group(4)).strip() or None

    return PatientData(
        full_name=name,
        age=age,
        sex=sex,
        height=height,
        weight=weight,
        date=date,
        comment=comment,
    )


# ---------------- Mediciones (tabla con '¦') ----------------


def parse_measurements(lines: Sequence[str]) -> List[Measurement]:
    out = []
    for ln in lines:
        if ln.count(BROKEN_BAR) < 3:
            continue
        cells = [c.strip() for c in ln.split(BROKEN_BAR)]
        cells = [c for c in cells if c]
        if len(cells) < 3:
            continue
        label = collapse_spaced_caps(cells[0])
        # fila de encabezado / resumen
        if re.search("Основные", label, re.IGNORECASE):
            continue
        for side, cell in (("L", cells[-2]), ("R", cells[-1])):
            if re.search(r"\d", cell):
                value, unit, raw = parse_value_unit(cell)
                out.append(Measurement(key=label, side=side, value=value, unit=unit, raw=raw))
    return out


def parse_value_unit(cell: str) -> Tuple[Optional[float], str, str]:
    raw = cell.strip()
    m = RE_VALUE_UNIT.search(raw.strip(" ."))
    if not m:
        return None, "", raw
    unit = (m.group(2) or "").strip()
    return _to_float(m.group(1)), unit, raw


# ---------------- Conclusión ----------------


def two_column_header(line: str) -> Optional[Tuple[str, str]]:
    """'Левая сторона : Правая сторона' -> ('Левая сторона', 'Правая сторона')."""
    if not line.strip():
        return None
    m = RE_TWO_COLUMNS.match(line)
    if not m:
        return None
    left = m.group(1).strip(" .\t")
    right = m.group(2).strip(" .\t")
    if not re.match("Лев", left, re.IGNORECASE) or not re.match("Прав", right, re.IGNORECASE):
        return None
    return left, right


def split_note_lr(s: str) -> Tuple[str, str]:
    s = s.strip()
    m = RE_NOTE_LR.search(s)
    if m:
        return s[: m.start()].strip(), s[m.end():].strip()
    left, sep, right = s.partition(":")
    if sep:
        return left.strip(), right.strip()
    return s, ""


def parse_note(s: str) -> Tuple[Optional[str], Optional[float], Optional[str]]:
    """Annotation '(на 12,5 % больше нормы)' -> (note, 12.5, 'больше')."""
    note = re.sub(r"\)?\s*$", "", re.sub(r"^[\s:]*\(?\s*", "", s.strip()))
    delta = direction = None
    m = RE_DELTA.search(note)
    if m:
        delta = _to_float(m.group(1))
        direction = m.group(2).lower()
    return (note if note.strip() else None), delta, direction


def _annotated(key: str, value: str, note_src: Optional[str]) -> ConclusionItem:
    if note_src is None:
        return ConclusionItem(key=key, value=value.strip(" ."))
    note, delta, direction = parse_note(note_src)
    return ConclusionItem(key=key, value=value.strip(" ."), note=note, delta_percent=delta,
                          delta_direction=direction)


def _emit_items(
    label: str,
    ln: str,
    next_line: Optional[str],
    columns: Optional[Tuple[str, str]],
) -> Tuple[List[ConclusionItem], bool]:
    """Items for one conclusion line; the bool says whether ``next_line`` was eaten."""
    parts = ln.split(":")
    val_l = parts[1].strip() if len(parts) >= 2 else ""
    val_r = ":".join(parts[2:]).strip() if len(parts) >= 3 else ""
    items = []

    if columns is not None and (val_l or val_r):
        has_note = next_line is not None and ("(" in next_line or ":" in next_line)
        note_l, note_r = split_note_lr(next_line) if has_note else (None, None)
        for col, val, note in ((columns[0], val_l, note_l), (columns[1], val_r, note_r)):
            # un valor que empieza con '(' es solo anotación
            if val and not val.startswith("("):
                items.append(_annotated(f"{label} ({col})", val, note))
        return items, has_note

    if val_l and not val_l.startswith("("):
        has_note = next_line is not None and "(" in next_line
        items.append(_annotated(label, val_l, next_line if has_note else None))
        return items, has_note
    return items, False


def parse_conclusion(text: str) -> Tuple[List[ConclusionItem], Optional[str]]:
    """Conclusion items plus the area named inside the block ("В области ..."), if any."""
    m = RE_CONCLUSION.search(text)
    if not m:
        return [], None
    lines = normalize_text(text[m.end():]).split("\n")

    area = None
    for ln in lines[:6]:
        if RE_IN_AREA.search(ln):
            tail = RE_IN_AREA.split(ln, maxsplit=1)[1].strip(" :")
            area = join_single_letter_groups(tail).strip(" .:-") or None
            break

    columns = None
    for ln in lines[:12]:
        columns = two_column_header(ln)
        if columns:
            break

    result = []
    base = None
    i = 0
    while i < len(lines):
        ln = lines[i]
        next_line = lines[i + 1] if i + 1 < len(lines) else None
        if RE_SUMMARY_STOP.match(ln):
            break
        if RE_RULER.match(ln):
            i += 1
            continue

        mnum = RE_NUMBERED.match(ln)
        if mnum:
            base = mnum.group(2).split(":")[0].strip(" .")
            items, ate = _emit_items(base, ln, next_line, columns)
        elif base is not None and ":" in ln:
            left_label = ln.split(":")[0].strip(" .")
            if not left_label.strip() or re.fullmatch(r"[_\-]+", left_label):
                label = base
            else:
                label = f"{base} {left_label}".strip()
            items, ate = _emit_items(label, ln, next_line, columns)
        else:
            items, ate = [], False

        result.extend(items)
        i += 2 if ate else 1

    return result, area


# ---------------- Extras ----------------


def _map_sd(s: str) -> str:
    ch = s[:1].upper()
    if ch in ("S", "С"):
        return "S"
    if ch in ("D", "Д"):
        return "D"
    return ch


def parse_extras(text: str) -> Extras:
    coef = norm_text = None
    m = RE_ASYM_COEF.search(text)
    if m:
        coef = _to_float(m.group(1))
        norm_text = (m.group(2) or "").strip() or None

    qual = dom_code = dom_side = None
    m = RE_ASYM_QUAL.search(text)
    if m:
        qual = re.sub(r"\s{2,}", " ", m.group(1)).strip()
        left, right = _map_sd(m.group(2)), _map_sd(m.group(3))
        dom_code = f"{left}>{right}"
        dom_side = {"S": "Left", "D": "Right"}.get(left)

    bpm = low = high = None
    m = RE_HEART_RATE.search(text)
    if m:
        bpm = int(m.group(1))
        if m.group(2) and m.group(3):
            low, high = int(m.group(2)), int(m.group(3))

    return Extras(
        asymmetry_coeff_percent=coef,
        asymmetry_norm_text=norm_text,
        asymmetry_qualitative=qual,
        asymmetry_dominance_code=dom_code,
        asymmetry_dominance_side=dom_side,
        heart_rate_bpm=bpm,
        heart_rate_low=low,
        heart_rate_high=high,
    )

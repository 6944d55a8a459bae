# ===============================
# File: spiroreader/parsers/models.py
# ===============================
from dataclasses import dataclass, field, replace
import datetime
from enum import Enum
from typing import Optional, Tuple


class Sex(Enum):
    Male = 0
    Female = 1


# ---------------- PNP (espirómetro Pulmo-4) ----------------


@dataclass(frozen=True)
class Demographics:
    raw_header: str = ""
    age_years: int = 0
    weight_kg: int = 0
    height_m: float = 0.0
    sex: Sex = Sex.Male
    note: str = ""


@dataclass(frozen=True)
class BtpsInfo:
    found_in_file: bool
    factor: float
    temp_c: Optional[float] = None
    humidity_pct: Optional[float] = None
    pressure_mmhg: Optional[float] = None


@dataclass(frozen=True)
class FvcProbe:
    index: int
    fvc_l: float
    fev1_l: float
    evd_l: float
    pef_lps: float
    ovnos_l: float
    mos25_lps: float
    mos50_lps: float
    mos75_lps: float
    sos25_75_lps: float
    sos75_85_lps: float
    tfvc_s: float
    # valores "UI" (corregidos BTPS, los que muestra el programa del fabricante)
    fvc_ui_l: float
    fev1_ui_l: float
    ovnos_ui_l: float
    evd_ui_l: float


@dataclass(frozen=True)
class ZhelBlock:
    evd_l: float
    jhel_l: float
    do_l: float
    rovd_l: float
    rovyd_l: float
    do_over_evd_pct: float


@dataclass(frozen=True)
class ModBlock:
    respiratory_rate_per_min: float
    minute_ventilation_lpm: float
    tidal_volume_l: float
    oxygen_uptake_ml_min: float
    kio2_ml_per_l: float
    kio2_vent_eq_l_per_l: float
    texp_over_tinsp: float
    volume_curve: Tuple[int, ...] = ()


@dataclass(frozen=True)
class MvlBlock:
    respiratory_rate_per_min: float
    max_ventilation_lpm: float
    tidal_volume_l: float
    breathing_reserve_pct: float
    mvl_over_mod: float


@dataclass(frozen=True)
class PnpRecord:
    file_name: str
    patient: Demographics
    btps: BtpsInfo
    zhel: Optional[ZhelBlock] = None
    mod: Optional[ModBlock] = None
    mvl: Optional[MvlBlock] = None
    probes: Tuple[FvcProbe, ...] = ()

    def with_file_name(self, file_name: str) -> "PnpRecord":
        return replace(self, file_name=file_name)


# ---------------- ZAK (reógrafo, informe de texto) ----------------


@dataclass(frozen=True)
class PatientData:
    full_name: Optional[str] = None
    age: Optional[int] = None
    sex: Optional[str] = None  # "Ж" | "М"
    height: Optional[int] = None
    weight: Optional[int] = None
    date: Optional[datetime.date] = None
    comment: Optional[str] = None


@dataclass(frozen=True)
class Measurement:
    key: str
    side: str  # "L" | "R" | "—"
    value: Optional[float]
    unit: str
    raw: str


@dataclass(frozen=True)
class ConclusionItem:
    key: str
    value: str
    note: Optional[str] = None
    delta_percent: Optional[float] = None
    delta_direction: Optional[str] = None  # "больше" | "меньше"


@dataclass(frozen=True)
class Extras:
    asymmetry_coeff_percent: Optional[float] = None
    asymmetry_norm_text: Optional[str] = None
    asymmetry_qualitative: Optional[str] = None
    asymmetry_dominance_code: Optional[str] = None  # "S>D" | "D>S"
    asymmetry_dominance_side: Optional[str] = None  # "Left" | "Right"
    heart_rate_bpm: Optional[int] = None
    heart_rate_low: Optional[int] = None
    heart_rate_high: Optional[int] = None


@dataclass(frozen=True)
class ZakRecord:
    file_name: str
    section: str
    area: Optional[str]
    patient: PatientData
    measurements: Tuple[Measurement, ...] = ()
    conclusion: Tuple[ConclusionItem, ...] = ()
    extras: Extras = field(default_factory=Extras)

    def with_file_name(self, file_name: str) -> "ZakRecord":
        return replace(self, file_name=file_name)

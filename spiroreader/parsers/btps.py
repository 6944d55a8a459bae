import math

PH2O_BODY_MMHG = 47.0  # vapor saturado a 37 °C
K_BODY = 310.0
KPA_TO_MMHG = 7.50061683

# Presión de vapor saturado (mm Hg) para T entera 0..60 °C.
# Buck (sobre agua), redondeada a 2 decimales. El software del equipo sólo usa 10..35 °C.
PH2O_MMHG_BY_C = (
    4.58, 4.93, 5.29, 5.69, 6.10, 6.54, 7.01, 7.51, 8.05, 8.61,
    9.21, 9.85, 10.52, 11.23, 11.99, 12.79, 13.64, 14.53, 15.48, 16.48,
    17.54, 18.66, 19.83, 21.08, 22.39, 23.77, 25.22, 26.75, 28.36, 30.06,
    31.84, 33.72, 35.68, 37.75, 39.92, 42.20, 44.60, 47.10, 49.73, 52.49,
    55.37, 58.39, 61.56, 64.87, 68.33, 71.95, 75.73, 79.69, 83.81, 88.13,
    92.63, 97.32, 102.22, 107.33, 112.66, 118.21, 123.99, 130.01, 136.28, 142.81,
    149.60,
)

TABLE_MIN_C = 10
TABLE_MAX_C = 35


def saturation_pressure_table(t_c: int) -> float:
    t_c = min(max(t_c, 0), len(PH2O_MMHG_BY_C) - 1)
    return PH2O_MMHG_BY_C[t_c]


def compute_btps_factor(temp_c: float, pressure_mmhg: float) -> float:
    """BTPS factor as the legacy program computes it.

    BTPS = ((P - PH2O(T)) / (P - 47)) * (310 / (273 + T)), with T truncated
    to whole degrees and clamped to 10..35 °C; humidity is ignored.
    """
    t_int = min(max(int(temp_c), TABLE_MIN_C), TABLE_MAX_C)
    if pressure_mmhg <= PH2O_BODY_MMHG:
        return 1.0
    num = pressure_mmhg - saturation_pressure_table(t_int)
    den = pressure_mmhg - PH2O_BODY_MMHG
    return (num / den) * (K_BODY / (273.0 + t_int))


def ph2o_buck_mmhg(temp_c: float) -> float:
    """Buck saturation vapour pressure over water at fractional °C, in mm Hg."""
    es_kpa = 0.61121 * math.exp((18.678 - temp_c / 234.5) * (temp_c / (257.14 + temp_c)))
    return es_kpa * KPA_TO_MMHG


def compute_btps_factor_continuous(temp_c: float, pressure_mmhg: float) -> float:
    if pressure_mmhg <= PH2O_BODY_MMHG:
        return 1.0
    ph2o = ph2o_buck_mmhg(temp_c)
    return ((pressure_mmhg - ph2o) / (pressure_mmhg - PH2O_BODY_MMHG)) * (K_BODY / (273.15 + temp_c))

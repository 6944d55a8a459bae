import struct

import pytest

from spiroreader.parsers.base import TAG_F1, TAG_F2, TAG_MOD, TAG_MVL, TAG_ZHEL

# Informe ZAK de ejemplo (estructura tal como la imprime el reógrafo)
ZAK_REPORT = """\
        Р Е О Э Н Ц Е Ф А Л О Г Р А Ф И Я
   Фронто - мастоидальная область (FM)
Фамилия,имя,отчество : Петрова Анна Ивановна
Возраст: 54   Пол: Ж   Рост: 165   Вес: 70
Дата: 12 05 03 повторно
¦ Основные показатели ¦ Левая ¦ Правая ¦
¦ Р И  ¦ 0,85 Ом ¦ 0,92 Ом ¦
¦ Время подъема ¦ 0.12 с ¦ 0.13 с ¦
Коэффициент асимметрии: 8,2 % (Норма до 10%)
Асимметрия кровенаполнения в пределах нормы (S>D)
Частота сердечных сокращений: 72 (60-80) в мин.
          З А К Л Ю Ч Е Н И Е
Левая сторона : Правая сторона
1. Кровенаполнение : 12.0 : 14.0
(на 15 % больше нормы) : (на 5,5 % меньше нормы)
2. Тонус сосудов
   распределения : повышен : норма
"""

PROBE_1 = (4000.0, 3500.0, 3200.0, 0.0, 8000.0, 600.0, 7000.0, 5000.0, 2000.0, 4.0, 1.5, 250.0)
PROBE_2 = (3900.0, 3400.0, 3100.0, 0.0, 7800.0, 580.0, 6900.0, 4900.0, 1900.0, 3.5, 1.25, 240.0)


def build_pnp() -> bytes:
    """Synthetic Pulmo-4 file: header, vitals, T/RH/P triplet and every block."""
    buf = bytearray("  ИВАНОВ ИВАН$Норма.\0".encode("cp1251"))
    buf += bytes(64 - len(buf))
    buf += b"\x07"  # offset impar para la estructura de vitales
    buf += struct.pack("<HHfB", 45, 80, 1.75, 1)
    buf += bytes(32)
    buf += struct.pack("<HHH", 22, 45, 755)
    buf += bytes(16)
    buf += TAG_ZHEL + struct.pack("<5f", 3000.0, 3200.0, 600.0, 1500.0, 1100.0)
    buf += bytes(8)
    buf += TAG_MOD + struct.pack("<3f", 15.0, 9.0, 0.6) + struct.pack("<4h", 130, 100, -5, 7)
    buf += TAG_MVL + struct.pack("<3f", 40.0, 90.0, 2.25)
    buf += bytes(8)
    # la sonda 2 aparece antes que la 1 en el archivo
    buf += TAG_F2 + struct.pack("<12f", *PROBE_2)
    buf += bytes(8)
    buf += TAG_F1 + struct.pack("<12f", *PROBE_1)
    return bytes(buf)


@pytest.fixture
def zak_bytes() -> bytes:
    return ZAK_REPORT.replace("\n", "\r\n").encode("cp1251")


@pytest.fixture
def pnp_bytes() -> bytes:
    return build_pnp()

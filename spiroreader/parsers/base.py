import re
import struct
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

LEGACY_ENCODING = "cp1251"

T = TypeVar("T")

# Tags binarios del PNP (bytes exactos, con su relleno)
TAG_MOD = b"MOD    "
TAG_MVL = b"MVL    "
TAG_ZHEL = b"* ZhEL *"
TAG_F1 = b"* FZhEL* "
TAG_F2 = b"* FZhE1* "
TAG_F3 = b"* FZhE2* "
ALL_TAGS = (TAG_MOD, TAG_MVL, TAG_ZHEL, TAG_F1, TAG_F2, TAG_F3)

BROKEN_BAR = "¦"


class PayloadBoundsError(IndexError):
    """Raised when a read would go past the end of the buffer."""


class UnknownFormatError(ValueError):
    """Raised when a buffer is neither a PNP nor a ZAK file."""


# ---------------- Tags ----------------


def find_tag(buf: bytes, tag: bytes, start: int = 0) -> int:
    return buf.find(tag, start)


def find_last_tag(buf: bytes, tag: bytes) -> int:
    return buf.rfind(tag)


def find_all_tags(buf: bytes, tag: bytes) -> List[int]:
    hits = []
    pos = buf.find(tag)
    while pos >= 0:
        hits.append(pos)
        pos = buf.find(tag, pos + 1)
    return hits


# ---------------- Lectura binaria con control de límites ----------------


def _check_bounds(buf: bytes, offset: int, size: int):
    if offset < 0 or offset + size > len(buf):
        raise PayloadBoundsError(
            f"read of {size} bytes at offset {offset} exceeds buffer of {len(buf)} bytes"
        )


def read_u8(buf: bytes, offset: int) -> int:
    _check_bounds(buf, offset, 1)
    return buf[offset]


def read_u16(buf: bytes, offset: int) -> int:
    _check_bounds(buf, offset, 2)
    return struct.unpack_from("<H", buf, offset)[0]


def read_f32(buf: bytes, offset: int) -> float:
    _check_bounds(buf, offset, 4)
    return struct.unpack_from("<f", buf, offset)[0]


def read_f32_array(buf: bytes, offset: int, count: int) -> Tuple[float, ...]:
    _check_bounds(buf, offset, 4 * count)
    return struct.unpack_from(f"<{count}f", buf, offset)


def read_i16_array(buf: bytes, offset: int, count: int) -> Tuple[int, ...]:
    _check_bounds(buf, offset, 2 * count)
    return struct.unpack_from(f"<{count}h", buf, offset)


# ---------------- Escaneo por ventana deslizante ----------------


def scan_offsets(
    buf: bytes, width: int, predicate: Callable[[bytes, int], Optional[T]], stop: Optional[int] = None
) -> Iterable[T]:
    """Slide a ``width``-byte window over every offset (step 1) and yield
    whatever ``predicate(buf, offset)`` returns when it is not None.

    ``stop`` bounds the starting offsets (exclusive); the window never runs
    past the end of the buffer.
    """
    last = len(buf) - width + 1
    if stop is not None:
        last = min(last, stop)
    for off in range(max(0, last)):
        hit = predicate(buf, off)
        if hit is not None:
            yield hit


def best_candidate(candidates: Iterable[T], key: Callable[[T], Sequence]) -> Optional[T]:
    """Best-so-far reducer: lowest ``key`` wins, first seen wins on a full tie."""
    best = None
    best_key = None
    for c in candidates:
        k = key(c)
        if best is None or k < best_key:
            best, best_key = c, k
    return best


# ---------------- Texto ----------------


def decode_legacy_text(data: Union[bytes, str], encoding: str = LEGACY_ENCODING) -> str:
    """Decode a legacy single-byte report; UTF-8 only when the codepage fails."""
    if isinstance(data, str):
        return data
    try:
        return data.decode(encoding)
    except UnicodeDecodeError:
        return data.decode("utf-8", errors="replace")


def normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return "\n".join(line.rstrip() for line in text.split("\n"))


def is_upper_letter(ch: str) -> bool:
    return "A" <= ch <= "Z" or "А" <= ch <= "Я" or ch == "Ё"


def _is_cap(tok: str) -> bool:
    return len(tok) == 1 and is_upper_letter(tok)


def collapse_spaced_caps(s: str) -> str:
    """'Р Е О Г Р А Ф И Я  X' -> 'РЕОГРАФИЯ X'."""
    parts = re.split(r"(\s+)", s)
    out = []
    i = 0
    while i < len(parts):
        tok = parts[i]
        if i + 2 < len(parts) and _is_cap(tok) and parts[i + 1] == " " and _is_cap(parts[i + 2]):
            letters = [tok]
            i += 2
            while i < len(parts) and parts[i - 1] == " " and _is_cap(parts[i]):
                letters.append(parts[i])
                i += 2
            out.append("".join(letters))
            # doble espacio tras la sigla = separador título/cuerpo
            if i - 1 < len(parts) and re.search(r"\s{2,}", parts[i - 1]):
                out.append(" ")
        else:
            out.append(tok)
            i += 1
    return re.sub(r" {2,}", " ", "".join(out)).strip()


def join_single_letter_groups(s: str) -> str:
    tokens = s.split()
    res = []
    i = 0
    while i < len(tokens):
        if _is_cap(tokens[i]):
            j = i
            while j < len(tokens) and _is_cap(tokens[j]):
                j += 1
            res.append("".join(tokens[i:j]))
            i = j
        else:
            res.append(tokens[i])
            i += 1
    return " ".join(res)


# ---------------- Detección de formato ----------------


def detect_format(data: Union[bytes, str], file_name: str = "") -> str:
    """Return 'PNP' or 'ZAK'."""
    suffix = file_name.rsplit(".", 1)[-1].upper() if "." in file_name else ""
    if suffix in ("PNP", "ZAK"):
        return suffix
    if isinstance(data, str):
        return "ZAK"
    if any(tag in data for tag in ALL_TAGS):
        return "PNP"
    text = decode_legacy_text(data)
    squeezed = re.sub(r"\s+", "", text)
    if BROKEN_BAR in text or "РЕО" in squeezed or "РВГ" in squeezed:
        return "ZAK"
    raise UnknownFormatError(f"Formato no reconocido: {file_name or '<buffer>'}")

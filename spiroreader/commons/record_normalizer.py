import dataclasses
import datetime
import math
from enum import Enum
from typing import Any, Dict, Union

from spiroreader.parsers.base import detect_format
from spiroreader.parsers.models import PnpRecord, ZakRecord
from spiroreader.parsers.pnp import parse_pnp
from spiroreader.parsers.zak import parse_zak
from spiroreader.validation.validators import DecodeOptions

Record = Union[PnpRecord, ZakRecord]


def _camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(t[:1].upper() + t[1:] for t in tail)


def to_jsonable(obj: Any, decimals: int = 2) -> Any:
    """Dataclass tree -> JSON-ready value: camelCase keys, rounded floats, NaN -> None."""
    if dataclasses.is_dataclass(obj):
        return {
            _camel(f.name): to_jsonable(getattr(obj, f.name), decimals)
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, Enum):
        return obj.name
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        return round(obj, decimals)
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(x, decimals) for x in obj]
    if isinstance(obj, dict):
        return {k: to_jsonable(v, decimals) for k, v in obj.items()}
    return obj


class RecordNormalizer:
    def __init__(self, options: DecodeOptions = None, autodetect: bool = True, override: str = ""):
        self.options = options or DecodeOptions()
        self.autodetect = autodetect
        self.override = (override or "").upper()

    def profile(self, data: Union[bytes, str], file_name: str) -> str:
        if self.override:
            return self.override
        return detect_format(data, file_name) if self.autodetect else "PNP"

    def normalize(self, data: Union[bytes, str], file_name: str) -> Record:
        opts = self.options
        if self.profile(data, file_name) == "ZAK":
            return parse_zak(data, file_name, encoding=opts.legacy_encoding)
        if isinstance(data, str):
            data = data.encode(opts.legacy_encoding)
        return parse_pnp(
            data,
            file_name,
            default_btps_factor=opts.default_btps_factor,
            kio2_ml_per_l=opts.kio2_ml_per_l,
            encoding=opts.legacy_encoding,
            ladder_fallback=opts.ladder_fallback,
        )

    def to_payload(self, record: Record, file_size: int = 0, decimals: int = 2) -> Dict:
        """Wrap a record the way the exporters and the JSON archive expect it."""
        return {
            "fileName": record.file_name,
            "fileSize": file_size,
            "fileType": "ZAK" if isinstance(record, ZakRecord) else "PNP",
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "data": to_jsonable(record, decimals),
        }

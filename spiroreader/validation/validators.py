# spiroreader/validation/validators.py
from typing import Literal, Optional, Union

from pydantic import BaseModel, field_validator, model_validator

from spiroreader.parsers.base import UnknownFormatError, detect_format


class DecodeOptions(BaseModel):
    default_btps_factor: float = 1.081
    kio2_ml_per_l: float = 25.0
    legacy_encoding: str = "cp1251"
    ladder_fallback: bool = False

    @field_validator("default_btps_factor", "kio2_ml_per_l")
    @classmethod
    def _positive(cls, v: float):
        if not v > 0:
            raise ValueError(f"debe ser > 0, recibido {v}")
        return v

    @field_validator("legacy_encoding")
    @classmethod
    def _known_codec(cls, v: str):
        try:
            "".encode(v)
        except LookupError:
            raise ValueError(f"Codificación desconocida: {v}")
        return v


class InputFile(BaseModel):
    name: str
    size: int
    file_type: Optional[Literal["PNP", "ZAK"]] = None

    @field_validator("name")
    @classmethod
    def _not_empty(cls, v: str):
        if not v or not v.strip():
            raise ValueError("El nombre de archivo es obligatorio")
        return v

    @field_validator("size")
    @classmethod
    def _has_content(cls, v: int):
        if v <= 0:
            raise ValueError("Archivo vacío")
        return v

    @model_validator(mode="after")
    def _known_type(self):
        if self.file_type is None:
            raise ValueError(f"Formato no reconocido: {self.name}")
        return self


def validate_input_or_raise(data: Union[bytes, str], file_name: str) -> InputFile:
    """Construye el modelo y levanta ValidationError si algo falta/está mal."""
    try:
        file_type = detect_format(data, file_name) if data else None
    except UnknownFormatError:
        file_type = None
    return InputFile(name=file_name, size=len(data), file_type=file_type)

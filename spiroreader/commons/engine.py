from pathlib import Path
from typing import Any, Dict, Union

import yaml
from loguru import logger

from spiroreader.commons.record_normalizer import Record, RecordNormalizer
from spiroreader.commons.types import Settings
from spiroreader.validation.validators import DecodeOptions, validate_input_or_raise


def load_settings(config_path_or_obj: Any = None) -> Settings:
    # Soportar rutas, dict ya cargado o Settings
    if isinstance(config_path_or_obj, Settings):
        return config_path_or_obj
    if isinstance(config_path_or_obj, (str, Path)):
        with open(config_path_or_obj, "r", encoding="utf-8") as f:
            return Settings(**(yaml.safe_load(f) or {}))
    if isinstance(config_path_or_obj, dict):
        return Settings(**config_path_or_obj)
    return Settings()


class DecoderEngine:
    """Engine facade that loads config and exposes decode/payload methods."""

    def __init__(self, config_path_or_obj: Any = None):
        self.settings = load_settings(config_path_or_obj)
        self.options = DecodeOptions(**self.settings.decode.model_dump())
        parsers = self.settings.parsers
        self.normalizer = RecordNormalizer(self.options, parsers.autodetect, parsers.override)

    def decode(self, data: Union[bytes, str], file_name: str) -> Record:
        info = validate_input_or_raise(data, file_name)
        record = self.normalizer.normalize(data, file_name)
        logger.debug(f"{info.file_type} decodificado: {file_name} ({info.size} bytes)")
        return record

    def to_payload(self, record: Record, file_size: int = 0) -> Dict:
        return self.normalizer.to_payload(record, file_size, self.settings.export.decimals)

    def decode_to_payload(self, data: Union[bytes, str], file_name: str) -> Dict:
        record = self.decode(data, file_name)
        return self.to_payload(record, len(data))

from typing import List, Literal

from pydantic import BaseModel, Field


class AppCfg(BaseModel):
    name: str = "spiroreader"
    log_level: str = "INFO"
    log_retention_days: int = 14


class PathsCfg(BaseModel):
    logs_root: str = "logs"
    inbox: str = "inbox"
    archive: str = "archive"
    error: str = "error"
    exports: str = "exports"


class ParsersCfg(BaseModel):
    autodetect: bool = True
    # "" = autodetectar; "PNP" o "ZAK" fuerza el decodificador
    override: Literal["", "PNP", "ZAK"] = ""


class DecodeCfg(BaseModel):
    default_btps_factor: float = 1.081
    kio2_ml_per_l: float = 25.0
    legacy_encoding: str = "cp1251"
    ladder_fallback: bool = False


class WatchCfg(BaseModel):
    patterns: List[str] = Field(default_factory=lambda: ["*.pnp", "*.PNP", "*.zak", "*.ZAK"])
    settle_seconds: float = 0.3


class ExportCfg(BaseModel):
    decimals: int = 2
    xlsx_name: str = "spirography.xlsx"
    metrics_csv_name: str = "zak_metrics.csv"
    conclusion_csv_name: str = "zak_conclusion.csv"
    archive_name: str = "results.zip"


class Settings(BaseModel):
    app: AppCfg = Field(default_factory=AppCfg)
    paths: PathsCfg = Field(default_factory=PathsCfg)
    parsers: ParsersCfg = Field(default_factory=ParsersCfg)
    decode: DecodeCfg = Field(default_factory=DecodeCfg)
    watch: WatchCfg = Field(default_factory=WatchCfg)
    export: ExportCfg = Field(default_factory=ExportCfg)

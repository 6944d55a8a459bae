import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

import typer

from spiroreader.commons.engine import DecoderEngine
from spiroreader.commons.logger import setup_logging
from spiroreader.services.conversion_service import ConversionService

app = typer.Typer(add_completion=False, help="Pulmo-4 (PNP) / rheograph (ZAK) decoder")


def resource_path(relative_path: str) -> str:
    """Devuelve la ruta absoluta a un recurso, ya sea ejecutando como .exe o en desarrollo"""
    if hasattr(sys, "_MEIPASS"):
        # Si es un ejecutable generado por PyInstaller
        base_path = sys._MEIPASS
    else:
        base_path = os.path.abspath(".")

    return os.path.join(base_path, relative_path)


def _bootstrap(config: str):
    engine = DecoderEngine(resource_path(config))
    level = os.getenv("LOG_LEVEL", engine.settings.app.log_level)
    app_cfg = engine.settings.app
    logger = setup_logging(engine.settings.paths.logs_root, level, app_cfg.name, app_cfg.log_retention_days)
    return engine, logger


ConfigOpt = typer.Option("spiroreader/configs/settings.yaml", help="ruta del settings.yaml")


@app.command()
def decode(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="archivos .pnp/.zak"),
    out: Optional[Path] = typer.Option(None, help="carpeta destino; por defecto imprime el JSON"),
    config: str = ConfigOpt,
):
    """Decodifica archivos sueltos a JSON sin moverlos."""
    engine, logger = _bootstrap(config)
    for f in files:
        data = f.read_bytes()
        try:
            payload = engine.decode_to_payload(data, f.name)
        except Exception as e:
            logger.error(f"Error procesando {f}: {e}")
            continue
        text = json.dumps(payload, ensure_ascii=False, indent=2)
        if out is None:
            typer.echo(text)
            continue
        out.mkdir(parents=True, exist_ok=True)
        dst = out / f"{f.stem}.json"
        dst.write_text(text, encoding="utf-8")
        logger.info(f"JSON escrito: {dst}")


@app.command()
def watch(config: str = ConfigOpt):
    """Procesa el backlog del inbox y queda escuchando archivos nuevos."""
    engine, logger = _bootstrap(config)
    logger.log("INFO", "Iniciando lectura de archivos pendientes por procesar")
    svc = ConversionService(engine)
    asyncio.run(svc.run_file_mode(engine.settings.watch.patterns))


@app.command("export-xlsx")
def export_xlsx(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False),
    out: Optional[Path] = typer.Option(None),
    config: str = ConfigOpt,
):
    """Tabla Excel con una fila por archivo PNP."""
    engine, _ = _bootstrap(config)
    svc = ConversionService(engine)
    path = svc.export_xlsx([str(f) for f in files], str(out) if out else None)
    if path is None:
        raise typer.Exit(code=1)
    typer.echo(str(path))


@app.command("export-csv")
def export_csv(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False),
    out: Optional[Path] = typer.Option(None),
    config: str = ConfigOpt,
):
    """CSV de mediciones y de conclusiones para archivos ZAK."""
    engine, _ = _bootstrap(config)
    svc = ConversionService(engine)
    paths = svc.export_csv([str(f) for f in files], str(out) if out else None)
    if not paths:
        raise typer.Exit(code=1)
    for p in paths:
        typer.echo(str(p))


@app.command()
def archive(
    files: List[Path] = typer.Argument(..., exists=True, dir_okay=False),
    out: Optional[Path] = typer.Option(None),
    config: str = ConfigOpt,
):
    """ZIP con un JSON por archivo."""
    engine, _ = _bootstrap(config)
    svc = ConversionService(engine)
    path = svc.export_archive([str(f) for f in files], str(out) if out else None)
    if path is None:
        raise typer.Exit(code=1)
    typer.echo(str(path))


if __name__ == "__main__":
    app()

# spiroreader/services/conversion_service.py
import asyncio
import json
import os
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from spiroreader.commons.engine import DecoderEngine
from spiroreader.commons.logger import logger
from spiroreader.helpers.exporters import (
    json_archive,
    write_pnp_workbook,
    zak_conclusion_csv,
    zak_metrics_csv,
)
from spiroreader.helpers.file_transport import FileWatcher
from spiroreader.parsers.models import PnpRecord, ZakRecord


def generate_output_filename(source: str, file_type: str = "unknown", extension: str = "json") -> str:
    """
    Genera nombre de salida con timestamp, tipo y nombre base del origen.
    Ej: 20250821-170605-123456_pnp_2-1.json
    """
    if not isinstance(source, str):
        raise TypeError(f"Invalid type for source: expected str, got {type(source).__name__}")

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S-%f")
    base_name = os.path.splitext(os.path.basename(source))[0]
    safe_base = re.sub(r"[^\w\-]", "_", base_name)
    return f"{ts}_{file_type.lower()}_{safe_base}.{extension}"


class ConversionService:
    def __init__(self, engine: DecoderEngine):
        self.engine = engine
        self.paths = engine.settings.paths
        self.export_cfg = engine.settings.export
        for p in (self.paths.archive, self.paths.error):
            Path(p).mkdir(parents=True, exist_ok=True)

    def _move_to_error(self, data: bytes, src: str):
        err_name = Path(src).name if src else "unnamed.err"
        errp = Path(self.paths.error) / err_name
        if src and Path(src).exists():
            shutil.move(src, errp)
        else:
            errp.write_bytes(data)
        return errp

    def process_bytes(self, data: bytes, src: str) -> Optional[Dict]:
        """Decode one file and archive its JSON; bad files go to error/ without raising."""
        name = Path(src).name
        try:
            record = self.engine.decode(data, name)
            payload = self.engine.to_payload(record, len(data))
            out_json = Path(self.paths.archive) / generate_output_filename(src, payload["fileType"])
            out_json.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            logger.info(f"Archivo procesado y archivado: {out_json}")

            # mueve el original procesado a archive/raw/
            if Path(src).exists():
                dst_dir = Path(self.paths.archive) / "raw"
                dst_dir.mkdir(parents=True, exist_ok=True)
                shutil.move(src, dst_dir / name)
            return payload

        except ValidationError as ve:
            errp = self._move_to_error(data, src)
            logger.error(f"Validación falló para {name}: {ve}. Movido a {errp}")
            return None
        except Exception as ex:
            errp = self._move_to_error(data, src)
            logger.exception(f"Error procesando {name}: {ex}. Movido a {errp}")
            return None

    def process_file(self, path: str) -> Optional[Dict]:
        return self.process_bytes(Path(path).read_bytes(), str(path))

    async def _on_file(self, data: bytes, src: str):
        # un evento tardío del watcher puede llegar cuando el archivo ya se archivó
        if not Path(src).exists():
            logger.debug(f"Ignorado {src}: ya fue procesado")
            return
        self.process_bytes(data, src)

    def _inbox_files(self, patterns: Sequence[str]) -> List[Path]:
        inbox = Path(self.paths.inbox)
        found = {f for pat in patterns for f in inbox.glob(pat) if f.is_file()}
        return sorted(found)

    async def _process_backlog(self, patterns: Sequence[str]):
        files = self._inbox_files(patterns)
        if not files:
            return
        logger.info(f"Backlog detectado: {len(files)} archivo(s) en {self.paths.inbox}")
        for f in files:
            try:
                data = f.read_bytes()
            except OSError as e:
                logger.warning(f"No se pudo leer {f}: {e}; reintento breve...")
                await asyncio.sleep(0.1)
                data = f.read_bytes()
            await self._on_file(data, str(f))

    async def run_file_mode(self, patterns: Sequence[str], stop_event: Optional[asyncio.Event] = None):
        loop = asyncio.get_running_loop()
        Path(self.paths.inbox).mkdir(parents=True, exist_ok=True)

        # 1) Procesar backlog existente
        await self._process_backlog(patterns)

        # 2) Arrancar watcher para nuevos archivos
        watcher = FileWatcher(
            self.paths.inbox, patterns, self._on_file, loop, self.engine.settings.watch.settle_seconds
        )
        watcher.start()
        logger.info(f"Escuchando carpeta {self.paths.inbox}...")
        try:
            await (stop_event or asyncio.Event()).wait()
        finally:
            watcher.stop()

    # ---------------- Exportaciones ----------------

    def decode_many(self, files: Iterable[str]) -> List[tuple]:
        """(record, size, payload) for every file that decodes; failures are logged and skipped."""
        out = []
        for f in files:
            p = Path(f)
            try:
                data = p.read_bytes()
                record = self.engine.decode(data, p.name)
            except ValidationError as ve:
                logger.error(f"Validación falló para {p.name}: {ve}")
                continue
            except Exception as ex:
                logger.exception(f"Error procesando {p.name}: {ex}")
                continue
            out.append((record, len(data), self.engine.to_payload(record, len(data))))
        return out

    def export_xlsx(self, files: Iterable[str], out_dir: Optional[str] = None) -> Optional[Path]:
        rows = [
            (r, size, payload["timestamp"])
            for r, size, payload in self.decode_many(files)
            if isinstance(r, PnpRecord)
        ]
        if not rows:
            logger.warning("Sin archivos PNP para exportar a Excel")
            return None
        path = Path(out_dir or self.paths.exports) / self.export_cfg.xlsx_name
        write_pnp_workbook(rows, path)
        logger.info(f"Excel generado: {path} ({len(rows)} fila(s))")
        return path

    def export_csv(self, files: Iterable[str], out_dir: Optional[str] = None) -> List[Path]:
        records = [r for r, _, _ in self.decode_many(files) if isinstance(r, ZakRecord)]
        if not records:
            logger.warning("Sin archivos ZAK para exportar a CSV")
            return []
        out = Path(out_dir or self.paths.exports)
        out.mkdir(parents=True, exist_ok=True)
        metrics = out / self.export_cfg.metrics_csv_name
        conclusion = out / self.export_cfg.conclusion_csv_name
        metrics.write_text(zak_metrics_csv(records), encoding="utf-8-sig")
        conclusion.write_text(zak_conclusion_csv(records), encoding="utf-8-sig")
        logger.info(f"CSV generados: {metrics}, {conclusion}")
        return [metrics, conclusion]

    def export_archive(self, files: Iterable[str], out_dir: Optional[str] = None) -> Optional[Path]:
        payloads = [payload for _, _, payload in self.decode_many(files)]
        if not payloads:
            logger.warning("Sin archivos para empaquetar")
            return None
        out = Path(out_dir or self.paths.exports)
        out.mkdir(parents=True, exist_ok=True)
        path = out / self.export_cfg.archive_name
        path.write_bytes(json_archive(payloads))
        logger.info(f"ZIP generado: {path} ({len(payloads)} archivo(s))")
        return path

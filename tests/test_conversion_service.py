import asyncio
import json
import zipfile

import pytest

from spiroreader.commons.engine import DecoderEngine
from spiroreader.services.conversion_service import ConversionService, generate_output_filename


@pytest.fixture
def service(tmp_path):
    cfg = {
        "paths": {
            "logs_root": str(tmp_path / "logs"),
            "inbox": str(tmp_path / "inbox"),
            "archive": str(tmp_path / "archive"),
            "error": str(tmp_path / "error"),
            "exports": str(tmp_path / "exports"),
        },
        "watch": {"settle_seconds": 0.1},
    }
    return ConversionService(DecoderEngine(cfg))


def test_output_filename():
    name = generate_output_filename("/x/y/2-1 (copia).PNP", "PNP")
    assert name.endswith("_pnp_2-1__copia_.json")
    with pytest.raises(TypeError):
        generate_output_filename(None)


def test_process_file_archives_json_and_raw(service, tmp_path, pnp_bytes):
    src = tmp_path / "2-1.PNP"
    src.write_bytes(pnp_bytes)
    payload = service.process_file(str(src))
    assert payload["fileType"] == "PNP"
    assert not src.exists()
    assert (tmp_path / "archive" / "raw" / "2-1.PNP").exists()
    out = list((tmp_path / "archive").glob("*_pnp_2-1.json"))
    assert len(out) == 1
    assert json.loads(out[0].read_text(encoding="utf-8"))["fileName"] == "2-1.PNP"


def test_bad_file_goes_to_error(service, tmp_path):
    src = tmp_path / "basura.bin"
    src.write_bytes(b"\x01\x02hello")
    assert service.process_file(str(src)) is None
    assert (tmp_path / "error" / "basura.bin").exists()
    assert not src.exists()


@pytest.mark.asyncio
async def test_backlog_is_processed(service, tmp_path, pnp_bytes, zak_bytes):
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    (inbox / "a.pnp").write_bytes(pnp_bytes)
    (inbox / "b.zak").write_bytes(zak_bytes)
    (inbox / "ignorar.txt").write_text("x")

    stop = asyncio.Event()
    stop.set()
    await service.run_file_mode(["*.pnp", "*.zak"], stop_event=stop)

    assert sorted(p.name for p in (tmp_path / "archive" / "raw").iterdir()) == ["a.pnp", "b.zak"]
    assert (inbox / "ignorar.txt").exists()


def test_exports(service, tmp_path, pnp_bytes, zak_bytes):
    pnp = tmp_path / "a.pnp"
    zak = tmp_path / "b.zak"
    pnp.write_bytes(pnp_bytes)
    zak.write_bytes(zak_bytes)
    files = [str(pnp), str(zak)]

    xlsx = service.export_xlsx(files)
    assert xlsx == tmp_path / "exports" / "spirography.xlsx"
    assert xlsx.exists()

    metrics, conclusion = service.export_csv(files)
    assert metrics.read_text(encoding="utf-8-sig").startswith("File,Section,Area")
    assert conclusion.exists()

    archive = service.export_archive(files, str(tmp_path / "zip"))
    with zipfile.ZipFile(archive) as zf:
        assert sorted(zf.namelist()) == ["a.json", "b.json"]

    # las exportaciones no mueven los originales
    assert pnp.exists() and zak.exists()


def test_exports_without_matching_files(service, tmp_path, zak_bytes):
    zak = tmp_path / "b.zak"
    zak.write_bytes(zak_bytes)
    assert service.export_xlsx([str(zak)]) is None
    assert service.export_csv([]) == []
    assert service.export_archive([str(tmp_path / "no-existe.pnp")]) is None


@pytest.mark.asyncio
async def test_late_event_for_archived_file_is_ignored(service, tmp_path, pnp_bytes):
    await service._on_file(pnp_bytes, str(tmp_path / "inbox" / "ya-archivado.pnp"))
    assert list((tmp_path / "archive").glob("*.json")) == []


@pytest.mark.asyncio
async def test_watched_file_is_archived_once(service, tmp_path, pnp_bytes):
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    archive = tmp_path / "archive"
    stop = asyncio.Event()
    task = asyncio.create_task(service.run_file_mode(["*.pnp"], stop_event=stop))
    await asyncio.sleep(0.5)

    # se escribe en dos tramos: created + varios modified
    half = len(pnp_bytes) // 2
    with open(inbox / "a.pnp", "wb") as f:
        f.write(pnp_bytes[:half])
        f.flush()
        await asyncio.sleep(0.05)
        f.write(pnp_bytes[half:])

    for _ in range(100):
        if list(archive.glob("*.json")):
            break
        await asyncio.sleep(0.05)
    await asyncio.sleep(1.0)
    stop.set()
    await task

    out = list(archive.glob("*.json"))
    assert len(out) == 1
    assert json.loads(out[0].read_text(encoding="utf-8"))["fileSize"] == len(pnp_bytes)
    assert (archive / "raw" / "a.pnp").exists()

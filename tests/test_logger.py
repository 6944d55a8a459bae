import sys

from loguru import logger

from spiroreader.commons.logger import log_file_path, setup_logging


def test_setup_logging_writes_dated_file(tmp_path):
    log = setup_logging(str(tmp_path), "debug", name="spirotest", retention_days=3)
    try:
        log.info("hola desde el test")
        log.complete()
        path = log_file_path(str(tmp_path), "spirotest")
        assert path.parent.parent.parent.parent == tmp_path
        assert path.exists()
        text = path.read_text(encoding="utf-8")
        assert "hola desde el test" in text
        assert "| spirotest |" in text
    finally:
        logger.remove()
        logger.add(sys.stderr)

import asyncio
import threading
import time
from pathlib import Path
from typing import Sequence

from watchdog.events import PatternMatchingEventHandler
from watchdog.observers import Observer


class FileWatcher:
    """Watch the inbox and hand each new file's bytes to ``on_file_async(data, path)``.

    created/modified/moved events for the same path collapse into one hand-off:
    the path stays pending until its coroutine finishes, and bytes are only
    read once the file size has stopped changing.
    """

    def __init__(
        self,
        inbox: str,
        patterns: Sequence[str],
        on_file_async,
        loop: asyncio.AbstractEventLoop,
        settle_seconds: float = 0.3,
        max_checks: int = 50,
    ):
        self.inbox = Path(inbox)
        self.inbox.mkdir(parents=True, exist_ok=True)
        self.loop = loop
        self.on_file_async = on_file_async
        self.settle_seconds = settle_seconds
        self.max_checks = max_checks
        self.handler = PatternMatchingEventHandler(patterns=list(patterns), ignore_directories=True)
        self._pending = set()
        self._lock = threading.Lock()

        self.handler.on_created = lambda e: self._submit(Path(e.src_path))
        self.handler.on_modified = lambda e: self._submit(Path(e.src_path))
        self.handler.on_moved = lambda e: self._submit(Path(e.dest_path))

        self.observer = Observer()

    def _wait_stable(self, path: Path) -> bool:
        """True once two size reads ``settle_seconds`` apart agree on a non-empty file."""
        last = -1
        for _ in range(self.max_checks):
            try:
                size = path.stat().st_size
            except FileNotFoundError:
                return False
            if size > 0 and size == last:
                return True
            last = size
            time.sleep(self.settle_seconds)
        return last > 0

    def _submit(self, path: Path):
        key = str(path)
        with self._lock:
            if key in self._pending:
                return
            self._pending.add(key)

        submitted = False
        try:
            # Si el archivo ya no existe, no hay nada que leer (pudo haberse movido)
            if not self._wait_stable(path):
                return
            try:
                data = path.read_bytes()
            except FileNotFoundError:
                return

            fut = asyncio.run_coroutine_threadsafe(self.on_file_async(data, key), self.loop)
            fut.add_done_callback(lambda _: self._release(key))
            submitted = True
        finally:
            if not submitted:
                self._release(key)

    def _release(self, key: str):
        with self._lock:
            self._pending.discard(key)

    def start(self):
        self.observer.schedule(self.handler, str(self.inbox), recursive=False)
        self.observer.start()

    def stop(self):
        self.observer.stop()
        self.observer.join()

"""
Note Storage Backends

Key-value persistence for per-owner note documents. A document is the
canonical JSON produced by NoteStore; backends only move strings.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import ContextManager, Iterator, Optional

from filelock import FileLock, Timeout

from core.schemas import StoreLocked


logger = logging.getLogger(__name__)


class NoteStorage(ABC):
    """Abstract storage for note documents keyed by namespace."""

    @abstractmethod
    def load(self, namespace: str) -> Optional[str]:
        """Return the stored document, or None if absent."""
        pass

    @abstractmethod
    def save(self, namespace: str, document: str) -> None:
        """Replace the stored document atomically."""
        pass

    @abstractmethod
    def delete(self, namespace: str) -> bool:
        pass

    def lock(self, namespace: str) -> ContextManager[None]:
        """
        Exclusive hold on a namespace across load, update and save.

        Backends shared between processes override this; the default only
        relies on NoteStore's in-process owner lock.
        """
        return nullcontext()


class InMemoryNoteStorage(NoteStorage):
    """Process-local storage, mostly for tests and dry runs."""

    def __init__(self) -> None:
        self._documents: dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, namespace: str) -> Optional[str]:
        with self._lock:
            return self._documents.get(namespace)

    def save(self, namespace: str, document: str) -> None:
        with self._lock:
            self._documents[namespace] = document

    def delete(self, namespace: str) -> bool:
        with self._lock:
            return self._documents.pop(namespace, None) is not None

    def namespaces(self) -> list[str]:
        with self._lock:
            return sorted(self._documents)


class FileNoteStorage(NoteStorage):
    """
    One JSON file per namespace under a base directory.

    Writes go to a temp file in the same directory and are swapped in with
    os.replace, so a crash never leaves a half-written document. lock()
    takes a `.{namespace}.lock` file lock so separate processes serialize
    their read-modify-write cycles.
    """

    def __init__(self, base_dir: str | Path, lock_timeout: float = 30.0) -> None:
        self.base_dir = Path(base_dir).expanduser()
        self.lock_timeout = lock_timeout

    def _path(self, namespace: str) -> Path:
        if not namespace or any(c in namespace for c in "/\\") or namespace.startswith("."):
            raise ValueError(f"Invalid storage namespace: {namespace!r}")
        return self.base_dir / f"{namespace}.json"

    def load(self, namespace: str) -> Optional[str]:
        path = self._path(namespace)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def save(self, namespace: str, document: str) -> None:
        path = self._path(namespace)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(document)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()
        logger.debug(f"Saved note document {path}")

    def delete(self, namespace: str) -> bool:
        path = self._path(namespace)
        if not path.exists():
            return False
        path.unlink()
        return True

    @contextmanager
    def lock(self, namespace: str) -> Iterator[None]:
        self._path(namespace)  # rejects path-like namespaces
        self.base_dir.mkdir(parents=True, exist_ok=True)
        file_lock = FileLock(str(self.base_dir / f".{namespace}.lock"))
        try:
            file_lock.acquire(timeout=self.lock_timeout)
        except Timeout as e:
            raise StoreLocked(namespace, self.lock_timeout) from e
        try:
            yield
        finally:
            file_lock.release()

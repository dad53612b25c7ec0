"""Run number allocation for pipeline runs."""

import fcntl
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path


class RunNumberAllocator(ABC):
    """Interface for handing out monotonically increasing run numbers.

    Implementations:
    - InMemoryRunNumberAllocator: For tests, restarts at 1 per process
    - FileRunNumberAllocator: Persists the last number in a JSON file
    """

    @abstractmethod
    def next_run_number(self) -> int:
        """Reserve and return the next run number."""
        pass

    @abstractmethod
    def last_run_number(self) -> int:
        """Return the most recently reserved run number, 0 if none."""
        pass


class InMemoryRunNumberAllocator(RunNumberAllocator):
    """In-memory allocator for tests and one-off runs."""

    def __init__(self, start: int = 0) -> None:
        self._lock = threading.Lock()
        self._last = start

    def next_run_number(self) -> int:
        with self._lock:
            self._last += 1
            return self._last

    def last_run_number(self) -> int:
        with self._lock:
            return self._last


class FileRunNumberAllocator(RunNumberAllocator):
    """Allocator that keeps the last run number in a JSON state file.

    Safe across threads and across processes sharing the file: every
    read-increment-write holds an exclusive ``flock`` on a sibling
    ``.lock`` file. The counter is rewritten through a uniquely named
    temporary file so a crash never leaves a truncated counter behind.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self):
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, open(self._lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _read(self) -> int:
        if not self._path.exists():
            return 0
        data = json.loads(self._path.read_text(encoding="utf-8"))
        return int(data.get("last_run_number", 0))

    def _write(self, value: int) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=self._path.name + ".", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(json.dumps({"last_run_number": value}) + "\n")
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def next_run_number(self) -> int:
        with self._locked():
            value = self._read() + 1
            self._write(value)
            return value

    def last_run_number(self) -> int:
        with self._locked():
            return self._read()

import os
import time
from pathlib import Path
from typing import IO, Optional

from .errors import RegistryLockError
from .logger import setup_logger

if os.name == "nt":
    import msvcrt
else:
    import fcntl

_logger = setup_logger()

POLL_INTERVAL = 0.1


class KeyLock:
    """
    Exclusive lock on a marker file, held across threads and processes.

    Every acquire opens its own handle, so two threads of one process contend
    exactly like two processes do. The marker file is left in place on release.
    """

    def __init__(self, lock_path: Path, timeout: float = 300.0):
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self._lock_file: Optional[IO[bytes]] = None

    def acquire(self) -> bool:
        """Acquire the lock. Returns True if acquired, False on timeout."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)

        deadline = time.monotonic() + self.timeout
        waited = False
        while True:
            fh = open(self.lock_path, "a+b")
            try:
                _try_lock(fh)
            except OSError:
                fh.close()
                if time.monotonic() >= deadline:
                    return False
                if not waited:
                    _logger.info("Waiting for lock %s...", self.lock_path.name)
                    waited = True
                time.sleep(POLL_INTERVAL)
                continue

            self._lock_file = fh
            return True

    def release(self) -> None:
        if self._lock_file:
            try:
                _unlock(self._lock_file)
            finally:
                self._lock_file.close()
                self._lock_file = None

    @property
    def locked(self) -> bool:
        return self._lock_file is not None

    def __enter__(self):
        if not self.acquire():
            raise RegistryLockError(f"Timeout after {self.timeout}s waiting for registry lock {self.lock_path}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False


def _try_lock(fh: IO[bytes]) -> None:
    if os.name == "nt":
        fh.seek(0)
        msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(fh: IO[bytes]) -> None:
    if os.name == "nt":
        fh.seek(0)
        msvcrt.locking(fh.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

import fcntl
import logging
import os
import time

from pathlib import Path

from ark.utils.errors import StoreLockedError

logger = logging.getLogger("ark.lock")


class LockFile:
    """Exclusive advisory lock on a file, held across processes.

    ``timeout`` of 0 tries once; otherwise the lock is polled until the
    deadline and StoreLockedError is raised instead of blocking forever.
    """

    POLL_INTERVAL = 0.05

    def __init__(self, path: Path, timeout: float = 1.0, description: str | None = None):
        self.path = Path(path)
        self.timeout = timeout
        self.description = description or str(path)
        self._fd: int | None = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            return
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    raise StoreLockedError(f"{self.description} is in use by another process") from None
                time.sleep(self.POLL_INTERVAL)
        self._fd = fd
        logger.debug("acquired lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("released lock %s", self.path)

    def __enter__(self) -> "LockFile":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()

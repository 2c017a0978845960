"""
Single-slot lock serializing backup and restore cycles.
"""

import fcntl
import os
from pathlib import Path

from volume_backup.errors import LockError


class CycleLock:
    """
    Non-blocking exclusive file lock held for the duration of one cycle.

    flock() locks belong to the open file description, so two CycleLock
    instances on the same path exclude each other within one process too.
    """

    def __init__(self, path: str):
        self.path = path
        self.fd = None

    def acquire(self):
        """
        Take the lock.

        Raises:
            LockError: If another cycle holds it
        """
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockError(f"Another backup or restore is running (lock: {self.path})")

        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self.fd = fd

    def release(self):
        if self.fd is None:
            return
        try:
            fcntl.flock(self.fd, fcntl.LOCK_UN)
        finally:
            os.close(self.fd)
            self.fd = None

    @property
    def locked(self) -> bool:
        return self.fd is not None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

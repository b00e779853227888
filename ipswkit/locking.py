"""Exclusive advisory locks on a lock file."""

from __future__ import annotations

import logging
from typing import IO

import portalocker

__all__ = ["LockError", "LockFile"]

_log = logging.getLogger(__name__)


class LockError(OSError):
    """A lock file could not be locked or unlocked."""


class LockFile:
    """An exclusive lock held on ``filename``, created if missing.

    Acquiring blocks until the lock is free. Use as a context manager or call
    :meth:`acquire` and :meth:`release` directly.
    """

    def __init__(self, filename: str) -> None:
        self.filename = str(filename)
        self._fp: IO[str] | None = None

    @property
    def locked(self) -> bool:
        """Whether this object currently holds the lock."""
        return self._fp is not None

    def acquire(self) -> None:
        """Open the lock file and wait for an exclusive lock on it."""
        if self._fp is not None:
            raise LockError(f"lock on '{self.filename}' is already held")
        try:
            fp = open(self.filename, "a+")
        except OSError as exc:
            _log.debug("could not open or create lockfile '%s'", self.filename)
            raise LockError(
                f"could not open or create lockfile '{self.filename}'"
            ) from exc
        try:
            portalocker.lock(fp, portalocker.LOCK_EX)
        except (portalocker.exceptions.LockException, OSError) as exc:
            fp.close()
            _log.debug("can't lock file '%s': %s", self.filename, exc)
            raise LockError(f"can't lock file '{self.filename}'") from exc
        self._fp = fp

    def release(self) -> None:
        """Drop the lock and close the lock file."""
        fp = self._fp
        if fp is None:
            raise LockError(f"lock on '{self.filename}' is not held")
        self._fp = None
        try:
            portalocker.unlock(fp)
        except (portalocker.exceptions.LockException, OSError) as exc:
            _log.debug("can't unlock file '%s': %s", self.filename, exc)
            raise LockError(f"can't unlock file '{self.filename}'") from exc
        finally:
            fp.close()

    def __enter__(self) -> "LockFile":
        self.acquire()
        return self

    def __exit__(self, *args) -> None:
        self.release()
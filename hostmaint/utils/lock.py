"""
Per-category job locks for hostmaint.

A lock is a file under the lock directory named after the job category. The
holder keeps an exclusive flock on the file for as long as the lock is held,
so the kernel drops it when the holder dies. The file holds the PID of the
holder on its first line and the acquisition time on its second line. A lock
file that is still present but not flocked was left behind by a holder that
died; it is stale and may be taken over.

Locks are advisory: they only exclude other processes that go through
JobLock as well.

Example:
    >>> lock = JobLock('/var/run/hostmaint', 'system-update')
    >>> handle = lock.acquire()
    >>> try:
    ...     do_work()
    ... finally:
    ...     lock.release()
"""

import os
import fcntl
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

from hostmaint.utils.process import is_process_running, get_script_pid

logger = logging.getLogger(__name__)

# Attempts before giving up when the lock file keeps being replaced under us
MAX_ATTEMPTS = 3

class LockError(Exception):
    """Base exception for lock-related errors."""
    pass

class LockHeldError(LockError):
    """Raised when a live process already holds the lock."""

    def __init__(self, category: str, holder_pid: Optional[int]):
        self.category = category
        self.holder_pid = holder_pid
        super().__init__(
            f"Lock for '{category}' is held by PID {holder_pid}"
        )

class LockReleaseError(LockError):
    """Raised when a held lock cannot be removed."""
    pass

@dataclass(frozen=True)
class LockHandle:
    """An acquired exclusive slot for one job category."""

    category: str
    path: Path
    holder_pid: int
    acquired_at: datetime

@dataclass(frozen=True)
class LockRecord:
    """Contents of an existing lock file as read from disk."""

    holder_pid: Optional[int]
    acquired_at: datetime

class JobLock:
    """
    Exclusive, stale-aware lock for a single job category.

    Attributes:
        category (str): Job category the lock scopes
        path (Path): Lock file location
        stale_after (timedelta): Minimum age before a lock with a dead
            holder is taken over
        handle (Optional[LockHandle]): Handle while the lock is held
    """

    def __init__(
        self,
        lock_dir: Union[str, Path],
        category: str,
        stale_after: Optional[timedelta] = None
    ):
        self.category = category
        self.path = Path(lock_dir) / f"{category}.lock"
        self.stale_after = stale_after or timedelta(0)
        self.handle: Optional[LockHandle] = None
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self.handle is not None

    def acquire(self) -> LockHandle:
        """
        Acquire the lock without waiting.

        Returns:
            LockHandle for the acquired slot

        Raises:
            LockHeldError: If a live process holds the lock, or a dead
                holder's lock is younger than stale_after
            LockError: If the lock file cannot be created
        """
        if self.handle is not None:
            raise LockError(f"Lock for '{self.category}' already acquired")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LockError(f"Cannot create lock directory {self.path.parent}: {e}")

        for _ in range(MAX_ATTEMPTS):
            fd = self._open_locked()
            if fd is None:
                continue

            try:
                record = self.read()
                if record is not None:
                    self._check_leftover(record)
                pid = get_script_pid()
                acquired_at = datetime.now(timezone.utc)
                os.ftruncate(fd, 0)
                os.write(fd, f"{pid}\n{acquired_at.isoformat()}\n".encode())
            except BaseException:
                os.close(fd)
                raise

            self._fd = fd
            self.handle = LockHandle(
                category=self.category,
                path=self.path,
                holder_pid=pid,
                acquired_at=acquired_at
            )
            logger.debug(f"Lock acquired: {self.path} (PID {pid})")
            return self.handle

        record = self.read()
        raise LockHeldError(self.category, record.holder_pid if record else None)

    def release(self) -> None:
        """
        Release the lock if held by this instance.

        The lock file is removed while the flock is still held, and only when
        it still names our PID.

        Raises:
            LockReleaseError: If the lock file cannot be removed
        """
        if self.handle is None:
            return

        handle, fd = self.handle, self._fd
        try:
            record = self.read()
            if record is None:
                logger.warning(f"Lock file {handle.path} vanished before release")
            elif record.holder_pid != handle.holder_pid:
                logger.warning(
                    f"Lock file {handle.path} now belongs to PID {record.holder_pid}; "
                    f"leaving it in place"
                )
            else:
                try:
                    handle.path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    raise LockReleaseError(f"Cannot remove lock file {handle.path}: {e}")
                logger.debug(f"Lock released: {handle.path}")
        finally:
            self.handle, self._fd = None, None
            if fd is not None:
                os.close(fd)

    def read(self) -> Optional[LockRecord]:
        """
        Read the current lock file.

        Returns:
            LockRecord, or None if no lock file exists or it is empty. An
            unreadable PID is reported as holder_pid=None.
        """
        try:
            content = self.path.read_text()
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LockError(f"Cannot read lock file {self.path}: {e}")

        lines = content.splitlines()
        if not lines:
            return None

        try:
            holder_pid: Optional[int] = int(lines[0].strip())
        except ValueError:
            holder_pid = None

        acquired_at = datetime.fromtimestamp(mtime, timezone.utc)
        if len(lines) > 1:
            try:
                parsed = datetime.fromisoformat(lines[1].strip())
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                acquired_at = parsed
            except ValueError:
                pass

        return LockRecord(holder_pid=holder_pid, acquired_at=acquired_at)

    def _open_locked(self) -> Optional[int]:
        """
        Open the lock file and take its flock.

        Returns:
            The locked descriptor, or None if the file was replaced between
            open and flock and the caller should retry

        Raises:
            LockHeldError: If another holder has the flock
            LockError: If the lock file cannot be opened
        """
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_RDWR, 0o644)
        except OSError as e:
            raise LockError(f"Cannot create lock file {self.path}: {e}")

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            record = self.read()
            raise LockHeldError(self.category, record.holder_pid if record else None)
        except OSError as e:
            os.close(fd)
            raise LockError(f"Cannot lock {self.path}: {e}")

        # The previous holder unlinks the file before dropping its flock, so
        # the descriptor may point at a file that is no longer the lock
        try:
            current = os.stat(str(self.path))
        except FileNotFoundError:
            os.close(fd)
            return None
        if current.st_ino != os.fstat(fd).st_ino:
            os.close(fd)
            return None
        return fd

    def _check_leftover(self, record: LockRecord) -> None:
        """Accept a lock file left by a dead holder or raise LockHeldError."""
        if record.holder_pid is not None and is_process_running(record.holder_pid):
            raise LockHeldError(self.category, record.holder_pid)

        age = datetime.now(timezone.utc) - record.acquired_at
        if age < self.stale_after:
            logger.warning(
                f"Lock for '{self.category}' has a dead holder "
                f"(PID {record.holder_pid}) but is only {int(age.total_seconds())}s old"
            )
            raise LockHeldError(self.category, record.holder_pid)

        logger.warning(
            f"Stale lock file found for '{self.category}' "
            f"(PID {record.holder_pid} not running), taking over"
        )

    def __enter__(self) -> LockHandle:
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"JobLock(category={self.category!r}, path={str(self.path)!r}, held={self.held})"

"""
Test suite for hostmaint job locks.
"""

import os
import fcntl
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from hostmaint.utils.lock import JobLock, LockError, LockHeldError

DEAD_PID = 4194305

@pytest.fixture
def lock(tmp_path):
    return JobLock(tmp_path / "locks", "log-cleanup")

class TestJobLock:
    """Test suite for JobLock."""

    def test_acquire_writes_pid_and_time(self, lock):
        handle = lock.acquire()
        lines = lock.path.read_text().splitlines()

        assert handle.holder_pid == os.getpid()
        assert lines[0] == str(os.getpid())
        assert datetime.fromisoformat(lines[1]) == handle.acquired_at
        assert lock.held

    def test_release_removes_file(self, lock):
        lock.acquire()
        lock.release()
        assert not lock.path.exists()
        assert not lock.held

    def test_release_without_acquire(self, lock):
        lock.release()
        assert not lock.path.exists()

    def test_double_acquire(self, lock):
        lock.acquire()
        with pytest.raises(LockError):
            lock.acquire()

    def test_second_instance_blocked(self, lock, tmp_path):
        lock.acquire()
        other = JobLock(tmp_path / "locks", "log-cleanup")
        with pytest.raises(LockHeldError) as exc_info:
            other.acquire()
        assert exc_info.value.holder_pid == os.getpid()

    def test_stale_lock_taken_over(self, lock):
        lock.path.parent.mkdir(parents=True)
        lock.path.write_text(f"{DEAD_PID}\n")

        handle = lock.acquire()
        assert handle.holder_pid == os.getpid()

    def test_dead_holder_reported_by_psutil(self, lock):
        lock.path.parent.mkdir(parents=True)
        lock.path.write_text("1234\n")
        with patch('hostmaint.utils.lock.is_process_running', return_value=False):
            lock.acquire()
        assert lock.read().holder_pid == os.getpid()

    def test_garbage_lock_is_stale(self, lock):
        lock.path.parent.mkdir(parents=True)
        lock.path.write_text("not a pid\n")
        lock.acquire()
        assert lock.held

    def test_stale_after_respected(self, tmp_path):
        lock = JobLock(tmp_path, "cert-renewal", stale_after=timedelta(minutes=30))
        recent = datetime.now(timezone.utc) - timedelta(minutes=5)
        lock.path.write_text(f"{DEAD_PID}\n{recent.isoformat()}\n")

        with pytest.raises(LockHeldError):
            lock.acquire()
        assert lock.path.exists()

    def test_racing_stale_takeover_has_one_winner(self, tmp_path):
        """Two instances taking over the same stale lock never both hold it."""
        first = JobLock(tmp_path, "log-cleanup")
        second = JobLock(tmp_path, "log-cleanup")
        first.path.write_text(f"{DEAD_PID}\n")
        read = JobLock.read
        raced = []

        def read_then_race(self):
            record = read(self)
            if self is second and not raced:
                raced.append(True)
                try:
                    first.acquire()
                except LockHeldError:
                    pass
            return record

        with patch.object(JobLock, 'read', read_then_race):
            try:
                second.acquire()
            except LockHeldError:
                pass

        assert raced
        assert [first.held, second.held].count(True) == 1

    def test_replaced_file_is_retried(self, lock):
        """A lock file swapped out between open and flock is not trusted."""
        lock.path.parent.mkdir(parents=True)
        lock.path.write_text("")
        flock = fcntl.flock
        replaced = []

        def replace_then_flock(fd, operation):
            if not replaced:
                replaced.append(True)
                lock.path.unlink()
                lock.path.write_text("")
            return flock(fd, operation)

        with patch('hostmaint.utils.lock.fcntl.flock', side_effect=replace_then_flock):
            lock.acquire()

        assert replaced
        assert lock.read().holder_pid == os.getpid()

    def test_holder_flock_blocks_other_instance(self, lock, tmp_path):
        lock.acquire()
        lock.path.write_text(f"{DEAD_PID}\n")
        with pytest.raises(LockHeldError):
            JobLock(tmp_path / "locks", "log-cleanup").acquire()

    def test_naive_timestamp_read_as_utc(self, lock):
        lock.path.parent.mkdir(parents=True)
        lock.path.write_text(f"{DEAD_PID}\n2024-01-01T00:00:00\n")
        record = lock.read()
        assert record.acquired_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_release_leaves_foreign_lock(self, lock):
        """A lock taken over by another process is not deleted."""
        lock.acquire()
        lock.path.write_text(f"{DEAD_PID}\n")
        lock.release()
        assert lock.path.exists()

    def test_context_manager(self, lock):
        with lock as handle:
            assert handle.path.exists()
        assert not lock.path.exists()

    def test_context_manager_releases_on_error(self, lock):
        with pytest.raises(RuntimeError):
            with lock:
                raise RuntimeError("boom")
        assert not lock.path.exists()

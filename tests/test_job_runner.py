"""
Test suite for the hostmaint JobRunner.
Tests locking, preflight ordering, dry runs, outcome reporting and
guaranteed lock release.
"""

import os
import signal
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from hostmaint.actions.base import ActionError
from hostmaint.job_runner import (
    JobRunner,
    JobNotRunError,
    AlreadyRunningError,
    PreflightFailedError,
    InsufficientPrivilegeError,
    LockUnavailableError,
    JobInterrupted,
    InterruptGuard
)
from hostmaint.models import JobCategory, JobOutcome, JobStatus, RunOptions
from hostmaint.notifier import Severity
from hostmaint.utils.lock import JobLock
from tests.conftest import FakeAction, FakeCheck, RecordingNotifier

# Above the kernel's maximum pid_max, so never a live process
DEAD_PID = 4194305

def write_lock(lock_dir, category, pid, acquired_at=None):
    lock_dir.mkdir(parents=True, exist_ok=True)
    acquired_at = acquired_at or datetime.now(timezone.utc)
    path = lock_dir / f"{category}.lock"
    path.write_text(f"{pid}\n{acquired_at.isoformat()}\n")
    return path

class TestLocking:
    """Exclusive per-category locking."""

    def test_live_holder_reports_already_running(self, runner, lock_dir):
        """A lock held by a live process stops the job before anything runs."""
        write_lock(lock_dir, "system-update", os.getpid())
        check = FakeCheck("disk-space")
        action = FakeAction()

        with pytest.raises(AlreadyRunningError) as exc_info:
            runner.run(JobCategory.SYSTEM_UPDATE, [check], action)

        assert exc_info.value.holder_pid == os.getpid()
        assert isinstance(exc_info.value, JobNotRunError)
        assert check.calls == 0
        assert action.execute_calls == 0

    def test_live_holder_lock_left_in_place(self, runner, lock_dir):
        path = write_lock(lock_dir, "system-update", os.getpid())
        with pytest.raises(AlreadyRunningError):
            runner.run(JobCategory.SYSTEM_UPDATE, [], FakeAction())
        assert path.read_text().startswith(f"{os.getpid()}\n")

    def test_concurrent_run_same_category(self, runner, lock_dir):
        """A second run of the same category while the first executes fails."""
        inner = {}

        def nested_run():
            try:
                runner.run(JobCategory.LOG_CLEANUP, [], FakeAction())
            except AlreadyRunningError as e:
                inner['error'] = e

        outcome = runner.run(JobCategory.LOG_CLEANUP, [], FakeAction(on_execute=nested_run))

        assert outcome.status is JobStatus.SUCCESS
        assert isinstance(inner['error'], AlreadyRunningError)

    def test_different_categories_do_not_conflict(self, runner, lock_dir):
        write_lock(lock_dir, "system-update", os.getpid())
        outcome = runner.run(JobCategory.LOG_CLEANUP, [], FakeAction())
        assert outcome.status is JobStatus.SUCCESS

    def test_stale_lock_is_taken_over(self, runner, lock_dir):
        """A lock referencing a nonexistent process is replaced."""
        write_lock(lock_dir, "system-update", DEAD_PID)
        action = FakeAction()

        outcome = runner.run(JobCategory.SYSTEM_UPDATE, [], action)

        assert outcome.status is JobStatus.SUCCESS
        assert action.execute_calls == 1
        assert not (lock_dir / "system-update.lock").exists()

    def test_stale_lock_younger_than_threshold(self, runner, lock_dir):
        write_lock(lock_dir, "system-update", DEAD_PID)
        options = RunOptions(auto_release_stale_lock_after=timedelta(hours=1))

        with pytest.raises(AlreadyRunningError):
            runner.run(JobCategory.SYSTEM_UPDATE, [], FakeAction(), options)

    def test_stale_lock_older_than_threshold(self, runner, lock_dir):
        old = datetime.now(timezone.utc) - timedelta(hours=2)
        write_lock(lock_dir, "system-update", DEAD_PID, acquired_at=old)
        options = RunOptions(auto_release_stale_lock_after=timedelta(hours=1))

        outcome = runner.run(JobCategory.SYSTEM_UPDATE, [], FakeAction(), options)
        assert outcome.ok

    def test_lock_dir_unusable(self, config, notifier, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        runner = JobRunner(config, notifiers=[notifier], lock_dir=blocker / "locks")

        with pytest.raises(LockUnavailableError):
            runner.run("custom-job", [], FakeAction())

    def test_string_category(self, runner, lock_dir):
        outcome = runner.run("nightly-update", [], FakeAction())
        assert outcome.category == "nightly-update"

    def test_invalid_category(self, runner):
        with pytest.raises(ValueError):
            runner.run("../etc", [], FakeAction())

class TestPreflight:
    """Ordered, short-circuiting preflight checks."""

    def test_stops_at_first_failure(self, runner, notifier):
        a = FakeCheck("A", ok=True)
        b = FakeCheck("B", ok=False, reason="only 10MB free")
        c = FakeCheck("C", ok=True)
        action = FakeAction()

        with pytest.raises(PreflightFailedError) as exc_info:
            runner.run("nightly-update", [a, b, c], action)

        assert exc_info.value.check_name == "B"
        assert exc_info.value.reason == "only 10MB free"
        assert (a.calls, b.calls, c.calls) == (1, 1, 0)
        assert action.execute_calls == 0
        assert action.simulate_calls == 0

    def test_failure_is_notified(self, runner, notifier):
        with pytest.raises(PreflightFailedError):
            runner.run("nightly-update", [FakeCheck("network", ok=False, reason="offline")], FakeAction())

        assert len(notifier.sent) == 1
        assert notifier.sent[0].severity is Severity.ERROR
        assert "network" in notifier.messages[0]
        assert "offline" in notifier.messages[0]

    def test_raising_check_fails(self, runner):
        class Broken(FakeCheck):
            def check(self):
                raise OSError("statvfs failed")

        with pytest.raises(PreflightFailedError) as exc_info:
            runner.run("nightly-update", [Broken("disk-space")], FakeAction())
        assert "statvfs failed" in exc_info.value.reason

    def test_all_checks_pass(self, runner):
        checks = [FakeCheck("A"), FakeCheck("B")]
        action = FakeAction()
        runner.run("nightly-update", checks, action)
        assert [c.calls for c in checks] == [1, 1]
        assert action.execute_calls == 1

class TestDryRun:
    """Dry runs simulate and never execute."""

    def test_nightly_update_scenario(self, runner, notifier):
        checks = [FakeCheck("diskSpace"), FakeCheck("network")]
        action = FakeAction(description="12 packages to upgrade")

        outcome = runner.run("nightly-update", checks, action, RunOptions(dry_run=True))

        assert outcome.status is JobStatus.SUCCESS
        assert outcome.summary == "12 packages to upgrade"
        assert outcome.dry_run is True
        assert action.execute_calls == 0
        assert action.simulate_calls == 1

    def test_dry_run_sends_no_notification(self, runner, notifier):
        runner.run("nightly-update", [], FakeAction(), RunOptions(dry_run=True))
        assert notifier.sent == []

    def test_failing_simulation(self, runner):
        class BrokenSimulation(FakeAction):
            def simulate(self):
                raise ActionError("apt-get -s failed")

        action = BrokenSimulation()
        outcome = runner.run("nightly-update", [], action, RunOptions(dry_run=True))

        assert outcome.status is JobStatus.FAILED
        assert "apt-get -s failed" in outcome.summary
        assert action.execute_calls == 0

    def test_dry_run_skips_privilege_check(self, runner):
        options = RunOptions(dry_run=True, require_elevated_privilege=True)
        with patch('hostmaint.job_runner.is_root', return_value=False):
            outcome = runner.run("nightly-update", [], FakeAction(), options)
        assert outcome.ok

class TestExecution:
    """Single execution attempt and outcome reporting."""

    def test_success(self, runner, notifier):
        action = FakeAction(outcome=JobOutcome.success("3 packages updated", pending=3))
        outcome = runner.run(JobCategory.SYSTEM_UPDATE, [], action)

        assert outcome.status is JobStatus.SUCCESS
        assert outcome.category == "system-update"
        assert outcome.details == {'pending': 3}
        assert outcome.started_at <= outcome.finished_at
        assert action.execute_calls == 1
        assert notifier.sent[0].severity is Severity.INFO
        assert "3 packages updated" in notifier.messages[0]

    def test_outcome_details_read_only(self, runner):
        counters = {'pending': 3}
        action = FakeAction(outcome=JobOutcome.success("3 packages updated", **counters))
        outcome = runner.run(JobCategory.SYSTEM_UPDATE, [], action)

        with pytest.raises(TypeError):
            outcome.details['pending'] = 0
        counters['pending'] = 0
        assert outcome.details['pending'] == 3
        assert outcome.to_dict()['details'] == {'pending': 3}

    def test_no_work(self, runner, notifier):
        action = FakeAction(outcome=JobOutcome.skipped("System is up to date"))
        outcome = runner.run(JobCategory.SYSTEM_UPDATE, [], action)

        assert outcome.status is JobStatus.SKIPPED_NO_WORK
        assert outcome.ok
        assert "nothing to do" in notifier.messages[0]

    def test_action_error_disk_full(self, runner, notifier):
        """ActionError becomes a failed outcome and is not raised."""
        action = FakeAction(error=ActionError("disk full"))

        outcome = runner.run("nightly-update", [], action)

        assert outcome.status is JobStatus.FAILED
        assert "disk full" in outcome.summary
        assert notifier.sent[0].severity is Severity.ERROR
        assert "disk full" in notifier.messages[0]

    def test_action_error_artifacts(self, runner, notifier, tmp_path):
        snapshot = tmp_path / "packages_20240101_000000.list"
        action = FakeAction(error=ActionError("dpkg interrupted", artifacts=[snapshot]))

        outcome = runner.run(JobCategory.SYSTEM_UPDATE, [], action)

        assert outcome.artifacts == (snapshot,)
        assert str(snapshot) in notifier.messages[0]
        assert "manual recovery" in notifier.messages[0]

    def test_unexpected_exception(self, runner):
        action = FakeAction(error=RuntimeError("boom"))
        outcome = runner.run("nightly-update", [], action)
        assert outcome.status is JobStatus.FAILED
        assert outcome.summary == "RuntimeError: boom"

    def test_non_outcome_return(self, runner):
        class Sloppy(FakeAction):
            def execute(self):
                return True

        outcome = runner.run("nightly-update", [], Sloppy())
        assert outcome.status is JobStatus.FAILED

    def test_notification_failure_ignored(self, config):
        runner = JobRunner(config, notifiers=[RecordingNotifier(fail=True)])
        outcome = runner.run("nightly-update", [], FakeAction())
        assert outcome.status is JobStatus.SUCCESS

    def test_requires_root(self, runner, lock_dir):
        options = RunOptions(require_elevated_privilege=True)
        action = FakeAction()
        with patch('hostmaint.job_runner.is_root', return_value=False):
            with pytest.raises(InsufficientPrivilegeError):
                runner.run("nightly-update", [], action, options)
        assert action.execute_calls == 0
        assert not (lock_dir / "nightly-update.lock").exists()

class TestLockRelease:
    """The lock is released on every terminating path."""

    def assert_released(self, runner, lock_dir):
        assert not (lock_dir / "nightly-update.lock").exists()
        outcome = runner.run("nightly-update", [], FakeAction())
        assert outcome.ok

    def test_after_already_running(self, runner, lock_dir):
        path = write_lock(lock_dir, "nightly-update", os.getpid())
        with pytest.raises(AlreadyRunningError):
            runner.run("nightly-update", [], FakeAction())
        path.unlink()
        self.assert_released(runner, lock_dir)

    def test_after_preflight_failure(self, runner, lock_dir):
        with pytest.raises(PreflightFailedError):
            runner.run("nightly-update", [FakeCheck("A", ok=False)], FakeAction())
        self.assert_released(runner, lock_dir)

    def test_after_dry_run(self, runner, lock_dir):
        runner.run("nightly-update", [], FakeAction(), RunOptions(dry_run=True))
        self.assert_released(runner, lock_dir)

    def test_after_success(self, runner, lock_dir):
        runner.run("nightly-update", [], FakeAction())
        self.assert_released(runner, lock_dir)

    def test_after_failure(self, runner, lock_dir):
        runner.run("nightly-update", [], FakeAction(error=ActionError("disk full")))
        self.assert_released(runner, lock_dir)

    def test_after_keyboard_interrupt(self, runner, lock_dir):
        with pytest.raises(KeyboardInterrupt):
            runner.run("nightly-update", [], FakeAction(error=KeyboardInterrupt()))
        self.assert_released(runner, lock_dir)

    def test_after_sigterm(self, runner, lock_dir):
        def terminate():
            os.kill(os.getpid(), signal.SIGTERM)

        with pytest.raises(JobInterrupted) as exc_info:
            runner.run("nightly-update", [], FakeAction(on_execute=terminate))

        assert exc_info.value.signum == signal.SIGTERM
        self.assert_released(runner, lock_dir)

    def test_signal_during_release(self, runner, lock_dir):
        """A signal arriving mid-release is delivered after the file is gone."""
        release = JobLock.release

        def release_with_sigterm(lock):
            os.kill(os.getpid(), signal.SIGTERM)
            release(lock)

        with patch.object(JobLock, 'release', release_with_sigterm):
            with pytest.raises(JobInterrupted) as exc_info:
                runner.run("nightly-update", [], FakeAction())

        assert exc_info.value.signum == signal.SIGTERM
        self.assert_released(runner, lock_dir)

    def test_deferred_delivers_after_block(self):
        with pytest.raises(JobInterrupted):
            with InterruptGuard() as guard:
                with guard.deferred():
                    os.kill(os.getpid(), signal.SIGHUP)
                    reached = True
        assert reached

    def test_release_failure_keeps_outcome(self, runner):
        with patch('hostmaint.utils.lock.Path.unlink', side_effect=PermissionError("read-only")):
            outcome = runner.run("nightly-update", [], FakeAction())
        assert outcome.status is JobStatus.SUCCESS

class TestInterruptGuard:
    """Signal handler installation and restoration."""

    def test_restores_previous_handlers(self):
        before = signal.getsignal(signal.SIGTERM)
        with InterruptGuard():
            assert signal.getsignal(signal.SIGTERM) is not before
        assert signal.getsignal(signal.SIGTERM) == before

    def test_sighup_interrupts(self):
        with pytest.raises(JobInterrupted) as exc_info:
            with InterruptGuard():
                os.kill(os.getpid(), signal.SIGHUP)
        assert exc_info.value.signum == signal.SIGHUP

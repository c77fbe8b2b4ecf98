"""
JobRunner for hostmaint.

This module runs one maintenance job end-to-end:
- Exclusive per-category locking with stale-lock takeover
- Ordered, short-circuiting preflight checks
- Dry-run simulation
- A single execution attempt whose failures become a failed JobOutcome
- Outcome logging and fire-and-forget notification
- Guaranteed lock release on every exit path, including SIGINT/SIGTERM/SIGHUP

Only lock and preflight problems are raised (as JobNotRunError subclasses);
once the action has been started the caller always gets a JobOutcome.
"""

import json
import signal
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Iterable, List, Optional, Sequence, Union

from hostmaint.actions.base import Action, ActionError
from hostmaint.checks.base import PreflightCheck
from hostmaint.models import JobCategory, JobOutcome, JobStatus, RunOptions, category_key
from hostmaint.notifier import Notification, NotificationSink, Severity, create_notifiers
from hostmaint.utils.lock import JobLock, LockError, LockHeldError
from hostmaint.utils.process import is_root, get_process_info

logger = logging.getLogger(__name__)

DEFAULT_LOCK_DIR = "/var/run/hostmaint"

class JobNotRunError(Exception):
    """Base exception for jobs that terminated before their action started."""
    pass

class AlreadyRunningError(JobNotRunError):
    """Raised when another live process holds the job category's lock."""

    def __init__(self, category: str, holder_pid: Optional[int]):
        self.category = category
        self.holder_pid = holder_pid
        super().__init__(
            f"Another '{category}' job is running (PID: {holder_pid})"
        )

class PreflightFailedError(JobNotRunError):
    """Raised when a preflight check fails."""

    def __init__(self, check_name: str, reason: str):
        self.check_name = check_name
        self.reason = reason
        super().__init__(f"Preflight check '{check_name}' failed: {reason}")

class InsufficientPrivilegeError(JobNotRunError):
    """Raised when a mutating run requires root and the caller is not root."""
    pass

class LockUnavailableError(JobNotRunError):
    """Raised when the lock cannot be created for reasons other than a holder."""
    pass

class JobInterrupted(BaseException):
    """
    Raised inside a running job when SIGINT, SIGTERM or SIGHUP arrives.

    Derives from BaseException so that action error handling never
    swallows it.
    """

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")

class InterruptGuard:
    """Context manager turning termination signals into JobInterrupted."""

    SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

    def __init__(self):
        self._previous: Dict[int, Any] = {}

    def _interrupt(self, signo: int, frame) -> None:
        logger.warning(f"Received signal {signo}, aborting job")
        raise JobInterrupted(signo)

    def __enter__(self):
        # Signal handlers can only be installed from the main thread
        if threading.current_thread() is threading.main_thread():
            for signo in self.SIGNALS:
                self._previous[signo] = signal.signal(signo, self._interrupt)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for signo, handler in self._previous.items():
            signal.signal(signo, handler if handler is not None else signal.SIG_DFL)
        self._previous.clear()
        return False

    @contextmanager
    def deferred(self):
        """Hold the guarded signals back until the block has finished."""
        previous = signal.pthread_sigmask(signal.SIG_BLOCK, self.SIGNALS)
        try:
            yield
        finally:
            signal.pthread_sigmask(signal.SIG_SETMASK, previous)

class JobRunner:
    """
    Runs maintenance jobs with locking, preflight checks and notification.

    Attributes:
        config (Dict[str, Any]): Configuration dictionary
        lock_dir (Path): Directory holding per-category lock files
        notifiers (List[NotificationSink]): Notification sinks
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        notifiers: Optional[Iterable[NotificationSink]] = None,
        lock_dir: Optional[Union[str, Path]] = None
    ):
        self.config = config or {}
        self.lock_dir = Path(lock_dir or self.config.get('LOCK_DIR', DEFAULT_LOCK_DIR))
        if notifiers is None:
            self.notifiers: List[NotificationSink] = create_notifiers(self.config)
        else:
            self.notifiers = list(notifiers)

    def run(
        self,
        category: Union[JobCategory, str],
        checks: Sequence[PreflightCheck],
        action: Action,
        options: Optional[RunOptions] = None
    ) -> JobOutcome:
        """
        Run one maintenance job.

        Args:
            category: Job category; its key scopes the lock
            checks: Preflight checks, evaluated in order
            action: Action to simulate or execute
            options: Run options

        Returns:
            JobOutcome of the simulation or execution

        Raises:
            InsufficientPrivilegeError: If root is required and missing
            AlreadyRunningError: If a live process holds the lock
            LockUnavailableError: If the lock cannot be created
            PreflightFailedError: If a preflight check fails
            JobInterrupted: If SIGINT/SIGTERM/SIGHUP arrives (lock still released)
        """
        options = options or RunOptions()
        key = category_key(category)
        started_at = datetime.now()

        if options.require_elevated_privilege and not options.dry_run and not is_root():
            logger.error(f"[{key}] Root privileges required")
            raise InsufficientPrivilegeError(f"'{key}' must be run as root")

        lock = JobLock(self.lock_dir, key, stale_after=options.auto_release_stale_lock_after)

        with InterruptGuard() as guard:
            try:
                self._acquire(lock, key)
                self._run_preflight(key, checks)

                if options.dry_run:
                    return self._simulate(key, action, started_at)

                outcome = self._execute(key, action, started_at)
                self._report(outcome)
                return outcome
            finally:
                # A signal during release must not leave the lock file behind
                with guard.deferred():
                    self._release(lock, key)

    def _acquire(self, lock: JobLock, key: str) -> None:
        try:
            handle = lock.acquire()
        except LockHeldError as e:
            logger.error(f"[{key}] Another instance is running (PID: {e.holder_pid})")
            if e.holder_pid:
                info = get_process_info(e.holder_pid)
                if info and info.get('cmdline'):
                    logger.info(f"[{key}] Lock holder: {' '.join(info['cmdline'])}")
            raise AlreadyRunningError(key, e.holder_pid) from e
        except LockError as e:
            logger.error(f"[{key}] Cannot acquire lock: {e}")
            raise LockUnavailableError(str(e)) from e
        logger.info(f"[{key}] Lock acquired: {handle.path} (PID {handle.holder_pid})")

    def _run_preflight(self, key: str, checks: Sequence[PreflightCheck]) -> None:
        for check in checks:
            result = check.evaluate()
            if result.ok:
                logger.info(f"[{key}] Preflight check {check.name} passed: {result.reason}")
                continue

            logger.error(f"[{key}] Preflight check {check.name} failed: {result.reason}")
            self._notify(
                Severity.ERROR,
                f"{key} not started: {check.name} check failed: {result.reason}"
            )
            raise PreflightFailedError(check.name, result.reason)

        logger.info(f"[{key}] All {len(checks)} preflight check(s) passed")

    def _simulate(self, key: str, action: Action, started_at: datetime) -> JobOutcome:
        logger.info(f"[{key}] Dry run: simulating {action}")
        try:
            description = action.simulate()
        except Exception as e:
            logger.error(f"[{key}] Simulation failed: {e}")
            outcome = JobOutcome.failed(f"Simulation failed: {e}")
        else:
            logger.info(f"[{key}] Dry run completed: {description}")
            outcome = JobOutcome.success(description)
        return outcome.with_context(key, started_at, dry_run=True)

    def _execute(self, key: str, action: Action, started_at: datetime) -> JobOutcome:
        logger.info(f"[{key}] Starting {action}")
        try:
            outcome = action.execute()
        except ActionError as e:
            outcome = JobOutcome.failed(e.reason, artifacts=e.artifacts)
        except Exception as e:
            logger.debug(f"[{key}] Unexpected action failure", exc_info=True)
            outcome = JobOutcome.failed(f"{e.__class__.__name__}: {e}")

        if not isinstance(outcome, JobOutcome):
            outcome = JobOutcome.failed(
                f"{action} returned {type(outcome).__name__} instead of a JobOutcome"
            )
        return outcome.with_context(key, started_at)

    def _report(self, outcome: JobOutcome) -> None:
        key = outcome.category
        logger.info(f"[{key}] Finished in {outcome.duration.total_seconds():.1f}s")
        logger.debug(f"[{key}] Outcome: {json.dumps(outcome.to_dict(), default=str)}")
        if outcome.status is JobStatus.FAILED:
            message = f"{key} failed: {outcome.summary}"
            for artifact in outcome.artifacts:
                message += f"\nState snapshot available at {artifact} for manual recovery"
            logger.error(f"[{key}] {message}")
            self._notify(Severity.ERROR, message)
            return

        if outcome.status is JobStatus.SKIPPED_NO_WORK:
            message = f"{key}: nothing to do: {outcome.summary}"
        else:
            message = f"{key} completed: {outcome.summary}"
        for artifact in outcome.artifacts:
            logger.info(f"[{key}] Artifact: {artifact}")
        logger.info(f"[{key}] {message}")
        self._notify(Severity.INFO, message)

    def _notify(self, severity: Severity, message: str) -> None:
        notification = Notification(severity, message)
        for sink in self.notifiers:
            try:
                sink.send(notification)
            except Exception as e:
                logger.debug(f"Notification delivery failed via {sink!r}: {e}")

    def _release(self, lock: JobLock, key: str) -> None:
        if not lock.held:
            return
        try:
            lock.release()
        except LockError as e:
            logger.error(
                f"[{key}] Failed to release lock {lock.path}: {e}; "
                f"future runs may be blocked until it is removed"
            )
            return
        logger.info(f"[{key}] Lock released")

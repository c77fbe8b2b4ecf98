"""
hostmaint
---------

Unattended host maintenance for Debian/Ubuntu servers: package updates, log
cleanup and Let's Encrypt certificate management, each run as a locked,
preflight-checked, notifying job.

Example:
    >>> from hostmaint import JobRunner, JobCategory, RunOptions, load_config
    >>> from hostmaint import create_action, create_preflight_checks
    >>> config = load_config()
    >>> runner = JobRunner(config)
    >>> outcome = runner.run(
    ...     JobCategory.LOG_CLEANUP,
    ...     create_preflight_checks(config, JobCategory.LOG_CLEANUP),
    ...     create_action(config, JobCategory.LOG_CLEANUP),
    ...     RunOptions(dry_run=True)
    ... )
"""

import logging

from hostmaint.config import (
    load_config,
    ConfigurationError,
    ConfigValidationError,
    ConfigurationManager,
    DEFAULT_CONFIG
)
from hostmaint.logger import setup_logging, LogManager
from hostmaint.models import JobCategory, JobStatus, JobOutcome, RunOptions
from hostmaint.job_runner import (
    JobRunner,
    JobNotRunError,
    AlreadyRunningError,
    PreflightFailedError,
    InsufficientPrivilegeError,
    LockUnavailableError,
    JobInterrupted
)
from hostmaint.checks import (
    PreflightCheck,
    CheckResult,
    create_preflight_checks,
    register_check
)
from hostmaint.actions import Action, ActionError, create_action
from hostmaint.notifier import (
    Notification,
    NotificationSink,
    TelegramNotifier,
    Severity,
    create_notifiers
)
from hostmaint.version import __version__

__title__ = "hostmaint"
__license__ = "MIT"

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

__all__ = [
    # Core components
    "JobRunner",
    "JobCategory",
    "JobStatus",
    "JobOutcome",
    "RunOptions",

    # Errors
    "JobNotRunError",
    "AlreadyRunningError",
    "PreflightFailedError",
    "InsufficientPrivilegeError",
    "LockUnavailableError",
    "JobInterrupted",
    "ActionError",
    "ConfigurationError",
    "ConfigValidationError",

    # Configuration and logging
    "load_config",
    "ConfigurationManager",
    "DEFAULT_CONFIG",
    "setup_logging",
    "LogManager",

    # Checks, actions, notification
    "PreflightCheck",
    "CheckResult",
    "create_preflight_checks",
    "register_check",
    "Action",
    "create_action",
    "Notification",
    "NotificationSink",
    "TelegramNotifier",
    "Severity",
    "create_notifiers",

    # Version and metadata
    "__version__",
    "__title__",
    "__license__",
]

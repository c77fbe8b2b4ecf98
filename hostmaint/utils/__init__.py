"""
hostmaint Utilities Package
---------------------------

Helpers shared by the job runner, the preflight checks and the maintenance
actions.

Features:
- External command execution with typed failures
- Process liveness probing
- Per-category job locks with stale-lock takeover
- Privilege, command and service availability checks

Example:
    >>> from hostmaint.utils import JobLock, is_process_running
    >>> lock = JobLock('/tmp/locks', 'log-cleanup')
    >>> with lock as handle:
    ...     print(handle.holder_pid)
"""

import logging

from .process import (
    ProcessError,
    CommandError,
    run_command,
    is_process_running,
    get_process_info,
    get_script_pid,
    is_root,
    command_exists,
    is_service_active,
    get_directory_size
)
from .lock import (
    LockError,
    LockHeldError,
    LockReleaseError,
    LockHandle,
    LockRecord,
    JobLock
)

logger = logging.getLogger(__name__)

__all__ = [
    # Exceptions
    'ProcessError',
    'CommandError',
    'LockError',
    'LockHeldError',
    'LockReleaseError',

    # Process management
    'run_command',
    'is_process_running',
    'get_process_info',
    'get_script_pid',
    'is_root',
    'command_exists',
    'is_service_active',
    'get_directory_size',

    # Locking
    'LockHandle',
    'LockRecord',
    'JobLock',
]

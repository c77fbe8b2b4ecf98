"""
Process utilities for hostmaint.

This module provides the small set of process helpers the job runner and the
maintenance actions rely on:
- Running external commands with typed failures
- Process liveness probing
- Process information retrieval
- Privilege and command availability checks
"""

import os
import shutil
import logging
import subprocess
import psutil
from pathlib import Path
from typing import Optional, Dict, Any, List, Mapping, Union
from datetime import datetime

logger = logging.getLogger(__name__)

class ProcessError(Exception):
    """Base exception for process-related errors."""
    pass

class CommandError(ProcessError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        message = f"'{' '.join(self.cmd)}' exited with status {returncode}"
        if self.stderr:
            message += f": {self.stderr.splitlines()[-1]}"
        super().__init__(message)

def run_command(
    cmd: List[str],
    env: Optional[Mapping[str, str]] = None,
    log_output: bool = False,
    timeout: Optional[float] = None,
    check: bool = True
) -> subprocess.CompletedProcess:
    """
    Run an external command and capture its output.

    Args:
        cmd: Command and arguments
        env: Extra environment variables merged over the current environment
        log_output: Write each stdout line to the log at INFO level
        timeout: Optional timeout in seconds
        check: Raise CommandError on a non-zero exit status

    Returns:
        The completed process

    Raises:
        CommandError: If the command fails or cannot be started
    """
    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update(env)

    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            env=full_env,
            timeout=timeout
        )
    except FileNotFoundError as e:
        raise CommandError(cmd, 127, str(e))
    except subprocess.TimeoutExpired as e:
        raise CommandError(cmd, -1, f"timed out after {e.timeout}s")

    if log_output and result.stdout:
        for line in result.stdout.splitlines():
            if line.strip():
                logger.info(line)

    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stderr)

    return result

def is_process_running(pid: int) -> bool:
    """
    Check if a process is still running.

    Args:
        pid: Process ID to check

    Returns:
        bool: True if process is running, False otherwise
    """
    if pid <= 0:
        return False
    try:
        process = psutil.Process(pid)
        return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # The process exists but belongs to someone else
        return True

def get_process_info(pid: int) -> Optional[Dict[str, Any]]:
    """
    Get basic information about a process.

    Args:
        pid: Process ID to query

    Returns:
        Dict containing process information or None if process not found
    """
    try:
        process = psutil.Process(pid)
        with process.oneshot():
            return {
                'pid': pid,
                'name': process.name(),
                'status': process.status(),
                'create_time': datetime.fromtimestamp(process.create_time()).isoformat(),
                'cmdline': process.cmdline(),
                'username': process.username(),
            }
    except psutil.NoSuchProcess:
        logger.debug(f"Process {pid} not found")
        return None
    except psutil.AccessDenied:
        logger.debug(f"Access denied when querying process {pid}")
        return {'pid': pid}

def get_script_pid() -> int:
    """Get the current process ID."""
    return os.getpid()

def is_root() -> bool:
    """Check whether the current process runs with root privileges."""
    return os.geteuid() == 0

def command_exists(cmd: str) -> bool:
    """
    Check if a command exists in system PATH.

    Args:
        cmd: Command to check

    Returns:
        bool: True if command exists
    """
    return shutil.which(cmd) is not None

def is_service_active(service: str) -> bool:
    """
    Check whether a systemd unit is active.

    Args:
        service: Unit name (e.g. 'nginx')

    Returns:
        bool: True if `systemctl is-active` reports the unit as active
    """
    try:
        result = subprocess.run(
            ['systemctl', 'is-active', '--quiet', service],
            capture_output=True,
            check=False
        )
    except FileNotFoundError:
        logger.debug("systemctl not available")
        return False
    return result.returncode == 0

def get_directory_size(path: Union[str, Path]) -> int:
    """
    Get the total size in bytes of regular files below a directory.

    Args:
        path: Directory to measure

    Returns:
        Size in bytes (0 if the directory does not exist)
    """
    total = 0
    root = Path(path)
    if not root.is_dir():
        return 0
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
    return total

"""
Disk space preflight check for hostmaint.

Verifies that the filesystem holding a path has enough free space for the
job to run safely (package downloads, the pre-upgrade snapshot, archives).
"""

import os
from typing import Dict, Any

from hostmaint.checks.base import PreflightCheck, CheckResult

class DiskSpaceCheck(PreflightCheck):
    """
    Check available space on the filesystem holding a path.

    Attributes:
        path (str): Path whose filesystem is checked
        min_free_mb (int): Minimum free space in megabytes
    """

    name = "disk-space"

    def __init__(self, path: str = "/var", min_free_mb: int = 1024):
        super().__init__()
        self.path = path
        self.min_free_mb = int(min_free_mb)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DiskSpaceCheck":
        return cls(
            path=config.get('DISK_CHECK_PATH', '/var'),
            min_free_mb=config.get('MIN_FREE_SPACE_MB', 1024)
        )

    def check(self) -> CheckResult:
        available_mb = self.get_available_mb()
        if available_mb < self.min_free_mb:
            return CheckResult.failed(
                f"Insufficient disk space on {self.path}: {available_mb}MB available, "
                f"{self.min_free_mb}MB required"
            )
        return CheckResult.passed(f"{available_mb}MB available on {self.path}")

    def get_available_mb(self) -> int:
        """
        Get space available to unprivileged users, in megabytes.

        Returns:
            Free megabytes on the filesystem holding self.path
        """
        stat = os.statvfs(self.path)
        return (stat.f_bavail * stat.f_frsize) // (1024 * 1024)

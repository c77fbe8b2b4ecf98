"""
Log cleanup action for hostmaint.

Reclaims disk space taken by logs:
- Deletes logs older than the maximum age
- Compresses rotated logs after a few days
- Truncates oversized active logs, archiving their tail first
- Optionally vacuums the systemd journal, truncates Docker container logs,
  cleans the package cache and removes stale temporary files
- Prunes old archives and reports disk usage

The same planner drives simulate() and execute(), so a dry run lists exactly
the file operations a real run would perform.
"""

import os
import glob
import gzip
import time
import shutil
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence

from hostmaint.actions.base import Action
from hostmaint.models import JobOutcome
from hostmaint.utils.process import command_exists, get_directory_size

SECONDS_IN_DAY = 24 * 60 * 60
DELETE_PATTERNS = ('*.log', '*.log.*', '*.gz')
ROTATED_PATTERN = '*.log.*'
COMPRESSED_SUFFIXES = ('.gz', '.bz2', '.xz', '.zst')
APT_ARCHIVES = '/var/cache/apt/archives'

def format_size(num_bytes: int) -> str:
    """Format a byte count as KB, MB or GB."""
    size_kb = num_bytes // 1024
    if size_kb >= 1048576:
        return f"{size_kb / 1048576:.2f}GB"
    if size_kb >= 1024:
        return f"{size_kb / 1024:.2f}MB"
    return f"{size_kb}KB"

@dataclass
class CleanupStats:
    """Counters for one cleanup run."""

    deleted: int = 0
    compressed: int = 0
    truncated: int = 0
    freed_bytes: int = 0

    @property
    def total(self) -> int:
        return self.deleted + self.compressed + self.truncated

    def describe(self) -> str:
        return (
            f"Freed {format_size(self.freed_bytes)} - Deleted: {self.deleted}, "
            f"Compressed: {self.compressed}, Truncated: {self.truncated}"
        )

@dataclass(frozen=True)
class PlannedOperation:
    """A single file operation chosen by the planner."""

    op: str  # 'delete', 'compress' or 'truncate'
    path: Path
    size: int

class LogCleanupAction(Action):
    """
    Log rotation and cleanup.

    Attributes:
        directories (List[str]): Directory patterns to scan
        archive_dir (Path): Where truncated log tails are archived
        max_age_days (int): Age after which logs are deleted
        compress_after_days (int): Age after which rotated logs are gzipped
        max_size_mb (int): Size above which active logs are truncated
    """

    def __init__(
        self,
        config: Dict[str, Any],
        extra_dirs: Optional[Sequence[str]] = None,
        max_age_days: Optional[int] = None,
        max_size_mb: Optional[int] = None,
        compress_after_days: Optional[int] = None,
        journal: Optional[bool] = None,
        docker: Optional[bool] = None,
        packages: Optional[bool] = None,
        temp: Optional[bool] = None
    ):
        super().__init__(config)

        def pick(value, key, default):
            return config.get(key, default) if value is None else value

        self.directories = list(config.get('CLEANUP_LOG_DIRS', []))
        self.extra_dirs = list(extra_dirs or [])
        self.archive_dir = Path(config.get('CLEANUP_ARCHIVE_DIR', '/var/log/archive'))
        self.max_age_days = int(pick(max_age_days, 'CLEANUP_MAX_AGE_DAYS', 30))
        self.max_size_mb = int(pick(max_size_mb, 'CLEANUP_MAX_SIZE_MB', 100))
        self.compress_after_days = int(pick(compress_after_days, 'CLEANUP_COMPRESS_AFTER_DAYS', 7))
        self.max_archive_days = int(config.get('CLEANUP_MAX_ARCHIVE_DAYS', 90))
        self.tail_lines = int(config.get('CLEANUP_TAIL_LINES', 1000))

        self.clean_journal = bool(pick(journal, 'CLEANUP_JOURNAL', False))
        self.journal_max_size = config.get('CLEANUP_JOURNAL_MAX_SIZE', '500M')
        self.clean_docker = bool(pick(docker, 'CLEANUP_DOCKER', False))
        self.docker_dir = Path(config.get('CLEANUP_DOCKER_DIR', '/var/lib/docker/containers'))
        self.docker_max_mb = int(config.get('CLEANUP_DOCKER_MAX_MB', 100))
        self.clean_packages = bool(pick(packages, 'CLEANUP_PACKAGES', False))
        self.clean_temp = bool(pick(temp, 'CLEANUP_TEMP', False))
        self.temp_dirs = list(config.get('CLEANUP_TEMP_DIRS', ['/tmp', '/var/tmp']))
        self.temp_max_age_days = int(config.get('CLEANUP_TEMP_MAX_AGE_DAYS', 7))
        self.report_mounts = list(config.get('CLEANUP_REPORT_MOUNTS', ['/']))

    def simulate(self) -> str:
        operations = []
        for directory in self.resolve_directories():
            operations.extend(self.plan(directory))
        operations.extend(self.plan_docker())

        counts = {'delete': 0, 'compress': 0, 'truncate': 0}
        sizes = {'delete': 0, 'compress': 0, 'truncate': 0}
        for operation in operations:
            counts[operation.op] += 1
            sizes[operation.op] += operation.size
            self.logger.info(f"Would {operation.op}: {operation.path} ({format_size(operation.size)})")

        text = (
            f"Would delete {counts['delete']} file(s) ({format_size(sizes['delete'])}), "
            f"compress {counts['compress']} file(s) ({format_size(sizes['compress'])}), "
            f"truncate {counts['truncate']} file(s) ({format_size(sizes['truncate'])})"
        )
        extras = self._enabled_extras()
        if extras:
            text += "; also: " + ", ".join(extras)
        return text

    def execute(self) -> JobOutcome:
        stats = CleanupStats()
        artifacts: List[Path] = []
        errors: List[str] = []

        self.logger.info(
            f"Starting log cleanup (max age: {self.max_age_days} days, "
            f"max size: {self.max_size_mb}MB)"
        )

        for directory in self.resolve_directories():
            self.logger.info(f"Scanning {directory}...")
            for operation in self.plan(directory):
                self._apply(operation, stats, artifacts, errors)

        if self.clean_journal:
            self.vacuum_journal()
        if self.clean_docker:
            for operation in self.plan_docker():
                self._apply(operation, stats, artifacts, errors)
        if self.clean_packages:
            stats.freed_bytes += self.clean_package_cache()
        if self.clean_temp:
            stats.freed_bytes += self.clean_temp_files(stats, errors)

        self.prune_archives(errors)
        disk_usage = self.disk_usage_report()

        details = dict(asdict(stats), disk_usage=disk_usage, errors=list(errors))
        self.logger.info(stats.describe())

        if errors:
            summary = f"{stats.describe()}; {len(errors)} operation(s) failed: {errors[0]}"
            return JobOutcome.failed(summary, artifacts=artifacts, **details)
        if stats.total == 0 and stats.freed_bytes == 0:
            return JobOutcome.skipped("Nothing to clean", **details)
        return JobOutcome.success(stats.describe(), artifacts=artifacts, **details)

    def resolve_directories(self) -> List[Path]:
        """Expand configured directory patterns and append extra directories."""
        directories: List[Path] = []
        for pattern in self.directories:
            for match in sorted(glob.glob(pattern)):
                path = Path(match)
                if path.is_dir() and path not in directories:
                    directories.append(path)
        for extra in self.extra_dirs:
            path = Path(extra)
            if not path.is_dir():
                self.logger.warning(f"Directory not found: {extra}")
                continue
            if path not in directories:
                directories.append(path)
        return directories

    def plan(self, directory: Path, now: Optional[float] = None) -> List[PlannedOperation]:
        """
        Choose the file operations for one directory.

        Each file gets at most one operation, checked in this order:
        delete (old), compress (old rotated), truncate (oversized active).
        The archive directory is never scanned.

        Args:
            directory: Directory scanned recursively
            now: Reference time (defaults to time.time())

        Returns:
            Planned operations in scan order
        """
        now = time.time() if now is None else now
        delete_cutoff = now - self.max_age_days * SECONDS_IN_DAY
        compress_cutoff = now - self.compress_after_days * SECONDS_IN_DAY
        max_bytes = self.max_size_mb * 1024 * 1024
        archive_dir = self.archive_dir.resolve()

        operations = []
        for dirpath, dirnames, filenames in os.walk(directory):
            current = Path(dirpath)
            dirnames[:] = sorted(
                d for d in dirnames if (current / d).resolve() != archive_dir
            )
            for name in sorted(filenames):
                path = current / name
                try:
                    st = path.lstat()
                except OSError:
                    continue
                if not path.is_file() or path.is_symlink():
                    continue

                if st.st_mtime < delete_cutoff and any(fnmatch(name, p) for p in DELETE_PATTERNS):
                    operations.append(PlannedOperation('delete', path, st.st_size))
                elif (st.st_mtime < compress_cutoff and fnmatch(name, ROTATED_PATTERN)
                        and not name.endswith(COMPRESSED_SUFFIXES)):
                    operations.append(PlannedOperation('compress', path, st.st_size))
                elif name.endswith('.log') and st.st_size > max_bytes:
                    operations.append(PlannedOperation('truncate', path, st.st_size))
        return operations

    def plan_docker(self) -> List[PlannedOperation]:
        """Choose Docker container logs to truncate."""
        if not self.clean_docker or not self.docker_dir.is_dir():
            return []
        max_bytes = self.docker_max_mb * 1024 * 1024
        operations = []
        for path in sorted(self.docker_dir.glob('*/*-json.log')):
            try:
                size = path.stat().st_size
            except OSError:
                continue
            if size > max_bytes:
                operations.append(PlannedOperation('truncate', path, size))
        return operations

    def _apply(
        self,
        operation: PlannedOperation,
        stats: CleanupStats,
        artifacts: List[Path],
        errors: List[str]
    ) -> None:
        path = operation.path
        try:
            if operation.op == 'delete':
                path.unlink()
                stats.deleted += 1
                stats.freed_bytes += operation.size
                self.logger.info(f"Deleted: {path} ({format_size(operation.size)})")
            elif operation.op == 'compress':
                saved = self.compress(path)
                stats.compressed += 1
                stats.freed_bytes += max(saved, 0)
                self.logger.info(f"Compressed: {path} (saved {format_size(max(saved, 0))})")
            elif operation.op == 'truncate':
                archive = self.truncate(path, archive_tail=not self._is_docker_log(path))
                stats.truncated += 1
                stats.freed_bytes += operation.size
                if archive:
                    artifacts.append(archive)
                    self.logger.warning(
                        f"Truncated: {path} (was {format_size(operation.size)}), "
                        f"archived tail to {archive}"
                    )
                else:
                    self.logger.info(f"Truncated: {path} (was {format_size(operation.size)})")
        except OSError as e:
            self.logger.error(f"Failed to {operation.op} {path}: {e}")
            errors.append(f"{operation.op} {path}: {e.strerror or e}")

    def compress(self, path: Path) -> int:
        """
        Gzip a file in place, keeping its timestamps.

        Returns:
            Bytes saved
        """
        target = path.with_name(path.name + '.gz')
        if target.exists():
            raise FileExistsError(f"{target} already exists")
        original_size = path.stat().st_size
        try:
            with open(path, 'rb') as src, gzip.open(target, 'wb', compresslevel=9) as dst:
                shutil.copyfileobj(src, dst)
            shutil.copystat(path, target)
        except BaseException:
            # Never leave a partial archive behind
            target.unlink(missing_ok=True)
            raise
        path.unlink()
        return original_size - target.stat().st_size

    def truncate(self, path: Path, archive_tail: bool = True) -> Optional[Path]:
        """
        Truncate a file to zero length, archiving its last lines first.

        Returns:
            Path of the gzipped tail archive, or None if no tail was kept
        """
        archive = None
        if archive_tail and self.tail_lines > 0:
            self.archive_dir.mkdir(parents=True, exist_ok=True)
            archive = self.archive_dir / (
                f"{path.name}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.gz"
            )
            with open(path, 'rb') as src:
                tail = deque(src, maxlen=self.tail_lines)
            with gzip.open(archive, 'wb') as dst:
                dst.writelines(tail)
        os.truncate(path, 0)
        return archive

    def vacuum_journal(self) -> None:
        """Vacuum the systemd journal by age and size."""
        if not command_exists('journalctl'):
            self.logger.info("journalctl not available, skipping journal cleanup")
            return
        self.logger.info("Cleaning systemd journal...")
        before = self._journal_usage()
        self.run(['journalctl', f'--vacuum-time={self.max_age_days}d'], log_output=False)
        self.run(['journalctl', f'--vacuum-size={self.journal_max_size}'], log_output=False)
        after = self._journal_usage()
        self.logger.info(f"Journal size: {before} -> {after}")

    def _journal_usage(self) -> str:
        result = self.run(['journalctl', '--disk-usage'], log_output=False)
        return result.stdout.strip()

    def clean_package_cache(self) -> int:
        """
        Clean the apt package cache.

        Returns:
            Bytes freed
        """
        if not command_exists('apt-get'):
            self.logger.info("apt-get not available, skipping package cache cleanup")
            return 0
        self.logger.info("Cleaning package manager cache...")
        before = get_directory_size(APT_ARCHIVES)
        self.run(['apt-get', 'clean'], log_output=False)
        freed = max(before - get_directory_size(APT_ARCHIVES), 0)
        if freed:
            self.logger.info(f"APT cache cleaned: {format_size(freed)} freed")
        return freed

    def clean_temp_files(self, stats: CleanupStats, errors: List[str]) -> int:
        """
        Remove temporary files not accessed for temp_max_age_days, then empty
        directories below each temp root.

        Returns:
            Bytes freed
        """
        cutoff = time.time() - self.temp_max_age_days * SECONDS_IN_DAY
        freed = 0
        for root in self.temp_dirs:
            root_path = Path(root)
            if not root_path.is_dir():
                continue
            self.logger.info(f"Cleaning temporary files in {root}...")
            for dirpath, dirnames, filenames in os.walk(root_path, topdown=False):
                current = Path(dirpath)
                for name in filenames:
                    path = current / name
                    try:
                        st = path.lstat()
                        if not path.is_file() or path.is_symlink() or st.st_atime >= cutoff:
                            continue
                        path.unlink()
                    except FileNotFoundError:
                        continue
                    except OSError as e:
                        errors.append(f"delete {path}: {e.strerror or e}")
                        continue
                    stats.deleted += 1
                    freed += st.st_size
                if current != root_path:
                    try:
                        current.rmdir()
                    except OSError:
                        # Not empty
                        pass
        if freed:
            self.logger.info(f"Temporary files cleaned: {format_size(freed)} freed")
        return freed

    def prune_archives(self, errors: List[str]) -> int:
        """
        Delete archives older than max_archive_days.

        Returns:
            Number of archives removed
        """
        if not self.archive_dir.is_dir():
            return 0
        self.logger.info(f"Cleaning archives older than {self.max_archive_days} days...")
        cutoff = time.time() - self.max_archive_days * SECONDS_IN_DAY
        removed = 0
        for path in self.archive_dir.iterdir():
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except OSError as e:
                errors.append(f"delete {path}: {e.strerror or e}")
        return removed

    def disk_usage_report(self) -> Dict[str, Dict[str, Any]]:
        """Collect disk usage for the configured mount points."""
        report = {}
        for mount in self.report_mounts:
            try:
                usage = shutil.disk_usage(mount)
            except OSError:
                continue
            percent = round(100 * usage.used / usage.total, 1) if usage.total else 0.0
            report[mount] = {
                'total': usage.total,
                'used': usage.used,
                'free': usage.free,
                'percent': percent,
            }
            self.logger.info(
                f"Disk usage {mount}: {format_size(usage.used)} used of "
                f"{format_size(usage.total)} ({percent}%)"
            )
        return report

    def _is_docker_log(self, path: Path) -> bool:
        return self.docker_dir in path.parents

    def _enabled_extras(self) -> List[str]:
        extras = []
        if self.clean_journal:
            extras.append(f"journal vacuum ({self.max_age_days}d, {self.journal_max_size})")
        if self.clean_packages:
            extras.append("package cache")
        if self.clean_temp:
            extras.append(f"temp files older than {self.temp_max_age_days} days")
        return extras

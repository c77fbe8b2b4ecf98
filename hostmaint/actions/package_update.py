"""
Package update action for hostmaint.

Upgrades Debian/Ubuntu packages through apt-get with safety measures:
- Pending updates are counted first; an up-to-date system is a no-op
- A `dpkg --get-selections` snapshot is written before anything changes
- Unused packages are removed and the package cache is cleaned afterwards
- Old update logs and snapshots are pruned
- A required reboot is detected and optionally scheduled

Example:
    >>> action = PackageUpdateAction(config, UpdateType.SECURITY)
    >>> print(action.simulate())
    3 packages to upgrade (3 security): openssl, libssl3, curl
"""

import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from hostmaint.actions.base import Action, ActionError
from hostmaint.models import JobOutcome
from hostmaint.utils.process import is_service_active

NONINTERACTIVE_ENV = {'DEBIAN_FRONTEND': 'noninteractive'}
DPKG_OPTIONS = [
    '-o', 'Dpkg::Options::=--force-confdef',
    '-o', 'Dpkg::Options::=--force-confold',
]

class UpdateType(Enum):
    """Kind of package upgrade."""

    SAFE = "safe"          # upgrade, never removes packages
    FULL = "full"          # dist-upgrade
    SECURITY = "security"  # upgrade restricted to the security sources

@dataclass
class PendingUpdates:
    """Packages apt would install or upgrade."""

    packages: List[str] = field(default_factory=list)
    security: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.packages)

    def describe(self, limit: int = 20) -> str:
        if not self.packages:
            return "System is up to date"
        text = f"{self.total} packages to upgrade ({len(self.security)} security)"
        names = self.packages[:limit]
        text += ": " + ", ".join(names)
        if self.total > limit:
            text += f" and {self.total - limit} more"
        return text

def parse_simulated_upgrade(output: str) -> PendingUpdates:
    """
    Parse `apt-get -s upgrade` output.

    Each package to be installed appears on an `Inst` line, e.g.
    `Inst openssl [3.0.2-0ubuntu1.9] (3.0.2-0ubuntu1.10 Ubuntu:22.04/jammy-security [amd64])`.

    Args:
        output: Simulation output

    Returns:
        PendingUpdates with package names in output order
    """
    pending = PendingUpdates()
    for line in output.splitlines():
        if not line.startswith('Inst '):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        name = parts[1]
        pending.packages.append(name)
        if 'security' in line:
            pending.security.append(name)
    return pending

class PackageUpdateAction(Action):
    """
    apt-get based system update.

    Attributes:
        update_type (UpdateType): Kind of upgrade
        auto_reboot (bool): Schedule a reboot when one is required
        log_dir (Path): Directory for package snapshots
        max_log_days (int): Retention for update logs and snapshots
    """

    def __init__(
        self,
        config: Dict[str, Any],
        update_type: Optional[Union[UpdateType, str]] = None,
        auto_reboot: Optional[bool] = None
    ):
        super().__init__(config)
        self.update_type = UpdateType(update_type or config.get('UPDATE_TYPE', 'safe'))
        self.auto_reboot = config.get('AUTO_REBOOT', False) if auto_reboot is None else auto_reboot
        self.reboot_delay = int(config.get('REBOOT_DELAY', 60))
        self.log_dir = Path(config.get('LOG_DIR', '/var/log/hostmaint'))
        self.max_log_days = int(config.get('MAX_LOG_DAYS', 30))
        self.reboot_required_file = Path(
            config.get('REBOOT_REQUIRED_FILE', '/var/run/reboot-required')
        )
        self.security_sources = config.get(
            'UPDATE_SECURITY_SOURCES', '/etc/apt/sources.list.d/security.list'
        )
        self.critical_services = list(config.get('CRITICAL_SERVICES', []))

    def simulate(self) -> str:
        pending = self.get_pending_updates(refresh=False)
        return f"[{self.update_type.value}] {pending.describe()}"

    def execute(self) -> JobOutcome:
        pending = self.get_pending_updates(refresh=True)
        self.logger.info(
            f"Pending updates: {pending.total} (security: {len(pending.security)})"
        )
        if not pending.total:
            return JobOutcome.skipped("System is up to date", pending=0, security=0)

        running = self.get_running_critical_services()
        if running:
            self.logger.info(f"Running critical services: {', '.join(running)}")

        snapshot = self.create_package_snapshot()

        self.logger.info(f"Performing {self.update_type.value} upgrade of {pending.total} packages...")
        self.run(self._upgrade_command(), env=NONINTERACTIVE_ENV, artifacts=[snapshot])

        self.logger.info("Cleaning up unused packages...")
        self.run(['apt-get', 'autoremove', '-y'], env=NONINTERACTIVE_ENV, artifacts=[snapshot])
        self.run(['apt-get', 'autoclean', '-y'], artifacts=[snapshot])

        pruned = self.prune_old_logs()

        summary = f"{pending.total} packages updated ({len(pending.security)} security)"
        reboot_required = self.reboot_required()
        reboot_scheduled = False
        if reboot_required:
            self.logger.warning("System reboot is required to complete updates")
            summary += ", reboot required"
            if self.auto_reboot:
                self.schedule_reboot()
                reboot_scheduled = True
                summary += f", rebooting in {self._reboot_minutes()} minute(s)"

        return JobOutcome.success(
            summary,
            artifacts=[snapshot],
            pending=pending.total,
            security=len(pending.security),
            packages=list(pending.packages),
            update_type=self.update_type.value,
            pruned_files=pruned,
            reboot_required=reboot_required,
            reboot_scheduled=reboot_scheduled
        )

    def get_pending_updates(self, refresh: bool = True) -> PendingUpdates:
        """
        Count pending package updates.

        Args:
            refresh: Run `apt-get update` first

        Returns:
            PendingUpdates
        """
        if refresh:
            self.logger.info("Updating package lists...")
            self.run(['apt-get', 'update', '-qq'])

        result = self.run(['apt-get', '-s'] + self._upgrade_args(), log_output=False)
        return parse_simulated_upgrade(result.stdout)

    def create_package_snapshot(self) -> Path:
        """
        Save the current package selection state.

        Returns:
            Path of the snapshot file
        """
        self.log_dir.mkdir(parents=True, exist_ok=True)
        snapshot = self.log_dir / f"packages_{datetime.now().strftime('%Y%m%d_%H%M%S')}.list"
        result = self.run(['dpkg', '--get-selections'], log_output=False)
        try:
            snapshot.write_text(result.stdout)
        except OSError as e:
            raise ActionError(f"Cannot write package snapshot {snapshot}: {e}")
        self.logger.info(f"Package snapshot saved: {snapshot}")
        return snapshot

    def get_running_critical_services(self) -> List[str]:
        return [name for name in self.critical_services if is_service_active(name)]

    def prune_old_logs(self) -> int:
        """
        Remove update logs and package snapshots older than max_log_days.

        Returns:
            Number of files removed
        """
        if not self.log_dir.is_dir():
            return 0

        cutoff = time.time() - self.max_log_days * 86400
        removed = 0
        for pattern in ('*.log', '*.list'):
            for path in self.log_dir.glob(pattern):
                try:
                    if path.is_file() and path.stat().st_mtime < cutoff:
                        path.unlink()
                        removed += 1
                except OSError as e:
                    self.logger.warning(f"Could not remove old log {path}: {e}")

        if removed:
            self.logger.info(f"Removed {removed} file(s) older than {self.max_log_days} days")
        return removed

    def reboot_required(self) -> bool:
        return self.reboot_required_file.exists()

    def schedule_reboot(self) -> None:
        minutes = self._reboot_minutes()
        self.logger.warning(f"Auto-reboot enabled, rebooting in {minutes} minute(s)...")
        self.run(['shutdown', '-r', f'+{minutes}', 'hostmaint: reboot after package update'])

    def _reboot_minutes(self) -> int:
        return max(1, math.ceil(self.reboot_delay / 60))

    def _upgrade_args(self) -> List[str]:
        if self.update_type is UpdateType.FULL:
            return ['dist-upgrade']
        if self.update_type is UpdateType.SECURITY:
            return [
                '-o', f'Dir::Etc::SourceList={self.security_sources}',
                '-o', 'Dir::Etc::SourceParts=/dev/null',
                'upgrade'
            ]
        return ['upgrade']

    def _upgrade_command(self) -> List[str]:
        return ['apt-get', '-y'] + DPKG_OPTIONS + self._upgrade_args()

"""
Network reachability preflight check for hostmaint.

Pings each configured host once and passes as soon as one of them answers.
"""

import subprocess
from typing import Dict, Any, List, Optional, Sequence

from hostmaint.checks.base import PreflightCheck, CheckResult

DEFAULT_TEST_HOSTS = ["archive.ubuntu.com", "security.ubuntu.com", "8.8.8.8"]

class NetworkCheck(PreflightCheck):
    """
    Check that at least one of a set of hosts is reachable.

    Attributes:
        hosts (List[str]): Hosts probed in order
        timeout (int): Per-host ping timeout in seconds
    """

    name = "network"

    def __init__(self, hosts: Optional[Sequence[str]] = None, timeout: int = 5):
        super().__init__()
        self.hosts: List[str] = list(hosts) if hosts else list(DEFAULT_TEST_HOSTS)
        self.timeout = int(timeout)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "NetworkCheck":
        return cls(
            hosts=config.get('NETWORK_TEST_HOSTS'),
            timeout=config.get('NETWORK_TIMEOUT', 5)
        )

    def check(self) -> CheckResult:
        for host in self.hosts:
            if self.ping(host):
                return CheckResult.passed(f"reached {host}")
        return CheckResult.failed(
            f"Cannot reach any of: {', '.join(self.hosts)}"
        )

    def ping(self, host: str) -> bool:
        """Send a single ICMP echo request to host."""
        try:
            result = subprocess.run(
                ['ping', '-c', '1', '-W', str(self.timeout), host],
                capture_output=True,
                timeout=self.timeout + 5
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"ping {host} failed: {e}")
            return False
        return result.returncode == 0

"""
hostmaint Preflight Checks Package
----------------------------------

Preflight checks validate host state before a maintenance job mutates
anything. Each job category has a default ordered list of checks, cheapest
and most global first.

Available checks:
- DiskSpaceCheck: Free space on the filesystem holding a path
- NetworkCheck: Reachability of package/ACME mirrors
- CommandAvailableCheck: Presence of an external tool on PATH
"""

import logging
from typing import Dict, Any, Callable, List, Union

from hostmaint.checks.base import PreflightCheck, CheckResult
from hostmaint.checks.disk import DiskSpaceCheck
from hostmaint.checks.network import NetworkCheck
from hostmaint.checks.system import CommandAvailableCheck
from hostmaint.models import JobCategory

logger = logging.getLogger(__name__)

CheckFactory = Callable[[Dict[str, Any]], PreflightCheck]

def _certbot_check(config: Dict[str, Any]) -> PreflightCheck:
    return CommandAvailableCheck(
        'certbot',
        hint="install with: apt install certbot python3-certbot-nginx"
    )

def _apt_check(config: Dict[str, Any]) -> PreflightCheck:
    return CommandAvailableCheck('apt-get')

# Registry of available checks
CHECK_FACTORIES: Dict[str, CheckFactory] = {
    'disk-space': DiskSpaceCheck.from_config,
    'network': NetworkCheck.from_config,
    'apt': _apt_check,
    'certbot': _certbot_check,
}

# Default ordered checks per job category
DEFAULT_CHECKS: Dict[JobCategory, List[str]] = {
    JobCategory.SYSTEM_UPDATE: ['apt', 'disk-space', 'network'],
    JobCategory.LOG_CLEANUP: [],
    JobCategory.CERT_RENEWAL: ['certbot', 'network'],
    JobCategory.CERT_REQUEST: ['certbot', 'network'],
    JobCategory.CERT_AUDIT: [],
    JobCategory.CERT_RELOAD: [],
}

def register_check(name: str, factory: CheckFactory) -> None:
    """
    Register a new preflight check factory.

    Args:
        name: Check identifier used in PREFLIGHT_CHECKS configuration
        factory: Callable building the check from configuration
    """
    CHECK_FACTORIES[name] = factory
    logger.debug(f"Registered preflight check: {name}")

def create_preflight_checks(
    config: Dict[str, Any],
    category: Union[JobCategory, str]
) -> List[PreflightCheck]:
    """
    Create the ordered preflight checks for a job category.

    The PREFLIGHT_CHECKS configuration key may override the defaults with a
    mapping of category key to a list of check names.

    Args:
        config: Configuration dictionary
        category: Job category

    Returns:
        Ordered list of checks

    Raises:
        ValueError: If a configured check name is unknown
    """
    key = category.value if isinstance(category, JobCategory) else str(category)
    overrides = config.get('PREFLIGHT_CHECKS') or {}

    if key in overrides:
        names = list(overrides[key])
    elif isinstance(category, JobCategory):
        names = DEFAULT_CHECKS.get(category, [])
    else:
        names = []

    checks = []
    for name in names:
        factory = CHECK_FACTORIES.get(name)
        if factory is None:
            raise ValueError(f"Unknown preflight check: {name}")
        checks.append(factory(config))
    return checks

__all__ = [
    'PreflightCheck',
    'CheckResult',
    'DiskSpaceCheck',
    'NetworkCheck',
    'CommandAvailableCheck',
    'CHECK_FACTORIES',
    'DEFAULT_CHECKS',
    'register_check',
    'create_preflight_checks',
]

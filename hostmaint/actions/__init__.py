"""
hostmaint Actions Package
-------------------------

Maintenance actions wrapped by the job runner. Each action knows how to
describe its work without side effects (simulate) and how to perform it
once (execute).

Available actions:
- PackageUpdateAction: apt-get based system update
- LogCleanupAction: Log rotation, compression and disk space reclamation
- CertificateRenewalAction: certbot renewal with web service reload
- CertificateRequestAction: New certificate via certbot certonly
- CertificateAuditAction: Expiry report for installed certificates
- CertificateReloadAction: Config test and reload of web services
"""

import logging
from typing import Dict, Any, Type, Optional, Union

from hostmaint.actions.base import Action, ActionError
from hostmaint.actions.package_update import PackageUpdateAction, UpdateType
from hostmaint.actions.log_cleanup import LogCleanupAction, CleanupStats
from hostmaint.actions.certificates import (
    CertificateAuditAction,
    CertificateRenewalAction,
    CertificateRequestAction,
    CertificateReloadAction,
    CertificateInventory,
    CertificateInfo,
    CertStatus
)
from hostmaint.models import JobCategory

logger = logging.getLogger(__name__)

# Registry of actions per job category
ACTIONS: Dict[JobCategory, Type[Action]] = {
    JobCategory.SYSTEM_UPDATE: PackageUpdateAction,
    JobCategory.LOG_CLEANUP: LogCleanupAction,
    JobCategory.CERT_RENEWAL: CertificateRenewalAction,
    JobCategory.CERT_REQUEST: CertificateRequestAction,
    JobCategory.CERT_AUDIT: CertificateAuditAction,
    JobCategory.CERT_RELOAD: CertificateReloadAction,
}

def get_action(category: Union[JobCategory, str]) -> Optional[Type[Action]]:
    """
    Get the action class for a job category.

    Args:
        category: Job category or its key

    Returns:
        Action subclass if found, None otherwise
    """
    try:
        category = JobCategory(category)
    except ValueError:
        return None
    return ACTIONS.get(category)

def create_action(
    config: Dict[str, Any],
    category: Union[JobCategory, str],
    **kwargs: Any
) -> Action:
    """
    Create the action for a job category.

    Args:
        config: Configuration dictionary
        category: Job category
        **kwargs: Action specific arguments (e.g. update_type, domain)

    Returns:
        Action instance

    Raises:
        ValueError: If no action is registered for the category
    """
    action_class = get_action(category)
    if action_class is None:
        raise ValueError(f"No action registered for job category: {category}")
    action = action_class(config, **kwargs)
    logger.debug(f"Created {action} for {category}")
    return action

__all__ = [
    'Action',
    'ActionError',
    'PackageUpdateAction',
    'UpdateType',
    'LogCleanupAction',
    'CleanupStats',
    'CertificateAuditAction',
    'CertificateRenewalAction',
    'CertificateRequestAction',
    'CertificateReloadAction',
    'CertificateInventory',
    'CertificateInfo',
    'CertStatus',
    'ACTIONS',
    'get_action',
    'create_action',
]

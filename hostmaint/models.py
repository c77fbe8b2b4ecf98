"""
Core data types for hostmaint jobs.

- JobCategory: the kinds of maintenance job; the value scopes the job lock
- JobStatus: final status of one job execution
- JobOutcome: immutable result of one job execution
- RunOptions: per-run switches understood by the JobRunner
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from pathlib import Path
from typing import Dict, Any, Mapping, Optional, Tuple, Union, Iterable

class JobCategory(Enum):
    """Maintenance job categories."""

    SYSTEM_UPDATE = "system-update"
    LOG_CLEANUP = "log-cleanup"
    CERT_RENEWAL = "cert-renewal"
    CERT_REQUEST = "cert-request"
    CERT_AUDIT = "cert-audit"
    CERT_RELOAD = "cert-reload"

class JobStatus(Enum):
    """Final status of a job that ran."""

    SKIPPED_NO_WORK = "skipped-no-work"
    SUCCESS = "success"
    FAILED = "failed"

@dataclass(frozen=True)
class JobOutcome:
    """
    Result of one job execution.

    Created once at the end of a job and never mutated afterwards. Actions
    return a partial outcome (status, summary, artifacts, details); the
    runner fills in category, dry_run and timing with with_context().

    Attributes:
        status (JobStatus): Final status
        summary (str): Human readable summary
        artifacts (Tuple[Path, ...]): Files produced, in creation order
        details (Mapping[str, Any]): Counters and other structured data (read-only)
        category (Optional[str]): Job category key
        dry_run (bool): Whether the outcome comes from a simulation
        started_at (Optional[datetime]): When the run started
        finished_at (Optional[datetime]): When the outcome was produced
    """

    status: JobStatus
    summary: str
    artifacts: Tuple[Path, ...] = ()
    details: Mapping[str, Any] = field(default_factory=dict)
    category: Optional[str] = None
    dry_run: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def __post_init__(self):
        # Accept any iterable of str/Path for artifacts
        object.__setattr__(
            self, 'artifacts', tuple(Path(a) for a in self.artifacts)
        )
        object.__setattr__(
            self, 'details', MappingProxyType(dict(self.details))
        )

    @classmethod
    def success(cls, summary: str, artifacts: Iterable[Union[str, Path]] = (), **details: Any) -> "JobOutcome":
        return cls(JobStatus.SUCCESS, summary, tuple(artifacts), dict(details))

    @classmethod
    def skipped(cls, summary: str, **details: Any) -> "JobOutcome":
        return cls(JobStatus.SKIPPED_NO_WORK, summary, (), dict(details))

    @classmethod
    def failed(cls, summary: str, artifacts: Iterable[Union[str, Path]] = (), **details: Any) -> "JobOutcome":
        return cls(JobStatus.FAILED, summary, tuple(artifacts), dict(details))

    @property
    def ok(self) -> bool:
        return self.status is not JobStatus.FAILED

    @property
    def duration(self) -> Optional[timedelta]:
        if self.started_at and self.finished_at:
            return self.finished_at - self.started_at
        return None

    def with_context(
        self,
        category: str,
        started_at: datetime,
        dry_run: bool = False
    ) -> "JobOutcome":
        """Return a copy stamped with run context."""
        return replace(
            self,
            category=category,
            dry_run=dry_run,
            started_at=started_at,
            finished_at=datetime.now()
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'summary': self.summary,
            'artifacts': [str(a) for a in self.artifacts],
            'details': dict(self.details),
            'category': self.category,
            'dry_run': self.dry_run,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }

@dataclass(frozen=True)
class RunOptions:
    """
    Options for a single JobRunner.run() call.

    Attributes:
        dry_run (bool): Simulate only; never call Action.execute()
        require_elevated_privilege (bool): Refuse to mutate unless root
        auto_release_stale_lock_after (Optional[timedelta]): Minimum age of
            a lock with a dead holder before it is taken over; None takes
            it over immediately
    """

    dry_run: bool = False
    require_elevated_privilege: bool = False
    auto_release_stale_lock_after: Optional[timedelta] = None

def category_key(category: Union[JobCategory, str]) -> str:
    """Get the lock key for a category given as enum member or string."""
    if isinstance(category, JobCategory):
        return category.value
    key = str(category).strip()
    if not key or '/' in key or key.startswith('.'):
        raise ValueError(f"Invalid job category: {category!r}")
    return key

"""
Base preflight check interface for hostmaint.

This module defines the abstract base class that all preflight checks must
implement. A check inspects current host state and yields a CheckResult;
it must be fast and must not change anything.

Example:
    class MyCheck(PreflightCheck):
        name = "my-check"

        def check(self):
            if something_is_wrong():
                return CheckResult.failed("something is wrong")
            return CheckResult.passed("all good")
"""

from abc import ABC, abstractmethod
import logging
from dataclasses import dataclass
from typing import Optional

@dataclass(frozen=True)
class CheckResult:
    """
    Result of a single preflight check.

    Attributes:
        ok (bool): Whether the check passed
        reason (str): Failure reason, or a short detail when passing
    """

    ok: bool
    reason: str = ""

    @classmethod
    def passed(cls, detail: str = "") -> "CheckResult":
        return cls(True, detail)

    @classmethod
    def failed(cls, reason: str) -> "CheckResult":
        return cls(False, reason)

class PreflightCheck(ABC):
    """
    Abstract base class for preflight checks.

    Subclasses implement check(); callers use evaluate(), which converts any
    exception raised by check() into a failed result.

    Attributes:
        name (str): Check name used in logs and PreflightFailedError
        logger (logging.Logger): Logger instance for this check
        last_result (Optional[CheckResult]): Result of the latest evaluation
    """

    name: str = ""

    def __init__(self, name: Optional[str] = None):
        if name:
            self.name = name
        elif not self.name:
            self.name = self.__class__.__name__.replace('Check', '').lower()
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.last_result: Optional[CheckResult] = None

    @abstractmethod
    def check(self) -> CheckResult:
        """
        Inspect host state.

        Returns:
            CheckResult describing the outcome
        """
        pass

    def evaluate(self) -> CheckResult:
        """
        Run the check with error handling.

        Returns:
            CheckResult; an exception inside check() becomes a failure
        """
        try:
            result = self.check()
        except Exception as e:
            self.logger.debug(f"Check {self.name} raised", exc_info=True)
            result = CheckResult.failed(f"check raised {e.__class__.__name__}: {e}")
        self.last_result = result
        return result

    def __str__(self) -> str:
        return f"{self.name} PreflightCheck"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"

"""
System preflight checks for hostmaint.

Checks for host prerequisites that are not tied to a resource threshold,
such as the presence of an external tool the job shells out to.
"""

from hostmaint.checks.base import PreflightCheck, CheckResult
from hostmaint.utils.process import command_exists

class CommandAvailableCheck(PreflightCheck):
    """
    Check that an executable is available on PATH.

    Attributes:
        command (str): Executable name
        hint (str): Install hint appended to the failure reason
    """

    def __init__(self, command: str, hint: str = ""):
        super().__init__(name=f"command:{command}")
        self.command = command
        self.hint = hint

    def check(self) -> CheckResult:
        if command_exists(self.command):
            return CheckResult.passed(f"{self.command} found")
        reason = f"{self.command} is not installed"
        if self.hint:
            reason += f" ({self.hint})"
        return CheckResult.failed(reason)

"""
Base action interface for hostmaint.

An action is the mutating operation a maintenance job wraps: a package
upgrade, a log cleanup, a certificate renewal. The JobRunner calls
simulate() for dry runs and execute() otherwise, at most once per run.

Example:
    class MyAction(Action):
        def simulate(self):
            return "would restart 2 services"

        def execute(self):
            self.run(['systemctl', 'restart', 'foo'])
            return JobOutcome.success("restarted foo")
"""

from abc import ABC, abstractmethod
import logging
from pathlib import Path
from typing import Dict, Any, Iterable, List, Mapping, Optional, Union

from hostmaint.models import JobOutcome
from hostmaint.utils.process import run_command, CommandError

class ActionError(Exception):
    """
    Raised when an action fails partway.

    Attributes:
        reason (str): Failure reason
        artifacts (List[Path]): Files the action produced before failing,
            e.g. a state snapshot usable for manual recovery
    """

    def __init__(self, reason: str, artifacts: Iterable[Union[str, Path]] = ()):
        self.reason = reason
        self.artifacts = [Path(a) for a in artifacts]
        super().__init__(reason)

class Action(ABC):
    """
    Abstract base class for maintenance actions.

    Attributes:
        config (Dict[str, Any]): Configuration dictionary
        logger (logging.Logger): Logger instance for this action
        name (str): Action name derived from class name
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.name = self.__class__.__name__.replace('Action', '')

    @abstractmethod
    def simulate(self) -> str:
        """
        Describe what execute() would do, without side effects.

        Returns:
            Human readable description
        """
        pass

    @abstractmethod
    def execute(self) -> JobOutcome:
        """
        Perform the mutation.

        Returns:
            JobOutcome of the work

        Raises:
            ActionError: If the work fails
        """
        pass

    def run(
        self,
        cmd: List[str],
        env: Optional[Mapping[str, str]] = None,
        log_output: bool = True,
        artifacts: Iterable[Union[str, Path]] = ()
    ):
        """
        Run an external command, turning failures into ActionError.

        Args:
            cmd: Command and arguments
            env: Extra environment variables
            log_output: Log the command's stdout line by line
            artifacts: Artifacts to attach to the ActionError on failure

        Returns:
            The completed process
        """
        try:
            return run_command(cmd, env=env, log_output=log_output)
        except CommandError as e:
            raise ActionError(str(e), artifacts=artifacts) from e

    def __str__(self) -> str:
        return f"{self.name} Action"

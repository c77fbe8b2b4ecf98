"""
pytest configuration and fixtures for hostmaint tests.

This module provides shared fixtures for the test suite: a configuration
pointing every path into a temporary directory, scripted actions and
checks, and a notification sink that records what it was sent.
"""

import os
import json
import logging
import pytest
from pathlib import Path
from typing import Dict, Any, List, Optional

from hostmaint.actions.base import Action
from hostmaint.checks.base import PreflightCheck, CheckResult
from hostmaint.config import DEFAULT_CONFIG
from hostmaint.job_runner import JobRunner
from hostmaint.models import JobOutcome
from hostmaint.notifier import NotificationSink, Notification

# Keep test output quiet unless explicitly enabled
logging.getLogger('hostmaint').setLevel(logging.WARNING)

class FakeAction(Action):
    """Action with scripted simulate/execute behavior."""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        outcome: Optional[JobOutcome] = None,
        error: Optional[BaseException] = None,
        description: str = "would do things",
        on_execute=None
    ):
        super().__init__(config or {})
        self.outcome = outcome or JobOutcome.success("did things")
        self.error = error
        self.description = description
        self.on_execute = on_execute
        self.simulate_calls = 0
        self.execute_calls = 0

    def simulate(self) -> str:
        self.simulate_calls += 1
        return self.description

    def execute(self) -> JobOutcome:
        self.execute_calls += 1
        if self.on_execute:
            self.on_execute()
        if self.error is not None:
            raise self.error
        return self.outcome

class FakeCheck(PreflightCheck):
    """Check returning a fixed result and counting its evaluations."""

    def __init__(self, name: str, ok: bool = True, reason: str = ""):
        super().__init__(name=name)
        self.result = CheckResult(ok, reason)
        self.calls = 0

    def check(self) -> CheckResult:
        self.calls += 1
        return self.result

class RecordingNotifier(NotificationSink):
    """Notification sink keeping every notification it receives."""

    def __init__(self, fail: bool = False):
        self.sent: List[Notification] = []
        self.fail = fail

    def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        if self.fail:
            raise RuntimeError("delivery failed")
        return True

    @property
    def messages(self) -> List[str]:
        return [n.message for n in self.sent]

@pytest.fixture
def config(tmp_path: Path) -> Dict[str, Any]:
    """Fixture providing configuration with all paths under tmp_path."""
    cfg = dict(DEFAULT_CONFIG)
    cfg.update({
        "LOCK_DIR": str(tmp_path / "lock"),
        "LOG_DIR": str(tmp_path / "log"),
        "LOG_FILE": str(tmp_path / "log" / "hostmaint.log"),
        "CLEANUP_LOG_DIRS": [str(tmp_path / "logs")],
        "CLEANUP_ARCHIVE_DIR": str(tmp_path / "logs" / "archive"),
        "CLEANUP_REPORT_MOUNTS": [str(tmp_path)],
        "CERT_DIR": str(tmp_path / "live"),
        "CERT_WEBROOT": str(tmp_path / "www"),
        "REBOOT_REQUIRED_FILE": str(tmp_path / "reboot-required"),
        "DISK_CHECK_PATH": str(tmp_path),
        "HOSTNAME": "testhost",
        "LOG_COLORS": False,
    })
    return cfg

@pytest.fixture
def temp_config_file(tmp_path: Path, config: Dict[str, Any]) -> Path:
    """Fixture providing temporary configuration file."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(config))
    return config_file

@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()

@pytest.fixture
def runner(config: Dict[str, Any], notifier: RecordingNotifier) -> JobRunner:
    """Fixture providing a JobRunner with a recording notifier."""
    return JobRunner(config, notifiers=[notifier])

@pytest.fixture
def lock_dir(config: Dict[str, Any]) -> Path:
    return Path(config["LOCK_DIR"])

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers",
        "requires_root: mark test as requiring root privileges"
    )

@pytest.fixture(autouse=True)
def _setup_testing_environment(monkeypatch):
    """Automatically set up testing environment for all tests."""
    # Ensure predictable timezone
    monkeypatch.setenv("TZ", "UTC")

    # Never pick up a developer's real configuration
    for key in list(os.environ):
        if key.startswith("HOSTMAINT_"):
            monkeypatch.delenv(key)

    yield

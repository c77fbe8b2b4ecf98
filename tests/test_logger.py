"""
Test suite for hostmaint logging setup.
"""

import json
import logging
import re
import pytest

from hostmaint.logger import (
    LogManager,
    JsonFormatter,
    BestEffortFileHandler,
    setup_logging
)

@pytest.fixture
def manager(config):
    manager = setup_logging(config, app_name="hostmaint-test")
    yield manager
    for handler in list(manager.logger.handlers):
        manager.logger.removeHandler(handler)
        handler.close()

class TestLogManager:
    """Test suite for LogManager."""

    def test_handlers(self, manager, config):
        kinds = {type(h).__name__ for h in manager.logger.handlers}
        assert kinds == {'StreamHandler', 'BestEffortRotatingFileHandler'}
        assert manager.logger.propagate is False

    def test_job_log(self, manager, config):
        path = manager.add_job_log("system-update")

        assert re.fullmatch(r"system-update_\d{8}_\d{6}\.log", path.name)
        logging.getLogger("hostmaint-test.job").debug("Lock acquired")
        for handler in manager.logger.handlers:
            handler.flush()

        line = path.read_text().splitlines()[-1]
        assert re.match(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{4} \[DEBUG\] Lock acquired$", line)

    def test_job_log_unwritable_dir(self, config, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        config['LOG_DIR'] = str(blocker / "logs")
        config['LOG_FILE'] = ""
        manager = LogManager(config, app_name="hostmaint-unwritable")
        manager.setup()

        assert manager.add_job_log("log-cleanup") is None

    def test_setup_is_idempotent(self, manager, config):
        manager.setup()
        assert len(manager.logger.handlers) == 2

def test_best_effort_handler_swallows_errors(tmp_path, capsys):
    handler = BestEffortFileHandler(str(tmp_path / "job.log"))
    handler.stream.close()
    record = logging.LogRecord("hostmaint", logging.INFO, __file__, 1, "hello", None, None)

    handler.emit(record)
    handler.emit(record)

    assert capsys.readouterr().err.count("could not write log") == 1

def test_json_formatter():
    record = logging.LogRecord("hostmaint.job_runner", logging.ERROR, __file__, 1, "failed: %s", ("disk full",), None)
    data = json.loads(JsonFormatter().format(record))
    assert data['level'] == 'ERROR'
    assert data['message'] == 'failed: disk full'
    assert data['logger'] == 'hostmaint.job_runner'

"""Unit tests for logging infrastructure."""
import pytest
import logging
from pathlib import Path
from vtq.infrastructure.logging import setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.close()
        root.removeHandler(handler)


def test_setup_logging_creates_log_file(tmp_path):
    """Test that setup_logging creates log file."""
    output_dir = tmp_path / "output"

    logger = setup_logging(output_dir, debug=False)

    assert logger is not None
    assert isinstance(logger, logging.Logger)
    assert output_dir.is_dir()

    log_file = output_dir / "transcode.log"
    assert log_file.exists()
    assert "Logging initialized" in log_file.read_text()


def test_setup_logging_debug_mode(tmp_path):
    """Test setup_logging in debug mode."""
    setup_logging(tmp_path, debug=True)
    assert logging.getLogger().level == logging.DEBUG


def test_setup_logging_info_mode(tmp_path):
    setup_logging(tmp_path, debug=False)
    assert logging.getLogger().level == logging.INFO


def test_setup_logging_custom_path(tmp_path):
    """log_path overrides the default location inside output_dir."""
    custom = tmp_path / "logs" / "nested" / "run.log"

    setup_logging(tmp_path / "output", log_path=custom)
    logging.getLogger("vtq.test").info("JOB_START: test")

    assert custom.exists()
    assert "JOB_START: test" in custom.read_text()
    assert not (tmp_path / "output" / "transcode.log").exists()

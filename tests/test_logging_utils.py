"""
Tests for the per-run log file.
"""

import logging

import pytest

from desktop_provisioner import logging_utils
from desktop_provisioner.logging_utils import LOG_FILE_NAME, configure_logging, shutdown_logging


@pytest.fixture(autouse=True)
def _detach_handlers():
    yield
    shutdown_logging()


def _owned_handlers():
    return [h for h in logging.getLogger().handlers if h in (logging_utils._file_handler, logging_utils._console_handler)]


def test_run_log_lands_in_logs_dir(tmp_path):
    chosen = configure_logging(str(tmp_path / "logs"), also_console=False)
    logging.getLogger("desktop_provisioner.test").info("hello from the run")
    shutdown_logging()

    assert chosen == str(tmp_path / "logs" / LOG_FILE_NAME)
    assert "hello from the run" in (tmp_path / "logs" / LOG_FILE_NAME).read_text(encoding="utf-8")


def test_same_directory_is_idempotent(tmp_path):
    configure_logging(str(tmp_path))
    configure_logging(str(tmp_path))

    assert len(_owned_handlers()) == 2


def test_new_directory_moves_the_run_log(tmp_path):
    first = configure_logging(str(tmp_path / "a"), also_console=False)
    second = configure_logging(str(tmp_path / "b"), also_console=False)
    logging.getLogger("desktop_provisioner.test").info("second run")
    shutdown_logging()

    assert first != second
    assert "second run" not in (tmp_path / "a" / LOG_FILE_NAME).read_text(encoding="utf-8")
    assert "second run" in (tmp_path / "b" / LOG_FILE_NAME).read_text(encoding="utf-8")


def test_unwritable_logs_dir_falls_back_to_temp(tmp_path, monkeypatch):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    monkeypatch.setattr(logging_utils.tempfile, "gettempdir", lambda: str(tmp_path / "tmp"))

    chosen = configure_logging(str(blocker / "logs"), also_console=False)

    assert chosen == str(tmp_path / "tmp" / logging_utils.FALLBACK_DIR_NAME / LOG_FILE_NAME)

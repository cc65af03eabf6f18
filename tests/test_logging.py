"""Tests for the package logging bootstrap."""

from __future__ import annotations

import logging
import uuid
from logging.handlers import RotatingFileHandler

import pytest

import courtside_pos


@pytest.fixture
def logger_name():
    """Unique child logger name whose handlers are closed after the test."""

    name = f"courtside_pos.test_{uuid.uuid4().hex}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_package_logger_is_configured():
    assert courtside_pos.log.name == "courtside_pos"
    assert courtside_pos.log.level == logging.INFO
    assert any(isinstance(handler, logging.StreamHandler) for handler in courtside_pos.log.handlers)


def test_configure_logging_writes_rotating_file(tmp_path, logger_name):
    logger = courtside_pos.configure_logging(logger_name, log_dir=tmp_path / "logs")

    file_handlers = [handler for handler in logger.handlers if isinstance(handler, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].maxBytes == 1_000_000
    assert file_handlers[0].backupCount == 5

    logger.info("sale recorded")
    file_handlers[0].flush()
    assert "| INFO | sale recorded" in (tmp_path / "logs" / courtside_pos.LOG_FILE_NAME).read_text()


def test_configure_logging_is_idempotent(tmp_path, logger_name):
    first = courtside_pos.configure_logging(logger_name, log_dir=tmp_path)
    handler_count = len(first.handlers)

    second = courtside_pos.configure_logging(logger_name, log_dir=tmp_path)

    assert second is first
    assert len(second.handlers) == handler_count


def test_log_dir_can_be_overridden_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv(courtside_pos.LOG_DIR_ENV, str(tmp_path))

    assert courtside_pos.resolve_log_dir() == tmp_path

    monkeypatch.delenv(courtside_pos.LOG_DIR_ENV)
    assert courtside_pos.resolve_log_dir() == courtside_pos.PROJECT_ROOT / ".logs"


def test_unwritable_log_dir_falls_back_to_console(tmp_path, capsys, logger_name):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")

    logger = courtside_pos.configure_logging(logger_name, log_dir=blocker / "logs")

    assert not any(isinstance(handler, RotatingFileHandler) for handler in logger.handlers)
    assert "unable to initialize log file" in capsys.readouterr().err

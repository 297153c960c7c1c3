import logging

import pytest

from docrecall import logging_utils
from docrecall.logging_utils import (
    BASE_LOGGER,
    CONSOLE_HANDLER,
    FILE_HANDLER,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def reset_package_logger(monkeypatch):
    monkeypatch.delenv("DOCRECALL_LOG_TO_FILE", raising=False)
    monkeypatch.delenv("DOCRECALL_LOG_FILE", raising=False)
    logger = logging.getLogger(BASE_LOGGER)
    saved_handlers = list(logger.handlers)
    saved_propagate, saved_level = logger.propagate, logger.level
    logger.handlers.clear()
    yield
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = saved_handlers
    logger.propagate = saved_propagate
    logger.setLevel(saved_level)


def named(logger, name):
    return [h for h in logger.handlers if h.get_name() == name]


def test_get_logger_namespaces():
    assert get_logger().name == "docrecall"
    assert get_logger("docrecall.storage").name == "docrecall.storage"
    assert get_logger("worker").name == "docrecall.worker"


def test_configure_logging_is_idempotent():
    logger = configure_logging("debug")
    configure_logging("warning")

    assert len(named(logger, CONSOLE_HANDLER)) == 1
    assert named(logger, FILE_HANDLER) == []
    assert logger.level == logging.WARNING
    assert logger.propagate is False


def test_configure_logging_with_file(tmp_path):
    log_file = tmp_path / "logs" / "docrecall.log"

    logger = configure_logging("info", log_file=str(log_file))
    get_logger("test").info("hello file")

    (file_handler,) = named(logger, FILE_HANDLER)
    assert isinstance(file_handler, logging_utils.RotatingFileHandler)
    file_handler.flush()
    assert "hello file" in log_file.read_text(encoding="utf-8")


def test_file_handler_added_on_later_call(tmp_path):
    logger = configure_logging("info")
    configure_logging("info", log_file=str(tmp_path / "later.log"))
    configure_logging("info", log_file=str(tmp_path / "later.log"))

    assert len(named(logger, CONSOLE_HANDLER)) == 1
    assert len(named(logger, FILE_HANDLER)) == 1


def test_foreign_handlers_do_not_block_setup(tmp_path):
    logger = logging.getLogger(BASE_LOGGER)
    foreign = logging.NullHandler()
    logger.addHandler(foreign)

    configure_logging("info", log_file=str(tmp_path / "app.log"))

    assert foreign in logger.handlers
    assert len(named(logger, CONSOLE_HANDLER)) == 1
    assert len(named(logger, FILE_HANDLER)) == 1

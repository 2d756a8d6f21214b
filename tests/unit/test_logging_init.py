from __future__ import annotations

import logging
import sys

from sales_import.logging.init import (
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    set_debug,
    setup_logging,
)


def test_setup_logging_creates_logger_with_labeled_formatter():
    logger = setup_logging()
    assert logger.name == "sales_import"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_is_idempotent():
    assert setup_logging() is setup_logging()
    assert get_logger() is setup_logging()
    assert len(get_logger().handlers) == 1


def test_labeled_prefixes(capsys):
    logger = setup_logging()
    logger.info("hello")
    logger.warning("careful")
    logging.getLogger("sales_import.services.importer").error("row=1 failed")
    log_summary("kind=sales status=ok")
    out = capsys.readouterr().out.splitlines()
    assert out == ["INFO hello", "WARN careful", "ERROR row=1 failed", "SUMMARY kind=sales status=ok"]


def test_debug_hidden_until_enabled(capsys):
    logger = setup_logging()
    logger.debug("hidden")
    set_debug(logger)
    logger.debug("shown")
    assert capsys.readouterr().out == "DEBUG shown\n"


def test_formatter_appends_traceback_for_errors():
    fmt = LabeledFormatter()
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    text = fmt.format(record)
    assert text.startswith("ERROR failed\n")
    assert "ValueError: boom" in text
    record.levelno = SUMMARY_LEVEL
    assert fmt.format(record) == "SUMMARY failed"

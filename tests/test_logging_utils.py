"""Tests for CLI logging configuration behavior."""

from __future__ import annotations

import logging
from pathlib import Path

from prd_refinery.logging_utils import configure_logging, get_logger


def test_configure_logging_overwrites_previous_run_log(tmp_path: Path) -> None:
    """Each configure call should start a fresh log file for the new run."""
    log_path = tmp_path / "refinery.log"

    first_logger = configure_logging(log_file=log_path, verbose=False)
    first_logger.info("from first run")

    second_logger = configure_logging(log_file=log_path, verbose=False)
    second_logger.info("from second run")

    content = log_path.read_text(encoding="utf-8")

    assert "from second run" in content
    assert "from first run" not in content


def test_module_loggers_reach_the_run_log(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "refinery.log"
    logger = configure_logging(log_file=log_path, verbose=True)

    logging.getLogger("prd_refinery.agent.scorer").debug("scored billing-export")

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert "prd_refinery.agent.scorer: scored billing-export" in log_path.read_text(
        encoding="utf-8"
    )
    assert get_logger() is logger

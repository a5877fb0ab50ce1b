from __future__ import annotations

import logging
from contextlib import contextmanager

import pytest
from loguru import logger

from stocksim.logging_utils import logging_context, setup_logging, setup_test_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    setup_logging(force=True, level="INFO")
    yield
    setup_logging(force=True, level="INFO")


@contextmanager
def capture_records(level=logging.INFO):
    records = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            records.append(record)

    handler = ListHandler()
    handler.setLevel(level)
    std_logger = logging.getLogger("stocksim")
    std_logger.addHandler(handler)
    try:
        yield records
    finally:
        std_logger.removeHandler(handler)


def test_records_bridge_to_stdlib_with_context(monkeypatch):
    monkeypatch.setenv("ENV", "ci")
    setup_logging(force=True, level="INFO")
    with capture_records() as records:
        with logging_context(run_id="exp-7"):
            logger.info("[experiment] hello {}", "world")
        logger.debug("hidden")

    assert [r.getMessage() for r in records] == ["[experiment] hello world"]
    assert records[0].run_id == "exp-7"
    assert records[0].environment == "ci"


def test_context_resets_after_block():
    with capture_records() as records:
        with logging_context(run_id="inner"):
            logger.info("inside")
        logger.info("outside")
    assert [r.run_id for r in records] == ["inner", "-"]


def test_setup_logging_is_idempotent_unless_forced():
    setup_logging(level="DEBUG")
    with capture_records(level=logging.DEBUG) as records:
        logger.debug("still filtered")
    assert records == []

    setup_logging(force=True, level="DEBUG")
    with capture_records(level=logging.DEBUG) as records:
        logger.debug("now visible")
    assert [r.getMessage() for r in records] == ["now visible"]


def test_setup_test_logging_writes_file(tmp_path):
    setup_test_logging(tmp_path, level="INFO")
    logger.info("[ledger] to file")
    text = (tmp_path / "pytest.log").read_text()
    assert "[ledger] to file" in text

from __future__ import annotations

import logging

import pytest

from reduction_bench.logging import (
    LoggingContextFilter,
    configure_cli_logging,
    ensure_logging_context_filter,
    get_logging_context,
    logging_context,
    update_logging_context,
)


@pytest.fixture
def package_logger():
    logger = logging.getLogger("reduction_bench")
    filters, handlers, level = list(logger.filters), list(logger.handlers), logger.level
    logger.filters[:] = []
    logger.handlers[:] = []
    yield logger
    logger.filters[:] = filters
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_logging_context_sets_and_resets():
    assert get_logging_context() == {}
    with logging_context(strategy="atomic", workers=4, ignored="x"):
        assert get_logging_context() == {"strategy": "atomic", "workers": 4}
        with logging_context(workers=2):
            assert get_logging_context()["workers"] == 2
        assert get_logging_context()["workers"] == 4
    assert get_logging_context() == {}


def test_update_logging_context_ignores_unknown_keys():
    with logging_context(run_id="r1"):
        update_logging_context(strategy="serial", colour="blue")
        ctx = get_logging_context()
        assert ctx["strategy"] == "serial"
        assert "colour" not in ctx
        update_logging_context(strategy=None)


def test_filter_injects_context_fields():
    record = logging.LogRecord("reduction_bench", logging.INFO, __file__, 1, "msg", None, None)
    with logging_context(run_id="abc", strategy="partitioned"):
        assert LoggingContextFilter().filter(record) is True
    assert record.run_id == "abc"
    assert record.strategy == "partitioned"
    assert record.workers is None


def test_ensure_filter_is_idempotent(package_logger):
    ensure_logging_context_filter()
    ensure_logging_context_filter()
    filters = [f for f in package_logger.filters if isinstance(f, LoggingContextFilter)]
    assert len(filters) == 1


def test_configure_cli_logging_adds_one_handler(package_logger, capsys):
    configure_cli_logging()
    configure_cli_logging(verbose=True)
    handlers = [h for h in package_logger.handlers if getattr(h, "_reduction_bench_cli", False)]
    assert len(handlers) == 1
    assert package_logger.level == logging.DEBUG

    with logging_context(strategy="work_stealing", workers=3):
        logging.getLogger("reduction_bench.test").info("hello")
    err = capsys.readouterr().err
    assert "[strategy=work_stealing workers=3] hello" in err

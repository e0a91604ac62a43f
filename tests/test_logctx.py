import logging
import time

from warden import logctx


def test_bind_logger_sets_current():
    logger = logging.getLogger("test.logctx.bound")
    with logctx.bind_logger(logger) as bound:
        assert bound is logger
        assert logctx.current_logger() is logger


def test_nested_binding_restores_outer():
    outer = logging.getLogger("test.logctx.outer")
    inner = logging.getLogger("test.logctx.inner")
    with logctx.bind_logger(outer):
        with logctx.bind_logger(inner):
            assert logctx.current_logger() is inner
        assert logctx.current_logger() is outer


def test_fallback_logger_warns(caplog):
    caplog.set_level(logging.WARNING)
    logger = logctx.current_logger()
    assert isinstance(logger, logging.LoggerAdapter)
    assert logger.extra == {"WARNING": "uninitialized logger from context"}
    assert "couldn't find logger in context" in caplog.text


def test_log_start_time_logs_start_and_end(caplog):
    caplog.set_level(logging.DEBUG)
    logger = logging.getLogger("test.logctx.timing")
    with logctx.bind_logger(logger):
        close = logctx.log_start_time("request handling")
        elapsed = close()
    messages = [record.getMessage() for record in caplog.records if record.name == logger.name]
    assert messages[0] == "request handling start"
    assert messages[1].startswith("request handling end exec-time=")
    assert elapsed.total_seconds() >= 0


def test_log_end_time_measures_from_start(caplog):
    caplog.set_level(logging.DEBUG)
    logger = logging.getLogger("test.logctx.end")
    start = time.monotonic() - 1.0
    with logctx.bind_logger(logger):
        elapsed = logctx.log_end_time("work", start)
    assert elapsed.total_seconds() >= 1.0
    assert any(r.getMessage().startswith("work end") for r in caplog.records)
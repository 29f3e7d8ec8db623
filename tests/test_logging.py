from __future__ import annotations

import logging

from quizlobby.core.logging import ContextFilter, get_logger, lobby_logger, setup_logging


class Collect(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_lobby_logger_stamps_context_and_call_extra_wins():
    sink = Collect()
    base = get_logger("quizlobby.test.adapter")
    base.addHandler(sink)
    try:
        log = lobby_logger("quizlobby.test.adapter", 42, role="host")
        log.warning("hello")
        log.extra["player"] = 7
        log.warning("again", extra={"role": "guest"})
    finally:
        base.removeHandler(sink)

    first, second = sink.records
    assert (first.lobby, first.player, first.role) == (42, "-", "host")
    assert (second.lobby, second.player, second.role) == (42, 7, "guest")


def test_filter_fills_missing_fields():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", None, None)
    assert ContextFilter().filter(record)
    assert (record.lobby, record.player, record.role) == ("-", "-", "-")


def test_setup_keeps_foreign_handlers():
    root = logging.getLogger()
    foreign = Collect()
    root.addHandler(foreign)
    try:
        setup_logging()
        setup_logging()
        ours = [h for h in root.handlers if getattr(h, "_quizlobby", False)]
        assert len(ours) == 1
        assert foreign in root.handlers
    finally:
        root.removeHandler(foreign)

"""
tests/test_logger.py
--------------------
Unit tests for logger.py.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal

from logger import get_logger, log_event


class TestGetLogger:
    def test_child_of_engine_root(self) -> None:
        assert get_logger("core.executor").name == "eav_migrator.core.executor"


class TestLogEvent:
    def test_single_sorted_json_line(self, caplog) -> None:
        log = get_logger("tests.events")
        with caplog.at_level(logging.INFO, logger="eav_migrator"):
            log_event(log, logging.INFO, "batch_completed", table="OCRD", migration_id="m1", amount=Decimal("1.5"))
        record = caplog.records[-1]
        assert json.loads(record.getMessage()) == {
            "event": "batch_completed", "table": "OCRD", "migration_id": "m1", "amount": "1.5",
        }
        assert record.getMessage().index('"amount"') < record.getMessage().index('"event"')

    def test_disabled_level_emits_nothing(self, caplog) -> None:
        log = get_logger("tests.quiet")
        with caplog.at_level(logging.WARNING, logger="eav_migrator"):
            log_event(log, logging.DEBUG, "phase_started", phase="master-data")
        assert caplog.records == []

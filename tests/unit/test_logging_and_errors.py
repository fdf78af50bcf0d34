"""Tests for logging configuration and the error taxonomy"""
import json
import logging

import pytest
import structlog

from equity_ledger import logging_config
from equity_ledger.exceptions import (
    EquityLedgerError,
    InsufficientCapacityError,
    InvalidInputError,
    NotFoundError,
)


@pytest.fixture
def fresh_logging():
    logging_config._configured = False
    yield
    logging_config._configured = False
    structlog.reset_defaults()


class TestConfigureLogging:

    def test_json_output(self, fresh_logging, caplog):
        caplog.set_level(logging.INFO)
        logging_config.configure_logging(level="INFO", json_output=True)

        structlog.get_logger("equity_ledger.tests").info("Recorded ownership entry", shares=100)

        record = next(r for r in caplog.records if "Recorded ownership entry" in r.getMessage())
        payload = json.loads(record.getMessage())
        assert payload["shares"] == 100
        assert payload["level"] == "info"
        assert "timestamp" in payload

    def test_configure_once(self, fresh_logging):
        logging_config.configure_logging(json_output=True)
        logging_config.configure_logging(json_output=False)

        assert logging_config._configured is True


class TestErrors:

    def test_not_found_message(self):
        error = NotFoundError("Grant", 42, organization_id=1)

        assert str(error) == "Grant 42 not found"
        assert error.to_dict() == {
            "code": "not_found",
            "message": "Grant 42 not found",
            "entity": "Grant",
            "identifier": 42,
            "organization_id": 1,
        }

    def test_capacity_error_carries_amounts(self):
        error = InsufficientCapacityError("Not enough shares", requested=10, available=5)

        assert error.requested == 10
        assert error.available == 5
        assert error.to_dict()["code"] == "insufficient_capacity"

    def test_invalid_input_is_value_error(self):
        with pytest.raises(ValueError):
            raise InvalidInputError("Exit valuation must be non-negative")

    def test_all_errors_share_base(self):
        assert issubclass(NotFoundError, EquityLedgerError)
        assert issubclass(InvalidInputError, EquityLedgerError)

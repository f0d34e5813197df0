"""
Tests for structured JSON logging
"""

import json
import sys
import logging

from transfer_ledger.logging_config import JSONFormatter, setup_logging, log_action


class TestJSONFormatter:

    def make_record(self, **fields):
        record = logging.LogRecord("transfer_ledger.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        for key, value in fields.items():
            setattr(record, key, value)
        return record

    def test_structured_fields(self):
        formatter = JSONFormatter(service_name="transfers-api")
        entry = json.loads(formatter.format(self.make_record(
            action="execute_transfer", correlation_id="TRF-1", extra={"amount": "40.00"}
        )))
        assert entry["message"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["service"] == "transfers-api"
        assert entry["correlation_id"] == "TRF-1"
        assert entry["extra"] == {"amount": "40.00"}
        assert "resource" not in entry

    def test_exception_included(self):
        formatter = JSONFormatter()
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        entry = json.loads(formatter.format(record))
        assert "ValueError: bad" in entry["exception"]


class TestSetupLogging:

    def test_log_action_to_file(self, tmp_path):
        """Test log_action fields land in the JSON line"""
        log_file = tmp_path / "ledger.log"
        logger = setup_logging(
            level="DEBUG", logger_name="transfer_ledger_test_file",
            service_name="transfers-api", log_file=str(log_file)
        )
        log_action(logger, "warning", "Transfer failed", action="execute_transfer",
                   resource="transfer", extra={"error_kind": "SameAccount"})
        for handler in logger.handlers:
            handler.flush()

        entry = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert entry["level"] == "WARNING"
        assert entry["action"] == "execute_transfer"
        assert entry["extra"] == {"error_kind": "SameAccount"}
        assert entry["service"] == "transfers-api"

    def test_setup_replaces_handlers(self):
        name = "transfer_ledger_test_handlers"
        setup_logging(logger_name=name)
        logger = setup_logging(logger_name=name, log_format="text")
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.propagate is False

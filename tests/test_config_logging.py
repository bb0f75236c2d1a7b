"""
Test suite for configuration and structured logging
"""

import json
import logging

from savings_ledger.config import SavingsLedgerConfig, get_config, reload_config
from savings_ledger.logging_config import JSONFormatter, log_action, setup_logging
from savings_ledger.orchestrator import TransactionOrchestrator
from savings_ledger.storage import InMemoryStorage, SQLiteStorage


class TestConfig:

    def test_defaults(self):
        config = SavingsLedgerConfig()
        assert config.lock_timeout_seconds == 10.0
        assert config.api_port == 8090
        assert config.log_format == "json"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SAVINGS_DATABASE_URL", "memory://")
        monkeypatch.setenv("SAVINGS_LOCK_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("SAVINGS_API_PREFIX", "/api")

        config = reload_config()
        try:
            assert get_config() is config
            assert config.database_url == "memory://"
            assert config.lock_timeout_seconds == 2.5
            assert config.api_prefix == "/api"
        finally:
            monkeypatch.undo()
            reload_config()

    def test_orchestrator_from_config(self):
        orchestrator = TransactionOrchestrator.from_config(
            SavingsLedgerConfig(database_url="memory://", lock_timeout_seconds=3)
        )
        assert isinstance(orchestrator.storage, InMemoryStorage)
        assert orchestrator.locks.default_timeout == 3

        orchestrator = TransactionOrchestrator.from_config(SavingsLedgerConfig(database_url="sqlite://"))
        assert isinstance(orchestrator.storage, SQLiteStorage)
        orchestrator.storage.close()


class TestStructuredLogging:

    def test_json_formatter_includes_structured_fields(self):
        record = logging.LogRecord("savings_ledger", logging.INFO, __file__, 1, "Deposit ok", None, None)
        record.action = "deposit"
        record.resource = "account:a1"
        record.extra = {"amount": "10.00"}

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["message"] == "Deposit ok"
        assert entry["action"] == "deposit"
        assert entry["resource"] == "account:a1"
        assert entry["extra"] == {"amount": "10.00"}
        assert "correlation_id" not in entry

    def test_setup_logging_writes_json_lines(self, tmp_path):
        log_file = tmp_path / "savings.log"
        logger = setup_logging("DEBUG", logger_name="tests.savings_json", log_file=str(log_file))

        log_action(logger, "warning", "Withdrawal rejected", action="withdrawal",
                   correlation_id="req-9", extra={"error": "INSUFFICIENT_BALANCE"})
        for handler in logger.handlers:
            handler.flush()
            handler.close()

        entry = json.loads(log_file.read_text().strip())
        assert entry["level"] == "WARNING"
        assert entry["correlation_id"] == "req-9"
        assert entry["extra"]["error"] == "INSUFFICIENT_BALANCE"
        assert logger.propagate is False

    def test_setup_logging_text_format(self, tmp_path):
        log_file = tmp_path / "savings.txt"
        logger = setup_logging("INFO", logger_name="tests.savings_text", log_format="text", log_file=str(log_file))

        logger.info("plain line")
        logger.debug("hidden")
        for handler in logger.handlers:
            handler.flush()
            handler.close()

        content = log_file.read_text()
        assert "INFO [tests.savings_text] plain line" in content
        assert "hidden" not in content

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging(logger_name="tests.savings_repeat")
        setup_logging(logger_name="tests.savings_repeat")
        assert len(logger.handlers) == 1

"""
Tests for configuration and structured logging
"""

import json
import logging
from decimal import Decimal

from savings_group.config import SavingsGroupConfig
from savings_group.loans import LoanPolicy
from savings_group.logging_config import JSONFormatter, log_action, setup_logging


class TestConfig:
    """Environment-driven settings"""

    def test_defaults(self):
        config = SavingsGroupConfig()
        assert config.retained_savings == "1000"
        assert config.max_guarantors == 3
        assert config.api_port == 8090

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SAVINGS_GROUP_RETAINED_SAVINGS", "2500")
        monkeypatch.setenv("SAVINGS_GROUP_MAX_GUARANTORS", "5")

        config = SavingsGroupConfig()
        policy = LoanPolicy.from_config(config)

        assert policy.retained_savings == Decimal('2500')
        assert policy.max_guarantors == 5
        assert policy.money_epsilon == Decimal('0.01')


class TestStructuredLogging:
    """JSON log records"""

    def test_log_action_fields(self):
        records = []

        class Capture(logging.Handler):
            def emit(self, record):
                records.append(record)

        logger = logging.getLogger("savings_group.tests.capture")
        logger.setLevel(logging.INFO)
        logger.addHandler(Capture())

        log_action(logger, "info", "Loan LN1 is approved", actor_id="A1",
                   action="approve_loan", resource="loan:L1", extra={"status": "approved"})

        payload = json.loads(JSONFormatter().format(records[0]))
        assert payload["message"] == "Loan LN1 is approved"
        assert payload["actor_id"] == "A1"
        assert payload["action"] == "approve_loan"
        assert payload["resource"] == "loan:L1"
        assert payload["extra"] == {"status": "approved"}
        assert "exception" not in payload

    def test_disabled_level_is_skipped(self):
        records = []

        class Capture(logging.Handler):
            def emit(self, record):
                records.append(record)

        logger = logging.getLogger("savings_group.tests.quiet")
        logger.setLevel(logging.WARNING)
        logger.addHandler(Capture())

        log_action(logger, "info", "not shown")
        assert records == []

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("DEBUG", logger_name="savings_group.tests.setup")
        logger = setup_logging("INFO", logger_name="savings_group.tests.setup", log_format="text")

        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

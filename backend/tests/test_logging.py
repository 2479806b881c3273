"""Security event and log redaction tests"""
import json
import logging
from unittest.mock import patch

import pytest

from app.core.config import settings
from app.core.logging import SecretRedactionFilter
from app.core.otel import setup_otel_logging
from app.core.security import log_security_event


@pytest.mark.high
class TestSecurityEvents:
    """Test the single-line JSON audit events"""

    def test_event_is_one_json_line(self, caplog):
        with caplog.at_level(logging.INFO, logger="security"):
            event_id = log_security_event("PAYMENT_ORDER_CREATED", userId=7, amount=50000, currency="INR")

        record = caplog.records[-1]
        assert record.name == "security"
        prefix, _, payload = record.getMessage().partition(" ")
        assert prefix == "SECURITY_EVENT"
        entry = json.loads(payload)
        assert entry["eventId"] == event_id
        assert entry["eventType"] == "PAYMENT_ORDER_CREATED"
        assert entry["environment"] == "test"
        assert entry["userId"] == 7
        assert entry["amount"] == 50000
        assert "request" not in entry

    def test_warning_level_is_kept(self, caplog):
        with caplog.at_level(logging.INFO, logger="security"):
            log_security_event("PAYMENT_AMOUNT_TAMPERING", level=logging.WARNING, userId=1)
        assert caplog.records[-1].levelno == logging.WARNING


@pytest.mark.high
class TestSecretRedaction:
    """Test gateway secrets never reach log output"""

    def _record(self, msg, args=()):
        return logging.LogRecord("payments", logging.INFO, __file__, 1, msg, args, None)

    def test_secret_in_args_is_masked(self):
        record = self._record("key secret is %s", ("s3cret-value",))
        assert SecretRedactionFilter(["s3cret-value"]).filter(record) is True
        assert record.getMessage() == "key secret is ***"

    def test_secret_in_message_is_masked(self):
        record = self._record("auth failed for rzp:s3cret-value")
        SecretRedactionFilter(["s3cret-value", None, ""]).filter(record)
        assert "s3cret-value" not in record.getMessage()

    def test_other_messages_are_untouched(self):
        record = self._record("order %s created", ("order_1",))
        SecretRedactionFilter(["s3cret-value"]).filter(record)
        assert record.args == ("order_1",)
        assert record.getMessage() == "order order_1 created"

    def test_no_secrets_configured(self):
        record = self._record("nothing to hide")
        assert SecretRedactionFilter([None, ""]).filter(record) is True
        assert record.getMessage() == "nothing to hide"

    def test_otel_log_handler_is_redacted(self):
        root = logging.getLogger()
        before = list(root.handlers)

        with patch.object(settings, "OTEL_EXPORTER_OTLP_ENDPOINT", "localhost:4317"), \
                patch("opentelemetry.exporter.otlp.proto.grpc._log_exporter.OTLPLogExporter"), \
                patch("opentelemetry._logs.set_logger_provider"):
            assert setup_otel_logging() is True

        added = [h for h in root.handlers if h not in before]
        try:
            assert len(added) == 1
            assert any(isinstance(f, SecretRedactionFilter) for f in added[0].filters)
        finally:
            for handler in added:
                root.removeHandler(handler)

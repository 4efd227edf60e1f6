"""
Tests for log formatting, the context logger and the metrics collector.
"""

import json
import logging

from givecore.observability import (
    ContextLogger,
    MetricsCollector,
    StructuredFormatter,
    TextFormatter,
    account_var,
    request_id_var,
)


def make_record(**fields) -> logging.LogRecord:
    record = logging.LogRecord("givecore.test", logging.INFO, __file__, 1, "Donation confirmed", (), None)
    for key, value in fields.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_structured_carries_fields_and_context(self):
        request_token = request_id_var.set("req-1")
        account_token = account_var.set("0xabc")
        try:
            line = StructuredFormatter().format(make_record(campaign_id=3, amount=object()))
        finally:
            request_id_var.reset(request_token)
            account_var.reset(account_token)

        entry = json.loads(line)
        assert entry["message"] == "Donation confirmed"
        assert entry["request_id"] == "req-1"
        assert entry["account"] == "0xabc"
        assert entry["campaign_id"] == 3
        assert isinstance(entry["amount"], str)
        assert "lineno" not in entry

    def test_text_appends_fields(self):
        line = TextFormatter().format(make_record(resource_id=4))
        assert line.endswith("givecore.test: Donation confirmed resource_id=4")


class TestContextLogger:

    def test_keywords_become_extra(self):
        adapter = ContextLogger(logging.getLogger("givecore.test"), {})
        msg, kwargs = adapter.process("hi", {"campaign_id": 1, "exc_info": False, "extra": {"a": 2}})

        assert kwargs == {"exc_info": False, "extra": {"a": 2, "campaign_id": 1}}


class TestMetrics:

    def test_latency_samples_are_bounded(self):
        metrics = MetricsCollector()
        for i in range(1500):
            metrics.record_transaction(float(i), success=i % 3 != 0)

        assert len(metrics.confirmation_latencies_ms) == 1000
        summary = metrics.get_summary()
        assert summary["transactions_confirmed"] + summary["transactions_failed"] == 1500
        assert summary["confirmation_latency_p50_ms"] >= 500

    def test_empty_percentiles(self):
        summary = MetricsCollector().get_summary()
        assert summary["request_latency_p95_ms"] is None

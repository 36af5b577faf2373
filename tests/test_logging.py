"""Tests for log formatting and credential masking."""

from __future__ import annotations

import json
import logging

import pytest

from analytics_engine.core.logging import (
    ConsoleFormatter,
    JsonFormatter,
    SecretMaskFilter,
    job_run_var,
    mask_secrets,
)


def record(msg: str, *args) -> logging.LogRecord:
    return logging.LogRecord("analytics_engine.test", logging.INFO, __file__, 1, msg, args, None)


@pytest.fixture
def job_tag():
    token = job_run_var.set("refresh_prices:17")
    yield
    job_run_var.reset(token)


class TestMaskSecrets:
    """Provider keys never reach the log output."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            (
                "GET https://api.twelvedata.com/time_series?symbol=AAPL&apikey=abc123&outputsize=90",
                "GET https://api.twelvedata.com/time_series?symbol=AAPL&apikey=***&outputsize=90",
            ),
            ('{"api_key": "s3cr3t", "symbol": "MSFT"}', '{"api_key": "***", "symbol": "MSFT"}'),
            ("Authorization: Bearer", "Authorization: ***"),
            ("no credentials here", "no credentials here"),
        ],
    )
    def test_masking(self, text, expected):
        assert mask_secrets(text) == expected

    def test_filter_rewrites_formatted_message(self):
        rec = record("calling %s", "https://x?apikey=abc")
        assert SecretMaskFilter().filter(rec) is True
        assert rec.getMessage() == "calling https://x?apikey=***"


class TestFormatters:
    """Job run tagging."""

    def test_json_carries_job_fields(self, job_tag):
        payload = json.loads(JsonFormatter().format(record("Refreshed %d tickers", 3)))
        assert payload["msg"] == "Refreshed 3 tickers"
        assert payload["job"] == "refresh_prices"
        assert payload["run_id"] == "17"

    def test_json_without_job(self):
        payload = json.loads(JsonFormatter().format(record("idle")))
        assert "job" not in payload

    def test_console_prefix(self, job_tag):
        line = ConsoleFormatter().format(record("done"))
        assert "[refresh_prices:17] analytics_engine.test: done" in line

"""Tests for inbound payload validation."""

import pytest
from pydantic import ValidationError

from apps.ingress.payload import TickerPayload, normalize_symbol
from apps.lifecycle.models import AlertEvent


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("aapl", "AAPL"),
        ("  brk.b ", "BRK.B"),
        ("BTC/USD", "BTC/USD"),
        ("es1!", "ES1!"),
        ("NASDAQ:NVDA", "NASDAQ:NVDA"),
    ],
)
def test_normalize_symbol(raw, expected):
    assert normalize_symbol(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "1ABC", "AA PL", "A" * 21, None, 7])
def test_normalize_symbol_rejects_non_tickers(raw):
    with pytest.raises(ValueError):
        normalize_symbol(raw)


def test_payload_uses_ticker_key_and_defaults_priority():
    payload = TickerPayload.model_validate_json(b'{"ticker": "nvda"}')
    assert payload.to_event() == AlertEvent(symbol="NVDA", is_high_priority=False)


def test_payload_reads_high_priority_flag():
    payload = TickerPayload.model_validate({"symbol": "amd", "highPriority": True})
    assert payload.to_event() == AlertEvent(symbol="AMD", is_high_priority=True)


def test_payload_rejects_invalid_json():
    with pytest.raises(ValidationError) as excinfo:
        TickerPayload.model_validate_json(b'{"ticker": ')
    assert excinfo.value.errors()[0]["type"] == "json_invalid"


def test_payload_treats_null_priority_as_low():
    payload = TickerPayload.model_validate_json(
        b'{"ticker": "aapl", "highPriority": null}'
    )
    assert payload.to_event() == AlertEvent(symbol="AAPL", is_high_priority=False)

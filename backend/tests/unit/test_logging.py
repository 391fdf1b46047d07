import logging

import structlog

from intent_coordinator.telemetry.logging import _drop_secrets, init_logging


def test_secrets_are_dropped_from_records():
    out = _drop_secrets(None, "info", {"event": "admin update", "admin_token": "t", "intent_id": "0x01"})
    assert out == {"event": "admin update", "intent_id": "0x01"}


def test_clean_records_pass_through_untouched():
    rec = {"event": "bridge poll", "outcome": "ok"}
    assert _drop_secrets(None, "info", rec) is rec


def test_http_clients_are_quieted():
    try:
        init_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("web3").level == logging.WARNING
        init_logging("ERROR")
        assert logging.getLogger("httpx").level == logging.ERROR
    finally:
        structlog.reset_defaults()

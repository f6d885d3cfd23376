import logging

from planwizard.config import get_logging_config
from planwizard.logging.audit import audit_event, audit_warning, safe_excerpt, text_hash


def test_audit_drops_empty_fields_and_hashes_contacts(caplog):
    with caplog.at_level(logging.INFO, logger="planwizard"):
        payload = audit_event("wizard_test", session_id="s-1", email="amy@x.com", request_id=None)

    assert payload["event"] == "wizard_test"
    assert payload["email_hash"] == text_hash("amy@x.com")
    assert "email" not in payload
    assert "request_id" not in payload
    assert "amy@x.com" not in caplog.text


def test_audit_warning_logs_at_warning_level(caplog):
    with caplog.at_level(logging.INFO, logger="planwizard"):
        audit_warning("wizard_test_failed", error="boom")

    assert caplog.records[-1].levelno == logging.WARNING


def test_safe_excerpt_compacts_and_truncates():
    assert safe_excerpt("  a \n b  ") == "a b"
    assert safe_excerpt("x" * 100, max_len=10) == "xxxxxxxxxx..."


def test_logging_level_comes_from_environment(monkeypatch):
    monkeypatch.setenv("PLANWIZARD_LOG_LEVEL", "debug")
    assert get_logging_config().level == logging.DEBUG

    monkeypatch.setenv("PLANWIZARD_LOG_LEVEL", "chatty")
    assert get_logging_config().level == logging.INFO

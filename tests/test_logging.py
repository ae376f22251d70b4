import logging

import structlog

from tgdispatch.logging import redact_token_processor, setup_logging


def test_redacts_tokens_in_event_and_fields() -> None:
    event = {
        "event": "telegram.request https://api.telegram.org/bot123456:ABCdef_ghij-KLM/getMe",
        "error": "failed for 123456:ABCdef_ghij-KLMnop",
        "count": 3,
    }

    result = redact_token_processor(None, "info", event)

    assert "ABCdef" not in result["event"]
    assert "bot[REDACTED]" in result["event"]
    assert result["error"] == "failed for [REDACTED_TOKEN]"
    assert result["count"] == 3


def test_plain_text_is_untouched() -> None:
    event = {"event": "poller.started", "note": "12:30 meeting"}
    assert redact_token_processor(None, "info", dict(event)) == event


def test_setup_logging_quiets_http_loggers(capsys) -> None:
    try:
        setup_logging(debug=False)
        structlog.get_logger("tgdispatch.test").info(
            "dispatch.check", token="bot42:SECRETsecretSECRET"
        )
        out = capsys.readouterr().out
    finally:
        structlog.reset_defaults()

    assert "dispatch.check" in out
    assert "SECRETsecret" not in out
    assert logging.getLogger("httpx").level == logging.WARNING

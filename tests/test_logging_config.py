import io
import json
import logging

from crypto_tracker.logging_config import DEFAULT_ENV, JsonFormatter, configure_logging, structured_log_extra


def _build_logger(stream: io.StringIO) -> logging.Logger:
    logger = logging.getLogger("crypto_tracker.test.logging")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    logger.handlers = [handler]
    return logger


def test_structured_log_extra_adds_common_identifiers():
    extra = structured_log_extra(
        event="stream_reconnect_scheduled",
        symbol="BTCUSDT",
        attempt=3,
        request_id=7,
        custom_field="value",
    )

    assert extra["event"] == "stream_reconnect_scheduled"
    assert extra["env"] == DEFAULT_ENV
    assert extra["symbol"] == "BTCUSDT"
    assert extra["attempt"] == 3
    assert extra["request_id"] == 7
    assert extra["custom_field"] == "value"

    minimal_extra = structured_log_extra()
    assert "symbol" not in minimal_extra
    assert "attempt" not in minimal_extra
    assert "request_id" not in minimal_extra


def test_json_formatter_preserves_extra_fields():
    stream = io.StringIO()
    logger = _build_logger(stream)

    logger.info(
        "Open price is 0 for BTCUSDT",
        extra=structured_log_extra(event="baseline_zero", symbol="BTCUSDT", symbols=["BTCUSDT"]),
    )

    payload = json.loads(stream.getvalue())
    assert payload["message"] == "Open price is 0 for BTCUSDT"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "crypto_tracker.test.logging"
    assert payload["event"] == "baseline_zero"
    assert payload["symbol"] == "BTCUSDT"
    assert payload["symbols"] == ["BTCUSDT"]
    assert "timestamp" in payload


def test_json_formatter_includes_exception_text():
    stream = io.StringIO()
    logger = _build_logger(stream)

    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.exception("Update callback failed")

    payload = json.loads(stream.getvalue())
    assert payload["event"] is None
    assert "RuntimeError: boom" in payload["exc_info"]


def test_configure_logging_installs_single_json_handler():
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        configure_logging(level="DEBUG", env="dev")
        configure_logging(level="DEBUG", env="dev")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert root.handlers[0].formatter.env == "dev"
        assert root.level == logging.DEBUG
    finally:
        root.handlers = original_handlers
        root.setLevel(original_level)

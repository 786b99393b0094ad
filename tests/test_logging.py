import json
import logging

from ghrelay.logging import CustomJSONFormatter, setup_logging


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("ghrelay", logging.INFO, __file__, 1, "Following foreign redirect", (), None)
    record.correlation_id = "abcd-1234"
    record.hop = 2

    data = json.loads(CustomJSONFormatter().format(record))

    assert data["message"] == "Following foreign redirect"
    assert data["level"] == "INFO"
    assert data["logger"] == "ghrelay"
    assert data["correlation_id"] == "abcd-1234"
    assert data["hop"] == 2


def test_setup_logging_is_idempotent():
    setup_logging()
    setup_logging()

    handlers = [
        h for h in logging.getLogger("ghrelay").handlers
        if isinstance(h.formatter, CustomJSONFormatter)
    ]
    assert len(handlers) == 1

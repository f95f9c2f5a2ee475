import logging

from fieldsense.core.logging import FieldValueSafeFilter


def _filtered_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.filters = []
    logger.addFilter(FieldValueSafeFilter())
    return logger


def test_filter_redacts_email_and_ssn(caplog):
    logger = _filtered_logger("test.field_values")

    with caplog.at_level(logging.INFO, logger="test.field_values"):
        logger.info("Field text 'Contact john.doe@example.com SSN 123-45-6789'")

    assert "john.doe@example.com" not in caplog.text
    assert "123-45-6789" not in caplog.text
    assert "[REDACTED]" in caplog.text


def test_filter_redacts_value_assignment(caplog):
    logger = _filtered_logger("test.value_assignment")

    with caplog.at_level(logging.INFO, logger="test.value_assignment"):
        logger.info("placeholder value=hunter2 ignored")

    assert "hunter2" not in caplog.text
    assert "value=[REDACTED]" in caplog.text


def test_filter_redacts_format_args(caplog):
    logger = _filtered_logger("test.args")

    with caplog.at_level(logging.DEBUG, logger="test.args"):
        logger.debug("Pattern: label=%s text=%s", "phone", "call 555-123-4567 today")

    assert "555-123-4567" not in caplog.text
    assert "label=phone" in caplog.text


def test_filter_leaves_non_string_args_alone():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "samples=%d conf=%.3f", (12, 0.5), None)

    assert FieldValueSafeFilter().filter(record) is True
    assert record.args == (12, 0.5)
    assert record.getMessage() == "samples=12 conf=0.500"


def test_filter_sanitizes_mapping_args():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "%(who)s", ({"who": "a@b.io"},), None)

    FieldValueSafeFilter().filter(record)

    assert record.getMessage() == "[REDACTED]"

import logging
from unittest.mock import Mock

import httpx
import pytest

from chaos_proxy.errors import UpstreamTransportError
from chaos_proxy.utils.exception_logging import (
    error_kind,
    format_exception_message,
    log_exception_with_details,
)


class BrokenStr(Exception):
    def __str__(self):
        raise RuntimeError("no str")


class FakeGroup(Exception):
    def __init__(self, message, exceptions):
        super().__init__(message)
        self.exceptions = exceptions


@pytest.mark.parametrize(
    "exception, kind",
    [
        (httpx.ConnectTimeout("slow"), "timeout"),
        (httpx.ReadTimeout("slow"), "timeout"),
        (httpx.ConnectError("refused"), "connection_failed"),
        (httpx.UnsupportedProtocol("ftp"), "invalid_url"),
        (httpx.InvalidURL("bad"), "invalid_url"),
        (httpx.RemoteProtocolError("garbage"), "protocol_error"),
        (httpx.ReadError("reset"), "read_failed"),
        (ValueError("other"), "ValueError"),
    ],
)
def test_error_kind(exception, kind):
    assert error_kind(exception) == kind


def test_error_kind_follows_cause():
    try:
        try:
            raise httpx.ConnectError("refused")
        except httpx.ConnectError as e:
            raise UpstreamTransportError("upstream unreachable") from e
    except UpstreamTransportError as wrapped:
        assert error_kind(wrapped) == "connection_failed"


def test_error_kind_survives_cause_cycle():
    a = ValueError("a")
    b = KeyError("b")
    a.__cause__ = b
    b.__cause__ = a

    assert error_kind(a) == "ValueError"


def test_format_plain_exception():
    assert format_exception_message(ValueError("bad value")) == "bad value"


def test_format_group_lists_sub_exceptions():
    group = FakeGroup("two failed", [ValueError("x"), KeyError("y")])

    message = format_exception_message(group)

    assert message.startswith("two failed (Sub-exceptions: ")
    assert "ValueError: x" in message
    assert "KeyError: 'y'" in message


def test_format_broken_str_does_not_raise():
    message = format_exception_message(BrokenStr())

    assert "BrokenStr" in message


def test_format_none():
    assert format_exception_message(None) == "None"


def test_log_exception_with_details(caplog):
    logger = logging.getLogger("test.exception_logging")

    with caplog.at_level(logging.WARNING, logger="test.exception_logging"):
        log_exception_with_details(
            logger, "[Upstream]", httpx.ConnectError("refused"), level=logging.WARNING
        )

    assert caplog.records[0].levelno == logging.WARNING
    assert caplog.records[0].getMessage() == "[Upstream] connection_failed: refused"
    assert caplog.records[0].exc_info is None


def test_log_exception_with_traceback(caplog):
    logger = logging.getLogger("test.exception_logging")

    try:
        raise RuntimeError("boom")
    except RuntimeError as e:
        with caplog.at_level(logging.ERROR, logger="test.exception_logging"):
            log_exception_with_details(logger, "[Proxy]", e, with_traceback=True)

    assert caplog.records[0].getMessage() == "[Proxy] RuntimeError: boom"
    assert caplog.records[0].exc_info[0] is RuntimeError


def test_logging_failure_is_swallowed():
    logger = Mock()
    logger.log.side_effect = [RuntimeError("handler broke"), None]

    log_exception_with_details(logger, "[Proxy]", ValueError("x"))

    logger.log.assert_called_with(logging.ERROR, "[Proxy] Exception (logging failed)")

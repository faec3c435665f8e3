import logging

from shared.framing import decode_line, encode_line
from shared.log import GenericFormatter, get_logger, log_relay_event
from shared.utils import format_peer, is_hostport, normalize_username


def test_decode_strips_terminators_and_signals_eof():
    assert decode_line(b"bob hi\n") == "bob hi"
    assert decode_line(b"bob hi\r\n") == "bob hi"
    assert decode_line(b"partial") == "partial"
    assert decode_line(b"\n") == ""
    assert decode_line(b"") is None


def test_decode_replaces_invalid_utf8():
    assert decode_line(b"caf\xe9\n") == "caf�"


def test_encode_never_splits_a_frame():
    assert encode_line("héllo") == "héllo\n".encode("utf-8")
    assert encode_line("two\nlines") == b"two lines\n"


def test_input_helpers():
    assert normalize_username("  alice ") == "alice"
    assert normalize_username("   ") is None
    assert normalize_username(None) is None
    assert is_hostport("localhost:8888")
    assert not is_hostport("localhost")
    assert not is_hostport(":8888")
    assert not is_hostport("localhost:0")
    assert format_peer(("127.0.0.1", 5000)) == "127.0.0.1:5000"
    assert format_peer(None) == "unknown"


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("relay.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_generic_formatter_prefixes_context():
    formatter = GenericFormatter(fmt="%(message)s")
    record = _record("User registered", connection_id=3, peer="127.0.0.1:5000", username="alice")

    assert formatter.format(record) == "[conn=3 peer=127.0.0.1:5000 user=alice] User registered"
    # the record itself is left untouched for other handlers
    assert record.msg == "User registered"


def test_generic_formatter_without_context():
    formatter = GenericFormatter(fmt="%(message)s")
    assert formatter.format(_record("plain")) == "plain"


def test_get_logger_configures_once():
    first = get_logger("relay.test.once")
    handlers = list(first.handlers)
    second = get_logger("relay.test.once")

    assert first is second
    assert second.handlers == handlers
    assert second.propagate is False


def test_log_relay_event_drops_empty_context(caplog):
    logger = logging.getLogger("relay.test.events")
    with caplog.at_level(logging.INFO, logger="relay.test.events"):
        log_relay_event(logger, "info", "Delivered", username="alice", recipient=None)

    record = caplog.records[-1]
    assert record.username == "alice"
    assert not hasattr(record, "recipient")

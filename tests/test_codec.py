"""Tests for the ServerQuery codec: escaping, status decoding, row parsing."""

import pytest

from autochannel.query import codec
from autochannel.query.errors import EmptyResponseError, ProtocolError, RowParseError
from autochannel.query.types import Channel, Client, ClientInfo, WhoAmI


# ─── Escaping ────────────────────────────────────────────────


def test_escape_replaces_backslash_space_slash():
    assert codec.escape("a b/c\\d") == "a\\sb\\/c\\\\d"


def test_escape_backslash_first_no_double_escape():
    # A naive order would turn the "\s" produced for the space into "\\s".
    assert codec.escape(" ") == "\\s"
    assert codec.escape("\\ ") == "\\\\\\s"


@pytest.mark.parametrize(
    "text",
    ["", "plain", " ", "/", "\\", "\\s", "a\\/b c", "\\\\ //  \\", "Bob's channel"],
)
def test_escape_round_trip(text):
    assert codec.unescape(codec.escape(text)) == text


def test_unescape_server_pipe_escape():
    assert codec.unescape("a\\pb") == "a|b"


def test_unescape_leaves_unknown_sequences():
    assert codec.unescape("a\\xb") == "a\\xb"


# ─── Framing ─────────────────────────────────────────────────


def test_frame_appends_terminator_once():
    assert codec.frame("whoami") == b"whoami\n\r"
    assert codec.frame("whoami\n\r") == b"whoami\n\r"


def test_is_complete_requires_marker_and_terminator():
    assert codec.is_complete("data\n\rerror id=0 msg=ok\n\r")
    assert not codec.is_complete("data\n\rerror id=0 msg=ok")
    assert not codec.is_complete("data\n\r")


# ─── Status decoding ─────────────────────────────────────────


def test_decode_status_success_strips_status_line():
    body = codec.decode_status("clid=1 cid=2\n\rerror id=0 msg=ok\n\r")
    assert body == "clid=1 cid=2"


def test_decode_status_success_empty_body():
    assert codec.decode_status("error id=0 msg=ok\n\r") == ""


def test_decode_status_nonzero_raises_with_code():
    with pytest.raises(ProtocolError) as exc_info:
        codec.decode_status("error id=771 msg=channel\\sname\\sis\\salready\\sin\\suse\n\r")
    assert exc_info.value.code == 771
    assert exc_info.value.message == "channel name is already in use"


def test_decode_status_missing_status_line():
    with pytest.raises(EmptyResponseError):
        codec.decode_status("clid=1 cid=2\n\r")


def test_parse_status_line():
    status = codec.parse_status("error id=768 msg=invalid\\schannelID")
    assert status.code == 768
    assert not status.ok


# ─── Row parsing ─────────────────────────────────────────────


def test_parse_records_multiple_rows():
    body = (
        "clid=1 cid=10 client_database_id=5 client_nickname=Alice client_type=0|"
        "clid=2 cid=11 client_database_id=6 client_nickname=Bob\\sB client_type=1"
    )
    clients = codec.parse_records(body, Client)

    assert clients == [
        Client(1, 10, 5, "Alice", 0),
        Client(2, 11, 6, "Bob B", 1),
    ]
    assert clients[0].client_is_user()
    assert not clients[1].client_is_user()


def test_parse_records_ignores_unknown_keys():
    whoami = codec.parse_records(
        "virtualserver_status=online client_id=3 client_database_id=1 extra", WhoAmI
    )
    assert whoami == [WhoAmI(client_id=3, client_database_id=1)]


def test_parse_records_missing_required_key():
    with pytest.raises(RowParseError):
        codec.parse_records("cid=1", Channel)


def test_parse_records_bad_integer():
    with pytest.raises(RowParseError):
        codec.parse_records("cid=x pid=0", Channel)


def test_parse_records_empty_body_returns_none():
    assert codec.parse_records("", Channel) is None


def test_decode_records_client_info_flags():
    content = (
        "cid=10 client_database_id=5 client_input_muted=0 client_output_muted=1\n\r"
        "error id=0 msg=ok\n\r"
    )
    info = codec.decode_records(content, ClientInfo)[0]
    assert info.output_muted
    assert not info.input_muted
    assert info.is_client_muted()


# ─── Notifications & permissions ─────────────────────────────


def test_split_notifications():
    content = (
        "notifyclientmoved ctid=10 reasonid=0 clid=5\n\r"
        "clid=1 client_database_id=2\n\r"
        "error id=0 msg=ok\n\r"
    )
    response, notes = codec.split_notifications(content)
    assert notes == ["notifyclientmoved ctid=10 reasonid=0 clid=5"]
    assert "notify" not in response
    assert "error id=0" in response


def test_join_permissions():
    assert (
        codec.join_permissions([(133, 75), (134, 50)])
        == "permid=133 permvalue=75|permid=134 permvalue=50"
    )

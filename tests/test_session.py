import pytest

from conftest import PASSWORD
from rcon_correlator import PendingResponse
from rcon_errors import Cancelled, InvalidState
from rcon_session import MAX_REQUEST_ID, RCONSession, SessionState
from rcon_transport import RCONTransport


def test_session_is_single_use(server):
    session = RCONSession("127.0.0.1", server.port, PASSWORD)
    session.connect()
    try:
        with pytest.raises(InvalidState):
            session.connect()
    finally:
        session.disconnect()
    with pytest.raises(InvalidState):
        session.connect()
    assert session.state is SessionState.DISCONNECTED


def test_request_ids_wrap_and_skip_reserved_values():
    session = RCONSession("127.0.0.1", 27015, PASSWORD)
    session._next_id = MAX_REQUEST_ID
    assert session._allocate_id() == MAX_REQUEST_ID
    assert session._allocate_id() == 1


def test_request_ids_skip_outstanding():
    session = RCONSession("127.0.0.1", 27015, PASSWORD)
    session._correlator.register(PendingResponse(1, 2))
    assert session._allocate_id() == 3


def test_password_with_nul_is_rejected():
    with pytest.raises(ValueError):
        RCONSession("127.0.0.1", 27015, "pass\x00word")


def test_listener_errors_do_not_break_the_session(server):
    session = RCONSession("127.0.0.1", server.port, PASSWORD)
    seen = []

    def broken(change):
        raise RuntimeError("listener bug")

    session.add_state_listener(broken)
    session.add_state_listener(lambda change: seen.append((change.previous, change.current)))
    session.connect()
    assert session.state is SessionState.READY
    session.disconnect()
    assert seen[0] == (SessionState.DISCONNECTED, SessionState.CONNECTING)
    assert seen[-1] == (SessionState.CLOSING, SessionState.DISCONNECTED)


def test_command_with_nul_is_rejected_without_leaking_pending(server):
    session = RCONSession("127.0.0.1", server.port, PASSWORD)
    session.connect()
    try:
        with pytest.raises(ValueError):
            session.send_command("say \x00")
        assert session.pending_count == 0
        assert session.state is SessionState.READY
    finally:
        session.disconnect()


def test_disconnect_before_auth_is_written_cancels_connect(server, monkeypatch):
    session = RCONSession("127.0.0.1", server.port, PASSWORD)
    write_packet = RCONTransport.write_packet

    def disconnect_first(self, *args):
        session.disconnect()
        write_packet(self, *args)

    monkeypatch.setattr(RCONTransport, "write_packet", disconnect_first)
    with pytest.raises(Cancelled):
        session.connect()
    assert session.state is SessionState.DISCONNECTED

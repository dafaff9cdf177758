import socket
import threading
import time

import pytest

from rcon_client import RCONClient
from rcon_packet import (
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_EXECCOMMAND,
    SERVERDATA_RESPONSE_VALUE,
    PacketReader,
    encode_packet,
)

PASSWORD = "secret"


class FakeRCONServer:
    """Single-connection Source RCON server on a loopback port.

    Answers auth the way CS2 does (empty RESPONSE_VALUE, then AUTH_RESPONSE),
    replies to commands from `responses` (a list of fragments per command)
    and to empty probe commands with `probe_body`. With `hold` set, commands
    are recorded but left unanswered so tests can script the replies.
    """

    def __init__(self, password=PASSWORD):
        self.password = password
        self.responses = {}
        self.auth_mode = "accept"
        self.hold = False
        self.probe_body = b""
        self.split_writes = False
        self.received = []
        self.conn = None
        self._cond = threading.Condition()
        self._listener = socket.create_server(("127.0.0.1", 0))
        self.port = self._listener.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    @property
    def commands(self):
        return [p for p in self.received if p.type == SERVERDATA_EXECCOMMAND]

    def _serve(self):
        try:
            self.conn, _ = self._listener.accept()
            reader = PacketReader()
            while True:
                data = self.conn.recv(4096)
                if not data:
                    return
                for packet in reader.feed(data):
                    with self._cond:
                        self.received.append(packet)
                        self._cond.notify_all()
                    self._handle(packet)
        except OSError:
            return

    def _handle(self, packet):
        if packet.type == SERVERDATA_AUTH:
            if self.auth_mode == "silent":
                return
            if self.auth_mode == "wrong_id":
                self.send(packet.id + 100, SERVERDATA_AUTH_RESPONSE)
                return
            if self.auth_mode == "bad_type":
                self.send(packet.id, SERVERDATA_AUTH)
                return
            if packet.text == self.password:
                self.send(packet.id, SERVERDATA_RESPONSE_VALUE)
                self.send(packet.id, SERVERDATA_AUTH_RESPONSE)
            else:
                self.send(-1, SERVERDATA_AUTH_RESPONSE)
        elif self.hold:
            return
        elif packet.body == b"":
            self.send(packet.id, SERVERDATA_RESPONSE_VALUE, self.probe_body)
        else:
            default = [f"Unknown command '{packet.text}'\n".encode()]
            for fragment in self.responses.get(packet.text, default):
                self.send(packet.id, SERVERDATA_RESPONSE_VALUE, fragment)

    def send(self, id, type=SERVERDATA_RESPONSE_VALUE, body=b""):
        data = encode_packet(id, type, body)
        if self.split_writes:
            half = len(data) // 2
            self.conn.sendall(data[:half])
            time.sleep(0.01)
            data = data[half:]
        self.conn.sendall(data)

    def send_raw(self, data):
        self.conn.sendall(data)

    def wait_for(self, count, timeout=2.0):
        with self._cond:
            assert self._cond.wait_for(lambda: len(self.received) >= count, timeout), \
                f"server received {len(self.received)} packets, expected {count}"

    def drop_connection(self):
        self.conn.shutdown(socket.SHUT_RDWR)
        self.conn.close()

    def close(self):
        self._listener.close()
        if self.conn is not None:
            try:
                self.conn.close()
            except OSError:
                pass
        self._thread.join(2.0)


@pytest.fixture
def server():
    srv = FakeRCONServer()
    yield srv
    srv.close()


@pytest.fixture
def client():
    c = RCONClient(command_timeout_ms=2000)
    yield c
    c.disconnect()


@pytest.fixture
def connected(client, server):
    client.connect("127.0.0.1", server.port, PASSWORD, 2000)
    return client


def run_in_thread(fn, *args, **kwargs):
    """Runs fn in a thread; returns (thread, outcome) where outcome gets 'result' or 'error'."""
    outcome = {}

    def target():
        try:
            outcome["result"] = fn(*args, **kwargs)
        except Exception as e:
            outcome["error"] = e

    t = threading.Thread(target=target, daemon=True)
    t.start()
    return t, outcome

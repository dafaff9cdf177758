import logging
import socket
import threading
from collections import deque
from typing import Iterable, Tuple, Union

from rcon_errors import ConnectError, TransportError
from rcon_packet import MAX_PACKET_SIZE, Packet, PacketReader, encode_packet

logger = logging.getLogger(__name__)

RECV_CHUNK = 4096


class RCONTransport:
    """Owns the TCP socket: one locked writer, one blocking reader."""

    def __init__(self, sock: socket.socket, max_packet_size: int = MAX_PACKET_SIZE):
        self.sock = sock
        self.max_packet_size = max_packet_size
        self._reader = PacketReader(max_packet_size)
        self._ready = deque()
        self._write_lock = threading.Lock()
        self._closed = False

    @classmethod
    def open(cls, host: str, port: int, timeout: float, max_packet_size: int = MAX_PACKET_SIZE) -> "RCONTransport":
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise ConnectError(f"cannot connect to {host}:{port}: {e}") from e
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        # The reader thread blocks; deadlines are enforced by the waiting callers.
        sock.settimeout(None)
        return cls(sock, max_packet_size)

    def write_packet(self, id: int, type: int, body: Union[str, bytes] = b'') -> None:
        self.write_packets([(id, type, body)])

    def write_packets(self, packets: Iterable[Tuple[int, int, Union[str, bytes]]]) -> None:
        """Writes several packets back to back with no other writer in between."""
        data = b''.join(encode_packet(id, type, body, self.max_packet_size) for id, type, body in packets)
        with self._write_lock:
            if self._closed:
                raise TransportError("transport is closed")
            try:
                self.sock.sendall(data)
            except OSError as e:
                raise TransportError(f"send failed: {e}") from e

    def read_packet(self) -> Packet:
        """Blocks until one whole packet has arrived. Only the reader thread calls this."""
        while not self._ready:
            try:
                chunk = self.sock.recv(RECV_CHUNK)
            except OSError as e:
                raise TransportError(f"receive failed: {e}") from e
            if not chunk:
                raise TransportError("connection closed by server")
            self._ready.extend(self._reader.feed(chunk))
        return self._ready.popleft()

    def close(self) -> None:
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
        try:
            # shutdown() wakes a reader blocked in recv(); close() alone may not.
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            logger.debug("socket already shut down")
        self.sock.close()

    @property
    def closed(self) -> bool:
        return self._closed

import logging
import threading
from typing import Dict, List, Optional, Type

from rcon_errors import ProtocolError, RCONError
from rcon_packet import Packet

logger = logging.getLogger(__name__)


class PendingResponse:
    """Accumulates the fragments of one in-flight command until its probe answers."""

    def __init__(self, request_id: int, probe_id: int, command: str = ''):
        self.request_id = request_id
        self.probe_id = probe_id
        self.command = command
        self.fragments: List[bytes] = []
        self._done = threading.Event()
        self._text: Optional[str] = None
        self._error: Optional[RCONError] = None

    def add_fragment(self, body: bytes) -> None:
        self.fragments.append(body)

    def complete(self) -> None:
        # Join bytes before decoding: a multibyte character may straddle two fragments.
        self._text = b''.join(self.fragments).decode('utf-8', errors='replace')
        self._done.set()

    def fail(self, error: RCONError) -> None:
        self._error = error
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float]) -> bool:
        return self._done.wait(timeout)

    def result(self) -> str:
        if self._error is not None:
            raise self._error
        return self._text


class ResponseCorrelator:
    """Maps request and probe ids to their PendingResponse.

    Fed by the session's single reader thread; registered and discarded from
    caller threads, hence the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_request: Dict[int, PendingResponse] = {}
        self._by_probe: Dict[int, PendingResponse] = {}

    def register(self, pending: PendingResponse) -> None:
        with self._lock:
            if pending.request_id in self._by_request or pending.probe_id in self._by_probe:
                raise ValueError(f"request id {pending.request_id} is already outstanding")
            self._by_request[pending.request_id] = pending
            self._by_probe[pending.probe_id] = pending

    def is_outstanding(self, id: int) -> bool:
        with self._lock:
            return id in self._by_request or id in self._by_probe

    def dispatch(self, packet: Packet) -> bool:
        """Applies one response packet. Returns False if nobody was waiting for it."""
        with self._lock:
            pending = self._by_request.get(packet.id)
            if pending is not None:
                pending.add_fragment(packet.body)
                return True

            pending = self._by_probe.pop(packet.id, None)
            if pending is None:
                logger.debug(f"Discarding packet for unknown id {packet.id} ({len(packet.body)} bytes)")
                return False
            del self._by_request[pending.request_id]

        if packet.body:
            pending.fail(ProtocolError(
                f"probe {packet.id} for command {pending.command!r} returned a non-empty body; "
                f"the response may be truncated"
            ))
        else:
            pending.complete()
        return True

    def discard(self, pending: PendingResponse) -> bool:
        """Drops a pending entry. False if it had already been resolved."""
        with self._lock:
            if self._by_request.get(pending.request_id) is not pending:
                return False
            del self._by_request[pending.request_id]
            del self._by_probe[pending.probe_id]
            return True

    def fail_all(self, error_type: Type[RCONError], message: str, cause: Optional[BaseException] = None) -> int:
        with self._lock:
            pending = list(self._by_request.values())
            self._by_request.clear()
            self._by_probe.clear()
        for entry in pending:
            error = error_type(f"{message} (command {entry.command!r})")
            error.__cause__ = cause
            entry.fail(error)
        return len(pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_request)

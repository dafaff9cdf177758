import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from rcon_correlator import PendingResponse, ResponseCorrelator
from rcon_errors import (
    AuthFailed,
    Cancelled,
    CommandTimeout,
    ConnectError,
    ConnectionLost,
    InvalidState,
    ProtocolError,
    RCONError,
    TransportError,
)
from rcon_packet import (
    MAX_PACKET_SIZE,
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_EXECCOMMAND,
    SERVERDATA_RESPONSE_VALUE,
    Packet,
)
from rcon_transport import RCONTransport

logger = logging.getLogger(__name__)

MAX_REQUEST_ID = 2 ** 31 - 1
READER_JOIN_TIMEOUT = 2.0


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSING = "closing"
    FAULTED = "faulted"


LIVE_STATES = (SessionState.CONNECTING, SessionState.AUTHENTICATING, SessionState.READY)


@dataclass(frozen=True)
class StateChange:
    previous: SessionState
    current: SessionState
    error: Optional[RCONError] = None


StateListener = Callable[[StateChange], None]
ErrorListener = Callable[[RCONError], None]


class RCONSession:
    """One authenticated RCON connection.

    Lifecycle: DISCONNECTED -> CONNECTING -> AUTHENTICATING -> READY, then
    CLOSING -> DISCONNECTED on disconnect() or FAULTED on any transport or
    protocol failure. A session is used once; reconnecting means building a
    new one.

    A daemon reader thread drains the socket and feeds the correlator, while
    callers block in connect() and send_command() on their own threads.
    State listeners are called under the state lock, in transition order.
    """

    def __init__(self, host: str, port: int, password: str,
                 connect_timeout: float = 5.0, command_timeout: float = 5.0,
                 max_packet_size: int = MAX_PACKET_SIZE):
        if '\x00' in password:
            raise ValueError("RCON password must not contain NUL characters")
        self.host = host
        self.port = port
        self.password = password
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.max_packet_size = max_packet_size

        self._state = SessionState.DISCONNECTED
        self._state_lock = threading.RLock()
        self._error: Optional[RCONError] = None
        self._started = False

        self._id_lock = threading.Lock()
        self._next_id = 1
        self._auth_id: Optional[int] = None
        self._auth_done = threading.Event()

        self._correlator = ResponseCorrelator()
        self._transport: Optional[RCONTransport] = None
        self._reader: Optional[threading.Thread] = None

        self._state_listeners: List[StateListener] = []
        self._error_listeners: List[ErrorListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error(self) -> Optional[RCONError]:
        """The error that faulted the session, if any."""
        return self._error

    @property
    def pending_count(self) -> int:
        return len(self._correlator)

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    # -- lifecycle ---------------------------------------------------------

    def connect(self) -> None:
        deadline = time.monotonic() + self.connect_timeout
        with self._state_lock:
            if self._started:
                raise InvalidState(f"session already used (state: {self._state.value})")
            self._started = True
            self._transition(SessionState.CONNECTING)

        try:
            transport = RCONTransport.open(self.host, self.port, self.connect_timeout, self.max_packet_size)
        except ConnectError as e:
            self._fault(e)
            raise

        with self._state_lock:
            if self._state is not SessionState.CONNECTING:
                transport.close()
                raise Cancelled("connect aborted by disconnect")
            self._transport = transport
            self._auth_id = self._allocate_id()
            self._transition(SessionState.AUTHENTICATING)

        try:
            transport.write_packet(self._auth_id, SERVERDATA_AUTH, self.password)
        except TransportError as e:
            error = ConnectError(f"cannot send auth request to {self.host}:{self.port}: {e}")
            error.__cause__ = e
            if not self._fault(error):
                raise Cancelled("connect aborted by disconnect") from e
            raise error

        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"rcon-reader-{self.host}:{self.port}",
            daemon=True,
        )
        self._reader.start()

        remaining = max(0.0, deadline - time.monotonic())
        if not self._auth_done.wait(remaining):
            error = AuthFailed(f"no auth response from {self.host}:{self.port} within {self.connect_timeout}s")
            if self._fault(error, expected=(SessionState.AUTHENTICATING,)):
                raise error

        with self._state_lock:
            if self._state is SessionState.READY:
                return
            if self._state is SessionState.FAULTED:
                raise self._error
            raise Cancelled("connect aborted by disconnect")

    def disconnect(self) -> None:
        with self._state_lock:
            live = self._state in LIVE_STATES
            self._started = True
            if live:
                self._transition(SessionState.CLOSING)
            transport = self._transport
        if not live:
            self._join_reader()
            return

        cancelled = self._correlator.fail_all(Cancelled, "session disconnected")
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending RCON command(s)")
        self._auth_done.set()
        if transport is not None:
            transport.close()
        self._join_reader()
        self._transition(SessionState.DISCONNECTED)

    # -- commands ----------------------------------------------------------

    def send_command(self, text: str, timeout: Optional[float] = None) -> str:
        """Runs one console command and returns its reassembled output.

        The command is followed by an empty probe command; the server answers
        in order, so the probe's (empty) reply marks the end of the command's
        fragments.
        """
        if timeout is None:
            timeout = self.command_timeout

        with self._state_lock:
            if self._state is not SessionState.READY:
                raise InvalidState(f"cannot send a command while {self._state.value}")
            pending = PendingResponse(self._allocate_id(), self._allocate_id(), text)
            self._correlator.register(pending)
            transport = self._transport

        try:
            transport.write_packets([
                (pending.request_id, SERVERDATA_EXECCOMMAND, text),
                (pending.probe_id, SERVERDATA_EXECCOMMAND, b''),
            ])
        except ValueError:
            self._correlator.discard(pending)
            raise
        except TransportError as e:
            self._fault(ConnectionLost(f"lost connection to {self.host}:{self.port}: {e}"))

        if not pending.wait(timeout):
            if self._correlator.discard(pending):
                error = CommandTimeout(f"no response to {text!r} within {timeout}s")
                self._emit_error(error)
                raise error
            # Already taken off the map by the reader or a disconnect; its result is being set.
            pending.wait(None)

        try:
            return pending.result()
        except ProtocolError as e:
            self._emit_error(e)
            raise

    # -- reader ------------------------------------------------------------

    def _read_loop(self) -> None:
        transport = self._transport
        while True:
            try:
                packet = transport.read_packet()
            except TransportError as e:
                error = ConnectionLost(f"lost connection to {self.host}:{self.port}: {e}")
                error.__cause__ = e
                self._fault(error)
                break
            except ProtocolError as e:
                self._fault(e)
                break
            self._handle_packet(packet)
        logger.debug(f"RCON reader for {self.host}:{self.port} stopped")

    def _handle_packet(self, packet: Packet) -> None:
        state = self._state
        if state is SessionState.AUTHENTICATING:
            self._handle_auth_packet(packet)
        elif state is SessionState.READY:
            if packet.type != SERVERDATA_RESPONSE_VALUE:
                # Stray auth traffic after login leaves the stream in sync; drop it rather than fault.
                logger.warning(f"Ignoring unexpected packet of type {packet.type} for id {packet.id} while ready")
                return
            self._correlator.dispatch(packet)
        else:
            logger.debug(f"Ignoring packet for id {packet.id} while {state.value}")

    def _handle_auth_packet(self, packet: Packet) -> None:
        # Source servers send an empty RESPONSE_VALUE ahead of the AUTH_RESPONSE.
        if packet.type == SERVERDATA_RESPONSE_VALUE:
            return
        if packet.type != SERVERDATA_AUTH_RESPONSE:
            self._fault(ProtocolError(f"unexpected packet type {packet.type} during authentication"))
        elif packet.id == -1:
            self._fault(AuthFailed("RCON authentication failed (wrong password)"))
        elif packet.id != self._auth_id:
            self._fault(ProtocolError(f"auth response for id {packet.id}, expected {self._auth_id}"))
        elif self._transition(SessionState.READY, expected=(SessionState.AUTHENTICATING,)):
            self._auth_done.set()

    # -- internals ---------------------------------------------------------

    def _allocate_id(self) -> int:
        with self._id_lock:
            while True:
                id = self._next_id
                self._next_id = 1 if id >= MAX_REQUEST_ID else id + 1
                if not self._correlator.is_outstanding(id):
                    return id

    def _transition(self, new: SessionState, error: Optional[RCONError] = None, expected=None) -> bool:
        with self._state_lock:
            if expected is not None and self._state not in expected:
                return False
            previous = self._state
            self._state = new
            if error is not None:
                self._error = error
            logger.info(f"RCON {self.host}:{self.port} {previous.value} -> {new.value}")
            change = StateChange(previous, new, error)
            for listener in list(self._state_listeners):
                self._call_listener(listener, change)
            return True

    def _fault(self, error: RCONError, expected=LIVE_STATES) -> bool:
        if not self._transition(SessionState.FAULTED, error, expected=expected):
            return False
        logger.warning(f"RCON session {self.host}:{self.port} faulted: {error}")
        if self._transport is not None:
            self._transport.close()
        self._correlator.fail_all(ConnectionLost, f"session faulted: {error}", cause=error)
        self._auth_done.set()
        self._emit_error(error)
        return True

    def _join_reader(self) -> None:
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(READER_JOIN_TIMEOUT)

    def _emit_error(self, error: RCONError) -> None:
        for listener in list(self._error_listeners):
            self._call_listener(listener, error)

    @staticmethod
    def _call_listener(listener, arg) -> None:
        try:
            listener(arg)
        except Exception:
            logger.exception("RCON listener raised")

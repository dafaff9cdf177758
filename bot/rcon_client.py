import logging
import threading
from typing import List, Optional

from rcon_errors import InvalidState
from rcon_packet import MAX_PACKET_SIZE
from rcon_session import ErrorListener, RCONSession, SessionState, StateListener

logger = logging.getLogger(__name__)

DEFAULT_PORT = 27015
DEFAULT_TIMEOUT_MS = 5000


class RCONClient:
    """Source RCON client for a single CS2 server.

    Every connect() builds a fresh RCONSession; the previous one is
    disconnected first. Listeners registered here are carried over to each
    new session, so the console keeps receiving notifications across
    reconnects.
    """

    def __init__(self, command_timeout_ms: int = DEFAULT_TIMEOUT_MS, max_packet_size: int = MAX_PACKET_SIZE):
        self.command_timeout_ms = command_timeout_ms
        self.max_packet_size = max_packet_size
        self._session: Optional[RCONSession] = None
        self._lock = threading.Lock()
        self._state_listeners: List[StateListener] = []
        self._error_listeners: List[ErrorListener] = []

    @property
    def state(self) -> SessionState:
        session = self._session
        return session.state if session else SessionState.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.READY

    @property
    def host(self) -> str:
        return self._session.host if self._session else ''

    @property
    def port(self) -> int:
        return self._session.port if self._session else 0

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def connect(self, host: str, port: int = DEFAULT_PORT, password: str = '', timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        """Connects and authenticates. Raises ConnectError, AuthFailed, ProtocolError or ConnectionLost."""
        session = RCONSession(
            host,
            port,
            password,
            connect_timeout=timeout_ms / 1000.0,
            command_timeout=self.command_timeout_ms / 1000.0,
            max_packet_size=self.max_packet_size,
        )
        for listener in self._state_listeners:
            session.add_state_listener(listener)
        for listener in self._error_listeners:
            session.add_error_listener(listener)

        with self._lock:
            previous, self._session = self._session, session
        if previous is not None:
            previous.disconnect()

        logger.info(f"Connecting to RCON {host}:{port} (password: {'***' if password else 'NOT SET'})")
        session.connect()

    def disconnect(self) -> None:
        with self._lock:
            session = self._session
        if session is not None:
            session.disconnect()

    def send_command(self, command: str, timeout_ms: Optional[int] = None) -> str:
        """Executes a single RCON command and returns the full response."""
        session = self._session
        if session is None:
            raise InvalidState("RCON is not connected")
        timeout = None if timeout_ms is None else timeout_ms / 1000.0
        return session.send_command(command, timeout=timeout)

    def __enter__(self) -> "RCONClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

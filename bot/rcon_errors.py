class RCONError(Exception):
    """Base class for everything the RCON client raises."""


class ConnectError(RCONError):
    """Socket or DNS failure while opening the connection."""


class AuthFailed(RCONError):
    """Server rejected the password (echoed id -1) or never answered the auth request."""


class ProtocolError(RCONError):
    """Malformed packet, oversized length or an unexpected probe response."""


class CommandTimeout(RCONError):
    pass


class ConnectionLost(RCONError):
    pass


class Cancelled(RCONError):
    pass


class InvalidState(RCONError):
    """Operation not allowed in the session's current state."""


class TransportError(RCONError):
    """EOF, reset or I/O failure on the socket. The session reports it as ConnectionLost."""

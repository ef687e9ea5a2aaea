"""Record sources: journal queries over local or SSH transports."""

from .journal import JournalSourceClient
from .transport import ConnectError, LocalTransport, SSHTransport, TransportError, UnsafeCommandError

__all__ = [
    "JournalSourceClient",
    "LocalTransport",
    "SSHTransport",
    "TransportError",
    "ConnectError",
    "UnsafeCommandError",
]

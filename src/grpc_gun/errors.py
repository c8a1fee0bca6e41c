"""
Gun error taxonomy.

SetupError subclasses are fatal for a gun instance and surface from bind().
RequestError subclasses are scoped to a single shoot() and are turned into
samples there; they never leave the gun.
"""

from typing import Optional


class GunError(Exception):
    """Base class for all gun errors."""


class SetupError(GunError):
    """Raised when the gun cannot be made ready to shoot."""


class ConnectError(SetupError):
    """Raised when the connection to the target cannot be established."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"cannot connect to {target!r}: {reason}")
        self.target = target
        self.reason = reason


class DiscoveryError(SetupError):
    """Raised when server reflection fails or returns an unusable schema."""


class RequestError(GunError):
    """Base class for failures confined to a single request."""


class UnknownMethodError(RequestError):
    """Raised when an ammo names a method absent from the catalog."""

    def __init__(self, call: str):
        super().__init__(f"no such method: {call}")
        self.call = call


class MarshalError(RequestError):
    """Raised when a payload does not fit the method's input schema."""

    def __init__(self, message_type: str, reason: str, path: Optional[str] = None):
        where = f" at {path}" if path else ""
        super().__init__(f"cannot build {message_type}{where}: {reason}")
        self.message_type = message_type
        self.reason = reason
        self.path = path


class InvokeError(RequestError):
    """Raised when the RPC itself fails at the transport or status layer."""

    def __init__(self, method: str, code: Optional[str], details: str):
        super().__init__(f"{method} failed: {code or 'UNKNOWN'} - {details}")
        self.method = method
        self.code = code
        self.details = details

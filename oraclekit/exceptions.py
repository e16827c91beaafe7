"""
Exceptions for the oracle kit.
"""
from typing import Optional


class OracleKitError(Exception):
    """Base exception for all oracle kit errors."""
    pass


class ConfigurationError(OracleKitError):
    """Raised when required configuration is missing or invalid.

    Always raised before any network call is made.
    """
    pass


class AbiError(OracleKitError, ValueError):
    """Raised when a function signature cannot be parsed or arguments don't fit it."""
    pass


class ExecutionError(OracleKitError):
    """
    Raised when a program fails on the remote network.

    The message is the remote error, unmodified.
    """

    def __init__(self, message: str, logs: Optional[str] = None):
        self.logs = logs or ""
        super().__init__(message)


class ChainStateError(OracleKitError):
    """Raised when chain state can't be read (RPC down, gas estimation revert)."""
    pass


class SigningError(OracleKitError):
    """Raised when a threshold signature is malformed or doesn't recover to the key."""
    pass


class FundingError(OracleKitError):
    """Raised when topping up a signing key's address fails."""
    pass


class MintError(OracleKitError):
    """Raised when minting a signing key fails."""
    pass


class SessionError(OracleKitError):
    """Raised when a session credential can't be obtained or is rejected."""
    pass


class NetworkError(OracleKitError):
    """Raised when the threshold network can't be reached."""
    pass


class NetworkResponseError(NetworkError):
    """Raised when the threshold network returns an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BindingConflictError(OracleKitError):
    """Raised when a key binding already exists for a program."""
    pass


class StoreError(OracleKitError):
    """Raised when a store file can't be read or written; the file is left as it was."""
    pass

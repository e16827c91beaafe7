"""
Transport layer for the threshold network.

This module defines the interface every threshold network transport
implements: the session handshake and program execution. Two
implementations exist, an HTTP client for a node gateway and an
in-process local network.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config import LOCAL_NETWORK
from ..models import SessionCredential

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResponse:
    """Raw outcome of a program execution"""
    success: bool
    response: Optional[str] = None
    error: Optional[str] = None
    logs: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionResponse":
        return cls(
            success=bool(data.get("success")),
            response=data.get("response"),
            error=data.get("error"),
            logs=data.get("logs") or "",
        )


class ThresholdNetwork(ABC):
    """
    Abstract base class for threshold network transports.

    Implementations provide one capability interface, regardless of
    whether the nodes are remote or simulated in-process.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if this transport can be used.

        Returns:
            True if transport is available, False otherwise
        """
        pass

    @abstractmethod
    def initialize(self, url: Optional[str] = None) -> None:
        """
        Connect the transport.

        Args:
            url: Network endpoint, where the transport needs one

        Raises:
            NetworkError: If the connection can't be established
        """
        pass

    @property
    @abstractmethod
    def ready(self) -> bool:
        """True once initialize() has completed"""
        pass

    @abstractmethod
    def get_challenge(self) -> str:
        """
        Get a fresh nonce to embed in a session authentication message.

        Raises:
            NetworkError: If the network can't be reached
        """
        pass

    @abstractmethod
    def create_session(
        self,
        message: str,
        signature: str,
        capabilities: List[str],
        expiration: datetime,
    ) -> str:
        """
        Exchange a signed authentication message for a session token.

        Args:
            message: The authentication message that was signed
            signature: Personal-sign signature of the message
            capabilities: Requested capabilities
            expiration: When the session should expire

        Returns:
            Session token

        Raises:
            SessionError: If the network rejects the signature
        """
        pass

    @abstractmethod
    def execute(
        self,
        program_text: str,
        params: Dict[str, Any],
        credential: SessionCredential,
    ) -> ExecutionResponse:
        """
        Execute a program on the network.

        Args:
            program_text: Compiled program
            params: Parameters exposed to the program as ``params``
            credential: Session credential authorizing the execution

        Returns:
            ExecutionResponse; a failing program is reported through it,
            not raised

        Raises:
            NetworkError: If the network can't be reached
            SessionError: If the credential is rejected
        """
        pass

    def close(self) -> None:
        """Release transport resources"""
        pass


def get_transport(url: Optional[str] = None) -> ThresholdNetwork:
    """
    Get the transport for a network URL.

    Args:
        url: "local" (or None) for the in-process network, otherwise the
            node gateway URL

    Returns:
        Uninitialized transport
    """
    if not url or url == LOCAL_NETWORK:
        from .local_transport import LocalNetwork
        logger.info("Using local threshold network")
        return LocalNetwork()

    from .http_transport import HttpNetwork
    logger.info("Using HTTP threshold network transport")
    return HttpNetwork()

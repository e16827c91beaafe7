"""
Session authentication against the threshold network.

A session credential grants, for a short window, the capabilities to
execute programs and to sign with keys whose auth method permits the
executing program.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import jwt
from cachetools import TTLCache
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from .exceptions import OracleKitError, SessionError
from .models import SessionCredential

logger = logging.getLogger(__name__)

CAPABILITY_PROGRAM_EXECUTION = "program-execution"
CAPABILITY_KEY_SIGNING = "key-signing"
DEFAULT_CAPABILITIES = (CAPABILITY_PROGRAM_EXECUTION, CAPABILITY_KEY_SIGNING)

SESSION_WINDOW = timedelta(minutes=10)
SESSION_DOMAIN = "oraclekit.local"
SESSION_URI = "oraclekit://session"
SESSION_STATEMENT = "Authorize oracle program execution and key signing."


def create_auth_message(
    address: str,
    nonce: str,
    capabilities: Sequence[str],
    issued_at: datetime,
    expiration: datetime,
    chain_id: int = 1,
) -> str:
    """
    Build an EIP-4361 style authentication message.

    Capabilities are listed as resources.
    """
    lines = [
        f"{SESSION_DOMAIN} wants you to sign in with your Ethereum account:",
        address,
        "",
        SESSION_STATEMENT,
        "",
        f"URI: {SESSION_URI}",
        "Version: 1",
        f"Chain ID: {chain_id}",
        f"Nonce: {nonce}",
        f"Issued At: {issued_at.strftime('%Y-%m-%dT%H:%M:%SZ')}",
        f"Expiration Time: {expiration.strftime('%Y-%m-%dT%H:%M:%SZ')}",
        "Resources:",
    ]
    lines += [f"- urn:oraclekit:capability:{capability}" for capability in capabilities]
    return "\n".join(lines)


class SessionAuthenticator(ABC):
    """Issues session credentials"""

    @abstractmethod
    def get_session_credential(
        self,
        capabilities: Sequence[str],
        signer: LocalAccount,
    ) -> SessionCredential:
        """
        Get a credential granting the capabilities, signed for by signer.

        Raises:
            SessionError: If the handshake fails
        """
        pass

    def invalidate(self) -> None:
        """Forget cached credentials, if any"""
        pass


class NetworkSessionAuthenticator(SessionAuthenticator):
    """
    Session handshake with a threshold network, cached until expiry.

    Args:
        network: ThresholdNetwork to authenticate against
        window: Credential lifetime
        logger: Optional logger
    """

    def __init__(self, network, window: timedelta = SESSION_WINDOW, logger: Optional[logging.Logger] = None):
        self.network = network
        self.window = window
        self.logger = logger or logging.getLogger(__name__)
        self._cache = TTLCache(maxsize=32, ttl=window.total_seconds())
        self._lock = threading.RLock()

    @staticmethod
    def _token_expiry(token: str, fallback: datetime) -> datetime:
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return fallback
        exp = claims.get("exp")
        if exp is None:
            return fallback
        return datetime.fromtimestamp(int(exp), tz=timezone.utc)

    def get_session_credential(
        self,
        capabilities: Sequence[str] = DEFAULT_CAPABILITIES,
        signer: Optional[LocalAccount] = None,
    ) -> SessionCredential:
        if signer is None:
            raise SessionError("A signer is required to authenticate a session")

        key = (signer.address, tuple(sorted(capabilities)))
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and not cached.is_expired():
                return cached

            now = datetime.now(timezone.utc)
            expiration = now + self.window
            try:
                nonce = self.network.get_challenge()
                message = create_auth_message(signer.address, nonce, capabilities, now, expiration)
                signed = signer.sign_message(encode_defunct(text=message))
                token = self.network.create_session(
                    message,
                    "0x" + bytes(signed.signature).hex(),
                    list(capabilities),
                    expiration,
                )
            except SessionError:
                raise
            except OracleKitError as e:
                raise SessionError(f"Session handshake failed: {e}") from e

            credential = SessionCredential(
                token=token,
                capabilities=list(capabilities),
                signer=signer.address,
                expires_at=self._token_expiry(token, expiration),
            )
            self._cache[key] = credential

        self.logger.debug(
            f"New session for {signer.address[:10]}… valid until {credential.expires_at.isoformat()}"
        )
        return credential

    def invalidate(self) -> None:
        """Drop all cached credentials"""
        with self._lock:
            self._cache.clear()

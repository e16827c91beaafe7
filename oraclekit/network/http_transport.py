"""
HTTP transport for a threshold network node gateway.

Endpoints:
    GET  /session/challenge  -> {"nonce": "..."}
    POST /session            -> {"token": "..."}
    POST /execute            -> {"success": bool, "response": str, "error": str, "logs": str}

Only the idempotent challenge request is retried.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import validate_url
from ..exceptions import NetworkError, NetworkResponseError, SessionError
from ..models import SessionCredential
from .transport import ExecutionResponse, ThresholdNetwork

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
EXECUTE_TIMEOUT = 120


class HttpNetwork(ThresholdNetwork):
    """
    Threshold network reached through an HTTP gateway.

    Args:
        timeout: Request timeout in seconds for handshake calls
        retry_count: Retries for the challenge request
        logger: Optional logger
    """

    def __init__(
        self,
        timeout: int = DEFAULT_TIMEOUT,
        retry_count: int = 3,
        logger: Optional[logging.Logger] = None,
    ):
        self.timeout = timeout
        self.retry_count = retry_count
        self.logger = logger or logging.getLogger(__name__)
        self.base_url: Optional[str] = None
        self.session: Optional[requests.Session] = None

    def is_available(self) -> bool:
        return True

    def initialize(self, url: Optional[str] = None) -> None:
        """
        Set up the HTTP session.

        Raises:
            NetworkError: If no URL is given
            ConfigurationError: If the URL is not https
        """
        if not url:
            raise NetworkError("HttpNetwork needs a gateway URL")
        validate_url("network URL", url)
        self.base_url = url.rstrip("/")

        self.session = requests.Session()
        retries = Retry(
            total=self.retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))
        self.logger.debug(f"Initialized HTTP transport for {self.base_url}")

    @property
    def ready(self) -> bool:
        return self.session is not None

    def _require_session(self) -> requests.Session:
        if self.session is None:
            raise NetworkError("Transport is not initialized; call initialize() first")
        return self.session

    def _request(self, method: str, path: str, timeout: int, **kwargs) -> Dict[str, Any]:
        session = self._require_session()
        url = f"{self.base_url}{path}"
        try:
            response = session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            self.logger.error(f"{method} {path} failed: {e}")
            raise NetworkError(f"Request to {path} failed: {e}") from e

        if response.status_code >= 400:
            raise NetworkResponseError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise NetworkResponseError(
                f"Invalid JSON response from {path}: {e}",
                status_code=response.status_code,
            ) from e

    def get_challenge(self) -> str:
        result = self._request("GET", "/session/challenge", self.timeout)
        if "nonce" not in result:
            raise NetworkResponseError(f"Missing nonce in challenge response: {result}")
        return result["nonce"]

    def create_session(
        self,
        message: str,
        signature: str,
        capabilities: List[str],
        expiration: datetime,
    ) -> str:
        try:
            result = self._request(
                "POST",
                "/session",
                self.timeout,
                json={
                    "message": message,
                    "signature": signature,
                    "capabilities": capabilities,
                    "expiration": expiration.isoformat(),
                },
            )
        except NetworkResponseError as e:
            if e.status_code in (401, 403):
                raise SessionError(f"Session rejected: {e}") from e
            raise

        token = result.get("token")
        if not token:
            raise SessionError(f"Missing token in session response: {result}")
        return token

    def execute(
        self,
        program_text: str,
        params: Dict[str, Any],
        credential: SessionCredential,
    ) -> ExecutionResponse:
        try:
            result = self._request(
                "POST",
                "/execute",
                EXECUTE_TIMEOUT,
                json={"code": program_text, "params": params},
                headers={"Authorization": f"Bearer {credential.token}"},
            )
        except NetworkResponseError as e:
            if e.status_code in (401, 403):
                raise SessionError(f"Credential rejected: {e}") from e
            raise
        return ExecutionResponse.from_dict(result)

    def close(self) -> None:
        if self.session is not None:
            self.session.close()
            self.session = None

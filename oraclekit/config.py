"""
Configuration for the oracle kit.

Chain settings come from the packaged networks.json, with environment
overrides for RPC endpoints. Operator settings come from the environment.
"""
import importlib.resources
import json
import logging
import os
import urllib.parse
from typing import Any, Dict, Optional

from pydantic import BaseModel

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PRIVATE_KEY = "ORACLE_KIT_PRIVATE_KEY"
ENV_NETWORK_URL = "ORACLE_KIT_NETWORK_URL"
ENV_STORE_PATH = "ORACLE_KIT_STORE_PATH"
ENV_KEY_CHAIN = "ORACLE_KIT_KEY_CHAIN"
ENV_LOCAL_KEYS_PATH = "ORACLE_KIT_LOCAL_KEYS_PATH"

DEFAULT_STORE_PATH = "~/.oraclekit/store.json"
DEFAULT_LOCAL_KEYS_PATH = "~/.oraclekit/local_keys.json"
DEFAULT_KEY_CHAIN = "yellowstone"
LOCAL_NETWORK = "local"


def _env_name(network: str) -> str:
    return network.upper().replace("-", "_")


def validate_url(url_name: str, url: str) -> None:
    """
    Require https for everything except localhost.

    Raises:
        ConfigurationError: If the URL is not https and not local
    """
    parsed = urllib.parse.urlparse(url)
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1")
    if parsed.scheme != "https" and not is_local:
        raise ConfigurationError(f"{url_name} must use https:// (got: {parsed.scheme}://)")


class NetworkConfig:
    """Chain configuration loaded from networks.json"""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load all network configurations.

        Returns:
            Mapping of network name to its configuration
        """
        if cls._networks_cache is None:
            resource = importlib.resources.files("oraclekit").joinpath("networks.json")
            with resource.open("r", encoding="utf-8") as f:
                cls._networks_cache = json.load(f)
        return cls._networks_cache

    @classmethod
    def get_network(cls, name: str) -> Dict[str, Any]:
        """
        Get configuration for one network.

        Raises:
            ConfigurationError: If the network is unknown
        """
        networks = cls.load_networks()
        if name not in networks:
            available = ", ".join(sorted(networks))
            raise ConfigurationError(f"Unknown network '{name}'. Available networks: {available}")
        return networks[name]

    @classmethod
    def get_rpc_url(cls, name: str, override: Optional[str] = None) -> str:
        """
        Resolve the RPC endpoint for a network.

        Precedence: explicit override, <NAME>_RPC_URL env var, networks.json.
        """
        if override:
            return override
        env_url = os.environ.get(f"{_env_name(name)}_RPC_URL")
        if env_url:
            logger.debug(f"Using RPC URL for {name} from environment")
            return env_url
        return cls.get_network(name)["rpc"]

    @classmethod
    def get_chain_id(cls, name: str) -> int:
        return int(cls.get_network(name)["chainId"])

    @classmethod
    def get_key_contracts(cls, name: str) -> Dict[str, str]:
        """
        Get the key-minting contract addresses for a network.

        Raises:
            ConfigurationError: If the network has no key contracts configured
        """
        contracts = cls.get_network(name).get("keyContracts")
        if not contracts:
            raise ConfigurationError(f"Network '{name}' has no keyContracts configured")
        missing = [k for k in ("keyHelper", "keyNft", "pubkeyRouter") if k not in contracts]
        if missing:
            raise ConfigurationError(f"Network '{name}' keyContracts missing: {', '.join(missing)}")
        return contracts


class Settings(BaseModel):
    """Operator settings"""
    private_key: Optional[str] = None
    network_url: str = LOCAL_NETWORK
    store_path: str = DEFAULT_STORE_PATH
    key_chain: str = DEFAULT_KEY_CHAIN
    local_keys_path: str = DEFAULT_LOCAL_KEYS_PATH

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            private_key=os.environ.get(ENV_PRIVATE_KEY) or None,
            network_url=os.environ.get(ENV_NETWORK_URL, LOCAL_NETWORK),
            store_path=os.environ.get(ENV_STORE_PATH, DEFAULT_STORE_PATH),
            key_chain=os.environ.get(ENV_KEY_CHAIN, DEFAULT_KEY_CHAIN),
            local_keys_path=os.environ.get(ENV_LOCAL_KEYS_PATH, DEFAULT_LOCAL_KEYS_PATH),
        )

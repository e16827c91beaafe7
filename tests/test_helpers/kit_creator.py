"""
Helpers for creating test clients with consistent defaults.
"""
from typing import Optional

from oraclekit import OracleKit
from oraclekit.network import LocalNetwork
from oraclekit.store import MemoryStore, OracleStore

TEST_PRIV_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_CONTRACT = "0x1234567890123456789012345678901234567890"

WEATHER_FUNCTION = "function updateWeather(int256 temperature, uint8 precipitationProbability) external"

WEATHER_SNIPPET = """
forecast = {"temperature": 72, "probabilityOfPrecipitation": {"value": 10}}
return [forecast["temperature"], forecast["probabilityOfPrecipitation"]["value"]]
"""


def create_test_kit(
    priv_key: Optional[str] = TEST_PRIV_KEY,
    network: Optional[LocalNetwork] = None,
    store: Optional[OracleStore] = None,
    redundancy: int = 3,
    **kwargs
) -> OracleKit:
    """
    Create a client on a local network with an in-memory store.

    Args:
        priv_key: Operator private key
        network: Local network to use (a fresh one by default)
        store: Store to use (a fresh MemoryStore by default)
        redundancy: Node count for a fresh local network
        **kwargs: Passed to OracleKit

    Returns:
        Connected OracleKit
    """
    network = network or LocalNetwork(redundancy=redundancy)
    kit = OracleKit(
        private_key=priv_key,
        network=network,
        store=store or MemoryStore(),
        **kwargs
    )
    return kit.connect()

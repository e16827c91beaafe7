"""
Pytest fixtures for the oracle kit tests.
"""
import time

import pytest
from eth_account import Account
from web3.providers.rpc import HTTPProvider

from oraclekit._rate_limited_log import reset_rate_limits
from oraclekit.config import NetworkConfig
from oraclekit.network import LocalNetwork
from oraclekit.store import MemoryStore

from tests.test_helpers import (
    FakeChain, TEST_CHAIN, TEST_CHAIN_ID, TEST_RPC_URL, TEST_PRIV_KEY,
    KEY_HELPER, KEY_NFT, PUBKEY_ROUTER,
)

TEST_NETWORKS = {
    TEST_CHAIN: {
        "chainId": TEST_CHAIN_ID,
        "rpc": TEST_RPC_URL,
        "keyContracts": {
            "keyHelper": KEY_HELPER,
            "keyNft": KEY_NFT,
            "pubkeyRouter": PUBKEY_ROUTER,
        },
    },
    "nokeys": {
        "chainId": 5,
        "rpc": "https://rpc.nokeys.example",
    },
}


# Make time.sleep instantaneous so receipt polling doesn't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _test_networks():
    """Point NetworkConfig at the test chains for every test"""
    NetworkConfig._networks_cache = TEST_NETWORKS
    yield
    NetworkConfig._networks_cache = None


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture(autouse=True)
def fake_chain(monkeypatch):
    """
    Stub every Web3 HTTP call with an in-memory chain so no DNS / network
    traffic is triggered.
    """
    chain = FakeChain()

    def _make_request(provider, method, params):
        return chain.make_request(method, params)

    monkeypatch.setattr(HTTPProvider, "make_request", _make_request, raising=True)
    return chain


@pytest.fixture
def operator():
    return Account.from_key(TEST_PRIV_KEY)


@pytest.fixture
def funded_operator(fake_chain, operator):
    fake_chain.fund(operator.address, 10 ** 20)
    return operator


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def local_network():
    network = LocalNetwork(redundancy=3)
    network.initialize()
    yield network
    network.close()

"""
Shared helpers for the oracle kit tests.
"""
from .fake_chain import (
    FakeChain, TEST_CHAIN, TEST_CHAIN_ID, TEST_RPC_URL,
    KEY_HELPER, KEY_NFT, PUBKEY_ROUTER,
)
from .kit_creator import (
    create_test_kit, TEST_PRIV_KEY, TEST_CONTRACT, WEATHER_FUNCTION, WEATHER_SNIPPET,
)

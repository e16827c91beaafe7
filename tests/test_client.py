"""
End-to-end tests for the OracleKit client on the local network.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from web3 import Web3

from oraclekit import OracleKit
from oraclekit.abi import FunctionDescriptor
from oraclekit.exceptions import ChainStateError, ConfigurationError, ExecutionError, SessionError
from oraclekit.funding import TOP_UP_AMOUNT_WEI
from oraclekit.models import SessionCredential
from oraclekit.network import LocalNetwork
from oraclekit.session import CAPABILITY_KEY_SIGNING, DEFAULT_CAPABILITIES, SessionAuthenticator
from oraclekit.store import FileStore

from tests.test_helpers import (
    TEST_CHAIN,
    TEST_CHAIN_ID,
    TEST_CONTRACT,
    TEST_PRIV_KEY,
    WEATHER_FUNCTION,
    WEATHER_SNIPPET,
    create_test_kit,
)

CURRENT_WEATHER = "function currentWeather() view returns (int256, uint8, uint256)"


@pytest.fixture
def kit(funded_operator):
    kit = create_test_kit()
    yield kit
    kit.disconnect()


def _weather_args(tx):
    return list(abi_decode(["int256", "uint8"], bytes.fromhex(tx["data"][10:])))


class TestWriteToChain:

    def test_weather_update(self, kit, fake_chain):
        result = kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)

        assert result.function_args == [72, 10]
        assert result.transaction_hash.startswith("0x")

        binding = kit.store.list_bindings()[0]
        funding_tx, call_tx = fake_chain.decoded_transactions()

        assert funding_tx["to"] == binding.derived_address
        assert funding_tx["value"] == TOP_UP_AMOUNT_WEI

        assert call_tx["type"] == 2
        assert call_tx["from"] == binding.derived_address
        assert call_tx["to"] == Web3.to_checksum_address(TEST_CONTRACT)
        assert call_tx["chainId"] == TEST_CHAIN_ID
        assert call_tx["value"] == 0
        assert call_tx["accessList"] == []
        assert _weather_args(call_tx) == [72, 10]
        assert result.transaction_hash == Web3.to_hex(Web3.keccak(fake_chain.sent[1]))

    def test_redundant_copies_broadcast_once(self, funded_operator, fake_chain):
        kit = create_test_kit(redundancy=5)
        kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        calls = [tx for tx in fake_chain.decoded_transactions() if tx["value"] == 0]
        assert len(calls) == 1

    def test_result_json_aliases(self, kit):
        result = kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        dumped = result.model_dump(by_alias=True)
        assert dumped["functionArgs"] == [72, 10]
        assert dumped["transactionHash"] == result.transaction_hash

    def test_second_call_reuses_binding(self, kit, fake_chain):
        first = kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        second = kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)

        assert kit.network.mint_count == 1
        assert len(kit.store.list_bindings()) == 1
        assert first.transaction_hash != second.transaction_hash

        sent = fake_chain.decoded_transactions()
        # One funding transfer, then two calls with consecutive nonces
        assert len(sent) == 3
        assert [tx["nonce"] for tx in sent[1:]] == [0, 1]

    def test_program_is_archived(self, kit):
        kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        address = kit.store.list_bindings()[0].bound_program
        assert "def fetch_data():" in kit.store.get_program(address)

    def test_legacy_chain(self, kit, fake_chain):
        fake_chain.base_fee = None
        kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        assert fake_chain.decoded_transactions()[-1]["type"] == 0

    def test_json_abi(self, kit, fake_chain):
        abi = FunctionDescriptor.parse(WEATHER_FUNCTION).to_abi()
        result = kit.write_to_chain(WEATHER_SNIPPET, [abi], TEST_CONTRACT, TEST_CHAIN)
        assert result.function_args == [72, 10]


class TestWriteToChainErrors:

    def test_missing_private_key(self, fake_chain):
        kit = create_test_kit(priv_key=None)
        with pytest.raises(ConfigurationError):
            kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        assert fake_chain.calls == []
        assert kit.network.execution_count == 0

    def test_invalid_private_key(self):
        with pytest.raises(ConfigurationError):
            OracleKit(private_key="0x1234")

    def test_invalid_target_address(self, kit, fake_chain):
        with pytest.raises(ConfigurationError):
            kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, "0x123", TEST_CHAIN)
        assert fake_chain.calls == []

    def test_unknown_chain(self, kit, fake_chain):
        with pytest.raises(ConfigurationError):
            kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, "atlantis")
        assert fake_chain.calls == []
        assert kit.network.mint_count == 0

    def test_snippet_failure_surfaces_remote_message(self, kit):
        with pytest.raises(ExecutionError) as excinfo:
            kit.write_to_chain("return [1 / 0, 1]", WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        assert str(excinfo.value) == "ZeroDivisionError: division by zero"
        # The key stays bound even though the execution failed
        assert len(kit.store.list_bindings()) == 1

    def test_wrong_value_count(self, kit, fake_chain):
        with pytest.raises(ExecutionError) as excinfo:
            kit.write_to_chain("return [72]", WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        assert str(excinfo.value).startswith("AbiError")

    def test_gas_estimation_revert(self, kit, fake_chain):
        kit.resolve_key(kit.generate_program(WEATHER_SNIPPET, WEATHER_FUNCTION), TEST_CHAIN)
        fake_chain.estimate_reverts = True
        with pytest.raises(ExecutionError) as excinfo:
            kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        assert str(excinfo.value).startswith("ChainStateError")

    def test_missing_remote_key(self, kit, fake_chain):
        kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        kit.network.forget_key(kit.store.list_bindings()[0].public_key)

        with pytest.raises(ExecutionError) as excinfo:
            kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        assert str(excinfo.value).startswith("SigningError")
        assert kit.network.mint_count == 1


class TestDataSource:

    def test_returns_values_without_chain_interaction(self, kit, fake_chain):
        assert kit.test_data_source(WEATHER_SNIPPET) == [72, 10]
        assert fake_chain.calls == []
        assert kit.network.mint_count == 0

    def test_failure(self, kit):
        with pytest.raises(ExecutionError):
            kit.test_data_source("raise RuntimeError('feed down')")

    def test_non_list_result(self, kit):
        with pytest.raises(ExecutionError):
            kit.test_data_source("return 5")


class TestReadFromChain:

    def test_read(self, kit, fake_chain):
        fn = FunctionDescriptor.parse(CURRENT_WEATHER)
        fake_chain.on_call(TEST_CONTRACT, fn.selector,
                           lambda data: "0x" + abi_encode(["int256", "uint8", "uint256"], [72, 10, 1_700_000_000]).hex())
        assert kit.read_from_chain(CURRENT_WEATHER, TEST_CONTRACT, TEST_CHAIN) == [72, 10, 1_700_000_000]

    def test_read_with_args(self, kit, fake_chain):
        fn = FunctionDescriptor.parse("function balanceOf(address owner) view returns (uint256)")
        fake_chain.on_call(TEST_CONTRACT, fn.selector, lambda data: "0x" + abi_encode(["uint256"], [9]).hex())
        assert kit.read_from_chain(fn, TEST_CONTRACT, TEST_CHAIN, [TEST_CONTRACT]) == 9

    def test_read_revert(self, kit):
        with pytest.raises(ChainStateError):
            kit.read_from_chain(CURRENT_WEATHER, TEST_CONTRACT, TEST_CHAIN)

    def test_read_bad_address(self, kit):
        with pytest.raises(ConfigurationError):
            kit.read_from_chain(CURRENT_WEATHER, "nope", TEST_CHAIN)


class TestLifecycle:

    def test_context_manager(self):
        with OracleKit(private_key=TEST_PRIV_KEY, network=LocalNetwork()) as kit:
            assert kit.ready
        assert not kit.ready

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ORACLE_KIT_PRIVATE_KEY", TEST_PRIV_KEY)
        monkeypatch.setenv("ORACLE_KIT_NETWORK_URL", "local")
        monkeypatch.setenv("ORACLE_KIT_STORE_PATH", str(tmp_path / "store.json"))
        monkeypatch.setenv("ORACLE_KIT_LOCAL_KEYS_PATH", str(tmp_path / "local_keys.json"))

        kit = OracleKit.from_env()
        assert isinstance(kit.store, FileStore)
        assert isinstance(kit.network, LocalNetwork)
        assert kit.operator.address == Account.from_key(TEST_PRIV_KEY).address

    def test_file_store_end_to_end(self, funded_operator, tmp_path):
        store = FileStore(str(tmp_path / "store.json"))
        kit = create_test_kit(store=store)
        kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        assert len(FileStore(str(tmp_path / "store.json")).list_bindings()) == 1

    def test_file_store_reused_by_a_later_process(self, funded_operator, tmp_path, fake_chain):
        store_path = str(tmp_path / "store.json")
        keys_path = str(tmp_path / "local_keys.json")

        first = create_test_kit(store=FileStore(store_path), network=LocalNetwork(key_path=keys_path))
        first.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
        first.disconnect()

        second = create_test_kit(store=FileStore(store_path), network=LocalNetwork(key_path=keys_path))
        result = second.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)

        assert result.function_args == [72, 10]
        assert second.network.mint_count == 0
        assert len(second.store.list_bindings()) == 1
        calls = [tx for tx in fake_chain.decoded_transactions() if tx["value"] == 0]
        assert [tx["nonce"] for tx in calls] == [0, 1]

    def test_from_env_twice_on_local_network(self, funded_operator, monkeypatch, tmp_path):
        monkeypatch.setenv("ORACLE_KIT_PRIVATE_KEY", TEST_PRIV_KEY)
        monkeypatch.setenv("ORACLE_KIT_NETWORK_URL", "local")
        monkeypatch.setenv("ORACLE_KIT_STORE_PATH", str(tmp_path / "store.json"))
        monkeypatch.setenv("ORACLE_KIT_LOCAL_KEYS_PATH", str(tmp_path / "local_keys.json"))

        for _ in range(2):
            with OracleKit.from_env() as kit:
                result = kit.write_to_chain(WEATHER_SNIPPET, WEATHER_FUNCTION, TEST_CONTRACT, TEST_CHAIN)
            assert result.function_args == [72, 10]


class TestSessionHandling:

    def _authenticator(self, capabilities):
        authenticator = MagicMock(spec=SessionAuthenticator)
        authenticator.get_session_credential.return_value = SessionCredential(
            token="token",
            capabilities=capabilities,
            signer="0x" + "11" * 20,
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=10),
        )
        return authenticator

    def test_credential_without_execution_capability(self):
        authenticator = self._authenticator([CAPABILITY_KEY_SIGNING])
        kit = create_test_kit(authenticator=authenticator)
        with pytest.raises(SessionError):
            kit.test_data_source(WEATHER_SNIPPET)
        assert kit.network.execution_count == 0

    def test_rejected_credential_is_invalidated(self):
        authenticator = self._authenticator(list(DEFAULT_CAPABILITIES))
        kit = create_test_kit(authenticator=authenticator)
        with pytest.raises(SessionError):
            kit.test_data_source(WEATHER_SNIPPET)
        authenticator.invalidate.assert_called_once_with()

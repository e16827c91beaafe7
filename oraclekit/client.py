"""
OracleKit client.

Publishes the result of an off-chain data fetch to a contract through a
program executed and threshold-signed by the network.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from .abi import FunctionDescriptor
from .compiler import compile_program
from .config import LOCAL_NETWORK, NetworkConfig, Settings
from .exceptions import ChainStateError, ConfigurationError, ExecutionError, OracleKitError, SessionError
from .funding import BalanceKeeper
from .keys import KeyBinder
from .minting import ContractKeyMinter, KeyMinter
from .models import ExecutionResult, Program, SigningKeyBinding
from .network import LocalNetwork, ThresholdNetwork, get_transport
from .session import (
    CAPABILITY_PROGRAM_EXECUTION,
    DEFAULT_CAPABILITIES,
    NetworkSessionAuthenticator,
    SessionAuthenticator,
)
from .store import FileStore, MemoryStore, OracleStore

logger = logging.getLogger(__name__)

FunctionSource = Union[str, Dict[str, Any], List[Dict[str, Any]], FunctionDescriptor]


class OracleKit:
    """
    Entry point for writing off-chain data to chain.

    Args:
        private_key: Operator private key, used to mint and fund signing keys
            and to authenticate sessions
        network: Threshold network transport (defaults to the one for network_url)
        network_url: "local" or a node gateway URL, used when network is omitted
        store: Program and binding store (defaults to an in-memory store)
        minter: Key minter (defaults to the network when it can mint,
            otherwise the key contracts on key_chain)
        key_chain: Chain hosting the key contracts
        authenticator: Session authenticator (defaults to a handshake with network)
        balance_keeper_for: Returns the BalanceKeeper for a chain name
        logger: Optional logger
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        network: Optional[ThresholdNetwork] = None,
        network_url: Optional[str] = None,
        store: Optional[OracleStore] = None,
        minter: Optional[KeyMinter] = None,
        key_chain: Optional[str] = None,
        authenticator: Optional[SessionAuthenticator] = None,
        balance_keeper_for: Optional[Callable[[str], BalanceKeeper]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.operator: Optional[LocalAccount] = None
        if private_key:
            try:
                self.operator = Account.from_key(private_key)
            except Exception as e:
                raise ConfigurationError(f"Invalid operator private key: {e}") from e

        self.network_url = network_url
        self.network = network or get_transport(network_url)
        self.store = store or MemoryStore()
        self.key_chain = key_chain or Settings().key_chain
        self.authenticator = authenticator or NetworkSessionAuthenticator(self.network)
        self._minter = minter
        self._balance_keepers: Dict[str, BalanceKeeper] = {}
        self._balance_keeper_for = balance_keeper_for or self._default_balance_keeper
        self._key_binder: Optional[KeyBinder] = None

    @classmethod
    def from_env(cls, **kwargs) -> "OracleKit":
        """
        Create a client from ORACLE_KIT_* environment variables.

        On the local network, minted keys are kept in ORACLE_KIT_LOCAL_KEYS_PATH
        so bindings in the file store stay usable across processes.
        """
        settings = Settings.from_env()
        if "network" not in kwargs and settings.network_url == LOCAL_NETWORK:
            kwargs["network"] = LocalNetwork(key_path=settings.local_keys_path)
        kwargs.setdefault("private_key", settings.private_key)
        kwargs.setdefault("network_url", settings.network_url)
        kwargs.setdefault("key_chain", settings.key_chain)
        if "store" not in kwargs:
            kwargs["store"] = FileStore(settings.store_path)
        return cls(**kwargs)

    # Lifecycle

    def connect(self) -> "OracleKit":
        """Connect to the threshold network"""
        if not self.network.ready:
            self.network.initialize(self.network_url)
            self.logger.info("Connected to threshold network")
        return self

    @property
    def ready(self) -> bool:
        return self.network.ready

    def disconnect(self) -> None:
        self.network.close()

    def __enter__(self) -> "OracleKit":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    # Collaborators

    def _require_operator(self) -> LocalAccount:
        if self.operator is None:
            raise ConfigurationError("An operator private key is required (set ORACLE_KIT_PRIVATE_KEY)")
        return self.operator

    @property
    def minter(self) -> KeyMinter:
        if self._minter is None:
            if isinstance(self.network, KeyMinter):
                self._minter = self.network
            else:
                self._minter = ContractKeyMinter.from_config(self.key_chain, self._require_operator())
        return self._minter

    def _default_balance_keeper(self, chain: str) -> BalanceKeeper:
        if chain not in self._balance_keepers:
            self._balance_keepers[chain] = BalanceKeeper.for_chain(chain, self._require_operator())
        return self._balance_keepers[chain]

    @property
    def key_binder(self) -> KeyBinder:
        if self._key_binder is None:
            self._key_binder = KeyBinder(
                self.store,
                self.minter,
                balance_keeper_for=self._balance_keeper_for,
                logger=self.logger,
            )
        return self._key_binder

    # Operations

    def generate_program(self, data_source: str, function_abi: Optional[FunctionSource] = None) -> Program:
        """
        Compile a data-fetch snippet and archive the program text.

        Args:
            data_source: Python function body returning an ordered list of values
            function_abi: Target call signature or ABI; omit to only fetch

        Returns:
            Program
        """
        program = compile_program(data_source, function_abi)
        self.store.put_program(program)
        return program

    def resolve_key(self, program: Program, chain: Optional[str] = None) -> SigningKeyBinding:
        """Return the signing key bound to a program, minting and funding it if needed"""
        return self.key_binder.resolve_key(program, chain)

    def _execute(self, program: Program, params: Dict[str, Any]) -> Any:
        self.connect()
        credential = self.authenticator.get_session_credential(DEFAULT_CAPABILITIES, self._require_operator())
        if not credential.allows(CAPABILITY_PROGRAM_EXECUTION):
            raise SessionError("Session credential does not grant program execution")
        try:
            response = self.network.execute(program.text, params, credential)
        except SessionError:
            # A rejected credential is re-derived on the next call
            self.authenticator.invalidate()
            raise
        if response.logs:
            self.logger.debug(f"Program logs:\n{response.logs}")
        if not response.success:
            raise ExecutionError(response.error or "Program execution failed", response.logs)
        try:
            return json.loads(response.response or "null")
        except ValueError as e:
            raise ExecutionError(f"Program returned invalid JSON: {response.response!r}", response.logs) from e

    def test_data_source(self, data_source: str) -> List[Any]:
        """
        Run a data-fetch snippet on the network without touching any chain.

        Returns:
            The fetched values
        """
        self._require_operator()
        program = self.generate_program(data_source)
        values = self._execute(program, {})
        if not isinstance(values, list):
            raise ExecutionError(f"Data source returned {type(values).__name__}, expected a list")
        return values

    def write_to_chain(
        self,
        data_source: str,
        function_abi: FunctionSource,
        to_address: str,
        chain: str,
    ) -> ExecutionResult:
        """
        Fetch data on the network and write it to a contract.

        Args:
            data_source: Python function body returning the call arguments, in order
            function_abi: Target function signature or ABI
            to_address: Target contract address
            chain: Chain name from networks.json

        Returns:
            ExecutionResult with the arguments used and the transaction hash

        Raises:
            ConfigurationError: On missing operator key, bad address or unknown
                chain, before any network call
            ExecutionError: If the program fails on the network
        """
        self._require_operator()
        if not to_address or not Web3.is_address(to_address):
            raise ConfigurationError(f"Invalid target address: {to_address!r}")
        NetworkConfig.get_network(chain)
        descriptor = FunctionDescriptor.parse(function_abi)

        program = self.generate_program(data_source, descriptor)
        binding = self.resolve_key(program, chain)
        self.logger.info(
            f"Executing program {program.content_address[:10]}… with key {binding.derived_address[:10]}…"
        )

        result = self._execute(program, {
            "publicKey": binding.public_key,
            "toAddress": Web3.to_checksum_address(to_address),
            "chain": chain,
        })
        try:
            return ExecutionResult.model_validate(result)
        except Exception as e:
            raise ExecutionError(f"Unexpected program response: {result!r}") from e

    def read_from_chain(
        self,
        function_abi: FunctionSource,
        contract_address: str,
        chain: str,
        args: Sequence[Any] = (),
    ) -> Any:
        """
        Call a read-only contract function.

        Returns:
            A single value, a dict when all outputs are named, otherwise a list
        """
        if not contract_address or not Web3.is_address(contract_address):
            raise ConfigurationError(f"Invalid contract address: {contract_address!r}")
        descriptor = FunctionDescriptor.parse(function_abi)
        w3 = Web3(Web3.HTTPProvider(NetworkConfig.get_rpc_url(chain)))
        data = descriptor.encode_call(args)
        try:
            result = w3.eth.call({"to": Web3.to_checksum_address(contract_address), "data": data})
        except OracleKitError:
            raise
        except Exception as e:
            raise ChainStateError(f"Call to {descriptor.signature} failed: {e}") from e
        return descriptor.decode_output(result)

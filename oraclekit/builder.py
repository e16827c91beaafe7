"""
Transaction builder.

Produces unsigned transactions from one consistent snapshot of chain state.
Runs inside the executed program on the network nodes.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Union

from eth_keys import keys
from web3 import Web3

from .abi import FunctionDescriptor
from .config import NetworkConfig
from .exceptions import ChainStateError, ConfigurationError
from .models import FeeFields, FeeMarketFees, LegacyFees, UnsignedTransaction

logger = logging.getLogger(__name__)

# Same defaults ethers uses for getFeeData()
DEFAULT_PRIORITY_FEE_WEI = 1_500_000_000
BASE_FEE_MULTIPLIER = 2

TRANSFER_GAS_LIMIT = 21000


@dataclass(frozen=True)
class FeeData:
    gas_price: int
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None


@dataclass(frozen=True)
class ChainSnapshot:
    """Chain state read together and used together"""
    fee_data: FeeData
    nonce: int
    chain_id: int
    gas_estimate: int
    latest_block: Dict[str, Any]


def public_key_to_address(public_key: Union[str, bytes]) -> str:
    """
    Derive the checksum address of a secp256k1 public key.

    Args:
        public_key: Uncompressed (65 bytes, 0x04 prefix), raw (64 bytes) or
            compressed (33 bytes) key, as bytes or hex with or without 0x

    Returns:
        Checksum address
    """
    if isinstance(public_key, str):
        hex_key = public_key[2:] if public_key.startswith("0x") else public_key
        try:
            raw = bytes.fromhex(hex_key)
        except ValueError as e:
            raise ValueError(f"Public key is not valid hex: {e}") from e
    else:
        raw = bytes(public_key)

    if len(raw) == 65 and raw[0] == 4:
        key = keys.PublicKey(raw[1:])
    elif len(raw) == 64:
        key = keys.PublicKey(raw)
    elif len(raw) == 33:
        key = keys.PublicKey.from_compressed_bytes(raw)
    else:
        raise ValueError(f"Unsupported public key length: {len(raw)} bytes")
    return key.to_checksum_address()


def fee_data_from_block(latest_block: Dict[str, Any], gas_price: int) -> FeeData:
    """Gas price plus fee-market values derived from the block's base fee, if it has one"""
    base_fee = latest_block.get("baseFeePerGas")
    if base_fee is None:
        return FeeData(gas_price=gas_price)
    return FeeData(
        gas_price=gas_price,
        max_fee_per_gas=base_fee * BASE_FEE_MULTIPLIER + DEFAULT_PRIORITY_FEE_WEI,
        max_priority_fee_per_gas=DEFAULT_PRIORITY_FEE_WEI,
    )


def select_fee_fields(latest_block: Dict[str, Any], fee_data: FeeData) -> FeeFields:
    """
    Pick the fee model: fee-market when the latest block carries a base fee,
    legacy otherwise. There is no fallback between the two.
    """
    if latest_block.get("baseFeePerGas") is not None:
        if fee_data.max_fee_per_gas is None or fee_data.max_priority_fee_per_gas is None:
            raise ChainStateError("Latest block has a base fee but fee data has no fee-market fields")
        return FeeMarketFees(
            max_fee_per_gas=fee_data.max_fee_per_gas,
            max_priority_fee_per_gas=fee_data.max_priority_fee_per_gas,
        )
    return LegacyFees(gas_price=fee_data.gas_price)


class TransactionBuilder:
    """
    Builds unsigned transactions against one chain.

    Args:
        w3: Web3 instance connected to the target chain
        logger: Optional logger
    """

    def __init__(self, w3: Web3, logger: Optional[logging.Logger] = None):
        self.w3 = w3
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def for_chain(
        cls,
        chain: str,
        rpc_resolver: Optional[Callable[[str], str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "TransactionBuilder":
        """
        Create a builder for a named chain.

        Args:
            chain: Chain name, e.g. "yellowstone"
            rpc_resolver: Maps a chain name to an RPC URL (defaults to NetworkConfig)
        """
        resolver = rpc_resolver or NetworkConfig.get_rpc_url
        rpc_url = resolver(chain)
        if not rpc_url:
            raise ConfigurationError(f"No RPC URL for chain '{chain}'")
        return cls(Web3(Web3.HTTPProvider(rpc_url)), logger=logger)

    def snapshot(self, sender: str, call: Dict[str, Any]) -> ChainSnapshot:
        """
        Read gas price, pending nonce, chain id, gas estimate and the latest
        block concurrently. Fee-market values come from that same block.

        Raises:
            ChainStateError: If any read fails
        """
        estimate_params = dict(call, **{"from": sender})
        try:
            with ThreadPoolExecutor(max_workers=5) as pool:
                price_future = pool.submit(lambda: self.w3.eth.gas_price)
                nonce_future = pool.submit(self.w3.eth.get_transaction_count, sender, "pending")
                chain_future = pool.submit(lambda: self.w3.eth.chain_id)
                gas_future = pool.submit(self.w3.eth.estimate_gas, estimate_params)
                block_future = pool.submit(self.w3.eth.get_block, "latest")

                latest_block = dict(block_future.result())
                return ChainSnapshot(
                    fee_data=fee_data_from_block(latest_block, price_future.result()),
                    nonce=nonce_future.result(),
                    chain_id=chain_future.result(),
                    gas_estimate=gas_future.result(),
                    latest_block=latest_block,
                )
        except ChainStateError:
            raise
        except Exception as e:
            self.logger.error(f"Failed to read chain state: {e}")
            raise ChainStateError(f"Failed to read chain state: {e}") from e

    def _assemble(self, snapshot: ChainSnapshot, to: str, data: str, value: int, gas_limit: int) -> UnsignedTransaction:
        fee_fields = select_fee_fields(snapshot.latest_block, snapshot.fee_data)
        tx = UnsignedTransaction(
            to=to,
            data=data,
            nonce=snapshot.nonce,
            gas_limit=gas_limit,
            chain_id=snapshot.chain_id,
            value=value,
            fee_fields=fee_fields,
        )
        self.logger.debug(
            f"Built type-{tx.tx_type} transaction to {to[:10]}… "
            f"(nonce={tx.nonce}, gas={tx.gas_limit}, chainId={tx.chain_id})"
        )
        return tx

    def build(
        self,
        to_address: str,
        function: Union[str, FunctionDescriptor],
        args: Sequence[Any],
        public_key: str,
    ) -> UnsignedTransaction:
        """
        Build the contract call transaction for a signing key.

        Args:
            to_address: Target contract address
            function: Target function signature or descriptor
            args: Call arguments, in order
            public_key: Public key of the signing key (the sender)

        Returns:
            UnsignedTransaction with value 0

        Raises:
            ConfigurationError: If the target address is invalid
            AbiError: If the arguments don't fit the function
            ChainStateError: If chain state can't be read
        """
        if not to_address or not Web3.is_address(to_address):
            raise ConfigurationError(f"Invalid target address: {to_address!r}")
        to = Web3.to_checksum_address(to_address)
        descriptor = FunctionDescriptor.parse(function)
        data = descriptor.encode_call(args)
        sender = public_key_to_address(public_key)

        snapshot = self.snapshot(sender, {"to": to, "data": data, "value": 0})
        return self._assemble(snapshot, to, data, 0, snapshot.gas_estimate)

    def build_raw(
        self,
        sender: str,
        to_address: str,
        data: str = "0x",
        value: int = 0,
        gas_limit: Optional[int] = None,
    ) -> UnsignedTransaction:
        """
        Build a transaction from an operator account with prepared calldata.

        Args:
            sender: Sending address
            to_address: Recipient or contract
            data: 0x-prefixed calldata
            value: Amount in wei
            gas_limit: Fixed gas limit; the estimate is used when None
        """
        to = Web3.to_checksum_address(to_address)
        snapshot = self.snapshot(Web3.to_checksum_address(sender), {"to": to, "data": data, "value": value})
        return self._assemble(snapshot, to, data, value, gas_limit or snapshot.gas_estimate)

    def build_transfer(self, sender: str, to_address: str, value: int) -> UnsignedTransaction:
        """
        Build a plain value transfer, priced the same way as contract calls.

        Args:
            sender: Address the funds come from
            to_address: Recipient
            value: Amount in wei
        """
        tx = self.build_raw(sender, to_address, "0x", value)
        if tx.gas_limit < TRANSFER_GAS_LIMIT:
            tx = tx.model_copy(update={"gas_limit": TRANSFER_GAS_LIMIT})
        return tx

"""
Remote signing orchestration.

The transaction hash is signed by the threshold network with the bound key,
the signature is attached and checked, and the signed transaction is
broadcast exactly once across all redundant copies of the program.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

import rlp
from eth_account import Account
from web3 import Web3

from .builder import public_key_to_address
from .exceptions import SigningError
from .models import FeeMarketFees, UnsignedTransaction

logger = logging.getLogger(__name__)

TX_TYPE_FEE_MARKET = b"\x02"
SENDER_ACTION_NAME = "txnSender"


@dataclass(frozen=True)
class NormalizedSignature:
    r: str
    s: str
    recovery_id: int

    @property
    def r_int(self) -> int:
        return int(self.r, 16)

    @property
    def s_int(self) -> int:
        return int(self.s, 16)


def _to_hex64(value: Union[str, bytes, int], name: str) -> str:
    if isinstance(value, int):
        value = format(value, "x")
    elif isinstance(value, (bytes, bytearray)):
        value = bytes(value).hex()
    if not isinstance(value, str):
        raise SigningError(f"Signature component {name} has unsupported type {type(value).__name__}")

    hex_value = value[2:] if value.lower().startswith("0x") else value
    try:
        int(hex_value or "0", 16)
    except ValueError as e:
        raise SigningError(f"Signature component {name} is not hex: {value!r}") from e

    # A 33-byte R point carries a one-byte prefix; keep the x coordinate
    if len(hex_value) > 64:
        hex_value = hex_value[-64:]
    return "0x" + hex_value.lower().zfill(64)


def normalize_signature(signature: Dict[str, Any]) -> NormalizedSignature:
    """
    Bring a threshold signature into canonical form.

    Args:
        signature: Dict with "r", "s" and a recovery value under "recid" or "v"

    Returns:
        NormalizedSignature with 32-byte hex r and s and a recovery id of 0 or 1

    Raises:
        SigningError: If a component is missing or malformed
    """
    if not signature or "r" not in signature or "s" not in signature:
        raise SigningError("Signature is missing r or s")

    v = signature.get("recid", signature.get("v"))
    if v is None:
        raise SigningError("Signature is missing a recovery id")
    if isinstance(v, str):
        try:
            v = int(v, 16) if v.lower().startswith("0x") else int(v)
        except ValueError as e:
            raise SigningError(f"Invalid recovery id: {v!r}") from e
    if v in (27, 28):
        v -= 27
    if v not in (0, 1):
        raise SigningError(f"Invalid recovery id: {v}")

    return NormalizedSignature(
        r=_to_hex64(signature["r"], "r"),
        s=_to_hex64(signature["s"], "s"),
        recovery_id=v,
    )


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(address[2:])


def _data_bytes(data: str) -> bytes:
    return bytes.fromhex(data[2:] if data.startswith("0x") else data)


def serialize_transaction(tx: UnsignedTransaction, signature: Optional[NormalizedSignature] = None) -> bytes:
    """
    RLP-serialize a transaction.

    Without a signature this returns the signing payload (EIP-155 for legacy,
    EIP-1559 for fee-market); with one it returns the raw signed transaction.
    """
    to = _address_bytes(tx.to)
    data = _data_bytes(tx.data)

    if isinstance(tx.fee_fields, FeeMarketFees):
        fields = [
            tx.chain_id,
            tx.nonce,
            tx.fee_fields.max_priority_fee_per_gas,
            tx.fee_fields.max_fee_per_gas,
            tx.gas_limit,
            to,
            tx.value,
            data,
            [],
        ]
        if signature is not None:
            fields += [signature.recovery_id, signature.r_int, signature.s_int]
        return TX_TYPE_FEE_MARKET + rlp.encode(fields)

    fields = [tx.nonce, tx.fee_fields.gas_price, tx.gas_limit, to, tx.value, data]
    if signature is None:
        fields += [tx.chain_id, 0, 0]
    else:
        v = signature.recovery_id + 35 + 2 * tx.chain_id
        fields += [v, signature.r_int, signature.s_int]
    return rlp.encode(fields)


def signing_hash(tx: UnsignedTransaction) -> bytes:
    """Keccak-256 of the unsigned payload"""
    return bytes(Web3.keccak(serialize_transaction(tx)))


def attach_signature(tx: UnsignedTransaction, signature: Dict[str, Any], expected_address: str) -> Tuple[bytes, str]:
    """
    Attach a threshold signature and check it recovers to the signing key.

    Returns:
        (raw signed transaction, recovered address)

    Raises:
        SigningError: If the signature is malformed or recovers to another address
    """
    normalized = normalize_signature(signature)
    raw = serialize_transaction(tx, normalized)
    try:
        recovered = Account.recover_transaction(raw)
    except Exception as e:
        raise SigningError(f"Signature does not recover: {e}") from e

    if recovered.lower() != expected_address.lower():
        raise SigningError(
            f"Signature recovers to {recovered}, expected {expected_address}"
        )
    return raw, recovered


class SigningOrchestrator:
    """
    Runs the signing ceremony for one transaction inside an executing program.

    Args:
        actions: ProgramActions of the executing node
        w3: Web3 instance for the target chain, used to broadcast
        logger: Optional logger
    """

    def __init__(self, actions, w3: Web3, logger: Optional[logging.Logger] = None):
        self.actions = actions
        self.w3 = w3
        self.logger = logger or logging.getLogger(__name__)

    def sign_and_send(self, tx: UnsignedTransaction, public_key: str, sig_name: str = "sig1") -> str:
        """
        Sign a transaction with the bound key and broadcast it once.

        Args:
            tx: Unsigned transaction
            public_key: Public key of the bound signing key
            sig_name: Name the signature is reported under

        Returns:
            0x-prefixed transaction hash

        Raises:
            SigningError: If the signature is malformed or doesn't match the key
        """
        expected = public_key_to_address(public_key)
        to_sign = signing_hash(tx)
        self.logger.debug(f"Requesting signature over {to_sign.hex()[:10]}… from {expected[:10]}…")

        signature = self.actions.sign_ecdsa(to_sign, public_key, sig_name)
        raw, _ = attach_signature(tx, signature, expected)

        def broadcast() -> str:
            tx_hash = self.w3.eth.send_raw_transaction(raw)
            return Web3.to_hex(tx_hash)

        tx_hash = self.actions.run_once(SENDER_ACTION_NAME, broadcast)
        self.logger.info(f"Transaction {tx_hash[:10]}… sent from {expected[:10]}…")
        return tx_hash

"""
Key minting.

A signing key is minted with exactly one permitted auth method: the
content address of the program allowed to use it.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3

from .abi import FunctionDescriptor
from .builder import TransactionBuilder
from .config import NetworkConfig
from .exceptions import MintError, OracleKitError
from .models import MintedKey

logger = logging.getLogger(__name__)

KEY_TYPE_ECDSA = 2
AUTH_METHOD_TYPE_PROGRAM = 2
AUTH_SCOPE_SIGN_ANYTHING = 1

MINT_GAS_LIMIT = 4_000_000
RECEIPT_TIMEOUT = 120

MINT_FUNCTION = FunctionDescriptor.parse(
    "function mintNextAndAddAuthMethods("
    "uint256 keyType, uint256[] permittedAuthMethodTypes, bytes[] permittedAuthMethodIds, "
    "bytes[] permittedAuthMethodPubkeys, uint256[][] permittedAuthMethodScopes, "
    "bool addPkpEthAddressAsPermittedAddress, bool sendPkpToItself"
    ") payable returns (uint256)"
)
MINT_COST_FUNCTION = FunctionDescriptor.parse("function mintCost() view returns (uint256)")
GET_PUBKEY_FUNCTION = FunctionDescriptor.parse("function getPubkey(uint256 tokenId) view returns (bytes)")


class KeyMinter(ABC):
    """Key lifecycle service"""

    @abstractmethod
    def mint(self, auth_method_id: bytes) -> MintedKey:
        """
        Mint a signing key usable only by the given auth method.

        Args:
            auth_method_id: Raw multihash bytes of the permitted program

        Returns:
            MintedKey

        Raises:
            MintError: If minting fails
        """
        pass


class ContractKeyMinter(KeyMinter):
    """
    Mints keys through the key network's contracts, paying with the operator account.

    Args:
        w3: Web3 instance for the chain hosting the key contracts
        operator: Operator account that pays for minting
        helper_address: Address of the key helper contract
        nft_address: Address of the key NFT contract
        router_address: Address of the public key router
        mint_gas_limit: Gas limit for the mint transaction
        logger: Optional logger
    """

    def __init__(
        self,
        w3: Web3,
        operator: LocalAccount,
        helper_address: str,
        nft_address: str,
        router_address: str,
        mint_gas_limit: int = MINT_GAS_LIMIT,
        logger: Optional[logging.Logger] = None,
    ):
        self.w3 = w3
        self.operator = operator
        self.helper_address = Web3.to_checksum_address(helper_address)
        self.nft_address = Web3.to_checksum_address(nft_address)
        self.router_address = Web3.to_checksum_address(router_address)
        self.mint_gas_limit = mint_gas_limit
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, key_chain: str, operator: LocalAccount, **kwargs) -> "ContractKeyMinter":
        """
        Create a minter for a chain from networks.json.

        Raises:
            ConfigurationError: If the chain or its key contracts are not configured
        """
        contracts = NetworkConfig.get_key_contracts(key_chain)
        w3 = Web3(Web3.HTTPProvider(NetworkConfig.get_rpc_url(key_chain)))
        return cls(
            w3,
            operator,
            contracts["keyHelper"],
            contracts["keyNft"],
            contracts["pubkeyRouter"],
            **kwargs,
        )

    def _call(self, address: str, function: FunctionDescriptor, args=()):
        data = function.encode_call(args)
        result = self.w3.eth.call({"to": address, "data": data})
        return function.decode_output(result)

    def mint_cost(self) -> int:
        return self._call(self.nft_address, MINT_COST_FUNCTION)

    def get_public_key(self, token_id: int) -> str:
        return Web3.to_hex(self._call(self.router_address, GET_PUBKEY_FUNCTION, [token_id]))

    def mint(self, auth_method_id: bytes) -> MintedKey:
        try:
            cost = self.mint_cost()
            data = MINT_FUNCTION.encode_call([
                KEY_TYPE_ECDSA,
                [AUTH_METHOD_TYPE_PROGRAM],
                [auth_method_id],
                [b""],
                [[AUTH_SCOPE_SIGN_ANYTHING]],
                False,
                True,
            ])

            builder = TransactionBuilder(self.w3, logger=self.logger)
            tx = builder.build_raw(
                self.operator.address,
                self.helper_address,
                data,
                value=cost,
                gas_limit=self.mint_gas_limit,
            )
            signed = self.operator.sign_transaction(tx.to_dict())
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            self.logger.info(f"Mint transaction sent: {Web3.to_hex(tx_hash)[:10]}…")

            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)
            if receipt.get("status") != 1:
                raise MintError(f"Mint transaction {Web3.to_hex(tx_hash)} reverted")
            logs = receipt.get("logs") or []
            if not logs or len(logs[0]["topics"]) < 2:
                raise MintError("Mint receipt has no token id event")

            token_id = int.from_bytes(bytes(logs[0]["topics"][1]), "big")
            public_key = self.get_public_key(token_id)
        except MintError:
            raise
        except OracleKitError as e:
            raise MintError(f"Key minting failed: {e}") from e
        except Exception as e:
            self.logger.error(f"Key minting failed: {e}")
            raise MintError(f"Key minting failed: {e}") from e

        self.logger.info(f"Minted key {str(token_id)[:10]}… with public key {public_key[:12]}…")
        return MintedKey(public_key=public_key, mint_id=str(token_id))

"""
Balance maintenance for signing key addresses.

The operator account tops up a bound key's address whenever its balance
falls below a threshold, so the key can pay for the transactions it signs.
"""
import logging
from typing import Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3

from ._rate_limited_log import rate_limited_log
from .builder import TransactionBuilder
from .config import NetworkConfig
from .exceptions import FundingError, OracleKitError

logger = logging.getLogger(__name__)

LOW_BALANCE_THRESHOLD_WEI = Web3.to_wei("0.00001", "ether")
TOP_UP_AMOUNT_WEI = Web3.to_wei("0.001", "ether")
RECEIPT_TIMEOUT = 120


class BalanceKeeper:
    """
    Checks and tops up balances on one chain.

    Args:
        w3: Web3 instance for the chain
        operator: Account that pays for top-ups
        threshold_wei: Balance below which an address is topped up
        top_up_wei: Amount sent per top-up
        logger: Optional logger
    """

    def __init__(
        self,
        w3: Web3,
        operator: LocalAccount,
        threshold_wei: int = LOW_BALANCE_THRESHOLD_WEI,
        top_up_wei: int = TOP_UP_AMOUNT_WEI,
        logger: Optional[logging.Logger] = None,
    ):
        self.w3 = w3
        self.operator = operator
        self.threshold_wei = threshold_wei
        self.top_up_wei = top_up_wei
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def for_chain(cls, chain: str, operator: LocalAccount, **kwargs) -> "BalanceKeeper":
        w3 = Web3(Web3.HTTPProvider(NetworkConfig.get_rpc_url(chain)))
        return cls(w3, operator, **kwargs)

    def get_balance(self, address: str) -> int:
        try:
            return self.w3.eth.get_balance(Web3.to_checksum_address(address))
        except Exception as e:
            raise FundingError(f"Failed to read balance of {address}: {e}") from e

    def check_balance(self, address: str, top_up_if_low: bool = True) -> int:
        """
        Read an address's balance and top it up if it's low.

        Args:
            address: Address to check
            top_up_if_low: Send a top-up when the balance is below the threshold

        Returns:
            Balance in wei, refreshed after a top-up

        Raises:
            FundingError: If reading the balance or the top-up fails
        """
        balance = self.get_balance(address)
        self.logger.debug(f"Balance of {address[:10]}…: {balance} wei")

        if balance < self.threshold_wei and top_up_if_low:
            self.fund(address)
            return self.check_balance(address, top_up_if_low=False)
        return balance

    def fund(self, address: str, amount_wei: Optional[int] = None) -> str:
        """
        Send funds from the operator account and wait for confirmation.

        Returns:
            Transaction hash of the top-up

        Raises:
            FundingError: If the transfer fails or reverts
        """
        amount = amount_wei if amount_wei is not None else self.top_up_wei

        operator_balance = self.get_balance(self.operator.address)
        if operator_balance < amount:
            rate_limited_log(
                f"Operator {self.operator.address[:10]}… balance {operator_balance} wei "
                f"is below the top-up amount {amount} wei",
                logger_instance=self.logger,
            )

        try:
            tx = TransactionBuilder(self.w3, logger=self.logger).build_transfer(
                self.operator.address, address, amount
            )
            signed = self.operator.sign_transaction(tx.to_dict())
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)
        except OracleKitError as e:
            raise FundingError(f"Failed to fund {address}: {e}") from e
        except Exception as e:
            self.logger.error(f"Funding transaction to {address[:10]}… failed: {e}")
            raise FundingError(f"Failed to fund {address}: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        if receipt.get("status") != 1:
            raise FundingError(f"Funding transaction {tx_hex} reverted")

        self.logger.info(f"Funded {address[:10]}… with {amount} wei ({tx_hex[:10]}…)")
        return tx_hex

"""
Data models for the oracle kit.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union, Annotated

from pydantic import BaseModel, Field


class Program(BaseModel):
    """Executable program text and its content address"""
    text: str
    content_address: str = Field(..., alias="contentAddress")

    class Config:
        populate_by_name = True
        frozen = True


class MintedKey(BaseModel):
    """Signing key as returned by the key lifecycle service"""
    public_key: str = Field(..., alias="publicKey")
    mint_id: str = Field(..., alias="mintId")

    class Config:
        populate_by_name = True


class SigningKeyBinding(BaseModel):
    """A threshold signing key whose use is scoped to one program"""
    public_key: str = Field(..., alias="publicKey")
    derived_address: str = Field(..., alias="derivedAddress")
    mint_id: str = Field(..., alias="mintId")
    bound_program: str = Field(..., alias="boundProgram")

    class Config:
        populate_by_name = True
        frozen = True


class LegacyFees(BaseModel):
    kind: Literal["legacy"] = "legacy"
    gas_price: int


class FeeMarketFees(BaseModel):
    kind: Literal["fee_market"] = "fee_market"
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


FeeFields = Annotated[Union[LegacyFees, FeeMarketFees], Field(discriminator="kind")]


class UnsignedTransaction(BaseModel):
    """
    Transaction ready for signing.

    Built from a single chain-state snapshot and never persisted.
    """
    to: str
    data: str
    nonce: int
    gas_limit: int
    chain_id: int
    value: int = 0
    fee_fields: FeeFields

    @property
    def tx_type(self) -> int:
        """EIP-2718 transaction type: 2 for fee-market, 0 for legacy"""
        return 2 if isinstance(self.fee_fields, FeeMarketFees) else 0

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to a transaction dict as accepted by eth-account.

        Returns:
            Transaction dictionary
        """
        tx: Dict[str, Any] = {
            "to": self.to,
            "data": self.data,
            "nonce": self.nonce,
            "gas": self.gas_limit,
            "chainId": self.chain_id,
            "value": self.value,
        }
        if isinstance(self.fee_fields, FeeMarketFees):
            tx["type"] = 2
            tx["maxFeePerGas"] = self.fee_fields.max_fee_per_gas
            tx["maxPriorityFeePerGas"] = self.fee_fields.max_priority_fee_per_gas
            tx["accessList"] = []
        else:
            tx["gasPrice"] = self.fee_fields.gas_price
        return tx


class ExecutionResult(BaseModel):
    """Outcome of a write to chain"""
    function_args: List[Any] = Field(..., alias="functionArgs")
    transaction_hash: str = Field(..., alias="transactionHash")

    class Config:
        populate_by_name = True


class SessionCredential(BaseModel):
    """Short-lived capability token for program execution and key signing"""
    token: str
    capabilities: List[str]
    signer: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def allows(self, capability: str) -> bool:
        return capability in self.capabilities

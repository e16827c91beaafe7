"""
Key binding.

Every program gets exactly one signing key, minted the first time the
program is seen and looked up from the store afterwards.
"""
import logging
from typing import Callable, Optional

from .builder import public_key_to_address
from .cid import cid_to_bytes
from .funding import BalanceKeeper
from .minting import KeyMinter
from .models import Program, SigningKeyBinding
from .store import OracleStore

logger = logging.getLogger(__name__)


class KeyBinder:
    """
    Resolves the signing key bound to a program.

    Args:
        store: Binding store
        minter: Key lifecycle service used on a cache miss
        balance_keeper_for: Returns the BalanceKeeper for a chain name; no
            funding is done when omitted
        logger: Optional logger
    """

    def __init__(
        self,
        store: OracleStore,
        minter: KeyMinter,
        balance_keeper_for: Optional[Callable[[str], BalanceKeeper]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.minter = minter
        self.balance_keeper_for = balance_keeper_for
        self.logger = logger or logging.getLogger(__name__)

    def _top_up(self, binding: SigningKeyBinding, chain: Optional[str]) -> None:
        if chain is None or self.balance_keeper_for is None:
            return
        self.balance_keeper_for(chain).check_balance(binding.derived_address, top_up_if_low=True)

    def resolve_key(self, program: Program, chain: Optional[str] = None) -> SigningKeyBinding:
        """
        Return the key bound to a program, minting one on first use.

        Args:
            program: Compiled program
            chain: Chain whose balance is maintained for the key's address

        Returns:
            SigningKeyBinding

        Raises:
            MintError: If minting fails; nothing is stored
            FundingError: If the top-up fails; the binding is kept
        """
        binding = self.store.get_binding(program.content_address)
        if binding is not None:
            self.logger.debug(
                f"Using cached key {binding.mint_id[:10]}… for program {program.content_address[:10]}…"
            )
            self._top_up(binding, chain)
            return binding

        minted = self.minter.mint(cid_to_bytes(program.content_address))
        binding = SigningKeyBinding(
            public_key=minted.public_key,
            derived_address=public_key_to_address(minted.public_key),
            mint_id=minted.mint_id,
            bound_program=program.content_address,
        )
        self.store.put_binding(binding)
        self.logger.info(
            f"Bound key {binding.derived_address[:10]}… to program {program.content_address[:10]}…"
        )

        self._top_up(binding, chain)
        return binding

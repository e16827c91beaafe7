"""
Runtime available to programs executing on the threshold network.

Compiled programs import ``run_program`` from here and hand it their fetch
function, their target call signature, and the ``actions`` and ``params``
injected by the executing node.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, TypeVar

from .abi import FunctionDescriptor
from .builder import TransactionBuilder
from .signing import SigningOrchestrator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProgramActions(ABC):
    """Capabilities a node exposes to an executing program"""

    @abstractmethod
    def sign_ecdsa(self, to_sign: bytes, public_key: str, sig_name: str) -> Dict[str, Any]:
        """
        Request a threshold ECDSA signature over a 32-byte hash.

        Returns:
            Dict with "r", "s" and "recid"
        """
        pass

    @abstractmethod
    def run_once(self, name: str, fn: Callable[[], T]) -> T:
        """
        Run fn on exactly one of the redundant copies of this program.

        The other copies block until it finishes and receive the same result.
        """
        pass

    @abstractmethod
    def get_rpc_url(self, chain: str) -> str:
        pass

    @abstractmethod
    def set_response(self, response: str) -> None:
        pass


def run_program(
    fetch_data: Callable[[], List[Any]],
    signature: Optional[str],
    actions: ProgramActions,
    params: Dict[str, Any],
) -> None:
    """
    Program skeleton entry point.

    Fetches the values; without a signature they become the response.
    Otherwise they are encoded as the target call's arguments, and the
    transaction is built, signed with params["publicKey"] and sent to
    params["toAddress"] on params["chain"].
    """
    values = list(fetch_data())

    if signature is None:
        actions.set_response(json.dumps(values, default=str))
        return

    descriptor = FunctionDescriptor.parse(signature)
    builder = TransactionBuilder.for_chain(params["chain"], actions.get_rpc_url)
    tx = builder.build(params["toAddress"], descriptor, values, params["publicKey"])

    orchestrator = SigningOrchestrator(actions, builder.w3)
    tx_hash = orchestrator.sign_and_send(tx, params["publicKey"])

    actions.set_response(json.dumps(
        {"functionArgs": values, "transactionHash": tx_hash},
        default=str,
    ))

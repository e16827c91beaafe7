"""
In-process threshold network.

Runs every program on several redundant copies in threads, the way the
nodes of a real network each run it, and holds minted key material
locally. Used for development and as the network tests run against.
"""
import logging
import re
import secrets
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import jwt
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from web3 import Web3

from ..cid import bytes_to_cid, compute_cid
from ..config import NetworkConfig
from ..exceptions import NetworkError, SessionError, SigningError
from ..minting import KeyMinter
from ..models import MintedKey, SessionCredential
from ..runtime import ProgramActions
from ..session import CAPABILITY_KEY_SIGNING, CAPABILITY_PROGRAM_EXECUTION
from ..store import JsonFile
from .transport import ExecutionResponse, ThresholdNetwork

logger = logging.getLogger(__name__)

DEFAULT_REDUNDANCY = 3
RUN_ONCE_TIMEOUT = 60
JWT_ALGORITHM = "HS256"

_NONCE_RE = re.compile(r"^Nonce: (\S+)$", re.MULTILINE)


@dataclass
class _RunOnceEntry:
    done: threading.Event = field(default_factory=threading.Event)
    result: Any = None
    error: Optional[BaseException] = None


class RunOnceRegistry:
    """Shared by the copies of one execution; the first caller of a name runs it"""

    def __init__(self, timeout: float = RUN_ONCE_TIMEOUT):
        self.timeout = timeout
        self._lock = threading.Lock()
        self._entries: Dict[str, _RunOnceEntry] = {}

    def run_once(self, name: str, fn: Callable[[], Any]) -> Any:
        with self._lock:
            entry = self._entries.get(name)
            owner = entry is None
            if owner:
                entry = self._entries[name] = _RunOnceEntry()

        if owner:
            try:
                entry.result = fn()
            except Exception as e:
                entry.error = e
            finally:
                entry.done.set()
        elif not entry.done.wait(self.timeout):
            raise TimeoutError(f"Timed out waiting for run-once action '{name}'")

        if entry.error is not None:
            raise entry.error
        return entry.result

    def ran(self, name: str) -> bool:
        with self._lock:
            return name in self._entries


@dataclass
class _KeyRecord:
    private_key: keys.PrivateKey
    mint_id: str
    permitted_programs: Set[str]


def _normalize_public_key(public_key: str) -> str:
    hex_key = public_key[2:] if public_key.startswith("0x") else public_key
    hex_key = hex_key.lower()
    if len(hex_key) == 128:
        hex_key = "04" + hex_key
    return "0x" + hex_key


def _store_record(data: Dict[str, Any], public_key: str, record: _KeyRecord) -> bool:
    data["keys"][public_key] = {
        "privateKey": record.private_key.to_hex(),
        "mintId": record.mint_id,
        "permittedPrograms": sorted(record.permitted_programs),
    }
    return True


class LocalActions(ProgramActions):
    """Actions available to one copy of an executing program"""

    def __init__(
        self,
        network: "LocalNetwork",
        program_address: str,
        capabilities: List[str],
        registry: RunOnceRegistry,
    ):
        self.network = network
        self.program_address = program_address
        self.capabilities = capabilities
        self.registry = registry
        self.response: Optional[str] = None
        self.signatures: Dict[str, Dict[str, Any]] = {}
        self.logs: List[str] = []

    def sign_ecdsa(self, to_sign: bytes, public_key: str, sig_name: str) -> Dict[str, Any]:
        if CAPABILITY_KEY_SIGNING not in self.capabilities:
            raise SessionError("Session does not grant key signing")
        record = self.network.get_key_record(public_key)
        if record is None:
            raise SigningError(f"Unknown signing key {public_key[:12]}…")
        if self.program_address not in record.permitted_programs:
            raise SigningError(
                f"Program {self.program_address} is not permitted to use key {record.mint_id[:10]}…"
            )

        digest = bytes(to_sign)
        if len(digest) != 32:
            raise SigningError(f"Expected a 32-byte hash, got {len(digest)} bytes")
        signature = record.private_key.sign_msg_hash(digest)

        # Components come back as unpadded hex, like the remote nodes report them
        result = {
            "r": format(signature.r, "x"),
            "s": format(signature.s, "x"),
            "recid": signature.v,
            "signature": signature.to_hex(),
            "publicKey": _normalize_public_key(public_key),
        }
        self.signatures[sig_name] = result
        return result

    def run_once(self, name: str, fn: Callable[[], Any]) -> Any:
        return self.registry.run_once(name, fn)

    def get_rpc_url(self, chain: str) -> str:
        return self.network.rpc_resolver(chain)

    def set_response(self, response: str) -> None:
        self.response = response

    def log(self, *args) -> None:
        self.logs.append(" ".join(str(a) for a in args))


class LocalNetwork(ThresholdNetwork, KeyMinter):
    """
    Threshold network simulated in-process.

    Args:
        redundancy: Number of copies each program runs on
        rpc_resolver: Maps a chain name to an RPC URL (defaults to NetworkConfig)
        key_path: JSON file holding minted key material, so keys outlive the
            process; keys are kept in memory only when omitted
        logger: Optional logger
    """

    def __init__(
        self,
        redundancy: int = DEFAULT_REDUNDANCY,
        rpc_resolver: Optional[Callable[[str], str]] = None,
        key_path: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if redundancy < 1:
            raise ValueError("redundancy must be at least 1")
        self.redundancy = redundancy
        self.rpc_resolver = rpc_resolver or NetworkConfig.get_rpc_url
        self.logger = logger or logging.getLogger(__name__)
        self.mint_count = 0
        self.execution_count = 0
        self._secret = secrets.token_bytes(32)
        self._keys: Dict[str, _KeyRecord] = {}
        self._key_file = JsonFile(key_path, lambda: {"keys": {}}) if key_path else None
        self._nonces: Set[str] = set()
        self._lock = threading.RLock()
        self._ready = False

    def is_available(self) -> bool:
        return True

    def initialize(self, url: Optional[str] = None) -> None:
        self._ready = True
        self.logger.debug(f"Local network ready with {self.redundancy} nodes")

    @property
    def ready(self) -> bool:
        return self._ready

    def close(self) -> None:
        self._ready = False

    def _require_ready(self):
        if not self._ready:
            raise NetworkError("Local network is not initialized; call initialize() first")

    # Key lifecycle

    def mint(self, auth_method_id: bytes) -> MintedKey:
        program_address = bytes_to_cid(bytes(auth_method_id))
        private_key = keys.PrivateKey(secrets.token_bytes(32))
        public_key = "0x04" + private_key.public_key.to_bytes().hex()
        mint_id = str(int.from_bytes(bytes(Web3.keccak(hexstr=public_key)), "big"))

        record = _KeyRecord(private_key, mint_id, {program_address})
        with self._lock:
            self._keys[public_key] = record
            self.mint_count += 1
        if self._key_file is not None:
            self._key_file.update(lambda data: _store_record(data, public_key, record))

        self.logger.info(f"Minted local key {mint_id[:10]}… for program {program_address[:10]}…")
        return MintedKey(public_key=public_key, mint_id=mint_id)

    def get_key_record(self, public_key: str) -> Optional[_KeyRecord]:
        normalized = _normalize_public_key(public_key)
        with self._lock:
            record = self._keys.get(normalized)
        if record is not None or self._key_file is None:
            return record

        # Minted by an earlier process sharing the key file
        stored = self._key_file.read()["keys"].get(normalized)
        if stored is None:
            return None
        record = _KeyRecord(
            keys.PrivateKey(bytes.fromhex(stored["privateKey"][2:])),
            stored["mintId"],
            set(stored["permittedPrograms"]),
        )
        with self._lock:
            self._keys[normalized] = record
        return record

    def forget_key(self, public_key: str) -> None:
        """Drop key material, as if the remote key had been burned"""
        normalized = _normalize_public_key(public_key)
        with self._lock:
            self._keys.pop(normalized, None)
        if self._key_file is not None:
            self._key_file.update(lambda data: data["keys"].pop(normalized, None) is not None)

    # Session handshake

    def get_challenge(self) -> str:
        self._require_ready()
        nonce = secrets.token_hex(16)
        with self._lock:
            self._nonces.add(nonce)
        return nonce

    def create_session(
        self,
        message: str,
        signature: str,
        capabilities: List[str],
        expiration: datetime,
    ) -> str:
        self._require_ready()
        match = _NONCE_RE.search(message)
        with self._lock:
            if not match or match.group(1) not in self._nonces:
                raise SessionError("Authentication message does not carry an issued nonce")
            self._nonces.discard(match.group(1))

        try:
            signer = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as e:
            raise SessionError(f"Invalid authentication signature: {e}") from e

        if signer.lower() not in message.lower():
            raise SessionError(f"Authentication message was not signed by its account ({signer})")

        claims = {
            "sub": signer,
            "capabilities": list(capabilities),
            "exp": int(expiration.timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=JWT_ALGORITHM)

    def _verify_credential(self, credential: SessionCredential) -> Dict[str, Any]:
        try:
            return jwt.decode(credential.token, self._secret, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError as e:
            raise SessionError("Session credential has expired") from e
        except jwt.InvalidTokenError as e:
            raise SessionError(f"Session credential rejected: {e}") from e

    # Execution

    def _run_copy(self, code, program_address: str, params: Dict[str, Any],
                  capabilities: List[str], registry: RunOnceRegistry) -> Tuple[bool, Optional[str], str]:
        actions = LocalActions(self, program_address, capabilities, registry)
        namespace = {
            "__name__": "__oraclekit_program__",
            "actions": actions,
            "params": dict(params),
            "print": actions.log,
        }
        try:
            exec(code, namespace)
        except Exception as e:
            return False, f"{type(e).__name__}: {e}", "\n".join(actions.logs)
        return True, actions.response, "\n".join(actions.logs)

    def execute(
        self,
        program_text: str,
        params: Dict[str, Any],
        credential: SessionCredential,
    ) -> ExecutionResponse:
        self._require_ready()
        claims = self._verify_credential(credential)
        capabilities = claims.get("capabilities", [])
        if CAPABILITY_PROGRAM_EXECUTION not in capabilities:
            raise SessionError("Session does not grant program execution")

        program_address = compute_cid(program_text)
        try:
            code = compile(program_text, f"<program {program_address}>", "exec")
        except SyntaxError as e:
            return ExecutionResponse(success=False, error=f"SyntaxError: {e}")

        registry = RunOnceRegistry()
        with self._lock:
            self.execution_count += 1

        with ThreadPoolExecutor(max_workers=self.redundancy) as pool:
            futures = [
                pool.submit(self._run_copy, code, program_address, params, capabilities, registry)
                for _ in range(self.redundancy)
            ]
            outcomes = [future.result() for future in futures]

        logs = next((o[2] for o in outcomes if o[2]), "")
        failures = [o for o in outcomes if not o[0]]
        if failures:
            self.logger.warning(f"Program {program_address[:10]}… failed on {len(failures)} node(s)")
            return ExecutionResponse(success=False, error=failures[0][1], logs=logs)

        responses = {o[1] for o in outcomes}
        if len(responses) != 1:
            return ExecutionResponse(success=False, error="Nodes returned different responses", logs=logs)

        return ExecutionResponse(success=True, response=responses.pop(), logs=logs)

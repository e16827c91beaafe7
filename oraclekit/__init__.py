"""
Threshold Oracle Kit - publish off-chain data to contracts through
threshold-signed programs.
"""
from .version import __version__
from .abi import FunctionDescriptor
from .cid import compute_cid
from .client import OracleKit
from .compiler import compile_program
from .exceptions import (
    OracleKitError,
    ConfigurationError,
    AbiError,
    ExecutionError,
    ChainStateError,
    SigningError,
    FundingError,
    MintError,
    SessionError,
    NetworkError,
    NetworkResponseError,
    BindingConflictError,
    StoreError,
)
from .models import ExecutionResult, Program, SigningKeyBinding
from .network import LocalNetwork, HttpNetwork
from .store import FileStore, MemoryStore

__all__ = [
    "__version__",
    "OracleKit",
    "FunctionDescriptor",
    "compile_program",
    "compute_cid",
    "ExecutionResult",
    "Program",
    "SigningKeyBinding",
    "LocalNetwork",
    "HttpNetwork",
    "FileStore",
    "MemoryStore",
    "OracleKitError",
    "ConfigurationError",
    "AbiError",
    "ExecutionError",
    "ChainStateError",
    "SigningError",
    "FundingError",
    "MintError",
    "SessionError",
    "NetworkError",
    "NetworkResponseError",
    "BindingConflictError",
    "StoreError",
]

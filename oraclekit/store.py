"""
Local cache of program text and key bindings.

Two namespaces, both keyed by content address:
    programs[content_address] -> program text (audit archive)
    bindings[content_address] -> SigningKeyBinding (idempotence cache)

Stores are passed explicitly to the components that use them.
"""
import json
import logging
import os
import stat
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import portalocker

from .config import DEFAULT_STORE_PATH, ENV_STORE_PATH
from .exceptions import BindingConflictError, StoreError
from .models import Program, SigningKeyBinding

logger = logging.getLogger(__name__)


class OracleStore(ABC):
    """Interface for program and binding storage"""

    @abstractmethod
    def get_program(self, content_address: str) -> Optional[str]:
        """Return archived program text, or None"""
        pass

    @abstractmethod
    def put_program(self, program: Program) -> None:
        """Archive program text under its content address"""
        pass

    @abstractmethod
    def get_binding(self, content_address: str) -> Optional[SigningKeyBinding]:
        """Return the key binding for a program, or None"""
        pass

    @abstractmethod
    def put_binding(self, binding: SigningKeyBinding) -> None:
        """
        Record a new key binding.

        Raises:
            BindingConflictError: If a different binding exists for the program
        """
        pass

    @abstractmethod
    def list_bindings(self) -> List[SigningKeyBinding]:
        pass


def _check_conflict(existing: Optional[Dict[str, Any]], binding: SigningKeyBinding) -> bool:
    """Return True if the binding is already stored, raise if a different one is"""
    if existing is None:
        return False
    if SigningKeyBinding.model_validate(existing) == binding:
        return True
    raise BindingConflictError(
        f"Program {binding.bound_program} is already bound to key {existing.get('mintId')}"
    )


class MemoryStore(OracleStore):
    """In-process store, mostly for tests and one-shot scripts"""

    def __init__(self):
        self._programs: Dict[str, str] = {}
        self._bindings: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.RLock()

    def get_program(self, content_address: str) -> Optional[str]:
        with self._lock:
            return self._programs.get(content_address)

    def put_program(self, program: Program) -> None:
        with self._lock:
            self._programs.setdefault(program.content_address, program.text)

    def get_binding(self, content_address: str) -> Optional[SigningKeyBinding]:
        with self._lock:
            data = self._bindings.get(content_address)
        return SigningKeyBinding.model_validate(data) if data else None

    def put_binding(self, binding: SigningKeyBinding) -> None:
        with self._lock:
            if _check_conflict(self._bindings.get(binding.bound_program), binding):
                return
            self._bindings[binding.bound_program] = binding.model_dump(by_alias=True)

    def list_bindings(self) -> List[SigningKeyBinding]:
        with self._lock:
            return [SigningKeyBinding.model_validate(b) for b in self._bindings.values()]


class JsonFile:
    """
    JSON document on disk guarded by an inter-process file lock.

    Writes go to a temporary file in the same directory which then replaces
    the document, so readers never see a partial write. A document that
    can't be parsed raises StoreError and is never overwritten.

    Args:
        path: Document path
        empty: Returns the content of a new document
    """

    def __init__(self, path: Union[str, Path], empty: Callable[[], Dict[str, Any]]):
        self.path = Path(os.path.expanduser(str(path)))
        self.empty = empty
        self._ensure_file()

    def _ensure_file(self):
        directory = self.path.parent
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            if os.name == "posix":
                os.chmod(directory, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR)  # 0700

        with self._lock():
            if not self.path.exists():
                self._write_unlocked(self.empty())

    @property
    def lock_path(self) -> str:
        return str(self.path) + ".lock"

    def _lock(self) -> portalocker.Lock:
        return portalocker.Lock(self.lock_path, timeout=10)

    def _read_unlocked(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return self.empty()
        except json.JSONDecodeError as e:
            logger.error(f"Store file {self.path} is corrupt: {e}")
            raise StoreError(f"Store file {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"Store file {self.path} does not hold a JSON object")
        for key, value in self.empty().items():
            data.setdefault(key, value)
        return data

    def _write_unlocked(self, data: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=self.path.name + ".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            if os.name == "posix":
                os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def read(self) -> Dict[str, Any]:
        """Read the whole document under the lock"""
        with self._lock():
            return self._read_unlocked()

    def update(self, mutate: Callable[[Dict[str, Any]], bool]) -> None:
        """
        Read, mutate and write under one lock.

        Args:
            mutate: Changes the document in place; returns False to skip the write
        """
        with self._lock():
            data = self._read_unlocked()
            if mutate(data):
                self._write_unlocked(data)


class FileStore(OracleStore):
    """JSON file store guarded by an inter-process file lock"""

    def __init__(self, store_path: Optional[str] = None):
        """
        Initialize the file store.

        Args:
            store_path: Optional custom path; defaults to ORACLE_KIT_STORE_PATH
                or ~/.oraclekit/store.json
        """
        path = store_path or os.environ.get(ENV_STORE_PATH, DEFAULT_STORE_PATH)
        self._file = JsonFile(path, lambda: {"programs": {}, "bindings": {}})
        self.store_path = self._file.path

    def read(self) -> Dict[str, Any]:
        """Read the whole store under the lock"""
        return self._file.read()

    def get_program(self, content_address: str) -> Optional[str]:
        return self.read()["programs"].get(content_address)

    def put_program(self, program: Program) -> None:
        def mutate(data: Dict[str, Any]) -> bool:
            if program.content_address in data["programs"]:
                return False
            data["programs"][program.content_address] = program.text
            return True

        self._file.update(mutate)

    def get_binding(self, content_address: str) -> Optional[SigningKeyBinding]:
        data = self.read()["bindings"].get(content_address)
        return SigningKeyBinding.model_validate(data) if data else None

    def put_binding(self, binding: SigningKeyBinding) -> None:
        def mutate(data: Dict[str, Any]) -> bool:
            if _check_conflict(data["bindings"].get(binding.bound_program), binding):
                return False
            data["bindings"][binding.bound_program] = binding.model_dump(by_alias=True)
            return True

        self._file.update(mutate)
        logger.debug(f"Stored binding for program {binding.bound_program[:10]}…")

    def list_bindings(self) -> List[SigningKeyBinding]:
        return [SigningKeyBinding.model_validate(b) for b in self.read()["bindings"].values()]

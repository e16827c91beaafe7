"""
Tests for program and binding stores.
"""
import json
import os
import stat
import threading
from unittest.mock import patch

import pytest

from oraclekit.exceptions import BindingConflictError, StoreError
from oraclekit.models import Program, SigningKeyBinding
from oraclekit.store import FileStore, MemoryStore

PROGRAM = Program(text="return [1]", content_address="QmProgramA")

BINDING = SigningKeyBinding(
    public_key="0x04" + "11" * 64,
    derived_address="0x1234567890123456789012345678901234567890",
    mint_id="42",
    bound_program="QmProgramA",
)


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return FileStore(str(tmp_path / "store.json"))


class TestStores:

    def test_missing_entries(self, any_store):
        assert any_store.get_program("QmNothing") is None
        assert any_store.get_binding("QmNothing") is None
        assert any_store.list_bindings() == []

    def test_program_archive(self, any_store):
        any_store.put_program(PROGRAM)
        assert any_store.get_program("QmProgramA") == "return [1]"

    def test_binding_round_trip(self, any_store):
        any_store.put_binding(BINDING)
        assert any_store.get_binding("QmProgramA") == BINDING
        assert any_store.list_bindings() == [BINDING]

    def test_identical_binding_is_idempotent(self, any_store):
        any_store.put_binding(BINDING)
        any_store.put_binding(BINDING)
        assert any_store.list_bindings() == [BINDING]

    def test_conflicting_binding_is_rejected(self, any_store):
        any_store.put_binding(BINDING)
        other = BINDING.model_copy(update={"mint_id": "43"})
        with pytest.raises(BindingConflictError):
            any_store.put_binding(other)
        assert any_store.get_binding("QmProgramA").mint_id == "42"


class TestFileStore:

    def test_layout_uses_json_aliases(self, tmp_path):
        path = tmp_path / "store.json"
        store = FileStore(str(path))
        store.put_program(PROGRAM)
        store.put_binding(BINDING)

        data = json.loads(path.read_text())
        assert data["programs"] == {"QmProgramA": "return [1]"}
        assert data["bindings"]["QmProgramA"]["mintId"] == "42"
        assert data["bindings"]["QmProgramA"]["derivedAddress"] == BINDING.derived_address

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "store.json")
        FileStore(path).put_binding(BINDING)
        assert FileStore(path).get_binding("QmProgramA") == BINDING

    def test_creates_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "store.json"
        FileStore(str(path))
        assert path.exists()

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions only")
    def test_file_permissions(self, tmp_path):
        path = tmp_path / "store.json"
        FileStore(str(path))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_env_path(self, tmp_path, monkeypatch):
        path = tmp_path / "env-store.json"
        monkeypatch.setenv("ORACLE_KIT_STORE_PATH", str(path))
        FileStore()
        assert path.exists()

    def test_corrupt_file_raises_and_is_left_untouched(self, tmp_path):
        path = tmp_path / "store.json"
        FileStore(str(path)).put_binding(BINDING)
        truncated = path.read_text()[:40]
        path.write_text(truncated)

        store = FileStore(str(path))
        with pytest.raises(StoreError):
            store.get_binding("QmProgramA")
        with pytest.raises(StoreError):
            store.put_program(PROGRAM)
        assert path.read_text() == truncated

    def test_failed_write_keeps_previous_content(self, tmp_path):
        path = tmp_path / "store.json"
        store = FileStore(str(path))
        store.put_binding(BINDING)
        before = path.read_text()

        with patch("oraclekit.store.json.dump", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.put_program(PROGRAM)

        assert path.read_text() == before
        assert not list(tmp_path.glob("*.tmp"))

    def test_concurrent_writers_do_not_lose_programs(self, tmp_path):
        path = str(tmp_path / "store.json")

        def writer(index):
            FileStore(path).put_program(Program(text=f"return [{index}]", content_address=f"Qm{index}"))

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        programs = FileStore(path).read()["programs"]
        assert len(programs) == 8

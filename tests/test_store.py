"""Tests for record stores."""

from datetime import datetime
from pathlib import Path
from unittest import mock

import pytest

from rpiemu.core.store import FileStore, MemoryStore
from rpiemu.errors import WriteRaceError


@pytest.fixture(params=["file", "memory"])
def any_store(request, tmp_path: Path):
    """Both store implementations behind the same interface."""
    if request.param == "file":
        return FileStore(tmp_path / "state")
    return MemoryStore()


class TestStoreSemantics:
    """Behaviour shared by every store."""

    def test_read_missing_returns_none(self, any_store) -> None:
        """Reading an unknown key gives None."""
        assert any_store.read("ports", "port_2222") is None

    def test_write_then_read(self, any_store) -> None:
        """Written data is returned unchanged."""
        any_store.write("instances", "a", '{"x": 1}')
        assert any_store.read("instances", "a") == '{"x": 1}'

    def test_write_replaces(self, any_store) -> None:
        """A second write replaces the record."""
        any_store.write("instances", "a", "one")
        any_store.write("instances", "a", "two")
        assert any_store.read("instances", "a") == "two"

    def test_create_is_exclusive(self, any_store) -> None:
        """create only succeeds for the first caller."""
        assert any_store.create("ports", "port_2222", "first") is True
        assert any_store.create("ports", "port_2222", "second") is False
        assert any_store.read("ports", "port_2222") == "first"

    def test_delete(self, any_store) -> None:
        """delete reports whether a record was removed."""
        any_store.write("ports", "port_2222", "x")
        assert any_store.delete("ports", "port_2222") is True
        assert any_store.delete("ports", "port_2222") is False
        assert any_store.read("ports", "port_2222") is None

    def test_keys_are_sorted_and_namespaced(self, any_store) -> None:
        """keys lists one namespace only, sorted."""
        any_store.write("ports", "port_2223", "x")
        any_store.write("ports", "port_2222", "x")
        any_store.write("instances", "other", "x")
        assert any_store.keys("ports") == ["port_2222", "port_2223"]
        assert any_store.keys("instances") == ["other"]
        assert any_store.keys("empty") == []

    def test_modified_at(self, any_store) -> None:
        """modified_at is recent for existing records and None otherwise."""
        assert any_store.modified_at("ports", "port_2222") is None
        any_store.write("ports", "port_2222", "x")
        modified = any_store.modified_at("ports", "port_2222")
        assert modified is not None
        assert abs((datetime.now() - modified).total_seconds()) < 60

    def test_mutex_is_exclusive(self, any_store) -> None:
        """A held mutex is reported busy to a second taker."""
        with any_store.mutex("ports", "port_2222") as held:
            assert held is True
            with any_store.mutex("ports", "port_2222") as second:
                assert second is False
            with any_store.mutex("ports", "port_2223") as other_key:
                assert other_key is True
        with any_store.mutex("ports", "port_2222") as again:
            assert again is True


class TestFileStore:
    """FileStore specifics."""

    def test_layout_one_file_per_record(self, tmp_path: Path) -> None:
        """Records are JSON files under their namespace directory."""
        store = FileStore(tmp_path)
        store.write("instances", "debian_1", "{}")
        assert (tmp_path / "instances" / "debian_1.json").read_text() == "{}"

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        """write and create clean up their temporary files."""
        store = FileStore(tmp_path)
        store.write("ports", "port_2222", "a")
        store.create("ports", "port_2222", "b")
        store.create("ports", "port_2223", "c")
        leftovers = [p.name for p in (tmp_path / "ports").iterdir() if p.suffix == ".tmp"]
        assert leftovers == []

    def test_mutex_files_are_not_keys(self, tmp_path: Path) -> None:
        """Mutex sidecar files do not show up as records."""
        store = FileStore(tmp_path)
        with store.mutex("ports", "port_2222"):
            pass
        assert store.keys("ports") == []

    def test_write_race_raises(self, tmp_path: Path) -> None:
        """A vanished temporary file surfaces as WriteRaceError."""
        store = FileStore(tmp_path)
        with (
            mock.patch("rpiemu.core.store.os.replace", side_effect=FileNotFoundError),
            pytest.raises(WriteRaceError),
        ):
            store.write("instances", "a", "x")

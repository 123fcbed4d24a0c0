"""Tests for patching entries to external payloads."""

import pytest

from builders import create_entry, create_rdb
from rdb_tool.errors import FormatError, PatchIOError, UnsupportedEntryType
from rdb_tool.ktid import KTID
from rdb_tool.rdb.container import Rdb
from rdb_tool.rdb.header import RdbFlags
from rdb_tool.rdb.patch import (
    PatchMode,
    PatchStatus,
    build_sidecar,
    externalize,
    patch_directory,
    patch_file,
    patch_rdb,
    read_sidecar,
    resolve_data_dir,
    resolve_ktid,
)

MODEL_KTID = KTID.from_path("model.g1m").value


def sample_rdb(entry_type: int = 8) -> bytes:
    return create_rdb(
        create_entry(0x0A696242, name=b"chara.g1m@1a", unk_content=b"\xAA" * 8, entry_type=entry_type,
                     flags=RdbFlags.INTERNAL | RdbFlags.ZLIB_COMPRESSED | RdbFlags.LZ4_COMPRESSED),
        create_entry(MODEL_KTID, name=b"model.g1m", entry_type=0, flags=RdbFlags.INTERNAL),
        create_entry(0x12345678, name=b"untouched@ff", entry_type=1, flags=RdbFlags.INTERNAL),
    )


class TestResolveKtid:
    """Tests for mapping payload file names to KTIDs."""

    def test_hex_name(self):
        assert resolve_ktid("0x0a696242.file") == KTID(0x0A696242)

    def test_hex_name_without_suffix(self):
        assert resolve_ktid("0x0a696242") == KTID(0x0A696242)

    def test_resource_name_is_hashed(self):
        assert resolve_ktid("model.g1m") == KTID(0x6CFD63BF)

    def test_hex_name_with_other_extension(self):
        assert resolve_ktid("0x0a696242.g1m") == KTID(0x0A696242)
        assert resolve_ktid("0x0a696242.file.bak") == KTID(0x0A696242)

    def test_bad_hex_name(self):
        with pytest.raises(ValueError, match="Not a KTID"):
            resolve_ktid("0xnothex.file")


class TestNameMarkerPatch:
    """Tests for rewriting the @size name marker."""

    def test_patch_entry(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb())
        payload = tmp_path / "0x0a696242.file"
        payload.write_bytes(b"\x01" * 0x200)

        result = patch_file(rdb, payload)

        entry = rdb.entries[0]
        assert result.status is PatchStatus.PATCHED
        assert result.payload_size == 0x200
        assert entry.flags.external
        assert not entry.flags.internal
        assert not entry.flags.zlib_compressed
        assert not entry.flags.lz4_compressed
        assert entry.name == b"chara.g1m@200"
        assert entry.file_size == 0x200
        assert entry.entry_size == 0x30 + 8 + len(b"chara.g1m@200")
        assert entry.unk_content == b"\xAA" * 8

    def test_payload_file_is_not_modified(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb())
        payload = tmp_path / "0x0a696242.file"
        payload.write_bytes(b"payload")

        patch_file(rdb, payload)
        assert payload.read_bytes() == b"payload"

    def test_not_found(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb())
        payload = tmp_path / "0xffffffff.file"
        payload.write_bytes(b"x")

        result = patch_file(rdb, payload)
        assert result.status is PatchStatus.NOT_FOUND
        assert not result.ok
        assert Rdb.from_bytes(sample_rdb()).entries == rdb.entries

    def test_empty_payload_still_applies(self, tmp_path, caplog):
        rdb = Rdb.from_bytes(sample_rdb())
        payload = tmp_path / "0x0a696242.file"
        payload.write_bytes(b"")

        result = patch_file(rdb, payload)

        assert result.status is PatchStatus.PATCHED
        assert rdb.entries[0].name == b"chara.g1m@0"
        assert "empty" in caplog.text

    def test_idempotent(self, tmp_path):
        payload = tmp_path / "0x0a696242.file"
        payload.write_bytes(b"\x01" * 0x30)

        once = Rdb.from_bytes(sample_rdb())
        patch_file(once, payload)
        twice = Rdb.from_bytes(sample_rdb())
        patch_file(twice, payload)
        patch_file(twice, payload)

        assert once.to_bytes() == twice.to_bytes()

    def test_missing_payload_is_fatal(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb())
        with pytest.raises(PatchIOError):
            externalize(rdb.entries[0], tmp_path / "0x0a696242.file")


class TestSidecarPatch:
    """Tests for materializing IDRK sidecar files."""

    def test_build_sidecar_layout(self):
        entry = Rdb.from_bytes(sample_rdb(entry_type=8)).entries[0]
        data = build_sidecar(entry, b"\x55" * 100)

        assert data[:4] == b"IDRK"
        assert len(data) == 4 + 0x58 + 100
        assert data.endswith(b"\x55" * 100)

        sidecar, payload = read_sidecar(data)
        assert payload == b"\x55" * 100
        assert sidecar.entry_size == 0x58 + 100
        assert sidecar.file_size == 100
        assert sidecar.string_size == 100
        assert sidecar.flags == 0
        assert sidecar.file_ktid == 0x0A696242
        assert sidecar.entry_type == 8

    def test_read_sidecar_bad_magic(self):
        with pytest.raises(FormatError):
            read_sidecar(b"NOPE" + b"\x00" * 0x40)

    def test_patch_entry(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb(entry_type=8))
        payload = tmp_path / "0x0a696242.file"
        payload.write_bytes(b"\x55" * 100)

        result = patch_file(rdb, payload, PatchMode.SIDECAR)

        entry = rdb.entries[0]
        assert result.status is PatchStatus.PATCHED
        assert entry.name == b""
        assert entry.string_size == 0
        assert entry.entry_size == 0x30 + 8
        assert entry.file_size == 100
        assert entry.flags.external
        assert not entry.flags.internal

        data = payload.read_bytes()
        assert data[:4] == b"IDRK"
        assert len(data) == 4 + 0x58 + 100

    def test_already_patched(self, tmp_path):
        payload = tmp_path / "0x0a696242.file"
        payload.write_bytes(b"\x55" * 100)

        first = Rdb.from_bytes(sample_rdb())
        patch_file(first, payload, PatchMode.SIDECAR)
        sidecar = payload.read_bytes()

        second = Rdb.from_bytes(sample_rdb())
        result = patch_file(second, payload, PatchMode.SIDECAR)

        assert result.status is PatchStatus.ALREADY_PATCHED
        assert payload.read_bytes() == sidecar
        assert second.to_bytes() == first.to_bytes()

    def test_sidecar_of_another_entry(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb())
        payload = tmp_path / "0x0a696242.file"
        stale = build_sidecar(rdb.entries[2], b"\x55" * 100)
        payload.write_bytes(stale)

        with pytest.raises(FormatError, match="0x12345678"):
            patch_file(rdb, payload, PatchMode.SIDECAR)

        assert rdb.entries[0].name == b"chara.g1m@1a"
        assert rdb.entries[0].flags.internal
        assert payload.read_bytes() == stale

    def test_unsupported_entry_type(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb(entry_type=99))
        payload = tmp_path / "0x0a696242.file"
        payload.write_bytes(b"\x55" * 100)

        with pytest.raises(UnsupportedEntryType):
            patch_file(rdb, payload, PatchMode.SIDECAR)

        # Neither the entry nor the payload were touched
        assert rdb.entries[0].name == b"chara.g1m@1a"
        assert payload.read_bytes() == b"\x55" * 100


class TestPatchDirectory:
    """Tests for patching from a payload directory."""

    def make_data_dir(self, tmp_path):
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "0x0a696242.file").write_bytes(b"\x01" * 0x40)
        (data_dir / "model.g1m").write_bytes(b"\x02" * 8)
        (data_dir / "0xdeadbeef.file").write_bytes(b"\x03")
        (data_dir / "README").write_bytes(b"not a payload")
        (data_dir / "nested").mkdir()
        (data_dir / "nested" / "0x12345678.file").write_bytes(b"\x04")
        return data_dir

    def test_patch_directory(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb())
        results = list(patch_directory(rdb, self.make_data_dir(tmp_path)))

        statuses = {r.filename: r.status for r in results}
        assert statuses == {
            "0x0a696242.file": PatchStatus.PATCHED,
            "0xdeadbeef.file": PatchStatus.NOT_FOUND,
            "model.g1m": PatchStatus.PATCHED,
        }
        assert rdb.entries[0].name == b"chara.g1m@40"
        assert rdb.entries[1].file_size == 8
        assert rdb.entries[1].flags.external
        # Subdirectories are not searched
        assert rdb.entries[2].name == b"untouched@ff"
        assert rdb.entries[2].flags.internal

    def test_missing_directory(self, tmp_path):
        rdb = Rdb.from_bytes(sample_rdb())
        with pytest.raises(PatchIOError, match="Couldn't find"):
            list(patch_directory(rdb, tmp_path / "missing"))

    def test_resolve_data_dir(self, tmp_path):
        rdb_path = tmp_path / "game" / "system.rdb"
        assert resolve_data_dir(rdb_path, "data") == tmp_path.resolve() / "game" / "data"
        assert resolve_data_dir(rdb_path, tmp_path / "elsewhere") == tmp_path / "elsewhere"


class TestPatchRdb:
    """Tests for the whole patch run."""

    def test_patch_rdb(self, tmp_path):
        rdb_path = tmp_path / "system.rdb"
        rdb_path.write_bytes(sample_rdb())
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "0x0a696242.file").write_bytes(b"\x01" * 0x10)
        out_path = tmp_path / "patched.rdb"

        results = patch_rdb(rdb_path, out_path)

        assert [r.status for r in results] == [PatchStatus.PATCHED]
        assert rdb_path.read_bytes() == sample_rdb()
        patched = Rdb.from_file(out_path)
        assert patched.entries[0].name == b"chara.g1m@10"
        assert patched.entries[0].flags.external

    def test_overwrites_input_by_default(self, tmp_path):
        rdb_path = tmp_path / "system.rdb"
        rdb_path.write_bytes(sample_rdb())
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "model.g1m").write_bytes(b"\x02" * 3)

        patch_rdb(rdb_path)
        assert Rdb.from_file(rdb_path).entries[1].file_size == 3

    def test_fatal_error_writes_nothing(self, tmp_path):
        rdb_path = tmp_path / "system.rdb"
        rdb_path.write_bytes(sample_rdb(entry_type=99))
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "0x0a696242.file").write_bytes(b"\x01" * 0x10)
        out_path = tmp_path / "patched.rdb"

        with pytest.raises(UnsupportedEntryType):
            patch_rdb(rdb_path, out_path, mode=PatchMode.SIDECAR)
        assert not out_path.exists()

    def test_missing_data_dir_writes_nothing(self, tmp_path):
        rdb_path = tmp_path / "system.rdb"
        rdb_path.write_bytes(sample_rdb())
        out_path = tmp_path / "patched.rdb"

        with pytest.raises(PatchIOError):
            patch_rdb(rdb_path, out_path)
        assert not out_path.exists()

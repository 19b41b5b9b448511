"""Tests for examine command module."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from cascstore.__main__ import main

CKEY = b'\xA0' * 16
EKEY = b'\x0A' * 16
ENCODING_EKEY = b'\xEE' * 16
MANIFEST_NAME = "TactManifest/Win_SPWin_RCN_EExt.cmf"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep a user config file from leaking into CLI tests."""
    monkeypatch.setattr("cascstore.core.config.DEFAULT_CONFIG_FILE", tmp_path / "missing.json")


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


def run_json(runner: CliRunner, *args: str) -> dict:
    result = runner.invoke(main, ["--output", "json", "examine", *args])
    assert result.exit_code == 0, result.output
    return json.loads(result.output)


class TestExamineShmem:
    """Test the shmem command."""

    def test_json(self, runner, hello_store: Path) -> None:
        data = run_json(runner, "shmem", str(hello_store / "shmem"))
        assert data["data_path"] == "data"
        assert data["active_buckets"] == [0]
        assert data["versions"][0] == 1
        assert data["free_spaces"] == []

    def test_rich(self, runner, hello_store: Path) -> None:
        result = runner.invoke(main, ["examine", "shmem", str(hello_store / "shmem")])
        assert result.exit_code == 0
        assert "Shared Memory" in result.output

    def test_bad_block_type(self, runner, tmp_path, shmem_builder) -> None:
        path = tmp_path / "shmem"
        path.write_bytes(shmem_builder([0] * 16, block_type=5))
        result = runner.invoke(main, ["examine", "shmem", str(path)])
        assert result.exit_code == 1
        assert "UnsupportedFormat" in result.output

    def test_undecodable_data_path(self, runner, tmp_path, shmem_builder) -> None:
        raw = bytearray(shmem_builder([0] * 16, data_path="data"))
        raw[8] = 0xFF
        path = tmp_path / "shmem"
        path.write_bytes(bytes(raw))
        result = runner.invoke(main, ["examine", "shmem", str(path)])
        assert result.exit_code == 1
        assert "UnsupportedFormat" in result.output

    def test_missing_file(self, runner, tmp_path) -> None:
        result = runner.invoke(main, ["examine", "shmem", str(tmp_path / "nope")])
        assert result.exit_code == 1
        assert "Failed to read file" in result.output


class TestExamineIndex:
    """Test the index command."""

    def test_json(self, runner, hello_store: Path, blte_builder) -> None:
        data = run_json(runner, "index", str(hello_store / "0000000001.idx"))
        assert data["bucket"] == 0
        assert data["entry_count"] == 1
        entry = data["entries"][0]
        assert entry["key"] == "00" * 9
        assert entry["file"] == 0
        assert entry["offset"] == 0
        assert entry["length"] == 30 + len(blte_builder([('N', b"hello")]))

    def test_limit(self, runner, tmp_path, index_builder) -> None:
        records = [(bytes([i]) * 9, 0, i * 0x40, 0x40) for i in range(5)]
        path = tmp_path / "0100000002.idx"
        path.write_bytes(index_builder(records, bucket=1))
        data = run_json(runner, "index", str(path), "--limit", "2")
        assert data["entry_count"] == 5
        assert len(data["entries"]) == 2

    def test_corrupt_header(self, runner, tmp_path, index_builder) -> None:
        raw = bytearray(index_builder([(bytes(9), 0, 0, 0x40)], bucket=0))
        raw[9] ^= 0xFF
        path = tmp_path / "0000000001.idx"
        path.write_bytes(bytes(raw))
        result = runner.invoke(main, ["examine", "index", str(path)])
        assert result.exit_code == 1
        assert "IntegrityError" in result.output


class TestExamineBlte:
    """Test the blte command."""

    def test_json(self, runner, tmp_path, blte_builder) -> None:
        content = b"zlib " * 100
        path = tmp_path / "file.blte"
        path.write_bytes(blte_builder([('N', b"head"), ('Z', content)]))
        data = run_json(runner, "blte", str(path))
        assert data["chunk_count"] == 2
        assert data["decoded_size"] == 4 + len(content)
        assert data["decoded_md5"] == hashlib.md5(b"head" + content).hexdigest()
        assert [chunk["mode"] for chunk in data["chunks"]] == ['N', 'Z']

    def test_output_file(self, runner, tmp_path, blte_builder) -> None:
        path = tmp_path / "file.blte"
        path.write_bytes(blte_builder([('N', b"payload")], table=False))
        out = tmp_path / "out.bin"
        result = runner.invoke(main, ["examine", "blte", str(path), "-o", str(out)])
        assert result.exit_code == 0
        assert out.read_bytes() == b"payload"

    def test_unknown_mode(self, runner, tmp_path, blte_builder) -> None:
        path = tmp_path / "file.blte"
        path.write_bytes(blte_builder([('N', b"ok"), ('X', b"??")]))
        result = runner.invoke(main, ["examine", "blte", str(path)])
        assert result.exit_code == 1
        assert "UnknownEncodingMode" in result.output


class TestExamineEncoding:
    """Test the encoding command."""

    @pytest.fixture
    def encoding_bytes(self, encoding_builder) -> bytes:
        return encoding_builder(
            [(CKEY, [EKEY], 5)],
            [(EKEY, 0, 40)],
            ["n"],
        )

    def test_samples(self, runner, tmp_path, encoding_bytes) -> None:
        path = tmp_path / "encoding"
        path.write_bytes(encoding_bytes)
        data = run_json(runner, "encoding", str(path))
        assert data["content_keys"] == 1
        assert data["encoding_keys"] == 1
        assert data["especs"] == ["n"]
        assert data["sample_entries"][0]["content_key"] == CKEY.hex()

    def test_lookup_through_blte(self, runner, tmp_path, encoding_bytes, blte_builder) -> None:
        path = tmp_path / "encoding.blte"
        path.write_bytes(blte_builder([('Z', encoding_bytes)]))
        data = run_json(runner, "encoding", str(path), "--blte", "--lookup", CKEY.hex())
        assert data["lookup"]["encoding_keys"] == [EKEY.hex()]
        assert data["lookup"]["content_size"] == 5

    def test_lookup_unknown_key(self, runner, tmp_path, encoding_bytes) -> None:
        path = tmp_path / "encoding"
        path.write_bytes(encoding_bytes)
        result = runner.invoke(main, ["examine", "encoding", str(path), "-k", "ff" * 16])
        assert result.exit_code == 1
        assert "EntryNotFound" in result.output

    def test_invalid_lookup_key(self, runner, tmp_path, encoding_bytes) -> None:
        path = tmp_path / "encoding"
        path.write_bytes(encoding_bytes)
        result = runner.invoke(main, ["examine", "encoding", str(path), "-k", "xyz"])
        assert result.exit_code == 1
        assert "not a hex string" in result.output


class TestExamineGet:
    """Test the get command."""

    def test_by_encoding_key(self, runner, hello_store: Path) -> None:
        data = run_json(runner, "get", str(hello_store), "00" * 9)
        assert data["size"] == 5
        assert data["md5"] == hashlib.md5(b"hello").hexdigest()

    def test_output_file(self, runner, hello_store: Path, tmp_path) -> None:
        out = tmp_path / "hello.bin"
        result = runner.invoke(main, ["examine", "get", str(hello_store), "00" * 9, "-o", str(out)])
        assert result.exit_code == 0
        assert out.read_bytes() == b"hello"

    def test_missing_key(self, runner, hello_store: Path) -> None:
        result = runner.invoke(main, ["examine", "get", str(hello_store), "ff" * 9])
        assert result.exit_code == 1
        assert "EntryNotFound" in result.output

    def test_by_content_key(self, runner, store_builder, blte_builder, encoding_builder) -> None:
        encoding = encoding_builder([(CKEY, [EKEY], 5)], [(EKEY, 0, 40)], ["n"])
        store_builder.add(ENCODING_EKEY, blte_builder([('Z', encoding)]))
        store_builder.add(EKEY, blte_builder([('N', b"alpha")]), bucket=1)
        path = store_builder.write()
        data = run_json(runner, "get", str(path), CKEY.hex(), "--encoding", ENCODING_EKEY.hex())
        assert data["encoding_key"] == EKEY.hex()
        assert data["md5"] == hashlib.md5(b"alpha").hexdigest()


class TestExamineManifest:
    """Test the manifest command."""

    def test_json(self, runner, tmp_path, cmf_builder) -> None:
        path = tmp_path / "manifest.cmf"
        path.write_bytes(cmf_builder(
            MANIFEST_NAME,
            70000,
            entries=[(0, 1, 2)],
            assets=[(0x0C00000000000001, 128, 0, b'\x42' * 16)],
        ))
        data = run_json(runner, "manifest", str(path), "--name", MANIFEST_NAME)
        assert data["build_version"] == 70000
        assert data["entry_count"] == 1
        asset = data["assets"][0]
        assert asset["guid"] == "0C00000000000001"
        # Type bits 0xC00 reverse to 0x003
        assert asset["type"] == 4
        assert asset["md5"] == "42" * 16

    def test_bad_marker(self, runner, tmp_path, cmf_builder) -> None:
        path = tmp_path / "manifest.cmf"
        path.write_bytes(cmf_builder(MANIFEST_NAME, 1, [], [], marker=b"\x00xxx"))
        result = runner.invoke(main, ["examine", "manifest", str(path), "-n", MANIFEST_NAME])
        assert result.exit_code == 1
        assert "UnsupportedFormat" in result.output

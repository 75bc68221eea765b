"""Content hashing tests."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from mistakebook.state.hashing import HashComputer


def test_identical_bytes_hash_equal_regardless_of_name(tmp_path: Path) -> None:
    first = tmp_path / "first.png"
    second = tmp_path / "nested" / "renamed.jpg"
    second.parent.mkdir()
    first.write_bytes(b"\x89PNG same bytes")
    second.write_bytes(b"\x89PNG same bytes")

    hasher = HashComputer()

    assert hasher.compute(first) == hasher.compute(second)


def test_different_bytes_hash_differently(tmp_path: Path) -> None:
    first = tmp_path / "a.png"
    second = tmp_path / "b.png"
    first.write_bytes(b"one")
    second.write_bytes(b"two")

    hasher = HashComputer()

    assert hasher.compute(first) != hasher.compute(second)


def test_streaming_matches_sha256_digest(tmp_path: Path) -> None:
    payload = bytes(range(256)) * 50
    path = tmp_path / "blob.bin"
    path.write_bytes(payload)

    digest = HashComputer(chunk_size=7).compute(path)

    assert digest == hashlib.sha256(payload).hexdigest()


def test_invalid_chunk_size_rejected() -> None:
    with pytest.raises(ValueError):
        HashComputer(chunk_size=0)


def test_missing_file_raises_os_error(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        HashComputer().compute(tmp_path / "missing.png")

from pathlib import Path

import pytest

from loculus.core.errors import ValidationError
from loculus.core.files import read_text_file
from loculus.core.hashing import compute_bytes_digest, compute_file_digest, compute_text_digest
from loculus.core.ids import deterministic_uuid


def test_compute_bytes_digest_sha256() -> None:
    assert (
        compute_bytes_digest(b"abc")
        == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )


def test_file_and_text_digests_agree(tmp_path: Path) -> None:
    path = tmp_path / "doc.txt"
    path.write_text("grüße", encoding="utf-8")
    assert compute_file_digest(path, chunk_size=2) == compute_text_digest("grüße")


def test_deterministic_uuid_is_stable() -> None:
    assert deterministic_uuid("doc:chunk") == deterministic_uuid("doc:chunk")
    assert deterministic_uuid("doc:chunk") != deterministic_uuid("doc:other")


def test_read_text_file_errors(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        read_text_file(tmp_path / "missing.txt")

    binary = tmp_path / "blob.bin"
    binary.write_bytes(b"\xff\xfe\x00bad")
    with pytest.raises(ValidationError):
        read_text_file(binary)

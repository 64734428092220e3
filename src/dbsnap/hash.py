from __future__ import annotations

import hashlib
import typing

import dbsnap.errors

if typing.TYPE_CHECKING:
    import pathlib


def sha256_file(path: pathlib.Path) -> str:
    """
    Returns the hex digest of the SHA256 hash of the given file.
    """
    if not path.is_file():
        raise RuntimeError(f"{path} is not a regular file.")

    with path.open("rb") as f:
        return hashlib.file_digest(f, "sha256").hexdigest()


def verify_file(path: pathlib.Path, expected_sha256: str) -> None:
    """
    Re-hash a file as stored on disk and compare it against the checksum recorded for it.
    """
    if not path.is_file():
        raise dbsnap.errors.IntegrityError(f"Snapshot file {path} not found")

    actual_sha256 = sha256_file(path)
    if actual_sha256 != expected_sha256:
        raise dbsnap.errors.IntegrityError(
            f"Checksum mismatch for {path.name}: expected {expected_sha256}, got {actual_sha256}"
        )

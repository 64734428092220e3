from __future__ import annotations

import io
import threading
import typing

import pytest

import dbsnap.errors
import dbsnap.hash
import dbsnap.util

if typing.TYPE_CHECKING:
    import pathlib


def test_copy_stream_counts_bytes():
    # GIVEN: a source larger than one copy chunk
    payload = b"x" * (dbsnap.util.copy_chunk_size * 2 + 17)
    target = io.BytesIO()

    # WHEN: copying it
    copied = dbsnap.util.copy_stream(io.BytesIO(payload), target)

    # THEN: everything is copied
    assert copied == len(payload)
    assert target.getvalue() == payload


class TestPollUntil:
    def test_succeeds_on_first_check(self):
        checks: list[int] = []

        def check() -> bool:
            checks.append(1)
            return True

        assert dbsnap.util.poll_until(check, interval=10, timeout=0)
        assert len(checks) == 1

    def test_converges_after_retries(self):
        # GIVEN: a condition that holds on the third check
        results = iter([False, False, True])

        # WHEN: polling it
        # THEN: polling succeeds
        assert dbsnap.util.poll_until(lambda: next(results), interval=0.001, timeout=5)

    def test_times_out(self):
        # GIVEN: a condition that never holds
        checks: list[int] = []

        def check() -> bool:
            checks.append(1)
            return False

        # WHEN: polling it with a short deadline
        # THEN: polling gives up after checking at least once
        assert not dbsnap.util.poll_until(check, interval=0.01, timeout=0.05)
        assert len(checks) >= 1

    def test_cancel_interrupts_wait(self):
        # GIVEN: a cancel event set by the first check
        cancel = threading.Event()

        def check() -> bool:
            cancel.set()
            return False

        # WHEN: polling with a long interval
        # THEN: the wait is interrupted right away
        with pytest.raises(dbsnap.errors.OperationCancelledError):
            _ = dbsnap.util.poll_until(check, interval=60, timeout=120, cancel=cancel)

    def test_already_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(dbsnap.errors.OperationCancelledError):
            _ = dbsnap.util.poll_until(lambda: True, interval=1, timeout=1, cancel=cancel)


@pytest.mark.parametrize(
    ("size", "expected"),
    [
        (0, "0 B"),
        (1023, "1023 B"),
        (1024, "1.0 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (3 * 1024**3, "3.0 GB"),
        (2 * 1024**4, "2.0 TB"),
    ],
)
def test_format_size(size: int, expected: str):
    assert dbsnap.util.format_size(size) == expected


def test_verify_file(tmp_path: pathlib.Path):
    # GIVEN: a file and its checksum
    path = tmp_path / "artifact"
    _ = path.write_bytes(b"content")
    checksum = dbsnap.hash.sha256_file(path)

    # THEN: it verifies until its content changes
    dbsnap.hash.verify_file(path, checksum)
    _ = path.write_bytes(b"tampered")
    with pytest.raises(dbsnap.errors.IntegrityError, match="Checksum mismatch"):
        dbsnap.hash.verify_file(path, checksum)


def test_verify_missing_file(tmp_path: pathlib.Path):
    with pytest.raises(dbsnap.errors.IntegrityError, match="not found"):
        dbsnap.hash.verify_file(tmp_path / "missing", "00" * 32)

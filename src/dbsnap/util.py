from __future__ import annotations

import threading
import time
import typing

import dbsnap.errors

if typing.TYPE_CHECKING:
    import collections.abc
    import pathlib

copy_chunk_size = 1024 * 1024


class Readable(typing.Protocol):
    def read(self, size: int = -1, /) -> bytes: ...


class Writable(typing.Protocol):
    def write(self, data: bytes, /) -> int: ...


def ensure_path(path: pathlib.Path):
    """
    Ensure the given directory exists.
    """
    if not path.exists():
        path.mkdir(parents=True)
    elif not path.is_dir():
        raise RuntimeError(f"Unexpected: {path} is not a directory")


def copy_stream(source: Readable, target: Writable) -> int:
    """
    Copy everything from source to target in bounded chunks, returning the number of bytes copied.
    """
    copied = 0
    while True:
        chunk = source.read(copy_chunk_size)
        if not chunk:
            return copied
        _ = target.write(chunk)
        copied += len(chunk)


def poll_until(
    check: collections.abc.Callable[[], bool],
    *,
    interval: float,
    timeout: float,
    cancel: threading.Event | None = None,
) -> bool:
    """
    Call `check` every `interval` seconds until it returns True or `timeout` seconds have passed.

    `check` is always called at least once. Returns whether `check` succeeded before the deadline.
    Sleeping happens on `cancel`, so setting it interrupts the wait immediately and raises
    OperationCancelledError.
    """
    if cancel is None:
        cancel = threading.Event()

    deadline = time.monotonic() + timeout
    while True:
        if cancel.is_set():
            raise dbsnap.errors.OperationCancelledError("Operation cancelled while waiting")

        if check():
            return True

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False

        if cancel.wait(min(interval, remaining)):
            raise dbsnap.errors.OperationCancelledError("Operation cancelled while waiting")


def format_size(size: int) -> str:
    """
    Format a byte count using binary units, e.g. 1536 -> "1.5 KB".
    """
    unit = 1024
    if size < unit:
        return f"{size} B"

    div = unit
    exp = 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"

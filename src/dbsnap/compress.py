"""
Compressed snapshot artifacts with integrity checksums.

A snapshot artifact is a single file written under one of three modes: `none`, `gzip` or `zstd`.
The SHA256 recorded for an artifact is computed over the bytes as they are stored on disk, i.e.
over the compressed stream, so that a restore can verify the file before decompressing anything.
"""

from __future__ import annotations

import gzip
import hashlib
import os
import typing

import zstandard

if typing.TYPE_CHECKING:
    import pathlib

Compression = typing.Literal["none", "gzip", "zstd"]

compressions: tuple[Compression, ...] = typing.get_args(Compression)
default_compression: Compression = "zstd"


def is_valid_compression(value: str) -> typing.TypeGuard[Compression]:
    return value in compressions


def parse_compression(value: str) -> Compression:
    """
    Parse a user supplied compression name, rejecting anything that is not a known mode.
    """
    normalized = value.strip().lower()
    if not is_valid_compression(normalized):
        raise ValueError(f"Invalid compression type: {value} (must be: {', '.join(compressions)})")
    return normalized


class _Hasher(typing.Protocol):
    def update(self, data: bytes, /) -> None: ...

    def hexdigest(self) -> str: ...


class _HashingSink:
    """
    Fans writes out to the underlying file and a hash accumulator.
    """

    def __init__(self, file: typing.BinaryIO, hasher: _Hasher):
        self._file = file
        self._hasher = hasher

    def write(self, data: bytes) -> int:
        written = self._file.write(data)
        self._hasher.update(data)
        return written

    def flush(self) -> None:
        self._file.flush()

    def writable(self) -> bool:
        return True

    def close(self) -> None:
        # Closing the underlying file is the writer's job
        pass


class _ZstdStreamWriter:
    """
    Compresses writes into a single zstd frame.

    Closing always ends the frame, so an empty payload is still stored as a valid (empty) frame
    rather than as a zero-length file.
    """

    def __init__(self, sink: _HashingSink):
        self._sink = sink
        self._compressor = zstandard.ZstdCompressor().compressobj()

    def write(self, data: bytes) -> int:
        _ = self._sink.write(self._compressor.compress(data))
        return len(data)

    def close(self) -> None:
        _ = self._sink.write(self._compressor.flush(zstandard.COMPRESSOBJ_FLUSH_FINISH))


class CompressedWriter:
    """
    Writes a (possibly) compressed artifact while hashing the stored bytes.

    The compressor sits on top of the hashing fan-out, so what gets hashed is exactly what lands
    on disk. `close` must be called to flush the compressor; it returns the hex digest.
    """

    def __init__(self, path: pathlib.Path, compression: Compression):
        # Reject bad modes before touching the filesystem
        if not is_valid_compression(compression):
            raise ValueError(f"Invalid compression type: {compression}")

        self.path = path
        self.compression: Compression = compression
        self._hasher = hashlib.sha256()
        self._file = path.open("wb")
        self._sink = _HashingSink(self._file, self._hasher)
        self._closed = False

        self._compressor: typing.Any
        try:
            match compression:
                case "zstd":
                    self._compressor = _ZstdStreamWriter(self._sink)
                case "gzip":
                    # mtime=0 keeps identical payloads byte-identical on disk
                    self._compressor = gzip.GzipFile(fileobj=self._sink, mode="wb", mtime=0)
                case "none":
                    self._compressor = self._sink
        except BaseException:
            self._file.close()
            raise

    def write(self, data: bytes) -> int:
        return self._compressor.write(data)

    def writable(self) -> bool:
        return True

    def close(self) -> str:
        """
        Close the compressor, then sync and close the file. Returns the hex SHA256 of the file.

        The compressor has to be closed first: it buffers data and writes its trailer on close,
        so closing the file before it would truncate the archive.
        """
        if not self._closed:
            self._closed = True
            try:
                self._compressor.close()
            finally:
                try:
                    self._file.flush()
                    os.fsync(self._file.fileno())
                finally:
                    self._file.close()

        return self._hasher.hexdigest()

    def abort(self) -> None:
        """
        Close the writer and delete the partially written file.
        """
        try:
            _ = self.close()
        finally:
            self.path.unlink(missing_ok=True)

    def __enter__(self) -> CompressedWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        _ = self.close()


class CompressedReader:
    """
    Reads the logical (decompressed) content of an artifact.
    """

    def __init__(self, path: pathlib.Path, compression: Compression):
        if not is_valid_compression(compression):
            raise ValueError(f"Invalid compression type: {compression}")

        self.path = path
        self.compression: Compression = compression
        self._file = path.open("rb")
        self._closed = False

        self._decompressor: typing.Any
        try:
            match compression:
                case "zstd":
                    zstd_ctx = zstandard.ZstdDecompressor()
                    self._decompressor = zstd_ctx.stream_reader(self._file, closefd=False)
                case "gzip":
                    self._decompressor = gzip.GzipFile(fileobj=self._file, mode="rb")
                case "none":
                    self._decompressor = None
        except BaseException:
            self._file.close()
            raise

    def read(self, size: int = -1) -> bytes:
        if self._decompressor is None:
            return self._file.read(size)
        return self._decompressor.read(size)

    def readable(self) -> bool:
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._decompressor is not None:
                self._decompressor.close()
        finally:
            self._file.close()

    def __enter__(self) -> CompressedReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

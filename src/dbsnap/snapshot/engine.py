"""
Common machinery for database engines.

An engine knows how to capture one kind of database into a single artifact file and how to load
such an artifact back. Artifacts are always written to `<name>.tmp` first and renamed into place
once complete, so a snapshot directory never holds a partially written artifact under its final
name.
"""

from __future__ import annotations

import abc
import typing

import dbsnap.compress
import dbsnap.errors
import dbsnap.hash
import dbsnap.logging
import dbsnap.util
from dbsnap.models import manifest as manifest_models

if typing.TYPE_CHECKING:
    import collections.abc
    import pathlib
    import threading

    import dbsnap.docker
    from dbsnap.models import service as service_models

_compression_suffixes: dict[dbsnap.compress.Compression, str] = {
    "none": "",
    "gzip": ".gz",
    "zstd": ".zst",
}


def check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise dbsnap.errors.OperationCancelledError("Operation cancelled")


class Engine(abc.ABC):
    engine_type: typing.ClassVar[str]
    aliases: typing.ClassVar[frozenset[str]]
    file_prefix: typing.ClassVar[str]
    file_extension: typing.ClassVar[str]

    def __init__(self, docker: dbsnap.docker.DockerClient):
        self.docker = docker

    def can_handle(self, engine_name: str) -> bool:
        return engine_name in self.aliases

    def artifact_name(self, compression: dbsnap.compress.Compression) -> str:
        return f"{self.file_prefix}{self.file_extension}{_compression_suffixes[compression]}"

    @abc.abstractmethod
    def create(
        self,
        service: service_models.ServiceInfo,
        output_dir: pathlib.Path,
        compression: dbsnap.compress.Compression,
        note: str,
        tag: str,
        cancel: threading.Event | None = None,
    ) -> manifest_models.SnapshotManifest:
        """
        Capture the database into a single artifact under `output_dir`.

        The returned manifest lists the artifact as its only file. Persisting the manifest is up
        to the caller.
        """

    @abc.abstractmethod
    def restore(
        self,
        service: service_models.ServiceInfo,
        snapshot_dir: pathlib.Path,
        manifest: manifest_models.SnapshotManifest,
        force: bool,
        cancel: threading.Event | None = None,
    ) -> None:
        """
        Load the snapshot's primary artifact back into the database.

        `force` turns errors reported by the restore tooling into warnings.
        """

    def _new_manifest(
        self,
        service: service_models.ServiceInfo,
        compression: dbsnap.compress.Compression,
        note: str,
        tag: str,
    ) -> manifest_models.SnapshotManifest:
        return manifest_models.SnapshotManifest.new(
            service=service.name,
            engine=self.engine_type,
            image=service.image,
            tag=tag,
            note=note,
            compression=compression,
        )

    def _write_artifact(
        self,
        output_dir: pathlib.Path,
        compression: dbsnap.compress.Compression,
        produce: collections.abc.Callable[[dbsnap.compress.CompressedWriter], object],
    ) -> manifest_models.SnapshotFile:
        """
        Write an artifact through `produce` into a temporary file, then rename it into place.
        """
        name = self.artifact_name(compression)
        final_path = output_dir / name
        temp_path = output_dir / f"{name}.tmp"

        writer = dbsnap.compress.CompressedWriter(temp_path, compression)
        try:
            _ = produce(writer)
        except BaseException:
            writer.abort()
            raise

        try:
            checksum = writer.close()
            size = temp_path.stat().st_size
            _ = temp_path.rename(final_path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        dbsnap.logging.debug("Wrote %s (%d bytes, sha256 %s)", final_path, size, checksum)
        return manifest_models.SnapshotFile(name=name, sha256=checksum, size=size)

    def _capture_stream(
        self,
        service: service_models.ServiceInfo,
        cmd: list[str],
        writer: dbsnap.util.Writable,
        tool: str,
    ) -> int:
        """
        Stream the stdout of a dump command into `writer`. Returns the number of bytes captured.
        """
        with self.docker.exec_streaming(service.container, cmd) as stream:
            copied = dbsnap.util.copy_stream(stream, writer)

        if stream.returncode != 0:
            raise dbsnap.errors.ExecutionError(
                f"{tool} failed with exit code {stream.returncode}: {stream.stderr.strip()}"
            )
        return copied

    def _stream_restore(
        self,
        service: service_models.ServiceInfo,
        cmd: list[str],
        source: dbsnap.util.Readable,
    ) -> tuple[int, str]:
        """
        Stream `source` into a restore command. Returns its exit code and combined output.
        """
        with self.docker.exec_streaming(service.container, cmd, stdin=source) as stream:
            stdout = stream.read()

        assert stream.returncode is not None
        output = stdout.decode("utf-8", errors="replace") + stream.stderr
        return stream.returncode, output

    def _check_restore_output(
        self,
        tool: str,
        returncode: int,
        output: str,
        markers: collections.abc.Iterable[str],
        force: bool,
    ) -> None:
        if returncode == 0 and not any(marker in output for marker in markers):
            return

        if force:
            dbsnap.logging.warning(
                "%s reported problems (exit code %d), continuing as forced:\n%s",
                tool,
                returncode,
                output.strip(),
            )
            return

        raise dbsnap.errors.ExecutionError(
            f"{tool} failed with exit code {returncode}: {output.strip()}"
        )

    def _ensure_running(self, service: service_models.ServiceInfo) -> None:
        if not self.docker.is_running(service.container):
            raise dbsnap.errors.PreconditionError(f"Container {service.container} is not running")

    def _verified_main_file(
        self, snapshot_dir: pathlib.Path, manifest: manifest_models.SnapshotManifest
    ) -> pathlib.Path:
        main_file = manifest.main_file()
        main_path = snapshot_dir / main_file.name
        dbsnap.hash.verify_file(main_path, main_file.sha256)
        return main_path

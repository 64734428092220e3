from __future__ import annotations

import typing

import dbsnap.compress
import dbsnap.logging
from dbsnap.snapshot import engine

if typing.TYPE_CHECKING:
    import pathlib
    import threading

    from dbsnap.models import manifest as manifest_models
    from dbsnap.models import service as service_models


class PostgresEngine(engine.Engine):
    """
    Snapshots PostgreSQL with `pg_dump` in custom format and restores with `pg_restore`.
    """

    engine_type = "postgres"
    aliases = frozenset({"postgres", "postgresql"})
    file_prefix = "pg"
    file_extension = ".dump"

    error_markers = ("ERROR", "FATAL")

    def dump_command(self, service: service_models.ServiceInfo) -> list[str]:
        return [
            "pg_dump",
            "--format=custom",
            "--no-owner",
            "--no-privileges",
            "-U",
            service.user,
            "-d",
            service.database,
        ]

    def restore_command(self, service: service_models.ServiceInfo, force: bool) -> list[str]:
        cmd = [
            "pg_restore",
            "--clean",
            "--if-exists",
            "--no-owner",
            "-U",
            service.user,
            "-d",
            service.database,
        ]
        if force:
            cmd.append("--single-transaction")
        return cmd

    def create(
        self,
        service: service_models.ServiceInfo,
        output_dir: pathlib.Path,
        compression: dbsnap.compress.Compression,
        note: str,
        tag: str,
        cancel: threading.Event | None = None,
    ) -> manifest_models.SnapshotManifest:
        engine.check_cancelled(cancel)
        dbsnap.logging.info("Dumping PostgreSQL database %s of %s", service.database, service.name)

        manifest = self._new_manifest(service, compression, note, tag)
        snapshot_file = self._write_artifact(
            output_dir,
            compression,
            lambda writer: self._capture_stream(
                service, self.dump_command(service), writer, tool="pg_dump"
            ),
        )
        manifest.add_file(snapshot_file.name, snapshot_file.sha256, snapshot_file.size)
        return manifest

    def restore(
        self,
        service: service_models.ServiceInfo,
        snapshot_dir: pathlib.Path,
        manifest: manifest_models.SnapshotManifest,
        force: bool,
        cancel: threading.Event | None = None,
    ) -> None:
        engine.check_cancelled(cancel)
        snapshot_path = self._verified_main_file(snapshot_dir, manifest)
        self._ensure_running(service)

        dbsnap.logging.info(
            "Restoring PostgreSQL database %s of %s", service.database, service.name
        )
        with dbsnap.compress.CompressedReader(snapshot_path, manifest.compression_kind()) as reader:
            returncode, output = self._stream_restore(
                service, self.restore_command(service, force), reader
            )
        self._check_restore_output("pg_restore", returncode, output, self.error_markers, force)

from __future__ import annotations

import typing

import dbsnap.compress
import dbsnap.errors
import dbsnap.logging
from dbsnap.snapshot import engine

if typing.TYPE_CHECKING:
    import pathlib
    import threading

    from dbsnap.models import manifest as manifest_models
    from dbsnap.models import service as service_models


class MySQLEngine(engine.Engine):
    """
    Snapshots MySQL and MariaDB as plain SQL with `mysqldump` and replays it through `mysql`.
    """

    engine_type = "mysql"
    aliases = frozenset({"mysql", "mariadb"})
    file_prefix = "mysql"
    file_extension = ".sql"

    error_markers = ("ERROR",)

    def _client_args(self, service: service_models.ServiceInfo) -> list[str]:
        args = ["-u", service.user, "-h", "localhost"]
        if service.password != "":
            args.append(f"-p{service.password}")
        return args

    def dump_command(self, service: service_models.ServiceInfo) -> list[str]:
        return [
            "mysqldump",
            "--single-transaction",
            "--routines",
            "--triggers",
            "--events",
            "--complete-insert",
            "--extended-insert",
            "--default-character-set=utf8mb4",
            *self._client_args(service),
            service.database,
        ]

    def restore_command(self, service: service_models.ServiceInfo) -> list[str]:
        return ["mysql", *self._client_args(service), service.database]

    def recreate_database(self, service: service_models.ServiceInfo) -> None:
        """
        Drop the database and create it empty again.
        """
        database = service.database.replace("`", "``")
        statement = (
            f"DROP DATABASE IF EXISTS `{database}`; "
            f"CREATE DATABASE `{database}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;"
        )
        result = self.docker.exec(
            service.container, ["mysql", *self._client_args(service), "-e", statement]
        )
        if result.exit_code != 0:
            raise dbsnap.errors.ExecutionError(
                f"Failed to recreate database {service.database}: {result.stderr.strip()}"
            )

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
        dbsnap.logging.info("Dumping MySQL database %s of %s", service.database, service.name)

        manifest = self._new_manifest(service, compression, note, tag)
        snapshot_file = self._write_artifact(
            output_dir,
            compression,
            lambda writer: self._capture_stream(
                service, self.dump_command(service), writer, tool="mysqldump"
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

        if force:
            dbsnap.logging.info("Recreating MySQL database %s", service.database)
            self.recreate_database(service)

        dbsnap.logging.info("Restoring MySQL database %s of %s", service.database, service.name)
        with dbsnap.compress.CompressedReader(snapshot_path, manifest.compression_kind()) as reader:
            returncode, output = self._stream_restore(
                service, self.restore_command(service), reader
            )
        self._check_restore_output("mysql", returncode, output, self.error_markers, force)

from __future__ import annotations

import re
import typing

import dbsnap.compress
import dbsnap.errors
import dbsnap.logging
import dbsnap.util
from dbsnap.snapshot import engine

if typing.TYPE_CHECKING:
    import pathlib
    import threading

    import dbsnap.docker
    from dbsnap.models import manifest as manifest_models
    from dbsnap.models import service as service_models

mongo_host = "localhost:27017"

# mongorestore always ends with a summary like "0 document(s) failed to restore."
_benign_output = re.compile(r"\b0 document\(s\) failed to restore")


class MongoDBEngine(engine.Engine):
    """
    Snapshots MongoDB with `mongodump --archive --gzip` and restores with `mongorestore`.

    The archive is already gzipped by mongodump; the snapshot compression is applied on top.
    """

    engine_type = "mongo"
    aliases = frozenset({"mongo", "mongodb"})
    file_prefix = "mongo"
    file_extension = ".archive"

    error_markers = ("error", "failed")

    def __init__(
        self,
        docker: dbsnap.docker.DockerClient,
        ready_poll_interval: float = 1.0,
        ready_timeout: float = 30.0,
    ):
        super().__init__(docker)
        self.ready_poll_interval = ready_poll_interval
        self.ready_timeout = ready_timeout

    def _auth_args(self, service: service_models.ServiceInfo) -> list[str]:
        args: list[str] = []
        if service.user != "":
            args += ["--username", service.user]
        if service.password != "":
            args += ["--password", service.password]
        return args

    def dump_command(self, service: service_models.ServiceInfo) -> list[str]:
        return [
            "mongodump",
            "--host",
            mongo_host,
            "--db",
            service.database,
            "--archive",
            "--gzip",
            "--forceTableScan",
            "--readPreference=secondaryPreferred",
            *self._auth_args(service),
        ]

    def restore_command(self, service: service_models.ServiceInfo) -> list[str]:
        return [
            "mongorestore",
            "--host",
            mongo_host,
            "--db",
            service.database,
            "--archive",
            "--gzip",
            "--drop",
            "--stopOnError",
            *self._auth_args(service),
        ]

    def _mongosh(self, service: service_models.ServiceInfo, script: str) -> list[str]:
        return ["mongosh", "--host", mongo_host, "--eval", script, *self._auth_args(service)]

    def drop_database(self, service: service_models.ServiceInfo) -> None:
        database = service.database.replace("\\", "\\\\").replace("'", "\\'")
        script = f"db = db.getSiblingDB('{database}'); db.dropDatabase();"
        result = self.docker.exec(service.container, self._mongosh(service, script))
        if result.exit_code != 0:
            raise dbsnap.errors.ExecutionError(
                f"Failed to drop database {service.database}: {result.stderr.strip()}"
            )

    def wait_until_ready(
        self, service: service_models.ServiceInfo, cancel: threading.Event | None = None
    ) -> None:
        """
        Wait until mongod answers a ping.
        """

        def responds_to_ping() -> bool:
            result = self.docker.exec(
                service.container, self._mongosh(service, "db.adminCommand('ping')")
            )
            return result.exit_code == 0 and "ok" in result.stdout

        ready = dbsnap.util.poll_until(
            responds_to_ping,
            interval=self.ready_poll_interval,
            timeout=self.ready_timeout,
            cancel=cancel,
        )
        if not ready:
            raise dbsnap.errors.SnapshotTimeoutError(
                f"MongoDB in {service.container} not ready after {self.ready_timeout:g}s"
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
        dbsnap.logging.info("Dumping MongoDB database %s of %s", service.database, service.name)

        manifest = self._new_manifest(service, compression, note, tag)
        snapshot_file = self._write_artifact(
            output_dir,
            compression,
            lambda writer: self._capture_stream(
                service, self.dump_command(service), writer, tool="mongodump"
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
        self.wait_until_ready(service, cancel=cancel)

        if force:
            dbsnap.logging.info("Dropping MongoDB database %s", service.database)
            self.drop_database(service)

        dbsnap.logging.info("Restoring MongoDB database %s of %s", service.database, service.name)
        with dbsnap.compress.CompressedReader(snapshot_path, manifest.compression_kind()) as reader:
            returncode, output = self._stream_restore(
                service, self.restore_command(service), reader
            )
        self._check_restore_output(
            "mongorestore",
            returncode,
            _benign_output.sub("", output),
            self.error_markers,
            force,
        )

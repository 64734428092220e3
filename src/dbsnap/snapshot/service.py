from __future__ import annotations

import datetime
import shutil
import typing

import pydantic

import dbsnap.compress
import dbsnap.constants
import dbsnap.errors
import dbsnap.logging
import dbsnap.paths
import dbsnap.resolve
import dbsnap.util
from dbsnap.models import manifest as manifest_models
from dbsnap.snapshot import mongodb, mysql, postgres, redis

if typing.TYPE_CHECKING:
    import pathlib
    import threading

    import dbsnap.docker
    from dbsnap.models import config as config_models
    from dbsnap.models import service as service_models
    from dbsnap.snapshot import engine as engine_base


class CreateOptions(pydantic.BaseModel):
    tag: str = ""
    note: str = ""
    compression: str = dbsnap.compress.default_compression


class RestoreOptions(pydantic.BaseModel):
    tag: str = ""
    latest: bool = False
    before: datetime.datetime | None = None
    force: bool = False


class PruneOptions(pydantic.BaseModel):
    keep: int
    dry_run: bool = False


class PruneReport(pydantic.BaseModel):
    service: str
    dry_run: bool
    kept: list[manifest_models.SnapshotInfo] = pydantic.Field(default_factory=list)
    candidates: list[manifest_models.SnapshotInfo] = pydantic.Field(default_factory=list)
    removed: list[manifest_models.SnapshotInfo] = pydantic.Field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(snapshot.size for snapshot in self.candidates)


def default_engines(docker: dbsnap.docker.DockerClient) -> list[engine_base.Engine]:
    return [
        postgres.PostgresEngine(docker),
        mysql.MySQLEngine(docker),
        redis.RedisEngine(docker),
        mongodb.MongoDBEngine(docker),
    ]


class SnapshotService:
    """
    Creates, restores, lists and prunes snapshots of configured services.

    Snapshots of a service live in `<snapshots_root>/<service>/<timestamp>[-<tag>]/`, each with
    a `manifest.json` next to the artifact it describes.
    """

    def __init__(
        self,
        docker: dbsnap.docker.DockerClient,
        config: config_models.ProjectConfig | None,
        snapshots_root: pathlib.Path,
        engines: list[engine_base.Engine] | None = None,
    ):
        self.docker = docker
        self.config = config
        self.snapshots_root = snapshots_root

        if engines is None:
            engines = default_engines(docker)
        self.engines: dict[str, engine_base.Engine] = {}
        for engine in engines:
            for alias in engine.aliases:
                self.engines[alias] = engine

    def _resolve(
        self, service_name: str
    ) -> tuple[service_models.ServiceInfo, engine_base.Engine]:
        if self.config is None:
            raise dbsnap.errors.ResolutionError("No project config loaded")

        service = dbsnap.resolve.get_service_info(self.config, service_name)
        engine = self.engines.get(service.engine)
        if engine is None:
            raise dbsnap.errors.ResolutionError(f"Unsupported engine: {service.engine}")
        return service, engine

    def create(
        self,
        service_name: str,
        options: CreateOptions | None = None,
        cancel: threading.Event | None = None,
    ) -> manifest_models.SnapshotManifest:
        """
        Snapshot a running service and return the persisted manifest.

        The snapshot directory is removed again if anything fails after it was allocated.
        """
        if options is None:
            options = CreateOptions()

        service, engine = self._resolve(service_name)

        compression = options.compression.strip().lower()
        if not dbsnap.compress.is_valid_compression(compression):
            compression = dbsnap.compress.default_compression

        if not self.docker.is_running(service.container):
            raise dbsnap.errors.PreconditionError(f"Container {service.container} is not running")

        snapshot_dir = dbsnap.paths.generate_snapshot_dir(
            self.snapshots_root, service_name, options.tag
        )
        dbsnap.logging.info(
            "Creating %s snapshot of %s in %s (%s)",
            engine.engine_type,
            service_name,
            snapshot_dir,
            compression,
        )

        try:
            manifest = engine.create(
                service,
                snapshot_dir,
                compression,
                note=options.note,
                tag=options.tag,
                cancel=cancel,
            )
            manifest.validate_complete()
            manifest.write_to_file(snapshot_dir / dbsnap.constants.manifest_file_name)
        except BaseException:
            shutil.rmtree(snapshot_dir, ignore_errors=True)
            raise

        dbsnap.logging.info("Snapshot of %s created in %s", service_name, snapshot_dir)
        return manifest

    def select_snapshot(
        self, service_name: str, options: RestoreOptions
    ) -> manifest_models.SnapshotInfo:
        """
        Pick the snapshot to restore: by exact tag, else the latest one, else the newest one
        created strictly before `options.before`. Without any of those, the latest one.
        """
        snapshots = self.list_snapshots(service_name)
        if len(snapshots) == 0:
            raise dbsnap.errors.ResolutionError(f"No snapshots found for service {service_name}")

        if options.tag != "":
            for snapshot in snapshots:
                if snapshot.tag == options.tag:
                    return snapshot
            raise dbsnap.errors.ResolutionError(f"Snapshot with tag '{options.tag}' not found")

        if options.latest or options.before is None:
            return snapshots[0]

        before = options.before
        if before.tzinfo is None:
            before = before.replace(tzinfo=datetime.UTC)
        for snapshot in snapshots:
            if snapshot.created_at < before:
                return snapshot
        raise dbsnap.errors.ResolutionError(
            f"No snapshots found before {before.strftime('%Y-%m-%d %H:%M:%S')}"
        )

    def restore(
        self,
        service_name: str,
        options: RestoreOptions | None = None,
        cancel: threading.Event | None = None,
    ) -> manifest_models.SnapshotInfo:
        """
        Restore a snapshot into a running service. A failed restore is not rolled back.
        """
        if options is None:
            options = RestoreOptions()

        service, engine = self._resolve(service_name)
        snapshot = self.select_snapshot(service_name, options)

        manifest = manifest_models.load_manifest_from_dir(snapshot.path)
        manifest.validate_complete()

        dbsnap.logging.info(
            "Restoring %s from snapshot %s created %s",
            service_name,
            snapshot.path.name,
            manifest.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
        engine.restore(service, snapshot.path, manifest, force=options.force, cancel=cancel)
        dbsnap.logging.info("Restored %s from %s", service_name, snapshot.display_name)
        return snapshot

    def list_snapshots(
        self, service_name: str | None = None
    ) -> list[manifest_models.SnapshotInfo]:
        """
        Snapshots of one service, or of every service when none is given, newest first.

        Directories whose manifest cannot be read are skipped with a warning.
        """
        if service_name is None or service_name == "":
            service_names = dbsnap.paths.list_services(self.snapshots_root)
        else:
            service_names = [service_name]

        snapshots: list[manifest_models.SnapshotInfo] = []
        for name in service_names:
            for snapshot_dir in dbsnap.paths.list_snapshot_dirs(self.snapshots_root, name):
                try:
                    snapshots.append(manifest_models.snapshot_info_from_dir(snapshot_dir))
                except (OSError, dbsnap.errors.ManifestValidationError) as e:
                    dbsnap.logging.warning("Skipping snapshot %s: %s", snapshot_dir, e)

        snapshots.sort(key=lambda snapshot: snapshot.created_at, reverse=True)
        return snapshots

    def prune(self, service_name: str, options: PruneOptions) -> PruneReport:
        """
        Remove all but the `options.keep` newest snapshots of a service.
        """
        if options.keep <= 0:
            raise ValueError("keep value must be positive")

        snapshots = self.list_snapshots(service_name)
        report = PruneReport(
            service=service_name,
            dry_run=options.dry_run,
            kept=snapshots[: options.keep],
            candidates=snapshots[options.keep :],
        )

        if len(report.candidates) == 0:
            dbsnap.logging.info(
                "No snapshots of %s to prune (%d total, keeping %d)",
                service_name,
                len(snapshots),
                options.keep,
            )
            return report

        total_size = dbsnap.util.format_size(report.total_size)
        if options.dry_run:
            dbsnap.logging.info(
                "Would remove %d snapshots of %s (%s)",
                len(report.candidates),
                service_name,
                total_size,
            )
            for snapshot in report.candidates:
                dbsnap.logging.info(
                    "Would remove %s (%s, %s)",
                    snapshot.path,
                    snapshot.display_name,
                    snapshot.format_size(),
                )
            return report

        dbsnap.logging.info(
            "Removing %d snapshots of %s (%s)", len(report.candidates), service_name, total_size
        )
        for snapshot in report.candidates:
            try:
                shutil.rmtree(snapshot.path)
            except OSError as e:
                dbsnap.logging.warning("Failed to remove snapshot %s: %s", snapshot.path, e)
                continue
            dbsnap.logging.debug("Removed snapshot %s", snapshot.path)
            report.removed.append(snapshot)

        dbsnap.logging.info(
            "Pruned %d snapshots of %s, kept %d",
            len(report.removed),
            service_name,
            len(snapshots) - len(report.removed),
        )
        return report

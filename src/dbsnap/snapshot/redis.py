"""
Redis snapshots.

Redis has no dump-to-stdout tool, so a snapshot is taken by asking the server to write its RDB
file with BGSAVE, waiting for that background save to finish, and then reading `/data/dump.rdb`
out of the container. Restoring goes the other way round: the container is stopped, the RDB file
is copied over the old one and Redis loads it when it starts again.
"""

from __future__ import annotations

import enum
import pathlib
import tempfile
import typing

import dbsnap.compress
import dbsnap.errors
import dbsnap.logging
import dbsnap.util
from dbsnap.snapshot import engine

if typing.TYPE_CHECKING:
    import threading

    import dbsnap.docker
    from dbsnap.models import manifest as manifest_models
    from dbsnap.models import service as service_models

rdb_path = "/data/dump.rdb"


class BgsaveState(enum.Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    POLLING = "polling"
    DONE = "done"
    TIMED_OUT = "timed_out"


class RedisEngine(engine.Engine):
    engine_type = "redis"
    aliases = frozenset({"redis"})
    file_prefix = "redis"
    file_extension = ".rdb"

    def __init__(
        self,
        docker: dbsnap.docker.DockerClient,
        bgsave_poll_interval: float = 1.0,
        bgsave_timeout: float = 300.0,
        ready_poll_interval: float = 1.0,
        ready_timeout: float = 30.0,
        stop_timeout: float = 10.0,
    ):
        super().__init__(docker)
        self.bgsave_poll_interval = bgsave_poll_interval
        self.bgsave_timeout = bgsave_timeout
        self.ready_poll_interval = ready_poll_interval
        self.ready_timeout = ready_timeout
        self.stop_timeout = stop_timeout

        # Progress of the most recent BGSAVE
        self.bgsave_state = BgsaveState.IDLE

    def _cli(self, service: service_models.ServiceInfo, *args: str) -> list[str]:
        cmd = ["redis-cli"]
        if service.password != "":
            cmd += ["-a", service.password]
        return [*cmd, *args]

    def _last_save(self, service: service_models.ServiceInfo) -> str:
        result = self.docker.exec(service.container, self._cli(service, "LASTSAVE"))
        if result.exit_code != 0:
            raise dbsnap.errors.ExecutionError(
                f"Failed to get LASTSAVE: {result.stderr.strip()} (exit code {result.exit_code})"
            )
        return result.stdout.strip()

    def _bgsave_in_progress(self, service: service_models.ServiceInfo) -> bool:
        result = self.docker.exec(service.container, self._cli(service, "INFO", "persistence"))
        if result.exit_code != 0:
            # Inconclusive, keep waiting on LASTSAVE
            return True
        return "rdb_bgsave_in_progress:1" in result.stdout

    def trigger_bgsave(self, service: service_models.ServiceInfo) -> None:
        result = self.docker.exec(service.container, self._cli(service, "BGSAVE"))
        if result.exit_code != 0:
            raise dbsnap.errors.ExecutionError(
                f"BGSAVE failed with exit code {result.exit_code}: {result.stdout.strip()}"
            )
        if "Background saving started" not in result.stdout:
            raise dbsnap.errors.ExecutionError(
                f"Unexpected BGSAVE response: {result.stdout.strip()}"
            )

    def bgsave(
        self, service: service_models.ServiceInfo, cancel: threading.Event | None = None
    ) -> None:
        """
        Run a BGSAVE and wait until it has written the RDB file.

        The save counts as finished once LASTSAVE moves past its value from before the trigger,
        or once INFO no longer reports a background save in progress.
        """
        self.bgsave_state = BgsaveState.IDLE
        baseline = self._last_save(service)

        self.trigger_bgsave(service)
        self.bgsave_state = BgsaveState.TRIGGERED
        dbsnap.logging.debug("BGSAVE started on %s, LASTSAVE was %s", service.container, baseline)

        def save_finished() -> bool:
            self.bgsave_state = BgsaveState.POLLING
            if self._last_save(service) != baseline:
                return True
            return not self._bgsave_in_progress(service)

        finished = dbsnap.util.poll_until(
            save_finished,
            interval=self.bgsave_poll_interval,
            timeout=self.bgsave_timeout,
            cancel=cancel,
        )
        if not finished:
            self.bgsave_state = BgsaveState.TIMED_OUT
            raise dbsnap.errors.SnapshotTimeoutError(
                f"BGSAVE on {service.container} did not finish within {self.bgsave_timeout:g}s"
            )
        self.bgsave_state = BgsaveState.DONE

    def _capture_rdb(
        self, service: service_models.ServiceInfo, writer: dbsnap.util.Writable
    ) -> int:
        copied = self._capture_stream(service, ["cat", rdb_path], writer, tool="cat")
        if copied == 0:
            raise dbsnap.errors.ExecutionError(
                f"RDB file {rdb_path} in {service.container} is empty"
            )
        return copied

    def wait_until_ready(
        self, service: service_models.ServiceInfo, cancel: threading.Event | None = None
    ) -> None:
        def responds_to_ping() -> bool:
            result = self.docker.exec(service.container, self._cli(service, "ping"))
            return result.exit_code == 0 and "PONG" in result.stdout

        ready = dbsnap.util.poll_until(
            responds_to_ping,
            interval=self.ready_poll_interval,
            timeout=self.ready_timeout,
            cancel=cancel,
        )
        if not ready:
            raise dbsnap.errors.SnapshotTimeoutError(
                f"Redis in {service.container} not ready after {self.ready_timeout:g}s"
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
        dbsnap.logging.info("Saving Redis data of %s", service.name)

        manifest = self._new_manifest(service, compression, note, tag)
        self.bgsave(service, cancel=cancel)
        snapshot_file = self._write_artifact(
            output_dir, compression, lambda writer: self._capture_rdb(service, writer)
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

        with tempfile.TemporaryDirectory(prefix="dbsnap-redis-") as temp_dir:
            rdb_file = pathlib.Path(temp_dir) / "dump.rdb"
            compression = manifest.compression_kind()
            with (
                dbsnap.compress.CompressedReader(snapshot_path, compression) as reader,
                rdb_file.open("wb") as f,
            ):
                _ = dbsnap.util.copy_stream(reader, f)

            # The final save is best effort
            result = self.docker.exec(service.container, self._cli(service, "BGSAVE"))
            if result.exit_code != 0:
                dbsnap.logging.warning(
                    "Failed to trigger final BGSAVE before restore: %s", result.stderr.strip()
                )

            dbsnap.logging.info("Stopping %s to replace its RDB file", service.container)
            self.docker.stop(service.container, timeout=self.stop_timeout)
            self.docker.copy_to_container(service.container, rdb_file, rdb_path)

        self.docker.start(service.container)
        self.wait_until_ready(service, cancel=cancel)
        dbsnap.logging.info("Restored Redis data of %s", service.name)

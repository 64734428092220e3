from __future__ import annotations

import datetime
import io
import typing

import pytest

import dbsnap.compress
import dbsnap.constants
import dbsnap.docker
import dbsnap.hash
from dbsnap.models import config as config_models
from dbsnap.models import manifest as manifest_models
from dbsnap.models import service as service_models

if typing.TYPE_CHECKING:
    import collections.abc
    import pathlib

    import dbsnap.util


class StreamOutput(typing.NamedTuple):
    output: bytes = b""
    returncode: int = 0
    stderr: str = ""
    # Raised by the first read, as if the pipe broke mid-stream
    error: Exception | None = None


class FakeExecStream:
    def __init__(self, stream_output: StreamOutput):
        self._stream_output = stream_output
        self._stdout = io.BytesIO(stream_output.output)
        self.returncode: int | None = None
        self.stderr = ""
        self.killed = False

    def read(self, size: int = -1) -> bytes:
        if self._stream_output.error is not None:
            raise self._stream_output.error
        return self._stdout.read(size)

    def close(self) -> int:
        self.returncode = self._stream_output.returncode
        self.stderr = self._stream_output.stderr
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9

    def __enter__(self) -> FakeExecStream:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, *exc_info: object) -> None:
        if exc_type is not None:
            self.kill()
        else:
            _ = self.close()


class FakeDocker:
    """
    Stands in for DockerClient. Commands are answered by handlers keyed on the program name.
    """

    def __init__(self):
        self.running: set[str] = set()
        self.calls: list[tuple[str, ...]] = []
        self.exec_handlers: dict[
            str, collections.abc.Callable[[list[str]], dbsnap.docker.ExecResult]
        ] = {}
        self.stream_outputs: dict[str, StreamOutput] = {}
        self.stdin_received: dict[str, bytes] = {}
        self.copied: dict[str, bytes] = {}

    def set_stream(
        self,
        program: str,
        output: bytes = b"",
        returncode: int = 0,
        stderr: str = "",
        error: Exception | None = None,
    ) -> None:
        self.stream_outputs[program] = StreamOutput(output, returncode, stderr, error)

    def is_running(self, container: str) -> bool:
        self.calls.append(("is_running", container))
        return container in self.running

    def exec(self, container: str, cmd: list[str]) -> dbsnap.docker.ExecResult:
        self.calls.append(("exec", container, *cmd))
        handler = self.exec_handlers.get(cmd[0])
        if handler is None:
            return dbsnap.docker.ExecResult(exit_code=0, stdout="", stderr="")
        return handler(cmd)

    def exec_streaming(
        self, container: str, cmd: list[str], stdin: dbsnap.util.Readable | None = None
    ) -> FakeExecStream:
        self.calls.append(("exec_streaming", container, *cmd))
        if stdin is not None:
            received = b""
            while chunk := stdin.read(4096):
                received += chunk
            self.stdin_received[cmd[0]] = received
        return FakeExecStream(self.stream_outputs.get(cmd[0], StreamOutput()))

    def stop(self, container: str, timeout: float = 10.0) -> None:
        self.calls.append(("stop", container))
        self.running.discard(container)

    def start(self, container: str) -> None:
        self.calls.append(("start", container))
        self.running.add(container)

    def copy_to_container(self, container: str, source: pathlib.Path, dest: str) -> None:
        self.calls.append(("copy_to_container", container, dest))
        self.copied[dest] = source.read_bytes()

    def commands(self, kind: str) -> list[tuple[str, ...]]:
        return [call[2:] for call in self.calls if call[0] == kind]


@pytest.fixture(name="fake_docker")
def fake_docker_fixture() -> FakeDocker:
    return FakeDocker()


class Helpers:
    @staticmethod
    def service_info(
        engine: str, name: str = "db", **kwargs: typing.Any
    ) -> service_models.ServiceInfo:
        defaults: dict[str, typing.Any] = {
            "user": "app",
            "password": "secret",
            "database": "appdb",
        }
        defaults.update(kwargs)
        return service_models.ServiceInfo(
            name=name,
            engine=engine,
            container=f"{dbsnap.constants.container_prefix}{name}",
            image=f"{engine}:latest",
            **defaults,
        )

    @staticmethod
    def project_config() -> config_models.ProjectConfig:
        return config_models.ProjectConfig.model_validate(
            {
                "services": {
                    "db": {
                        "image": "postgres:16",
                        "ports": ["5432:5432"],
                        "env": {
                            "POSTGRES_USER": "app",
                            "POSTGRES_PASSWORD": "secret",
                            "POSTGRES_DB": "appdb",
                        },
                    },
                    "cache": {"image": "redis:7", "ports": ["6379:6379"]},
                    "mongo": {"image": "mongo:7"},
                    "shop": {"image": "mariadb:11"},
                }
            }
        )

    @staticmethod
    def write_snapshot(
        snapshots_root: pathlib.Path,
        service: str,
        created_at: datetime.datetime,
        tag: str = "",
        payload: bytes = b"payload",
        engine: str = "postgres",
        compression: dbsnap.compress.Compression = "none",
    ) -> pathlib.Path:
        """
        Lay out a snapshot directory the same way the service does.
        """
        dir_name = created_at.strftime(dbsnap.constants.snapshot_timestamp_format)
        if tag != "":
            dir_name = f"{dir_name}-{tag}"
        snapshot_dir = snapshots_root / service / dir_name
        snapshot_dir.mkdir(parents=True)

        file_name = f"data{'.zst' if compression == 'zstd' else ''}"
        with dbsnap.compress.CompressedWriter(snapshot_dir / file_name, compression) as writer:
            _ = writer.write(payload)

        manifest = manifest_models.SnapshotManifest(
            service=service,
            engine=engine,
            image=f"{engine}:latest",
            created_at=created_at,
            tag=tag,
            tool_version=dbsnap.constants.dbsnap_version,
            compression=compression,
            files=[
                manifest_models.SnapshotFile(
                    name=file_name,
                    sha256=dbsnap.hash.sha256_file(snapshot_dir / file_name),
                    size=(snapshot_dir / file_name).stat().st_size,
                )
            ],
        )
        manifest.write_to_file(snapshot_dir / dbsnap.constants.manifest_file_name)
        return snapshot_dir


@pytest.fixture(name="helpers")
def helpers_fixture() -> Helpers:
    return Helpers()

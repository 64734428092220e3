"""
Thin client over the `docker` command line.

Everything the snapshot engines need from a container goes through here: checking that it is
running, running a command to completion, running a command with streamed stdin/stdout, stopping,
starting, and copying a file into it.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import threading
import typing

import dbsnap.errors
import dbsnap.logging
import dbsnap.util

if typing.TYPE_CHECKING:
    import pathlib

_redacted = "******"


def redact_command(cmd: list[str]) -> list[str]:
    """
    Mask passwords in a command line before it is logged.
    """
    redacted: list[str] = []
    hide_next = False
    for arg in cmd:
        if hide_next:
            redacted.append(_redacted)
            hide_next = False
        elif arg in ("-a", "--password"):
            redacted.append(arg)
            hide_next = True
        elif arg.startswith("--password="):
            redacted.append(f"--password={_redacted}")
        elif arg.startswith("-p") and len(arg) > 2:
            # mysql style -p<password>
            redacted.append(f"-p{_redacted}")
        else:
            redacted.append(arg)
    return redacted


class ExecResult(typing.NamedTuple):
    exit_code: int
    stdout: str
    stderr: str


class ExecStream:
    """
    A running command with its stdout exposed through `read`.

    When a stdin source is given, a feeder thread copies it into the command's stdin while the
    caller reads stdout. Stderr is spooled to a temporary file so that neither pipe can stall the
    other. `close` joins the feeder, waits for the command and raises ExecutionError if feeding
    stdin failed; the exit code is left in `returncode` for the caller to judge.
    """

    def __init__(self, args: list[str], stdin: dbsnap.util.Readable | None = None):
        self.args = args
        self.returncode: int | None = None
        self.stderr = ""

        self._stderr_file = tempfile.TemporaryFile()
        self._copy_error: Exception | None = None
        self._feeder: threading.Thread | None = None

        try:
            self._process = subprocess.Popen(
                args,
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=self._stderr_file,
            )
        except OSError as e:
            self._stderr_file.close()
            raise dbsnap.errors.ExecutionError(f"Failed to start {args[0]}: {e}") from e

        assert self._process.stdout is not None
        self._stdout = self._process.stdout

        if stdin is not None:
            self._feeder = threading.Thread(target=self._feed_stdin, args=(stdin,), daemon=True)
            self._feeder.start()

    def _feed_stdin(self, source: dbsnap.util.Readable) -> None:
        assert self._process.stdin is not None
        try:
            _ = dbsnap.util.copy_stream(source, self._process.stdin)
        except Exception as e:
            self._copy_error = e
        finally:
            try:
                self._process.stdin.close()
            except OSError as e:
                if self._copy_error is None:
                    self._copy_error = e

    def read(self, size: int = -1) -> bytes:
        return self._stdout.read(size)

    def readable(self) -> bool:
        return True

    def _finish(self) -> None:
        if self._feeder is not None:
            self._feeder.join()
        self.returncode = self._process.wait()
        self._stdout.close()

        _ = self._stderr_file.seek(0)
        self.stderr = self._stderr_file.read().decode("utf-8", errors="replace")
        self._stderr_file.close()

    def close(self) -> int:
        """
        Drain whatever stdout is left, wait for the command and return its exit code.
        """
        if self.returncode is not None:
            return self.returncode

        while self._stdout.read(dbsnap.util.copy_chunk_size):
            pass
        self._finish()

        if self._copy_error is not None:
            raise dbsnap.errors.ExecutionError(
                f"Failed to stream input to {self.args[0]}: {self._copy_error}. "
                f"stderr: {self.stderr.strip()}"
            ) from self._copy_error

        assert self.returncode is not None
        return self.returncode

    def kill(self) -> None:
        """
        Abandon the command. Errors from the feeder are only logged, as the caller is already
        failing.
        """
        if self.returncode is not None:
            return

        self._process.kill()
        self._finish()
        if self._copy_error is not None:
            dbsnap.logging.debug(
                "Ignoring stdin error of killed %s: %s", self.args[0], self._copy_error
            )

    def __enter__(self) -> ExecStream:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, *exc_info: object) -> None:
        if exc_type is not None:
            self.kill()
        else:
            _ = self.close()


class DockerClient:
    def __init__(self, docker_bin: str | None = None):
        self._docker_bin = docker_bin

    @property
    def docker_bin(self) -> str:
        if self._docker_bin is None:
            docker_name = os.environ.get("DBSNAP_DOCKER", "") or "docker"
            docker_path = shutil.which(docker_name)
            if docker_path is None:
                raise dbsnap.errors.PreconditionError(f"{docker_name} is not found in PATH")
            self._docker_bin = docker_path
        return self._docker_bin

    def _run(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        cmd = [self.docker_bin, *args]
        dbsnap.logging.debug("Executing %s", " ".join(redact_command(cmd)))
        return subprocess.run(cmd, capture_output=True, text=True, check=False)

    def _run_checked(self, args: list[str], action: str) -> None:
        result = self._run(args)
        if result.returncode != 0:
            raise dbsnap.errors.ExecutionError(
                f"Failed to {action}: {result.stderr.strip()} (exit code {result.returncode})"
            )

    def is_running(self, container: str) -> bool:
        result = self._run(["inspect", "--format", "{{.State.Running}}", container])
        if result.returncode != 0:
            # Missing containers are simply not running
            return False
        return result.stdout.strip() == "true"

    def exec(self, container: str, cmd: list[str]) -> ExecResult:
        """
        Run a command in the container to completion.
        """
        result = self._run(["exec", container, *cmd])
        return ExecResult(exit_code=result.returncode, stdout=result.stdout, stderr=result.stderr)

    def exec_streaming(
        self, container: str, cmd: list[str], stdin: dbsnap.util.Readable | None = None
    ) -> ExecStream:
        """
        Start a command in the container with its stdout streamed back and, optionally, `stdin`
        streamed into it.
        """
        args = [self.docker_bin, "exec"]
        if stdin is not None:
            args.append("-i")
        args += [container, *cmd]

        dbsnap.logging.debug("Streaming %s", " ".join(redact_command(args)))
        return ExecStream(args, stdin=stdin)

    def stop(self, container: str, timeout: float = 10.0) -> None:
        self._run_checked(
            ["stop", "-t", str(int(timeout)), container], action=f"stop container {container}"
        )

    def start(self, container: str) -> None:
        self._run_checked(["start", container], action=f"start container {container}")

    def copy_to_container(self, container: str, source: pathlib.Path, dest: str) -> None:
        """
        Copy a host file into the container. Works on stopped containers too.
        """
        self._run_checked(
            ["cp", str(source), f"{container}:{dest}"],
            action=f"copy {source} to {container}:{dest}",
        )

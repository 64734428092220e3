from __future__ import annotations

import typing

import pytest

import dbsnap.compress
import dbsnap.docker
import dbsnap.errors
from dbsnap.snapshot import mysql

if typing.TYPE_CHECKING:
    import pathlib

    import tests.conftest


def test_create(
    tmp_path: pathlib.Path,
    fake_docker: tests.conftest.FakeDocker,
    helpers: tests.conftest.Helpers,
):
    # GIVEN: mysqldump producing SQL
    fake_docker.set_stream("mysqldump", output=b"CREATE TABLE t (id int);")
    engine = mysql.MySQLEngine(fake_docker)

    # WHEN: creating a gzip snapshot
    manifest = engine.create(helpers.service_info("mysql"), tmp_path, "gzip", note="", tag="")

    # THEN: the dump is stored as mysql.sql.gz
    assert manifest.main_file().name == "mysql.sql.gz"
    with dbsnap.compress.CompressedReader(tmp_path / "mysql.sql.gz", "gzip") as reader:
        assert reader.read() == b"CREATE TABLE t (id int);"
    assert fake_docker.commands("exec_streaming") == [
        (
            "mysqldump",
            "--single-transaction",
            "--routines",
            "--triggers",
            "--events",
            "--complete-insert",
            "--extended-insert",
            "--default-character-set=utf8mb4",
            "-u",
            "app",
            "-h",
            "localhost",
            "-psecret",
            "appdb",
        )
    ]


def test_password_omitted_when_empty(helpers: tests.conftest.Helpers):
    engine = mysql.MySQLEngine(typing.cast(dbsnap.docker.DockerClient, None))
    cmd = engine.restore_command(helpers.service_info("mysql", password=""))
    assert cmd == ["mysql", "-u", "app", "-h", "localhost", "appdb"]


class TestRestore:
    @pytest.fixture(name="snapshot")
    def snapshot_fixture(
        self,
        tmp_path: pathlib.Path,
        fake_docker: tests.conftest.FakeDocker,
        helpers: tests.conftest.Helpers,
    ):
        fake_docker.set_stream("mysqldump", output=b"INSERT INTO t VALUES (1);")
        fake_docker.running.add("dbsnap_db")
        engine = mysql.MySQLEngine(fake_docker)
        manifest = engine.create(helpers.service_info("mysql"), tmp_path, "none", note="", tag="")
        return engine, manifest

    def test_restore(
        self,
        tmp_path: pathlib.Path,
        fake_docker: tests.conftest.FakeDocker,
        helpers: tests.conftest.Helpers,
        snapshot,
    ):
        engine, manifest = snapshot

        # WHEN: restoring without force
        engine.restore(helpers.service_info("mysql"), tmp_path, manifest, force=False)

        # THEN: the SQL is replayed through mysql and the database is left in place
        assert fake_docker.stdin_received["mysql"] == b"INSERT INTO t VALUES (1);"
        assert fake_docker.commands("exec") == []

    def test_force_recreates_database(
        self,
        tmp_path: pathlib.Path,
        fake_docker: tests.conftest.FakeDocker,
        helpers: tests.conftest.Helpers,
        snapshot,
    ):
        engine, manifest = snapshot

        # WHEN: restoring with force
        engine.restore(helpers.service_info("mysql"), tmp_path, manifest, force=True)

        # THEN: the database is dropped and created again before replaying
        exec_commands = fake_docker.commands("exec")
        assert len(exec_commands) == 1
        assert exec_commands[0][:6] == ("mysql", "-u", "app", "-h", "localhost", "-psecret")
        assert exec_commands[0][6] == "-e"
        assert exec_commands[0][7].startswith("DROP DATABASE IF EXISTS `appdb`; CREATE DATABASE")
        assert fake_docker.stdin_received["mysql"] == b"INSERT INTO t VALUES (1);"

    def test_recreate_failure(
        self,
        tmp_path: pathlib.Path,
        fake_docker: tests.conftest.FakeDocker,
        helpers: tests.conftest.Helpers,
        snapshot,
    ):
        # GIVEN: the drop statement failing
        engine, manifest = snapshot
        fake_docker.exec_handlers["mysql"] = lambda cmd: dbsnap.docker.ExecResult(
            exit_code=1, stdout="", stderr="ERROR 1045: Access denied"
        )

        # WHEN: restoring with force
        # THEN: the restore stops before replaying anything
        with pytest.raises(dbsnap.errors.ExecutionError, match="Access denied"):
            engine.restore(helpers.service_info("mysql"), tmp_path, manifest, force=True)
        assert "mysql" not in fake_docker.stdin_received

    def test_error_output_fails_unless_forced(
        self,
        tmp_path: pathlib.Path,
        fake_docker: tests.conftest.FakeDocker,
        helpers: tests.conftest.Helpers,
        snapshot,
    ):
        engine, manifest = snapshot
        fake_docker.set_stream("mysql", returncode=1, stderr="ERROR 1062: Duplicate entry")
        service = helpers.service_info("mysql")

        with pytest.raises(dbsnap.errors.ExecutionError, match="Duplicate entry"):
            engine.restore(service, tmp_path, manifest, force=False)
        engine.restore(service, tmp_path, manifest, force=True)

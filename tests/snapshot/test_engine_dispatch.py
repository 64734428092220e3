from __future__ import annotations

import pytest

from dbsnap.snapshot import mongodb, mysql, postgres, redis, service


@pytest.mark.parametrize(
    ("engine_class", "names"),
    [
        (postgres.PostgresEngine, ["postgres", "postgresql"]),
        (mysql.MySQLEngine, ["mysql", "mariadb"]),
        (redis.RedisEngine, ["redis"]),
        (mongodb.MongoDBEngine, ["mongo", "mongodb"]),
    ],
)
def test_can_handle(engine_class, names: list[str], fake_docker):
    engine = engine_class(fake_docker)

    for name in names:
        assert engine.can_handle(name)


@pytest.mark.parametrize(
    ("engine_class", "names"),
    [
        (postgres.PostgresEngine, ["POSTGRES", "PostgreSQL", "mysql", "pg", "cassandra", ""]),
        (mysql.MySQLEngine, ["MySQL", "MariaDB", "postgres", "mongo"]),
        (redis.RedisEngine, ["Redis", "mongo", "redis-stack"]),
        (mongodb.MongoDBEngine, ["MongoDB", "redis", "mongosh"]),
    ],
)
def test_cannot_handle(engine_class, names: list[str], fake_docker):
    engine = engine_class(fake_docker)

    for name in names:
        assert not engine.can_handle(name)


def test_aliases_do_not_overlap(fake_docker):
    engines = service.default_engines(fake_docker)

    aliases = [alias for engine in engines for alias in engine.aliases]
    assert len(aliases) == len(set(aliases))


@pytest.mark.parametrize(
    ("engine_class", "compression", "expected"),
    [
        (postgres.PostgresEngine, "zstd", "pg.dump.zst"),
        (postgres.PostgresEngine, "none", "pg.dump"),
        (mysql.MySQLEngine, "gzip", "mysql.sql.gz"),
        (redis.RedisEngine, "zstd", "redis.rdb.zst"),
        (mongodb.MongoDBEngine, "gzip", "mongo.archive.gz"),
    ],
)
def test_artifact_name(engine_class, compression, expected: str, fake_docker):
    assert engine_class(fake_docker).artifact_name(compression) == expected

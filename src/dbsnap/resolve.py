"""
Map a configured service name to the facts needed to reach its database inside its container.
"""

from __future__ import annotations

import dbsnap.constants
import dbsnap.errors
from dbsnap.models import config as config_models
from dbsnap.models import service as service_models

_user_keys = {"postgres_user", "mysql_user", "mongo_initdb_root_username", "user"}
_password_keys = {"postgres_password", "mysql_password", "mongo_initdb_root_password", "password"}
_database_keys = {"postgres_db", "mysql_database", "mongo_initdb_database", "database", "db"}

# (port, user, database) used when the config leaves them out
_engine_defaults: dict[str, tuple[int, str, str]] = {
    "postgres": (5432, "postgres", "postgres"),
    "mysql": (3306, "root", "mysql"),
    "redis": (6379, "", ""),
    "mongo": (27017, "root", "admin"),
}

default_password = "password"


def container_name(service_name: str) -> str:
    return f"{dbsnap.constants.container_prefix}{service_name}"


def determine_engine(image: str, service_name: str) -> str:
    """
    Guess the database engine from the image name, then from the service name.

    Falls back to postgres when neither gives a hint.
    """
    image = image.lower()
    service_name = service_name.lower()

    if "postgres" in image:
        return "postgres"
    if "mysql" in image or "mariadb" in image:
        return "mysql"
    if "redis" in image:
        return "redis"
    if "mongo" in image:
        return "mongo"

    if "postgres" in service_name or "pg" in service_name:
        return "postgres"
    if "mysql" in service_name:
        return "mysql"
    if "redis" in service_name:
        return "redis"
    if "mongo" in service_name:
        return "mongo"

    return "postgres"


def _parse_host_port(port_mapping: str) -> int:
    parts = port_mapping.split(":")
    if len(parts) != 2:
        return 0
    try:
        return int(parts[0])
    except ValueError as e:
        raise dbsnap.errors.ResolutionError(f"Invalid port mapping '{port_mapping}'") from e


def get_service_info(
    config: config_models.ProjectConfig, service_name: str
) -> service_models.ServiceInfo:
    service = config.get_service(service_name)
    if service is None:
        raise dbsnap.errors.ResolutionError(f"Service '{service_name}' not found in config")

    engine = determine_engine(service.image, service_name)
    port = _parse_host_port(service.ports[0]) if len(service.ports) > 0 else 0

    user = ""
    password = ""
    database = ""
    for key, value in service.env.items():
        key = key.lower()
        if key in _user_keys:
            user = value
        elif key in _password_keys:
            password = value
        elif key in _database_keys:
            database = value

    default_port, default_user, default_database = _engine_defaults[engine]
    if password == "" and engine != "redis":
        password = default_password

    return service_models.ServiceInfo(
        name=service_name,
        engine=engine,
        host="localhost",
        port=port if port != 0 else default_port,
        user=user if user != "" else default_user,
        password=password,
        database=database if database != "" else default_database,
        container=container_name(service_name),
        image=service.image,
    )

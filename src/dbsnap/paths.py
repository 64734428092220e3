"""
On-disk layout of snapshots: `<project>/.dbsnap/snapshots/<service>/<timestamp>[-<tag>]/`.
"""

from __future__ import annotations

import datetime
import pathlib

import dbsnap.constants
import dbsnap.util

_project_markers = (*dbsnap.constants.dbsnap_config_names, dbsnap.constants.dbsnap_dir_name)


def project_root(start: pathlib.Path | None = None) -> pathlib.Path:
    """
    Find the closest directory at or above `start` holding a dbsnap config file or a `.dbsnap`
    directory. Falls back to `start` itself when there is none.
    """
    if start is None:
        start = pathlib.Path.cwd()
    start = start.absolute()

    for directory in (start, *start.parents):
        if any((directory / marker).exists() for marker in _project_markers):
            return directory

    return start


def snapshots_dir(root: pathlib.Path) -> pathlib.Path:
    return root / dbsnap.constants.dbsnap_dir_name / dbsnap.constants.dbsnap_snapshots_dir_name


def service_snapshots_dir(snapshots_root: pathlib.Path, service: str) -> pathlib.Path:
    return snapshots_root / service


def sanitize_tag(tag: str) -> str:
    for separator in ("/", "\\", ":"):
        tag = tag.replace(separator, "-")
    return tag


def snapshot_dir_name(created_at: datetime.datetime, tag: str) -> str:
    timestamp = created_at.strftime(dbsnap.constants.snapshot_timestamp_format)
    if tag == "":
        return timestamp
    return f"{timestamp}-{sanitize_tag(tag)}"


def generate_snapshot_dir(
    snapshots_root: pathlib.Path,
    service: str,
    tag: str,
    now: datetime.datetime | None = None,
) -> pathlib.Path:
    """
    Create a fresh snapshot directory named after the current UTC time and the tag.

    Two snapshots of the same service within the same second and with the same tag collide; the
    second one fails with FileExistsError instead of sharing the directory.
    """
    if now is None:
        now = datetime.datetime.now(tz=datetime.UTC)

    service_dir = service_snapshots_dir(snapshots_root, service)
    dbsnap.util.ensure_path(service_dir)

    snapshot_dir = service_dir / snapshot_dir_name(now.astimezone(datetime.UTC), tag)
    snapshot_dir.mkdir()
    return snapshot_dir


def list_snapshot_dirs(snapshots_root: pathlib.Path, service: str) -> list[pathlib.Path]:
    service_dir = service_snapshots_dir(snapshots_root, service)
    if not service_dir.is_dir():
        return []
    return sorted(entry for entry in service_dir.iterdir() if entry.is_dir())


def list_services(snapshots_root: pathlib.Path) -> list[str]:
    if not snapshots_root.is_dir():
        return []
    return sorted(entry.name for entry in snapshots_root.iterdir() if entry.is_dir())

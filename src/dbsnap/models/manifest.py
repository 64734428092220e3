from __future__ import annotations

import datetime
import pathlib

import pydantic

import dbsnap.compress
import dbsnap.constants
import dbsnap.errors
import dbsnap.util


class SnapshotFile(pydantic.BaseModel):
    name: str
    sha256: str
    size: int


class SnapshotManifest(pydantic.BaseModel):
    """
    Metadata describing one snapshot directory.

    `files[0]` is always the primary data file of the snapshot.
    """

    model_config = pydantic.ConfigDict(populate_by_name=True)

    service: str
    engine: str
    image: str = ""
    created_at: pydantic.AwareDatetime = pydantic.Field(alias="createdAt")
    tag: str = ""
    tool_version: str = pydantic.Field(default="", alias="toolVersion")
    compression: str = dbsnap.compress.default_compression
    # Encryption is not implemented
    encryption: str = "none"
    note: str = ""
    files: list[SnapshotFile] = pydantic.Field(default_factory=list)

    @classmethod
    def new(
        cls,
        service: str,
        engine: str,
        image: str,
        tag: str,
        note: str,
        compression: dbsnap.compress.Compression,
    ) -> SnapshotManifest:
        """
        Start a manifest for a snapshot that is about to be captured.
        """
        return cls(
            service=service,
            engine=engine,
            image=image,
            created_at=datetime.datetime.now(tz=datetime.UTC),
            tag=tag,
            tool_version=dbsnap.constants.dbsnap_version,
            compression=compression,
            encryption="none",
            note=note,
            files=[],
        )

    def add_file(self, name: str, sha256: str, size: int) -> None:
        self.files.append(SnapshotFile(name=name, sha256=sha256, size=size))

    def main_file(self) -> SnapshotFile:
        if len(self.files) == 0:
            raise dbsnap.errors.ManifestValidationError("No files in manifest")
        return self.files[0]

    def compression_kind(self) -> dbsnap.compress.Compression:
        """
        The compression of the snapshot files. Unknown values fall back to the default.
        """
        if dbsnap.compress.is_valid_compression(self.compression):
            return self.compression
        return dbsnap.compress.default_compression

    def validate_complete(self) -> None:
        if self.service == "":
            raise dbsnap.errors.ManifestValidationError("Service name is required")
        if self.engine == "":
            raise dbsnap.errors.ManifestValidationError("Engine is required")
        if len(self.files) == 0:
            raise dbsnap.errors.ManifestValidationError("At least one file is required")

    def total_size(self) -> int:
        return sum(file.size for file in self.files)

    def write_to_file(self, path: pathlib.Path) -> None:
        _ = path.write_text(self.model_dump_json(by_alias=True, indent=2), encoding="utf-8")


def load_manifest(path: pathlib.Path) -> SnapshotManifest:
    content = path.read_bytes()

    try:
        # Invalid UTF-8 is reported by pydantic as a validation error
        return SnapshotManifest.model_validate_json(content)
    except pydantic.ValidationError as e:
        raise dbsnap.errors.ManifestValidationError(f"Malformed manifest {path}: {e}") from e


def load_manifest_from_dir(snapshot_dir: pathlib.Path) -> SnapshotManifest:
    return load_manifest(snapshot_dir / dbsnap.constants.manifest_file_name)


class SnapshotInfo(pydantic.BaseModel):
    """
    Read-only summary of a snapshot on disk, used for listing and pruning.
    """

    model_config = pydantic.ConfigDict(populate_by_name=True)

    service: str
    tag: str
    created_at: pydantic.AwareDatetime = pydantic.Field(alias="createdAt")
    size: int
    path: pathlib.Path
    engine: str
    image: str
    note: str

    @property
    def display_name(self) -> str:
        if self.tag != "":
            return self.tag
        return self.created_at.strftime("%Y-%m-%d %H:%M:%S")

    def age(self, now: datetime.datetime | None = None) -> str:
        """
        Compact, human readable age such as "5m", "3h", "2d", "4M" or "1y".
        """
        if now is None:
            now = datetime.datetime.now(tz=datetime.UTC)

        elapsed = now - self.created_at
        hours = elapsed.total_seconds() / 3600
        if hours < 1:
            return f"{int(elapsed.total_seconds() // 60)}m"
        if hours < 24:
            return f"{int(hours)}h"

        days = int(hours // 24)
        if days < 30:
            return f"{days}d"
        if days < 365:
            return f"{days // 30}M"
        return f"{days // 365}y"

    def format_size(self) -> str:
        return dbsnap.util.format_size(self.size)


def tag_from_dir_name(dir_name: str) -> str:
    """
    Recover the tag from a `YYYYMMDD-HHMMSS-<tag>` snapshot directory name.
    """
    parts = dir_name.split("-")
    if len(parts) > 2:
        return "-".join(parts[2:])
    return ""


def snapshot_info_from_dir(snapshot_dir: pathlib.Path) -> SnapshotInfo:
    manifest = load_manifest_from_dir(snapshot_dir)
    tag = manifest.tag if manifest.tag != "" else tag_from_dir_name(snapshot_dir.name)
    return SnapshotInfo(
        service=manifest.service,
        tag=tag,
        created_at=manifest.created_at,
        size=manifest.total_size(),
        path=snapshot_dir,
        engine=manifest.engine,
        image=manifest.image,
        note=manifest.note,
    )

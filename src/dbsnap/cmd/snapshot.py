from __future__ import annotations

import datetime
import typing

import pydantic
import typer

import dbsnap.compress
import dbsnap.config
import dbsnap.docker
import dbsnap.paths
import dbsnap.util
from dbsnap.models import manifest as manifest_models
from dbsnap.snapshot import service as snapshot_service

snapshot_app = typer.Typer(help="Create, restore, list and prune database snapshots")

before_formats = ("%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d")


def make_service(require_config: bool = True) -> snapshot_service.SnapshotService:
    config = dbsnap.config.load_config() if require_config else None
    snapshots_root = dbsnap.paths.snapshots_dir(dbsnap.paths.project_root())
    return snapshot_service.SnapshotService(
        dbsnap.docker.DockerClient(), config=config, snapshots_root=snapshots_root
    )


def parse_before(value: str) -> datetime.datetime:
    """
    Parse a `--before` timestamp. Times without a zone are taken as UTC.
    """
    for before_format in before_formats:
        try:
            parsed = datetime.datetime.strptime(value, before_format)
        except ValueError:
            continue
        return parsed.replace(tzinfo=datetime.UTC)

    raise typer.BadParameter(
        f"Invalid time '{value}' (expected YYYY-MM-DD, YYYY-MM-DD HH:MM or YYYY-MM-DD HH:MM:SS)"
    )


def _truncate(text: str, width: int) -> str:
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


@snapshot_app.command()
def create(
    service: typing.Annotated[str, typer.Argument(help="Service to snapshot")],
    tag: typing.Annotated[str, typer.Option(help="Tag for the snapshot")] = "",
    note: typing.Annotated[str, typer.Option(help="Note describing the snapshot")] = "",
    compress: typing.Annotated[
        str, typer.Option(help="Compression type: zstd, gzip or none")
    ] = dbsnap.compress.default_compression,
):
    try:
        compression = dbsnap.compress.parse_compression(compress)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--compress") from e

    manifest = make_service().create(
        service, snapshot_service.CreateOptions(tag=tag, note=note, compression=compression)
    )

    print("Snapshot created successfully:")
    print(f"  Service: {manifest.service}")
    print(f"  Tag: {manifest.tag}")
    print(f"  Created: {manifest.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Compression: {manifest.compression}")
    if manifest.note != "":
        print(f"  Note: {manifest.note}")


@snapshot_app.command(name="list")
def list_snapshots(
    service: typing.Annotated[
        str | None, typer.Argument(help="Only list snapshots of this service")
    ] = None,
    json_output: typing.Annotated[
        bool, typer.Option("--json", help="Output in JSON format")
    ] = False,
):
    snapshots = make_service(require_config=False).list_snapshots(service)

    if len(snapshots) == 0:
        if service is not None:
            print(f"No snapshots found for service '{service}'")
        else:
            print("No snapshots found")
        return

    if json_output:
        adapter = pydantic.TypeAdapter(list[manifest_models.SnapshotInfo])
        print(adapter.dump_json(snapshots, indent=2, by_alias=True).decode())
        return

    rows = [("SERVICE", "TAG", "CREATED", "AGE", "SIZE", "ENGINE", "NOTE")]
    for snapshot in snapshots:
        rows.append(
            (
                snapshot.service,
                snapshot.tag if snapshot.tag != "" else "-",
                snapshot.created_at.strftime("%Y-%m-%d %H:%M"),
                snapshot.age(),
                snapshot.format_size(),
                snapshot.engine,
                _truncate(snapshot.note, 30) if snapshot.note != "" else "-",
            )
        )

    widths = [max(len(row[column]) for row in rows) for column in range(len(rows[0]))]
    for row in rows:
        print("  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
    print(f"\nTotal: {len(snapshots)} snapshots")


@snapshot_app.command()
def restore(
    service: typing.Annotated[str, typer.Argument(help="Service to restore")],
    tag: typing.Annotated[str, typer.Option(help="Restore the snapshot with this tag")] = "",
    latest: typing.Annotated[bool, typer.Option(help="Restore the latest snapshot")] = False,
    before: typing.Annotated[
        str | None,
        typer.Option(help="Restore the latest snapshot before this time (YYYY-MM-DD HH:MM)"),
    ] = None,
    force: typing.Annotated[
        bool, typer.Option(help="Continue even if the restore tooling reports errors")
    ] = False,
):
    options = snapshot_service.RestoreOptions(
        tag=tag,
        latest=latest,
        before=parse_before(before) if before is not None else None,
        force=force,
    )
    snapshot = make_service().restore(service, options)
    print(f"Snapshot {snapshot.display_name} restored successfully for service '{service}'")


@snapshot_app.command()
def prune(
    service: typing.Annotated[str, typer.Argument(help="Service to prune snapshots of")],
    keep: typing.Annotated[int, typer.Option(help="Number of snapshots to keep")] = 3,
    dry_run: typing.Annotated[
        bool, typer.Option(help="Show what would be removed without removing anything")
    ] = False,
):
    if keep <= 0:
        raise typer.BadParameter("keep value must be positive", param_hint="--keep")

    report = make_service(require_config=False).prune(
        service, snapshot_service.PruneOptions(keep=keep, dry_run=dry_run)
    )

    if len(report.candidates) == 0:
        print(f"No snapshots to prune for service '{service}' (keeping {keep})")
        return

    total_size = dbsnap.util.format_size(report.total_size)
    if report.dry_run:
        print(f"Would remove {len(report.candidates)} snapshots ({total_size}):")
        for snapshot in report.candidates:
            print(f"  {snapshot.display_name} ({snapshot.format_size()})")
        return

    print(
        f"Removed {len(report.removed)} of {len(report.candidates)} snapshots "
        f"for service '{service}', kept {len(report.kept)}"
    )

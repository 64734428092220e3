from __future__ import annotations

import sys

import typer

import dbsnap.cmd.snapshot
import dbsnap.constants
import dbsnap.errors
import dbsnap.logging

app = typer.Typer(help="Snapshot and restore databases running in local Docker containers")
app.add_typer(dbsnap.cmd.snapshot.snapshot_app, name="snapshot")


@app.command()
def version():
    print(f"dbsnap {dbsnap.constants.dbsnap_version}")


def main():
    try:
        app()
    except dbsnap.errors.DbsnapError as e:
        dbsnap.logging.error("%s", e)
        sys.exit(1)

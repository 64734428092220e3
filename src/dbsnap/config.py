from __future__ import annotations

import os
import pathlib
import tomllib

import pydantic

import dbsnap.constants
import dbsnap.errors
import dbsnap.logging
import dbsnap.paths
from dbsnap.models import config as config_models


def find_config_path(start: pathlib.Path | None = None) -> pathlib.Path | None:
    """
    Locate the project config. `DBSNAP_CONFIG` wins over looking for `.dbsnap.toml` in the
    project root.
    """
    if "DBSNAP_CONFIG" in os.environ and os.environ["DBSNAP_CONFIG"] != "":
        return pathlib.Path(os.environ["DBSNAP_CONFIG"])

    root = dbsnap.paths.project_root(start)
    for config_name in dbsnap.constants.dbsnap_config_names:
        config_path = root / config_name
        if config_path.is_file():
            return config_path

    return None


def load_config(config_path: pathlib.Path | None = None) -> config_models.ProjectConfig:
    if config_path is None:
        config_path = find_config_path()
    if config_path is None:
        raise dbsnap.errors.ResolutionError(
            f"No {dbsnap.constants.dbsnap_config_names[0]} found in this directory or its parents"
        )

    dbsnap.logging.debug("Loading config from %s", config_path)
    try:
        with config_path.open("rb") as f:
            config_dict = tomllib.load(f)
    except FileNotFoundError as e:
        raise dbsnap.errors.ResolutionError(f"Config file {config_path} not found") from e
    except tomllib.TOMLDecodeError as e:
        raise dbsnap.errors.ResolutionError(f"Failed to parse {config_path}: {e}") from e

    try:
        return config_models.ProjectConfig.model_validate(config_dict)
    except pydantic.ValidationError as e:
        raise dbsnap.errors.ResolutionError(f"Invalid config {config_path}: {e}") from e

from __future__ import annotations

dbsnap_version = "0.1.0"

dbsnap_dir_name = ".dbsnap"
dbsnap_config_names = (".dbsnap.toml",)
dbsnap_snapshots_dir_name = "snapshots"

manifest_file_name = "manifest.json"

# Containers are named after the service they run
container_prefix = "dbsnap_"

snapshot_timestamp_format = "%Y%m%d-%H%M%S"

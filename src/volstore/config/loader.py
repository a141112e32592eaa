# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from typing import Dict, Tuple

from .models import StoreConfig, VolumeType
from volstore.errors import ConfigError

log = logging.getLogger("volstore")


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def parse_backup_location(doc: dict) -> Tuple[VolumeType, Dict[str, str]]:
    """
    Flatten a Velero BackupStorageLocation into (volume type, init() config map).

    objectStorage.bucket / objectStorage.prefix are merged into spec.config
    the same way Velero does before calling the plugin.
    """
    if doc.get("kind") not in (None, "BackupStorageLocation"):
        raise ConfigError(f"expected a BackupStorageLocation, got kind={doc.get('kind')!r}")

    spec = doc.get("spec") or {}
    provider = spec.get("provider")
    if not provider:
        raise ConfigError("spec.provider is required")

    object_storage = spec.get("objectStorage") or {}
    config = {str(k): str(v) for k, v in (spec.get("config") or {}).items() if v is not None}
    config["bucket"] = str(object_storage.get("bucket") or "")
    config["prefix"] = str(object_storage.get("prefix") or "")

    return VolumeType.from_provider(provider), config


def load_store_config(path: str | Path) -> Tuple[VolumeType, Dict[str, str]]:
    """
    Load a BackupStorageLocation manifest from disk.

    Returns the raw config map rather than a StoreConfig so callers exercise
    the same validation path as the plugin framework (LocalVolumeObjectStore.init).
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"config file not found: {path}")

    try:
        doc = _load_yaml(path)
    except yaml.YAMLError as exc:
        raise ConfigError(f"could not parse {path}: {exc}") from exc

    volume_type, config = parse_backup_location(doc)
    log.debug("Loaded %s location bucket=%s from %s", volume_type.value, config["bucket"], path)

    # Validate early so a bad file fails before touching the cluster.
    StoreConfig.from_config_map(volume_type, config)
    return volume_type, config

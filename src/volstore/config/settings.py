# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/config/settings.py

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os

from volstore.config.models import DEFAULT_ROOT
from volstore.errors import ConfigError


@dataclass(frozen=True)
class RuntimeSettings:
    """
    Process-wide inputs, resolved once at startup and passed into constructors.
    """
    root: Path
    namespace: str
    pod_ip: Optional[str] = None
    signing_secret: Optional[str] = None
    fileserver_port: int = 3000


def load_runtime_settings(environ: Optional[Mapping[str, str]] = None) -> RuntimeSettings:
    env = os.environ if environ is None else environ

    port_raw = env.get("LOCAL_VOLUME_FILESERVER_PORT", "3000")
    try:
        port = int(port_raw)
    except ValueError:
        raise ConfigError(f"LOCAL_VOLUME_FILESERVER_PORT must be an integer, got {port_raw!r}") from None

    root = Path(env.get("LOCAL_VOLUME_ROOT") or DEFAULT_ROOT)
    if not root.is_absolute():
        raise ConfigError(f"LOCAL_VOLUME_ROOT must be absolute, got {str(root)!r}")

    return RuntimeSettings(
        root=root,
        namespace=env.get("VELERO_NAMESPACE") or "velero",
        pod_ip=env.get("POD_IP") or None,
        signing_secret=env.get("LOCAL_VOLUME_SIGNING_SECRET") or None,
        fileserver_port=port,
    )

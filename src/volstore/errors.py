# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/errors.py
from __future__ import annotations

from pathlib import Path
from typing import Optional


class VolumeStoreError(RuntimeError):
    """Base class for volstore failures."""


class ConfigError(VolumeStoreError):
    """Missing or invalid bucket, prefix or backend key."""


class InvalidKeyError(VolumeStoreError):
    """Bucket or key would escape the configured root."""


class ObjectNotFound(VolumeStoreError):
    def __init__(self, bucket: str, key: str):
        super().__init__(f"object not found: bucket={bucket} key={key}")
        self.bucket = bucket
        self.key = key


class NotWriteable(VolumeStoreError):
    """Mounted volume exists but cannot be written. Operator must fix it."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"directory is not writeable: {path} ({reason})")
        self.path = path


class WorkloadPatchError(VolumeStoreError):
    def __init__(self, kind: str, name: str, message: str):
        super().__init__(f"{kind}/{name}: {message}")
        self.kind = kind
        self.name = name


class RestartRequired(VolumeStoreError):
    """
    Raised from init() after the workloads have been patched with the volume.
    The orchestrator restarts the pods, after which init runs again.
    """

    def __init__(self, bucket: str, patched: tuple[str, ...] = ()):
        super().__init__("volume initialized, restart pending")
        self.bucket = bucket
        self.patched = patched


class FilesystemIOError(VolumeStoreError):
    def __init__(self, op: str, path: Path, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"{op} failed for {path}{detail}")
        self.op = op
        self.path = path


class CleanupError(FilesystemIOError):
    """The object was removed but its empty backup directory could not be."""

    object_deleted = True


class SigningError(VolumeStoreError):
    pass


class StoreNotReady(VolumeStoreError):
    pass

# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/config/models.py

from __future__ import annotations

import posixpath
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from volstore.errors import ConfigError

DEFAULT_ROOT = "/var/velero-local-volume-provider"
RESTIC_DIR = "restic"


class VolumeType(str, Enum):
    HOSTPATH = "hostpath"
    NFS = "nfs"
    PVC = "pvc"

    @property
    def provider(self) -> str:
        """Velero provider name, e.g. replicated.com/nfs"""
        return f"replicated.com/{self.value}"

    @classmethod
    def from_provider(cls, provider: str) -> "VolumeType":
        name = provider.rsplit("/", 1)[-1].strip().lower()
        try:
            return cls(name)
        except ValueError:
            raise ConfigError(f"unsupported provider: {provider!r}") from None


class StoreConfig(BaseModel):
    """
    Typed view of the BackupStorageLocation config map handed to init().
    """

    volume_type: VolumeType
    bucket: str
    prefix: str = ""
    path: Optional[str] = None          # hostPath / NFS export path
    server: Optional[str] = None        # NFS only
    claim_name: Optional[str] = None    # PVC only
    restic_repo_prefix: Optional[str] = None

    model_config = {
        "extra": "forbid",
        "frozen": True,
    }

    @field_validator("bucket")
    @classmethod
    def _bucket_is_single_segment(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("bucket is required")
        if "/" in v or v in (".", ".."):
            raise ValueError(f"bucket must be a single path segment: {v!r}")
        if "\x00" in v:
            raise ValueError(f"bucket contains a NUL byte: {v!r}")
        return v

    @field_validator("prefix")
    @classmethod
    def _prefix_stays_inside_bucket(cls, v: str) -> str:
        v = v.strip().strip("/")
        if "\x00" in v:
            raise ValueError(f"prefix contains a NUL byte: {v!r}")
        if v and any(part in ("", ".", "..") for part in v.split("/")):
            raise ValueError(f"invalid prefix: {v!r}")
        return v

    @model_validator(mode="after")
    def _backend_keys_present(self) -> "StoreConfig":
        if self.volume_type is VolumeType.HOSTPATH and not self.path:
            raise ValueError("hostpath volumes require 'path'")
        if self.volume_type is VolumeType.NFS and not (self.path and self.server):
            raise ValueError("nfs volumes require 'path' and 'server'")
        if self.volume_type is VolumeType.PVC and not self.claim_name:
            raise ValueError("pvc volumes require 'claimName'")
        return self

    @classmethod
    def from_config_map(cls, volume_type: VolumeType, config: Dict[str, str]) -> "StoreConfig":
        """
        Build from the plain string map the plugin framework passes to init().
        Validation failures surface as ConfigError.
        """
        known = {
            "bucket": "bucket",
            "prefix": "prefix",
            "path": "path",
            "server": "server",
            "claimName": "claim_name",
            "resticRepoPrefix": "restic_repo_prefix",
        }
        data: Dict[str, object] = {"volume_type": volume_type}
        for key, value in (config or {}).items():
            field = known.get(key)
            if field is None:
                # Velero passes through keys meant for other layers (e.g. credentialsFile)
                continue
            if value not in (None, ""):
                data[field] = value
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"invalid {volume_type.value} configuration: {exc}") from exc

    def repo_path(self, root: str) -> str:
        """<root>/<bucket>/<prefix>/restic"""
        parts = [root, self.bucket]
        if self.prefix:
            parts.append(self.prefix)
        parts.append(RESTIC_DIR)
        return posixpath.join(*parts)

    def check_repo_prefix(self, root: str) -> None:
        if not self.restic_repo_prefix:
            return
        expected = self.repo_path(root)
        if posixpath.normpath(self.restic_repo_prefix) != expected:
            raise ConfigError(
                f"resticRepoPrefix {self.restic_repo_prefix!r} does not match "
                f"the mounted repository path {expected!r}"
            )


class PluginOptions(BaseModel):
    """
    Optional overrides from the plugin ConfigMap. Every field has a default.
    """

    velero_deployment_name: str = "velero"
    restic_daemonset_name: str = "restic"
    fileserver_image: str = "replicated/local-volume-provider:main"
    security_context_run_as_user: int = 1001
    security_context_run_as_group: int = 1001
    security_context_fs_group: int = 1001

    # Velero ConfigMaps are camelCase; unrelated keys are ignored.
    model_config = {
        "extra": "ignore",
        "frozen": True,
    }

    @classmethod
    def from_config_map_data(cls, data: Optional[Dict[str, str]]) -> "PluginOptions":
        if not data:
            return cls()
        aliases = {
            "veleroDeploymentName": "velero_deployment_name",
            "resticDaemonsetName": "restic_daemonset_name",
            "fileserverImage": "fileserver_image",
            "securityContextRunAsUser": "security_context_run_as_user",
            "securityContextRunAsGroup": "security_context_run_as_group",
            "securityContextFsGroup": "security_context_fs_group",
        }
        values = {
            aliases[k]: v.strip()
            for k, v in data.items()
            if k in aliases and v is not None and v.strip()
        }
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigError(f"invalid plugin ConfigMap: {exc}") from exc

    def security_context(self) -> Dict[str, int]:
        return {
            "runAsUser": self.security_context_run_as_user,
            "runAsGroup": self.security_context_run_as_group,
        }

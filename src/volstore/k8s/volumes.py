# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/k8s/volumes.py
#
# Pure "ensure present" merges over controller objects (Deployment/DaemonSet
# as plain dicts, camelCase like the API). Callers deep-copy, merge, compare
# and only write when something changed.

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Set

from volstore.config.models import PluginOptions, StoreConfig, VolumeType
from volstore.errors import ConfigError

FILESERVER_CONTAINER = "local-volume-provider"
FILESERVER_PORT_NAME = "fileserver"
SIGNING_SECRET_NAME = "local-volume-provider"
SIGNING_SECRET_KEY = "signing-secret"

# Controller annotation listing the volumes this plugin added
OWNED_VOLUMES_ANNOTATION = "local-volume-provider/volumes"
VOLUME_NAME_PREFIX = "lvp-"

_DNS_LABEL = re.compile(r"[^a-z0-9-]+")
_HASH_LEN = 8


def volume_name_for(bucket: str) -> str:
    """
    lvp-<readable bucket>-<hash of the raw bucket>, a DNS-1123 label.

    The hash keeps buckets that only differ by case or punctuation apart,
    and the prefix keeps them away from volumes Velero ships with.
    """
    digest = hashlib.sha256(bucket.encode("utf-8")).hexdigest()[:_HASH_LEN]
    room = 63 - len(VOLUME_NAME_PREFIX) - 1 - _HASH_LEN
    slug = _DNS_LABEL.sub("-", bucket.lower()).strip("-")[:room].rstrip("-")
    if not slug:
        return f"{VOLUME_NAME_PREFIX}{digest}"
    return f"{VOLUME_NAME_PREFIX}{slug}-{digest}"


@dataclass(frozen=True)
class VolumeDescriptor:
    name: str
    source: Dict[str, Any] = field(hash=False)
    mount_path: str

    def to_volume(self) -> Dict[str, Any]:
        return {"name": self.name, **self.source}

    def to_mount(self) -> Dict[str, Any]:
        return {"name": self.name, "mountPath": self.mount_path}


def build_volume(cfg: StoreConfig, root: str) -> VolumeDescriptor:
    """
    Volume + mount for a bucket: the backing store is mounted at <root>/<bucket>.
    """
    if cfg.volume_type is VolumeType.HOSTPATH:
        source = {"hostPath": {"path": cfg.path, "type": "DirectoryOrCreate"}}
    elif cfg.volume_type is VolumeType.NFS:
        source = {"nfs": {"server": cfg.server, "path": cfg.path}}
    elif cfg.volume_type is VolumeType.PVC:
        source = {"persistentVolumeClaim": {"claimName": cfg.claim_name}}
    else:  # pragma: no cover - enum is exhaustive
        raise ConfigError(f"unsupported volume type: {cfg.volume_type}")

    return VolumeDescriptor(
        name=volume_name_for(cfg.bucket),
        source=source,
        mount_path=str(PurePosixPath(root) / cfg.bucket),
    )


# ---------------------------------------------------------------------
# Helpers over pod specs
# ---------------------------------------------------------------------

def pod_spec(obj: Dict[str, Any]) -> Dict[str, Any]:
    spec = obj.setdefault("spec", {})
    template = spec.setdefault("template", {})
    return template.setdefault("spec", {})


def main_container(obj: Dict[str, Any], preferred: str) -> Optional[Dict[str, Any]]:
    """
    The container the plugin runs in: the one named `preferred`, otherwise
    the first non-sidecar container.
    """
    containers = pod_spec(obj).get("containers") or []
    for c in containers:
        if c.get("name") == preferred:
            return c
    for c in containers:
        if c.get("name") != FILESERVER_CONTAINER:
            return c
    return None


def _covers(actual: Any, desired: Any) -> bool:
    """
    True when `actual` already carries everything in `desired`. Fields the API
    server defaults (terminationMessagePath, fieldRef.apiVersion, ...) are
    ignored so a written object does not look changed when read back.
    """
    if isinstance(desired, dict):
        return isinstance(actual, dict) and all(
            k in actual and _covers(actual[k], v) for k, v in desired.items()
        )
    if isinstance(desired, list):
        return (
            isinstance(actual, list)
            and len(actual) == len(desired)
            and all(_covers(a, d) for a, d in zip(actual, desired))
        )
    return actual == desired


def _upsert_named(items: List[Dict[str, Any]], desired: Dict[str, Any]) -> bool:
    """
    Make `items` contain exactly one entry named like `desired`, carrying it.
    Returns True when the list changed.
    """
    matches = [i for i, item in enumerate(items) if item.get("name") == desired["name"]]
    if not matches:
        items.append(desired)
        return True

    first = matches[0]
    changed = False
    if not _covers(items[first], desired):
        items[first] = desired
        changed = True
    # Collapse duplicates left behind by racing writers.
    for i in reversed(matches[1:]):
        del items[i]
        changed = True
    return changed


def owned_volumes(obj: Dict[str, Any]) -> Set[str]:
    annotations = obj.get("metadata", {}).get("annotations") or {}
    raw = annotations.get(OWNED_VOLUMES_ANNOTATION) or ""
    return {name for name in raw.split(",") if name}


def _claim_volume(obj: Dict[str, Any], name: str) -> bool:
    owned = owned_volumes(obj)
    if name in owned:
        return False
    annotations = obj.setdefault("metadata", {}).setdefault("annotations", {})
    annotations[OWNED_VOLUMES_ANNOTATION] = ",".join(sorted(owned | {name}))
    return True


def _check_foreign(items: List[Dict[str, Any]], desired: Dict[str, Any], what: str, owner: str) -> None:
    for item in items:
        if item.get("name") == desired["name"] and not _covers(item, desired):
            raise ConfigError(
                f"{what} {desired['name']!r} in {owner} is not managed by this plugin "
                f"and differs from the requested one"
            )


def ensure_volume(obj: Dict[str, Any], volume: VolumeDescriptor, container_names: List[str]) -> bool:
    """
    Add the volume to the pod spec and mount it into the named containers,
    recording it in the ownership annotation.

    Already-present entries are left alone. A stale source or mount path is
    corrected in place only for volumes this plugin owns; a same-named
    volume added by someone else is never overwritten.
    """
    spec = pod_spec(obj)
    owner = f"{obj.get('kind', 'controller')}/{obj.get('metadata', {}).get('name')}"
    volumes = spec.setdefault("volumes", [])

    containers = spec.get("containers") or []
    targets = [c for c in containers if c.get("name") in container_names]
    if not targets:
        raise ConfigError(f"none of the containers {container_names} found in {owner}")

    if volume.name not in owned_volumes(obj):
        _check_foreign(volumes, volume.to_volume(), "volume", owner)
        for c in targets:
            _check_foreign(c.get("volumeMounts") or [], volume.to_mount(), "volume mount", owner)

    changed = _upsert_named(volumes, volume.to_volume())
    for c in targets:
        changed |= _upsert_named(c.setdefault("volumeMounts", []), volume.to_mount())
    changed |= _claim_volume(obj, volume.name)
    return changed


def ensure_env(container: Dict[str, Any], env: List[Dict[str, Any]]) -> bool:
    changed = False
    current = container.setdefault("env", [])
    for entry in env:
        changed |= _upsert_named(current, entry)
    return changed


def plugin_env(root: str) -> List[Dict[str, Any]]:
    """Environment the plugin and file server read through RuntimeSettings."""
    return [
        {"name": "VELERO_NAMESPACE", "valueFrom": {"fieldRef": {"fieldPath": "metadata.namespace"}}},
        {"name": "POD_IP", "valueFrom": {"fieldRef": {"fieldPath": "status.podIP"}}},
        {"name": "LOCAL_VOLUME_ROOT", "value": root},
        {
            "name": "LOCAL_VOLUME_SIGNING_SECRET",
            "valueFrom": {
                "secretKeyRef": {
                    "name": SIGNING_SECRET_NAME,
                    "key": SIGNING_SECRET_KEY,
                    "optional": True,
                }
            },
        },
    ]


def fileserver_container(
    options: PluginOptions,
    *,
    root: str,
    port: int,
    mounts: List[Dict[str, Any]],
) -> Dict[str, Any]:
    return {
        "name": FILESERVER_CONTAINER,
        "image": options.fileserver_image,
        "imagePullPolicy": "IfNotPresent",
        "command": ["volstore", "serve"],
        "ports": [{"name": FILESERVER_PORT_NAME, "containerPort": port, "protocol": "TCP"}],
        "env": plugin_env(root) + [
            {"name": "LOCAL_VOLUME_FILESERVER_PORT", "value": str(port)},
        ],
        "securityContext": options.security_context(),
        "volumeMounts": mounts,
    }


def ensure_plugin_config(
    obj: Dict[str, Any],
    options: PluginOptions,
    *,
    root: str,
    port: int,
    container_name: str,
) -> bool:
    """
    Plugin configuration on the Velero deployment:
      - env on the velero container (namespace, pod IP, root, signing secret)
      - the file server sidecar, mounting every volume mounted under root
      - a pod fsGroup, only when none is set
    """
    main = main_container(obj, container_name)
    if main is None:
        raise ConfigError(f"no container found in deployment {obj.get('metadata', {}).get('name')}")

    changed = ensure_env(main, plugin_env(root))

    root_path = PurePosixPath(root)
    mounts = [
        dict(m)
        for m in main.get("volumeMounts") or []
        if root_path in PurePosixPath(m.get("mountPath", "/")).parents
    ]
    if mounts:
        sidecar = fileserver_container(options, root=root, port=port, mounts=mounts)
        changed |= _upsert_named(pod_spec(obj).setdefault("containers", []), sidecar)

    security = pod_spec(obj).setdefault("securityContext", {})
    if "fsGroup" not in security:
        security["fsGroup"] = options.security_context_fs_group
        changed = True

    return changed

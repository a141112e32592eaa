# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/k8s/client.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from volstore.config.models import VolumeType
from volstore.errors import WorkloadPatchError

log = logging.getLogger("volstore")

DEPLOYMENT = "Deployment"
DAEMONSET = "DaemonSet"

PLUGIN_CONFIG_LABEL = "velero.io/plugin-config"


class WorkloadConflict(RuntimeError):
    """The controller changed between our read and our write (HTTP 409)."""

    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind}/{name} was modified concurrently")
        self.kind = kind
        self.name = name


def load_kube_config(kube_context: Optional[str] = None) -> None:
    """
    In-cluster credentials when running as the Velero plugin; kubeconfig
    (optionally a specific context) when run from a workstation.
    """
    if kube_context is None:
        try:
            config.load_incluster_config()
            return
        except config.ConfigException:
            log.debug("[k8s] Not running in-cluster, falling back to kubeconfig")
    config.load_kube_config(context=kube_context)


class WorkloadClient:
    """
    Reads and replaces the controllers the volume must be attached to.

    Objects cross this boundary as plain dicts (API field names), so merge
    logic in volstore.k8s.volumes never depends on the generated models.
    """

    def __init__(
        self,
        namespace: str,
        *,
        apps_api: Optional[client.AppsV1Api] = None,
        core_api: Optional[client.CoreV1Api] = None,
        api_client: Optional[client.ApiClient] = None,
    ):
        self.namespace = namespace
        self.api_client = api_client or client.ApiClient()
        self.apps = apps_api or client.AppsV1Api(self.api_client)
        self.core = core_api or client.CoreV1Api(self.api_client)

    # ------------------------------------------------------------------
    def get_controller(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        """Controller as a dict, or None when it does not exist."""
        try:
            if kind == DEPLOYMENT:
                obj = self.apps.read_namespaced_deployment(name, self.namespace)
            elif kind == DAEMONSET:
                obj = self.apps.read_namespaced_daemon_set(name, self.namespace)
            else:
                raise ValueError(f"unsupported controller kind: {kind}")
        except ApiException as exc:
            if exc.status == 404:
                log.debug("[k8s] %s/%s not found in %s", kind, name, self.namespace)
                return None
            raise WorkloadPatchError(kind, name, f"get failed: {exc.status} {exc.reason}") from exc

        data = self.api_client.sanitize_for_serialization(obj)
        data.setdefault("kind", kind)
        return data

    def replace_controller(self, kind: str, obj: Dict[str, Any]) -> None:
        """
        Write back a controller read by get_controller(). The resourceVersion
        it carries makes the API server reject the write if someone else got
        there first.
        """
        name = obj.get("metadata", {}).get("name")
        if not name:
            raise ValueError("controller object has no metadata.name")

        try:
            if kind == DEPLOYMENT:
                self.apps.replace_namespaced_deployment(name, self.namespace, obj)
            elif kind == DAEMONSET:
                self.apps.replace_namespaced_daemon_set(name, self.namespace, obj)
            else:
                raise ValueError(f"unsupported controller kind: {kind}")
        except ApiException as exc:
            if exc.status == 409:
                raise WorkloadConflict(kind, name) from exc
            raise WorkloadPatchError(kind, name, f"update failed: {exc.status} {exc.reason}") from exc

        log.info("[k8s] Updated %s/%s in %s", kind, name, self.namespace)

    def get_plugin_config(self, volume_type: VolumeType) -> Optional[Dict[str, str]]:
        """
        Data of the optional ConfigMap labelled for this plugin:
            velero.io/plugin-config: ""
            replicated.com/<type>: ObjectStore
        """
        selector = f"{PLUGIN_CONFIG_LABEL},{volume_type.provider}=ObjectStore"
        try:
            resp = self.core.list_namespaced_config_map(self.namespace, label_selector=selector)
        except ApiException as exc:
            raise WorkloadPatchError(
                "ConfigMap", selector, f"list failed: {exc.status} {exc.reason}"
            ) from exc

        items = resp.items or []
        if not items:
            return None
        if len(items) > 1:
            log.warning(
                "[k8s] %d ConfigMaps match %s, using %s",
                len(items), selector, items[0].metadata.name,
            )
        return dict(items[0].data or {})

from __future__ import annotations

import copy
from pathlib import Path

import pytest

from volstore.config.settings import RuntimeSettings
from volstore.k8s.client import DAEMONSET, DEPLOYMENT, WorkloadConflict


def make_deployment(name: str = "velero", containers=None) -> dict:
    return {
        "apiVersion": "apps/v1",
        "kind": DEPLOYMENT,
        "metadata": {"name": name, "namespace": "velero", "resourceVersion": "1"},
        "spec": {
            "replicas": 1,
            "template": {
                "metadata": {"labels": {"name": "velero"}},
                "spec": {
                    "containers": containers
                    or [{"name": "velero", "image": "velero/velero:v1.9.0"}],
                },
            },
        },
    }


def make_daemonset(name: str = "restic") -> dict:
    return {
        "apiVersion": "apps/v1",
        "kind": DAEMONSET,
        "metadata": {"name": name, "namespace": "velero", "resourceVersion": "7"},
        "spec": {
            "template": {
                "spec": {
                    "containers": [{"name": name, "image": "velero/velero:v1.9.0"}],
                },
            },
        },
    }


class FakeWorkloadClient:
    """
    In-memory stand-in for WorkloadClient. Records every write and can be told
    to answer the next N writes with a conflict, like a racing replica would.
    """

    def __init__(self, *objects: dict, plugin_config: dict | None = None):
        self.objects = {}
        for obj in objects:
            self.objects[(obj["kind"], obj["metadata"]["name"])] = copy.deepcopy(obj)
        self.plugin_config = plugin_config
        self.replaced = []
        self.reads = []
        self.conflicts = 0

    def get_controller(self, kind, name):
        self.reads.append((kind, name))
        obj = self.objects.get((kind, name))
        return copy.deepcopy(obj) if obj is not None else None

    def replace_controller(self, kind, obj):
        name = obj["metadata"]["name"]
        if self.conflicts:
            self.conflicts -= 1
            stored = self.objects[(kind, name)]
            # another writer got there first
            stored["metadata"]["resourceVersion"] = str(int(stored["metadata"]["resourceVersion"]) + 1)
            stored["metadata"].setdefault("annotations", {})["other-writer"] = "yes"
            raise WorkloadConflict(kind, name)

        stored = copy.deepcopy(obj)
        stored["metadata"]["resourceVersion"] = str(int(obj["metadata"]["resourceVersion"]) + 1)
        self.objects[(kind, name)] = stored
        self.replaced.append((kind, name))

    def get_plugin_config(self, volume_type):
        return self.plugin_config

    def get(self, kind, name):
        return self.objects[(kind, name)]


@pytest.fixture
def root(tmp_path: Path) -> Path:
    r = tmp_path / "volumes"
    r.mkdir()
    return r


@pytest.fixture
def settings(root: Path) -> RuntimeSettings:
    return RuntimeSettings(
        root=root,
        namespace="velero",
        pod_ip="10.0.0.5",
        signing_secret="s3cr3t",
        fileserver_port=3000,
    )

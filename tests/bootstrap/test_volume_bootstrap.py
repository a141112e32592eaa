from __future__ import annotations

import os
from pathlib import Path

import pytest

from conftest import FakeWorkloadClient, make_daemonset, make_deployment
from volstore.bootstrap.events import (
    BootstrapFailed,
    BootstrapReady,
    RestartPending,
    WorkloadPatched,
)
from volstore.bootstrap.manager import (
    SUBDIRECTORY_LAYOUT,
    BootstrapOptions,
    BootstrapState,
    VolumeBootstrap,
)
from volstore.config.models import StoreConfig, VolumeType
from volstore.errors import ConfigError, NotWriteable, WorkloadPatchError
from volstore.k8s.client import DAEMONSET, DEPLOYMENT
from volstore.k8s.volumes import (
    FILESERVER_CONTAINER,
    OWNED_VOLUMES_ANNOTATION,
    pod_spec,
    volume_name_for,
)
from volstore.observers.dispatcher import EventBus
from volstore.observers.memory import MemoryObserver

VOL = volume_name_for("nfs-snapshots")


def _cfg(**overrides) -> StoreConfig:
    config = {"bucket": "nfs-snapshots", "prefix": "velero", "path": "/exports", "server": "10.0.0.1"}
    config.update(overrides)
    return StoreConfig.from_config_map(VolumeType.NFS, config)


def _bootstrap(settings, workloads, cfg=None, observer=None) -> VolumeBootstrap:
    return VolumeBootstrap(
        cfg=cfg or _cfg(),
        settings=settings,
        workloads=workloads,
        bus=EventBus(observers=[observer] if observer else []),
        options=BootstrapOptions(conflict_retries=3, conflict_delay=0),
    )


def _volumes(obj):
    return [v["name"] for v in pod_spec(obj).get("volumes", [])]


def _mounts(obj, container):
    for c in pod_spec(obj)["containers"]:
        if c["name"] == container:
            return [m["name"] for m in c.get("volumeMounts", [])]
    raise AssertionError(f"no container {container}")


# ---------------------------------------------------------------------
# VolumeMissing path
# ---------------------------------------------------------------------

def test_missing_volume_patches_deployment_and_requires_restart(settings):
    workloads = FakeWorkloadClient(make_deployment())
    events = MemoryObserver()

    result = _bootstrap(settings, workloads, observer=events).run()

    assert result.state is BootstrapState.RESTART_REQUIRED
    assert result.patched == ("Deployment/velero",)

    dep = workloads.get(DEPLOYMENT, "velero")
    assert _volumes(dep) == [VOL]
    assert _mounts(dep, "velero") == [VOL]
    assert _mounts(dep, FILESERVER_CONTAINER) == [VOL]
    assert events.of_type(RestartPending)[0].patched == ("Deployment/velero",)


def test_daemonset_is_patched_when_present(settings):
    workloads = FakeWorkloadClient(make_deployment(), make_daemonset())

    result = _bootstrap(settings, workloads).run()

    assert result.patched == ("DaemonSet/restic", "Deployment/velero")
    ds = workloads.get(DAEMONSET, "restic")
    assert _volumes(ds) == [VOL]
    assert _mounts(ds, "restic") == [VOL]
    # no file server on the daemonset
    assert [c["name"] for c in pod_spec(ds)["containers"]] == ["restic"]


def test_missing_daemonset_is_skipped(settings):
    workloads = FakeWorkloadClient(make_deployment())
    _bootstrap(settings, workloads).run()
    assert (DAEMONSET, "restic") in workloads.reads
    assert workloads.replaced == [(DEPLOYMENT, "velero")]


def test_rerun_on_patched_deployment_does_not_duplicate(settings, root: Path):
    workloads = FakeWorkloadClient(make_deployment(), make_daemonset())
    _bootstrap(settings, workloads).run()
    assert len(workloads.replaced) == 2

    # pods not restarted yet: still missing, nothing to write
    again = _bootstrap(settings, workloads).run()
    assert again.state is BootstrapState.RESTART_REQUIRED
    assert again.patched == ()
    assert len(workloads.replaced) == 2

    # after the restart the volume is mounted
    (root / "nfs-snapshots").mkdir()
    ready = _bootstrap(settings, workloads).run()
    assert ready.state is BootstrapState.READY
    assert len(workloads.replaced) == 2
    assert _volumes(workloads.get(DEPLOYMENT, "velero")) == [VOL]
    assert _mounts(workloads.get(DEPLOYMENT, "velero"), "velero") == [VOL]


def test_plugin_configmap_overrides_controller_names(settings):
    workloads = FakeWorkloadClient(
        make_deployment("velero-server"),
        make_daemonset("node-agent"),
        plugin_config={
            "veleroDeploymentName": "velero-server",
            "resticDaemonsetName": "node-agent",
            "fileserverImage": "example/fs:2",
        },
    )

    result = _bootstrap(settings, workloads).run()

    assert result.patched == ("DaemonSet/node-agent", "Deployment/velero-server")
    dep = workloads.get(DEPLOYMENT, "velero-server")
    sidecar = [c for c in pod_spec(dep)["containers"] if c["name"] == FILESERVER_CONTAINER][0]
    assert sidecar["image"] == "example/fs:2"


def test_missing_deployment_fails(settings):
    workloads = FakeWorkloadClient()
    events = MemoryObserver()
    boot = _bootstrap(settings, workloads, observer=events)

    with pytest.raises(WorkloadPatchError) as info:
        boot.run()

    assert info.value.kind == DEPLOYMENT
    assert boot.state is BootstrapState.FAILED
    assert events.of_type(BootstrapFailed)[0].state == "Start"


def test_conflict_is_resolved_by_rereading(settings):
    workloads = FakeWorkloadClient(make_deployment())
    workloads.conflicts = 1

    result = _bootstrap(settings, workloads).run()

    assert result.patched == ("Deployment/velero",)
    dep = workloads.get(DEPLOYMENT, "velero")
    # the other writer's change survived the merge
    assert dep["metadata"]["annotations"]["other-writer"] == "yes"
    assert _volumes(dep) == [VOL]


def test_persistent_conflict_becomes_patch_error(settings):
    workloads = FakeWorkloadClient(make_deployment())
    workloads.conflicts = 10

    with pytest.raises(WorkloadPatchError) as info:
        _bootstrap(settings, workloads).run()
    assert "conflicting" in str(info.value)


def test_velero_volume_sharing_the_bucket_name_survives(settings):
    dep = make_deployment()
    spec = pod_spec(dep)
    spec["volumes"] = [{"name": "plugins", "emptyDir": {}}]
    spec["containers"][0]["volumeMounts"] = [{"name": "plugins", "mountPath": "/plugins"}]
    workloads = FakeWorkloadClient(dep)

    _bootstrap(settings, workloads, cfg=_cfg(bucket="plugins")).run()

    patched = workloads.get(DEPLOYMENT, "velero")
    assert _volumes(patched) == ["plugins", volume_name_for("plugins")]
    assert _mounts(patched, "velero") == ["plugins", volume_name_for("plugins")]
    # the sidecar only gets the bucket mount
    assert _mounts(patched, FILESERVER_CONTAINER) == [volume_name_for("plugins")]


def test_buckets_differing_by_case_do_not_overwrite_each_other(settings):
    workloads = FakeWorkloadClient(make_deployment())

    _bootstrap(settings, workloads, cfg=_cfg(bucket="Snapshots", server="10.0.0.1")).run()
    _bootstrap(settings, workloads, cfg=_cfg(bucket="snapshots", server="10.0.0.2")).run()

    volumes = pod_spec(workloads.get(DEPLOYMENT, "velero"))["volumes"]
    assert len(volumes) == 2
    assert {v["nfs"]["server"] for v in volumes} == {"10.0.0.1", "10.0.0.2"}


def test_foreign_volume_with_our_name_is_not_replaced(settings):
    dep = make_deployment()
    foreign = {"name": VOL, "nfs": {"server": "10.9.9.9", "path": "/theirs"}}
    pod_spec(dep)["volumes"] = [dict(foreign)]
    workloads = FakeWorkloadClient(dep)

    with pytest.raises(WorkloadPatchError, match="not managed"):
        _bootstrap(settings, workloads).run()

    assert workloads.replaced == []
    assert pod_spec(workloads.get(DEPLOYMENT, "velero"))["volumes"] == [foreign]


def test_owned_volume_with_stale_source_is_updated(settings):
    dep = make_deployment()
    dep["metadata"]["annotations"] = {OWNED_VOLUMES_ANNOTATION: VOL}
    pod_spec(dep)["volumes"] = [{"name": VOL, "nfs": {"server": "10.9.9.9", "path": "/old"}}]
    workloads = FakeWorkloadClient(dep)

    _bootstrap(settings, workloads).run()

    volumes = pod_spec(workloads.get(DEPLOYMENT, "velero"))["volumes"]
    assert volumes == [{"name": VOL, "nfs": {"server": "10.0.0.1", "path": "/exports"}}]


# ---------------------------------------------------------------------
# VolumePresent path
# ---------------------------------------------------------------------

def _provisioned(settings, root: Path) -> FakeWorkloadClient:
    workloads = FakeWorkloadClient(make_deployment())
    _bootstrap(settings, workloads).run()
    (root / "nfs-snapshots").mkdir()
    workloads.replaced.clear()
    return workloads


def test_present_volume_is_ready_and_creates_layout(settings, root: Path):
    workloads = _provisioned(settings, root)
    events = MemoryObserver()

    result = _bootstrap(settings, workloads, observer=events).run()

    assert result.state is BootstrapState.READY
    assert result.ready
    for subdir in SUBDIRECTORY_LAYOUT:
        assert (root / "nfs-snapshots" / "velero" / subdir).is_dir()
    assert len(events.of_type(BootstrapReady)) == 1


def test_ready_twice_has_no_side_effects(settings, root: Path):
    workloads = _provisioned(settings, root)
    (root / "nfs-snapshots" / "velero" / "backups").mkdir(parents=True)

    first = _bootstrap(settings, workloads).run()
    second = _bootstrap(settings, workloads).run()

    assert first.state is second.state is BootstrapState.READY
    assert workloads.replaced == []


def test_ready_path_restores_drifted_config(settings, root: Path):
    workloads = _provisioned(settings, root)
    dep = workloads.get(DEPLOYMENT, "velero")
    pod_spec(dep)["containers"] = [c for c in pod_spec(dep)["containers"] if c["name"] != FILESERVER_CONTAINER]
    events = MemoryObserver()

    result = _bootstrap(settings, workloads, observer=events).run()

    assert result.state is BootstrapState.READY
    assert workloads.replaced == [(DEPLOYMENT, "velero")]
    assert events.of_type(WorkloadPatched)[0].stage == "config"
    assert _mounts(workloads.get(DEPLOYMENT, "velero"), FILESERVER_CONTAINER) == [VOL]


def test_bucket_path_that_is_a_file_is_not_writeable(settings, root: Path):
    workloads = FakeWorkloadClient(make_deployment())
    (root / "nfs-snapshots").write_text("oops")

    with pytest.raises(NotWriteable):
        _bootstrap(settings, workloads).run()


def test_read_only_volume_is_not_writeable(settings, root: Path, monkeypatch):
    workloads = _provisioned(settings, root)
    monkeypatch.setattr(os, "access", lambda path, mode: False)

    boot = _bootstrap(settings, workloads)
    with pytest.raises(NotWriteable):
        boot.run()
    assert boot.state is BootstrapState.FAILED
    assert not (root / "nfs-snapshots" / "velero").exists()


def test_restic_repo_prefix_must_match_layout(settings, root: Path):
    workloads = FakeWorkloadClient(make_deployment())
    good = _cfg(resticRepoPrefix=f"{root}/nfs-snapshots/velero/restic")
    bad = _cfg(resticRepoPrefix="/somewhere/else")

    assert _bootstrap(settings, workloads, cfg=good).run().state is BootstrapState.RESTART_REQUIRED
    with pytest.raises(ConfigError):
        _bootstrap(settings, workloads, cfg=bad).run()

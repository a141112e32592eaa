# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/bootstrap/manager.py
from __future__ import annotations

import copy
import logging
import os
import stat
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from volstore.bootstrap.events import (
    BootstrapFailed,
    BootstrapReady,
    BootstrapStarted,
    LayoutEnsured,
    RestartPending,
    VolumeMissingDetected,
    WorkloadPatched,
    WorkloadUnchanged,
)
from volstore.config.models import PluginOptions, StoreConfig
from volstore.config.settings import RuntimeSettings
from volstore.errors import ConfigError, FilesystemIOError, NotWriteable, WorkloadPatchError
from volstore.k8s.client import DAEMONSET, DEPLOYMENT, WorkloadClient, WorkloadConflict
from volstore.k8s.volumes import (
    VolumeDescriptor,
    build_volume,
    ensure_plugin_config,
    ensure_volume,
    main_container,
)
from volstore.observers.dispatcher import EventBus
from volstore.observers.events import new_ctx
from volstore.utils.retry import RetryError, retry

log = logging.getLogger("volstore")

# Layout Velero and restic expect under <bucket>/<prefix>
SUBDIRECTORY_LAYOUT: Tuple[str, ...] = ("backups", "restores", "restic", "metadata", "plugins")

VELERO_CONTAINER = "velero"
DIR_MODE = 0o755


class BootstrapState(str, Enum):
    START = "Start"
    CHECKING_VOLUME = "CheckingVolume"
    VOLUME_MISSING = "VolumeMissing"
    VOLUME_PRESENT = "VolumePresent"
    RESTART_REQUIRED = "RestartRequired"
    READY = "Ready"
    FAILED = "Failed"


@dataclass(frozen=True)
class BootstrapResult:
    state: BootstrapState
    bucket: str
    path: Path
    patched: Tuple[str, ...] = ()

    @property
    def ready(self) -> bool:
        return self.state is BootstrapState.READY


@dataclass
class BootstrapOptions:
    conflict_retries: int = 3
    conflict_delay: float = 1.0


def check_writable(path: Path) -> None:
    """Fail with NotWriteable unless path is a directory we can create entries in."""
    try:
        st = path.stat()
    except OSError as exc:
        raise FilesystemIOError("stat", path, exc) from exc

    if not stat.S_ISDIR(st.st_mode):
        log.debug("Is path a directory: %s", False)
        raise NotWriteable(path, "not a directory")

    if not os.access(path, os.W_OK | os.X_OK):
        log.debug("Directory permissions: %o", stat.S_IMODE(st.st_mode))
        log.error("Directory %s is not writable", path)
        raise NotWriteable(path, f"mode {stat.S_IMODE(st.st_mode):o}")


class VolumeBootstrap:
    """
    Reconciles the declared storage location with the volume mounted into
    this pod.

        Start -> CheckingVolume -> VolumeMissing -> RestartRequired
                                -> VolumePresent -> Ready

    A missing volume cannot be hot-plugged into a running container, so the
    Velero deployment (and the restic daemonset, when deployed) are patched
    and the orchestrator rolls the pods; init runs again after the restart
    and finds the volume present.

    Not re-entrant: callers run one bootstrap at a time.
    """

    def __init__(
        self,
        *,
        cfg: StoreConfig,
        settings: RuntimeSettings,
        workloads: WorkloadClient,
        bus: Optional[EventBus] = None,
        options: Optional[BootstrapOptions] = None,
    ):
        self.cfg = cfg
        self.settings = settings
        self.workloads = workloads
        self.bus = bus or EventBus()
        self.options = options or BootstrapOptions()
        self.state = BootstrapState.START
        self.path = settings.root / cfg.bucket
        self._ctx: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> BootstrapResult:
        self._ctx = new_ctx(namespace=self.settings.namespace, bucket=self.cfg.bucket)
        try:
            return self._run()
        except Exception as exc:
            failed_in = self.state
            self.state = BootstrapState.FAILED
            self.bus.emit(BootstrapFailed(state=failed_in.value, error=str(exc), **self._ctx))
            raise

    def _run(self) -> BootstrapResult:
        self.state = BootstrapState.START
        log.debug("[bootstrap] bucket=%s path=%s prefix=%s", self.cfg.bucket, self.path, self.cfg.prefix)
        self.bus.emit(BootstrapStarted(path=str(self.path), prefix=self.cfg.prefix, **self._ctx))

        self.cfg.check_repo_prefix(str(self.settings.root))

        plugin_opts = self._load_plugin_options()
        deployment_name = plugin_opts.velero_deployment_name
        deployment = self.workloads.get_controller(DEPLOYMENT, deployment_name)
        if deployment is None:
            raise WorkloadPatchError(DEPLOYMENT, deployment_name, "could not get Velero deployment")

        self.state = BootstrapState.CHECKING_VOLUME
        if not self._volume_exists():
            self.state = BootstrapState.VOLUME_MISSING
            return self._provision(plugin_opts, deployment)

        self.state = BootstrapState.VOLUME_PRESENT
        log.debug("[bootstrap] Bucket/Volume already exists")

        check_writable(self.path)
        self._ensure_layout()
        self._ensure_patched(
            DEPLOYMENT,
            deployment_name,
            deployment,
            lambda obj: self._apply_plugin_config(obj, plugin_opts),
            stage="config",
        )

        self.state = BootstrapState.READY
        self.bus.emit(BootstrapReady(path=str(self.path), **self._ctx))
        return BootstrapResult(BootstrapState.READY, self.cfg.bucket, self.path)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _load_plugin_options(self) -> PluginOptions:
        data = self.workloads.get_plugin_config(self.cfg.volume_type)
        if data is None:
            log.debug("[bootstrap] Did not find a configmap for this plugin")
        else:
            log.debug("[bootstrap] Found a configmap for this plugin")
        return PluginOptions.from_config_map_data(data)

    def _volume_exists(self) -> bool:
        try:
            self.path.stat()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise FilesystemIOError("stat", self.path, exc) from exc
        return True

    def _provision(self, plugin_opts: PluginOptions, deployment: Dict[str, Any]) -> BootstrapResult:
        log.info("[bootstrap] Bucket/Volume %s does not exist yet. Initializing.", self.path)

        volume = build_volume(self.cfg, str(self.settings.root))
        self.bus.emit(VolumeMissingDetected(path=str(self.path), volume=volume.name, **self._ctx))

        patched: List[str] = []

        # restic must see the same files as velero, so it gets the volume too
        ds_name = plugin_opts.restic_daemonset_name
        daemonset = self.workloads.get_controller(DAEMONSET, ds_name)
        if daemonset is None:
            log.debug("[bootstrap] No %s/%s deployed, skipping", DAEMONSET, ds_name)
        elif self._ensure_patched(
            DAEMONSET,
            ds_name,
            daemonset,
            lambda obj: self._apply_volume(obj, volume, ds_name),
            stage="volume",
        ):
            patched.append(f"{DAEMONSET}/{ds_name}")

        deployment_name = plugin_opts.velero_deployment_name
        if self._ensure_patched(
            DEPLOYMENT,
            deployment_name,
            deployment,
            lambda obj: (
                self._apply_volume(obj, volume, VELERO_CONTAINER)
                | self._apply_plugin_config(obj, plugin_opts)
            ),
            stage="volume",
        ):
            patched.append(f"{DEPLOYMENT}/{deployment_name}")

        self.state = BootstrapState.RESTART_REQUIRED
        self.bus.emit(RestartPending(patched=tuple(patched), **self._ctx))
        return BootstrapResult(
            BootstrapState.RESTART_REQUIRED,
            self.cfg.bucket,
            self.path,
            patched=tuple(patched),
        )

    def _ensure_layout(self) -> None:
        base = self.path / self.cfg.prefix if self.cfg.prefix else self.path
        for subdir in SUBDIRECTORY_LAYOUT:
            subpath = base / subdir
            try:
                subpath.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
            except OSError as exc:
                raise FilesystemIOError("mkdir", subpath, exc) from exc
        self.bus.emit(LayoutEnsured(path=str(base), subdirs=SUBDIRECTORY_LAYOUT, **self._ctx))

    # ------------------------------------------------------------------
    # Controller mutation
    # ------------------------------------------------------------------

    def _apply_volume(self, obj: Dict[str, Any], volume: VolumeDescriptor, preferred: str) -> bool:
        container = main_container(obj, preferred)
        if container is None:
            raise ConfigError("controller has no containers")
        return ensure_volume(obj, volume, [container["name"]])

    def _apply_plugin_config(self, obj: Dict[str, Any], plugin_opts: PluginOptions) -> bool:
        return ensure_plugin_config(
            obj,
            plugin_opts,
            root=str(self.settings.root),
            port=self.settings.fileserver_port,
            container_name=VELERO_CONTAINER,
        )

    def _ensure_patched(
        self,
        kind: str,
        name: str,
        first: Dict[str, Any],
        mutate: Callable[[Dict[str, Any]], bool],
        *,
        stage: str,
    ) -> bool:
        """
        Read-modify-write with an equality check. The first attempt uses the
        object already read; a 409 conflict re-reads and re-merges.
        """
        pending = [first]

        def on_conflict(attempt: int, exc: Exception) -> None:
            log.warning("[bootstrap] %s/%s changed while patching (attempt %d), re-reading", kind, name, attempt)

        @retry(
            retries=self.options.conflict_retries,
            delay=self.options.conflict_delay,
            retry_on=(WorkloadConflict,),
            on_retry=on_conflict,
        )
        def attempt() -> bool:
            current = pending.pop() if pending else self.workloads.get_controller(kind, name)
            if current is None:
                raise WorkloadPatchError(kind, name, "disappeared while patching")

            desired = copy.deepcopy(current)
            try:
                mutate(desired)
            except ConfigError as exc:
                raise WorkloadPatchError(kind, name, str(exc)) from exc

            if desired == current:
                return False
            self.workloads.replace_controller(kind, desired)
            return True

        try:
            changed = attempt()
        except RetryError as exc:
            raise WorkloadPatchError(kind, name, f"gave up after {exc.attempts} conflicting updates") from exc

        if changed:
            log.info("[bootstrap] Patched %s/%s (%s)", kind, name, stage)
            self.bus.emit(WorkloadPatched(kind=kind, name=name, stage=stage, **self._ctx))
        else:
            log.debug("[bootstrap] %s/%s already up to date (%s)", kind, name, stage)
            self.bus.emit(WorkloadUnchanged(kind=kind, name=name, stage=stage, **self._ctx))
        return changed

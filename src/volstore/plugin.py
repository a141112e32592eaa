# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/plugin.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import BinaryIO, Dict, List, Optional, Union

from volstore.bootstrap.manager import (
    BootstrapOptions,
    BootstrapResult,
    BootstrapState,
    VolumeBootstrap,
)
from volstore.config.models import StoreConfig, VolumeType
from volstore.config.settings import RuntimeSettings, load_runtime_settings
from volstore.errors import RestartRequired, StoreNotReady
from volstore.k8s.client import WorkloadClient, load_kube_config
from volstore.observers.dispatcher import EventBus
from volstore.observers.logger import LoggerObserver
from volstore.signing.issuer import SignedURLIssuer
from volstore.signing.signer import URLSigner
from volstore.storage.objects import Body, ObjectOperations
from volstore.storage.paths import DELIMITER, PathMapper

log = logging.getLogger("volstore")


class LocalVolumeObjectStore:
    """
    Velero ObjectStore backed by a volume mounted into the plugin's pod.

    init() must have returned a Ready result before any object call; until
    then every call raises StoreNotReady.
    """

    def __init__(
        self,
        volume_type: VolumeType,
        *,
        settings: Optional[RuntimeSettings] = None,
        workloads: Optional[WorkloadClient] = None,
        bus: Optional[EventBus] = None,
        signer: Optional[URLSigner] = None,
        bootstrap_options: Optional[BootstrapOptions] = None,
    ):
        self.volume_type = volume_type
        self.settings = settings or load_runtime_settings()
        self.bus = bus or EventBus(observers=[LoggerObserver(log)])
        self.bootstrap_options = bootstrap_options
        self._workloads = workloads

        self.mapper = PathMapper(self.settings.root)
        self.objects = ObjectOperations(self.mapper)
        self.issuer = SignedURLIssuer(
            signer or URLSigner(self.settings.signing_secret),
            self.settings,
            mapper=self.mapper,
        )

        self.config: Optional[StoreConfig] = None
        self.result: Optional[BootstrapResult] = None

    # ------------------------------------------------------------------
    # Init
    # ------------------------------------------------------------------

    def _workload_client(self) -> WorkloadClient:
        if self._workloads is None:
            load_kube_config()
            self._workloads = WorkloadClient(self.settings.namespace)
        return self._workloads

    def init(self, config: Dict[str, str]) -> BootstrapResult:
        """
        Run the volume bootstrap for this location. Can be called again after
        a restart. Raises RestartRequired when the workloads were just patched.
        """
        cfg = StoreConfig.from_config_map(self.volume_type, config)
        log.debug("[plugin] init bucket=%s prefix=%s", cfg.bucket, cfg.prefix)

        self.config = cfg
        self.result = None

        bootstrap = VolumeBootstrap(
            cfg=cfg,
            settings=self.settings,
            workloads=self._workload_client(),
            bus=self.bus,
            options=self.bootstrap_options,
        )
        result = bootstrap.run()
        self.result = result

        if result.state is BootstrapState.RESTART_REQUIRED:
            raise RestartRequired(cfg.bucket, result.patched)
        return result

    def _require_ready(self, bucket: str) -> None:
        if self.result is None or not self.result.ready:
            raise StoreNotReady("object store used before init() completed")
        if bucket != self.result.bucket:
            raise StoreNotReady(
                f"bucket {bucket!r} was not initialized (initialized: {self.result.bucket!r})"
            )

    # ------------------------------------------------------------------
    # ObjectStore interface
    # ------------------------------------------------------------------

    def put_object(self, bucket: str, key: str, body: Body) -> None:
        self._require_ready(bucket)
        self.objects.put(bucket, key, body)

    def object_exists(self, bucket: str, key: str) -> bool:
        self._require_ready(bucket)
        return self.objects.exists(bucket, key)

    def get_object(self, bucket: str, key: str) -> BinaryIO:
        self._require_ready(bucket)
        return self.objects.get(bucket, key)

    def list_common_prefixes(self, bucket: str, prefix: str, delimiter: str = DELIMITER) -> List[str]:
        self._require_ready(bucket)
        return self.objects.list_common_prefixes(bucket, prefix, delimiter)

    def list_objects(self, bucket: str, prefix: str) -> List[str]:
        self._require_ready(bucket)
        return self.objects.list_objects(bucket, prefix)

    def delete_object(self, bucket: str, key: str) -> None:
        self._require_ready(bucket)
        self.objects.delete(bucket, key)

    def create_signed_url(self, bucket: str, key: str, ttl: Union[timedelta, int, float]) -> str:
        self._require_ready(bucket)
        return self.issuer.create_signed_url(bucket, key, ttl)

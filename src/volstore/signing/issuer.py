# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/signing/issuer.py
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional, Union
from urllib.parse import quote, urlunsplit

from volstore.config.settings import RuntimeSettings
from volstore.errors import SigningError
from volstore.signing.signer import URLSigner
from volstore.storage.paths import PathMapper

log = logging.getLogger("volstore")


class SignedURLIssuer:
    """
    Signed URLs pointing at the file server sidecar of this pod:

        http://<pod ip>:<port>/<bucket>/<key>?expires=...&signature=...
    """

    def __init__(
        self,
        signer: URLSigner,
        settings: RuntimeSettings,
        mapper: Optional[PathMapper] = None,
    ):
        self.signer = signer
        self.settings = settings
        self.mapper = mapper

    def _host(self) -> str:
        ip = self.settings.pod_ip
        if not ip:
            raise SigningError("POD_IP is not set; cannot address the file server")
        if ":" in ip:
            ip = f"[{ip}]"
        return f"{ip}:{self.settings.fileserver_port}"

    def create_signed_url(self, bucket: str, key: str, ttl: Union[timedelta, int, float]) -> str:
        log.debug("[signing] create_signed_url bucket=%s key=%s", bucket, key)
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        if self.mapper is not None:
            # same containment rules as every other object call
            self.mapper.resolve(bucket, key)

        path = quote(f"/{bucket}/{key}")
        url = urlunsplit(("http", self._host(), path, "", ""))
        try:
            return self.signer.sign_url(url, self.settings.namespace, ttl)
        except SigningError as exc:
            raise SigningError(f"failed to create signed url for {bucket}/{key}: {exc}") from exc

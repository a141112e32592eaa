# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/fileserver/app.py
#
# Sidecar that serves signed URLs out of the mounted volume. Runs in the
# Velero pod next to the plugin, on LOCAL_VOLUME_FILESERVER_PORT.

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

from volstore.config.settings import RuntimeSettings
from volstore.errors import InvalidKeyError, SigningError
from volstore.signing.signer import URLSigner
from volstore.storage.paths import PathMapper

log = logging.getLogger("volstore")


def create_app(settings: RuntimeSettings, signer: Optional[URLSigner] = None) -> FastAPI:
    mapper = PathMapper(settings.root)
    signer = signer or URLSigner(settings.signing_secret)

    app = FastAPI(title="volstore file server", docs_url=None, redoc_url=None)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/{bucket}/{key:path}")
    def download(
        bucket: str,
        key: str,
        expires: Optional[str] = None,
        signature: Optional[str] = None,
    ):
        try:
            valid = signer.verify(f"/{bucket}/{key}", settings.namespace, expires, signature)
        except SigningError as exc:
            log.error("[fileserver] %s", exc)
            raise HTTPException(status_code=503, detail="signing is not configured")
        if not valid:
            raise HTTPException(status_code=403, detail="invalid or expired signature")

        try:
            path = mapper.resolve(bucket, key)
        except InvalidKeyError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        if not path.is_file():
            raise HTTPException(status_code=404, detail="object not found")

        log.debug("[fileserver] serving %s", path)
        return FileResponse(path, media_type="application/octet-stream", filename=path.name)

    return app

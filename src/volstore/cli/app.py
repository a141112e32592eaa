# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/cli/app.py
from __future__ import annotations

import dataclasses
import shutil
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer

from volstore.bootstrap.manager import check_writable
from volstore.config.loader import load_store_config
from volstore.config.settings import RuntimeSettings, load_runtime_settings
from volstore.errors import RestartRequired, VolumeStoreError
from volstore.k8s.client import WorkloadClient, load_kube_config
from volstore.logging.log import init_logging
from volstore.observers.dispatcher import EventBus
from volstore.observers.logger import LoggerObserver
from volstore.plugin import LocalVolumeObjectStore
from volstore.signing.issuer import SignedURLIssuer
from volstore.signing.signer import URLSigner
from volstore.storage.objects import ObjectOperations
from volstore.storage.paths import PathMapper


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Local volume object store for Velero")

EXIT_RESTART_REQUIRED = 3


def _settings(root: Optional[Path]) -> RuntimeSettings:
    settings = load_runtime_settings()
    if root is not None:
        settings = dataclasses.replace(settings, root=root.resolve())
    return settings


def _objects(settings: RuntimeSettings, bucket: str) -> ObjectOperations:
    """
    Object commands work on an already provisioned volume; they never patch
    the cluster, they only refuse to run against an unusable bucket path.
    """
    mapper = PathMapper(settings.root)
    check_writable(mapper.bucket_path(bucket))
    return ObjectOperations(mapper)


def _fail(exc: Exception) -> None:
    typer.echo(f"error: {exc}", err=True)
    raise typer.Exit(1)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def init(
    config: Path = typer.Argument(..., help="BackupStorageLocation YAML"),
    context: Optional[str] = typer.Option(None, "--context", help="kube context (default: in-cluster)"),
    root: Optional[Path] = typer.Option(None, "--root", help="Override LOCAL_VOLUME_ROOT"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Run the volume bootstrap for a storage location."""
    logger, _ = init_logging(verbose=debug)

    try:
        settings = _settings(root)
        volume_type, cfg = load_store_config(config)
        load_kube_config(context)
        store = LocalVolumeObjectStore(
            volume_type,
            settings=settings,
            workloads=WorkloadClient(settings.namespace),
            bus=EventBus(observers=[LoggerObserver(logger)]),
        )
        result = store.init(cfg)
    except RestartRequired as exc:
        typer.echo(f"[init] {exc}; patched: {', '.join(exc.patched) or 'nothing'}")
        raise typer.Exit(EXIT_RESTART_REQUIRED)
    except VolumeStoreError as exc:
        _fail(exc)

    typer.echo(f"[init] {result.state.value}: {result.path}")


@app.command()
def put(
    bucket: str,
    key: str,
    source: str = typer.Argument("-", help="File to upload, '-' for stdin"),
    root: Optional[Path] = typer.Option(None, "--root"),
):
    """Upload an object."""
    try:
        objects = _objects(_settings(root), bucket)
        if source == "-":
            objects.put(bucket, key, sys.stdin.buffer)
        else:
            with open(source, "rb") as f:
                objects.put(bucket, key, f)
    except (VolumeStoreError, OSError) as exc:
        _fail(exc)


@app.command()
def get(
    bucket: str,
    key: str,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
    root: Optional[Path] = typer.Option(None, "--root"),
):
    """Download an object."""
    try:
        objects = _objects(_settings(root), bucket)
        with objects.get(bucket, key) as src:
            if output is None:
                shutil.copyfileobj(src, sys.stdout.buffer)
            else:
                with open(output, "wb") as dst:
                    shutil.copyfileobj(src, dst)
    except (VolumeStoreError, OSError) as exc:
        _fail(exc)


@app.command("ls")
def list_objects(
    bucket: str,
    prefix: str = typer.Argument(""),
    root: Optional[Path] = typer.Option(None, "--root"),
):
    """List entries directly under a prefix."""
    try:
        names = _objects(_settings(root), bucket).list_objects(bucket, prefix)
    except VolumeStoreError as exc:
        _fail(exc)
    for name in names:
        typer.echo(name)


@app.command()
def prefixes(
    bucket: str,
    prefix: str = typer.Argument(""),
    delimiter: str = typer.Option("/", "--delimiter"),
    root: Optional[Path] = typer.Option(None, "--root"),
):
    """List the virtual folders under a prefix."""
    try:
        names = _objects(_settings(root), bucket).list_common_prefixes(bucket, prefix, delimiter)
    except VolumeStoreError as exc:
        _fail(exc)
    for name in names:
        typer.echo(name)


@app.command("rm")
def delete(
    bucket: str,
    key: str,
    root: Optional[Path] = typer.Option(None, "--root"),
):
    """Delete an object and its backup directory once empty."""
    try:
        _objects(_settings(root), bucket).delete(bucket, key)
    except VolumeStoreError as exc:
        _fail(exc)


@app.command("sign-url")
def sign_url(
    bucket: str,
    key: str,
    ttl: int = typer.Option(600, "--ttl", help="Seconds until the URL expires"),
    root: Optional[Path] = typer.Option(None, "--root"),
):
    """Print a signed file server URL for an object."""
    try:
        settings = _settings(root)
        issuer = SignedURLIssuer(URLSigner(settings.signing_secret), settings, PathMapper(settings.root))
        url = issuer.create_signed_url(bucket, key, timedelta(seconds=ttl))
    except VolumeStoreError as exc:
        _fail(exc)
    typer.echo(url)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: Optional[int] = typer.Option(None, "--port", help="Default: LOCAL_VOLUME_FILESERVER_PORT"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Run the signed-URL file server."""
    import uvicorn

    from volstore.fileserver.app import create_app

    init_logging(verbose=debug)
    try:
        settings = load_runtime_settings()
    except VolumeStoreError as exc:
        _fail(exc)

    uvicorn.run(
        create_app(settings),
        host=host,
        port=port or settings.fileserver_port,
        log_level="debug" if debug else "info",
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()

# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/bootstrap/events.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from volstore.observers.events import BaseEvent


@dataclass(frozen=True)
class BootstrapStarted(BaseEvent):
    path: str
    prefix: str


@dataclass(frozen=True)
class VolumeMissingDetected(BaseEvent):
    path: str
    volume: str


@dataclass(frozen=True)
class WorkloadPatched(BaseEvent):
    kind: str
    name: str
    stage: str         # "volume" | "config"


@dataclass(frozen=True)
class WorkloadUnchanged(BaseEvent):
    kind: str
    name: str
    stage: str


@dataclass(frozen=True)
class RestartPending(BaseEvent):
    patched: Tuple[str, ...]


@dataclass(frozen=True)
class LayoutEnsured(BaseEvent):
    path: str
    subdirs: Tuple[str, ...]


@dataclass(frozen=True)
class BootstrapReady(BaseEvent):
    path: str


@dataclass(frozen=True)
class BootstrapFailed(BaseEvent):
    state: str
    error: str

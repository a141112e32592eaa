# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/observers/interface.py
from __future__ import annotations
from typing import Protocol
from .events import BaseEvent


class Observer(Protocol):
    """Receives bootstrap lifecycle events; must not raise into the bus."""

    def notify(self, event: BaseEvent) -> None: ...

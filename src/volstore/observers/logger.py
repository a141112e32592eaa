# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/observers/logger.py
from __future__ import annotations
import logging
from .events import BaseEvent

# context fields already shown in the line prefix
_PREFIX_FIELDS = ("ts", "run_id", "namespace", "bucket")


class LoggerObserver:
    """
    One log line per event:
        [EVENT run=1a2b3c4d velero/nfs-snapshots] RestartPending: patched=(...)
    Failures are logged at ERROR, everything else at INFO.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        fields = event.dict()
        detail = ", ".join(f"{k}={v}" for k, v in fields.items() if k not in _PREFIX_FIELDS)
        level = logging.ERROR if "error" in fields else logging.INFO

        self.logger.log(
            level,
            "[EVENT run=%s %s/%s] %s: %s",
            event.run_id[:8],
            event.namespace,
            event.bucket or "-",
            type(event).__name__,
            detail,
        )

# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/volstore/logging/log.py

from __future__ import annotations

import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional


def init_logging(
    *,
    log_dir: Optional[Path] = None,
    name: str = "volstore",
    verbose: bool = False,
) -> tuple[logging.Logger, Optional[Path]]:
    """
    Initializes:
      - console output (stderr), INFO by default, DEBUG with verbose
      - when log_dir is given, a full DEBUG trace in <log_dir>/<name>-<ts>.log

    Velero collects plugin stderr, so the plugin itself only uses the console.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    log_path = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        log_path = log_dir / f"{name}-{ts}.log"

        # File = FULL TRACE
        fh = logging.FileHandler(log_path)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)
        logger.debug("log_file=%s", log_path)

    return logger, log_path

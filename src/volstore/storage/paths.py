# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/storage/paths.py

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from volstore.errors import InvalidKeyError

DELIMITER = "/"


def _segments(value: str, *, what: str) -> List[str]:
    """
    Split a key into segments, rejecting anything that would not map 1:1
    onto a path under the bucket (empty, '.', '..' segments, absolute keys).
    """
    if "\x00" in value:
        raise InvalidKeyError(f"{what} contains a NUL byte: {value!r}")
    if value.startswith(DELIMITER):
        raise InvalidKeyError(f"{what} must be relative: {value!r}")
    parts = value.split(DELIMITER)
    for part in parts:
        if part in ("", ".", ".."):
            raise InvalidKeyError(f"{what} has an invalid segment {part!r}: {value!r}")
    return parts


class PathMapper:
    """
    Maps (bucket, key) onto <root>/<bucket>/<key>.

    Keys are checked segment by segment instead of being normalized, so two
    different keys can never land on the same file.
    """

    def __init__(self, root: Path):
        self.root = Path(os.path.abspath(root))

    def bucket_path(self, bucket: str) -> Path:
        if not bucket or DELIMITER in bucket or bucket in (".", ".."):
            raise InvalidKeyError(f"bucket must be a single path segment: {bucket!r}")
        if "\x00" in bucket:
            raise InvalidKeyError(f"bucket contains a NUL byte: {bucket!r}")
        return self._contained(self.root / bucket)

    def resolve(self, bucket: str, key: str) -> Path:
        if not key:
            raise InvalidKeyError("key is required")
        parts = _segments(key, what="key")
        return self._contained(self.bucket_path(bucket).joinpath(*parts))

    def resolve_prefix(self, bucket: str, prefix: str = "", delimiter: str = DELIMITER) -> Path:
        """
        Directory addressed by a listing prefix. Only '/' is a meaningful
        delimiter for a filesystem; an empty one is treated the same way.
        """
        if delimiter not in ("", DELIMITER):
            raise InvalidKeyError(f"unsupported delimiter: {delimiter!r}")
        base = self.bucket_path(bucket)
        trimmed = prefix.rstrip(DELIMITER)
        if not trimmed:
            return base
        return self._contained(base.joinpath(*_segments(trimmed, what="prefix")))

    def backup_dir(self, bucket: str, key: str) -> Optional[Path]:
        """
        Directory removed by delete-cleanup once it is empty:
        bucket/seg0/seg1 for keys of three or more segments, bucket/seg0 for
        two-segment keys, nothing for a key directly under the bucket.
        """
        parts = _segments(key, what="key")
        if len(parts) < 2:
            return None
        depth = min(2, len(parts) - 1)
        return self._contained(self.bucket_path(bucket).joinpath(*parts[:depth]))

    def _contained(self, path: Path) -> Path:
        # Lexical check only; symlinks inside the volume are trusted.
        resolved = Path(os.path.normpath(path))
        if resolved != self.root and self.root not in resolved.parents:
            raise InvalidKeyError(f"path escapes root {self.root}: {path}")
        return resolved

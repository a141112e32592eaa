# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/storage/objects.py

from __future__ import annotations

import errno
import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import BinaryIO, List, Union

from volstore.errors import CleanupError, FilesystemIOError, ObjectNotFound
from volstore.storage.paths import DELIMITER, PathMapper

log = logging.getLogger("volstore")

DIR_MODE = 0o755
FILE_MODE = 0o644

Body = Union[bytes, bytearray, BinaryIO]


class ObjectOperations:
    """
    Object-store calls over a directory tree.

    No locking: concurrent put/delete on the same key is a race that the last
    filesystem operation wins.
    """

    def __init__(self, mapper: PathMapper):
        self.mapper = mapper

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, bucket: str, key: str, body: Body) -> None:
        path = self.mapper.resolve(bucket, key)
        log.debug("[objects] put bucket=%s key=%s path=%s", bucket, key, path)

        parent = path.parent
        try:
            parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemIOError("mkdir", parent, exc) from exc

        # Write next to the target so the rename stays on one filesystem.
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=parent)
        except OSError as exc:
            raise FilesystemIOError("create", parent, exc) from exc

        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                if isinstance(body, (bytes, bytearray)):
                    f.write(body)
                else:
                    shutil.copyfileobj(body, f)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, FILE_MODE)
            os.replace(tmp, path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise FilesystemIOError("write", path, exc) from exc
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def delete(self, bucket: str, key: str) -> None:
        """
        Remove an object, then remove its backup directory if that left it empty.

        A directory is not an object store concept, so this cleanup is what
        keeps deleted backups from lingering as empty folders in listings.
        """
        path = self.mapper.resolve(bucket, key)
        log.debug("[objects] delete bucket=%s key=%s path=%s", bucket, key, path)

        try:
            path.unlink()
        except FileNotFoundError:
            raise ObjectNotFound(bucket, key) from None
        except IsADirectoryError:
            raise ObjectNotFound(bucket, key) from None
        except OSError as exc:
            # Linux reports unlink() on a directory as EISDIR, macOS as EPERM
            if exc.errno == errno.EPERM and path.is_dir():
                raise ObjectNotFound(bucket, key) from None
            raise FilesystemIOError("remove", path, exc) from exc

        backup_dir = self.mapper.backup_dir(bucket, key)
        if backup_dir is None:
            return

        try:
            empty = not any(backup_dir.iterdir())
            if empty:
                backup_dir.rmdir()
                log.debug("[objects] Deleted backup directory %s", backup_dir)
        except FileNotFoundError:
            # Someone else already cleaned it up.
            return
        except OSError as exc:
            if exc.errno == errno.ENOTEMPTY:
                # A put landed between listing and rmdir.
                return
            raise CleanupError("cleanup", backup_dir, exc) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, bucket: str, key: str) -> bool:
        path = self.mapper.resolve(bucket, key)
        log.debug("[objects] exists bucket=%s key=%s path=%s", bucket, key, path)
        try:
            st = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as exc:
            raise FilesystemIOError("stat", path, exc) from exc
        # directories are virtual folders, not objects (same rule as get)
        return stat.S_ISREG(st.st_mode)

    def get(self, bucket: str, key: str) -> BinaryIO:
        """Open an object for reading. The caller closes the returned file."""
        path = self.mapper.resolve(bucket, key)
        log.debug("[objects] get bucket=%s key=%s path=%s", bucket, key, path)
        try:
            return open(path, "rb")
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            raise ObjectNotFound(bucket, key) from None
        except OSError as exc:
            raise FilesystemIOError("open", path, exc) from exc

    def list_objects(self, bucket: str, prefix: str = "") -> List[str]:
        """
        Entries directly below prefix, joined with it. One level only, in
        directory order.
        """
        path = self.mapper.resolve_prefix(bucket, prefix)
        log.debug("[objects] list_objects bucket=%s prefix=%s path=%s", bucket, prefix, path)

        base = prefix.rstrip(DELIMITER)
        return [
            f"{base}{DELIMITER}{entry.name}" if base else entry.name
            for entry in self._scan(path)
        ]

    def list_common_prefixes(self, bucket: str, prefix: str = "", delimiter: str = DELIMITER) -> List[str]:
        """Names of the subdirectories under prefix. Plain files are skipped."""
        path = self.mapper.resolve_prefix(bucket, prefix, delimiter)
        log.debug(
            "[objects] list_common_prefixes bucket=%s prefix=%s delimiter=%s path=%s",
            bucket, prefix, delimiter, path,
        )
        dirs = []
        for entry in self._scan(path):
            try:
                if entry.is_dir():
                    dirs.append(entry.name)
            except OSError as exc:
                raise FilesystemIOError("stat", Path(entry.path), exc) from exc
        return dirs

    def _scan(self, path: Path) -> List[os.DirEntry]:
        try:
            with os.scandir(path) as it:
                return list(it)
        except (FileNotFoundError, NotADirectoryError):
            return []
        except OSError as exc:
            raise FilesystemIOError("list", path, exc) from exc

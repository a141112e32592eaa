# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/volstore/signing/signer.py
from __future__ import annotations

import hashlib
import hmac
import time
from datetime import timedelta
from typing import Callable, Optional, Union
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from volstore.errors import SigningError

EXPIRES_PARAM = "expires"
SIGNATURE_PARAM = "signature"


class URLSigner:
    """
    HMAC-SHA256 over (namespace, decoded path, expiry), keyed by a shared secret.

    The plugin signs, the file server sidecar verifies; both read the secret
    from the same Kubernetes Secret.
    """

    def __init__(
        self,
        secret: Optional[Union[str, bytes]],
        *,
        clock: Callable[[], float] = time.time,
    ):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._secret = secret or None
        self.clock = clock

    def _key(self) -> bytes:
        if not self._secret:
            raise SigningError("no signing secret configured (LOCAL_VOLUME_SIGNING_SECRET)")
        return self._secret

    def signature(self, path: str, namespace: str, expires: int) -> str:
        message = f"{namespace}\n{path}\n{expires}".encode("utf-8")
        return hmac.new(self._key(), message, hashlib.sha256).hexdigest()

    def sign_url(self, url: str, namespace: str, ttl: timedelta) -> str:
        """Append expires and signature query parameters to url."""
        if not namespace:
            raise SigningError("namespace is required to sign a URL")
        seconds = ttl.total_seconds()
        if seconds <= 0:
            raise SigningError(f"ttl must be positive, got {ttl}")

        parts = urlsplit(url)
        expires = int(self.clock() + seconds)
        sig = self.signature(unquote(parts.path), namespace, expires)

        query = parse_qsl(parts.query, keep_blank_values=True)
        query += [(EXPIRES_PARAM, str(expires)), (SIGNATURE_PARAM, sig)]
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    def verify(self, path: str, namespace: str, expires: Union[str, int, None], signature: Optional[str]) -> bool:
        """
        True when signature matches and expires is still in the future.
        Raises SigningError only when no secret is configured.
        """
        key = self._key()
        if not signature or expires is None:
            return False
        try:
            expires_at = int(expires)
        except (TypeError, ValueError):
            return False
        if expires_at < self.clock():
            return False

        message = f"{namespace}\n{path}\n{expires_at}".encode("utf-8")
        expected = hmac.new(key, message, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))

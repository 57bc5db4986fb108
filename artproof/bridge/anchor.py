"""Anchor capability: off-chain, content-addressed storage.

On-chain metadata is capped at 100 bytes, so the full metadata JSON and
the image live here and only the returned URL goes on-chain.

``LocalAnchor`` layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
and its URLs are ``<base_url><sha256>``.  There is no delete.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from artproof.core.hasher import canonical_json_bytes, sha256_hex

logger = logging.getLogger(__name__)


class AnchorIntegrityError(RuntimeError):
    """Raised when stored bytes no longer match their address."""


@runtime_checkable
class Anchor(Protocol):
    def put_blob(self, data: bytes, name: str) -> str:
        """Store raw bytes and return a URL for them."""
        ...

    def put_json(self, obj: Any, name: str) -> str:
        """Store a JSON document and return a URL for it."""
        ...


class LocalAnchor:
    """Filesystem anchor keyed by SHA-256.

    Storing the same content twice is a no-op.

    Parameters
    ----------
    base_path:
        Root directory for stored content.
    base_url:
        URL prefix placed before the digest, e.g. ``ipfs://``.
    """

    def __init__(self, base_path: Path, base_url: str = "ipfs://") -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url

    def _path(self, digest: str) -> Path:
        return self._base / digest[:2] / digest[2:4] / f"{digest}.dat"

    def _digest_from_url(self, url: str) -> str:
        return url.removeprefix(self.base_url)

    # ------------------------------------------------------------------
    # Anchor protocol
    # ------------------------------------------------------------------

    def put_blob(self, data: bytes, name: str) -> str:
        digest = sha256_hex(data)
        path = self._path(digest)
        if path.exists():
            if not self.verify(digest):
                raise AnchorIntegrityError(f"Stored content at {digest} failed integrity check")
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        url = f"{self.base_url}{digest}"
        logger.debug("Anchored %s (%d bytes) at %s", name, len(data), url)
        return url

    def put_json(self, obj: Any, name: str) -> str:
        return self.put_blob(canonical_json_bytes(obj), name)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def retrieve(self, url: str) -> bytes:
        path = self._path(self._digest_from_url(url))
        if not path.exists():
            raise FileNotFoundError(f"Anchored content not found: {url}")
        return path.read_bytes()

    def exists(self, url: str) -> bool:
        return self._path(self._digest_from_url(url)).exists()

    def verify(self, url_or_digest: str) -> bool:
        """Re-hash stored bytes and compare against their address."""
        digest = self._digest_from_url(url_or_digest)
        path = self._path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest

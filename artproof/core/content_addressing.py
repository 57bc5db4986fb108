"""Content addressing: canonical metadata and artwork fingerprints.

Only semantically meaningful metadata takes part in the fingerprint:
name, description, attributes sorted by trait, and the optional creator
fields.  Timestamps and UI state are discarded so the same artwork
always hashes the same way.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from artproof.core.errors import InvalidInput
from artproof.core.hasher import canonical_json, sha256_hex
from artproof.models.content import ContentFingerprint

logger = logging.getLogger(__name__)

_ATTRIBUTE_KEYS = ("trait_type", "value", "display_type")
_CREATOR_KEYS = ("creator", "creator_did")


def _canonical_attributes(attributes: Any) -> list[dict[str, Any]]:
    if attributes is None:
        return []
    if not isinstance(attributes, (list, tuple)):
        raise InvalidInput("metadata.attributes must be a list")
    cleaned: list[dict[str, Any]] = []
    for attr in attributes:
        if not isinstance(attr, Mapping):
            raise InvalidInput("each attribute must be a mapping", attribute=attr)
        item = {"trait_type": str(attr.get("trait_type", "")), "value": attr.get("value", "")}
        if attr.get("display_type") is not None:
            item["display_type"] = attr["display_type"]
        cleaned.append(item)
    # Ties on trait_type are broken by the canonical form of the whole item
    return sorted(cleaned, key=lambda a: (a["trait_type"], canonical_json(a)))


def canonical_metadata(metadata: Mapping[str, Any]) -> dict[str, Any]:
    """Extract the meaningful subset of *metadata* as a plain dict.

    Raises ``InvalidInput`` if metadata is not a mapping or has no name.
    """
    if not isinstance(metadata, Mapping):
        raise InvalidInput("metadata must be a mapping")
    name = metadata.get("name")
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput("metadata.name is required")

    canonical: dict[str, Any] = {
        "name": name,
        "description": metadata.get("description") or "",
        "attributes": _canonical_attributes(metadata.get("attributes")),
    }
    for key in _CREATOR_KEYS:
        if metadata.get(key):
            canonical[key] = metadata[key]
    return canonical


def canonicalize(metadata: Mapping[str, Any]) -> str:
    """Canonical JSON string of the meaningful metadata fields."""
    return canonical_json(canonical_metadata(metadata))


def compute_content_fingerprint(
    image_bytes: bytes, metadata: Mapping[str, Any]
) -> ContentFingerprint:
    """Fingerprint an artwork.

    Parameters
    ----------
    image_bytes:
        The raw image.  Must be non-empty.
    metadata:
        NFT-style metadata; ``name`` is required.

    Returns
    -------
    ContentFingerprint
        ``image_hash = sha256(image)``, ``metadata_hash = sha256(canonical)``,
        ``content_hash = sha256(image_hash ++ canonical)``.
    """
    if not isinstance(image_bytes, (bytes, bytearray)) or not image_bytes:
        raise InvalidInput("image bytes are empty")

    canonical = canonicalize(metadata)
    image_hash = sha256_hex(bytes(image_bytes))
    metadata_hash = sha256_hex(canonical)
    content_hash = sha256_hex(image_hash + canonical)

    logger.debug(
        "Fingerprinted %r: %d bytes, content_hash=%s",
        metadata.get("name"), len(image_bytes), content_hash,
    )
    return ContentFingerprint(
        image_hash=image_hash,
        metadata_hash=metadata_hash,
        content_hash=content_hash,
        canonical_metadata=canonical,
        byte_size=len(image_bytes),
    )


def verify_content(
    image_bytes: bytes, metadata: Mapping[str, Any], expected_hash: str
) -> bool:
    """Recompute the content hash and compare.  Invalid input is simply False."""
    try:
        fingerprint = compute_content_fingerprint(image_bytes, metadata)
    except InvalidInput as exc:
        logger.warning("Content verification rejected input: %s", exc)
        return False
    return fingerprint.content_hash == (expected_hash or "").lower()


def format_fingerprint(digest: str, width: int = 8) -> str:
    """Abbreviated display form: first and last *width* chars."""
    if not digest or len(digest) <= width * 2:
        return digest or ""
    return f"{digest[:width]}...{digest[-width:]}"

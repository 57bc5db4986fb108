"""Artwork finalization: fingerprint, anchor the image, enhance metadata.

The enhanced metadata is what gets published off-chain at mint time; it
embeds the fingerprint so anyone holding the image can re-verify it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from artproof.bridge.anchor import Anchor
from artproof.core.content_addressing import compute_content_fingerprint
from artproof.core.errors import InvalidInput
from artproof.core.hasher import sha256_hex
from artproof.models.content import FinalizedArtwork

logger = logging.getLogger(__name__)

AI_GENERATED = "AI"
DIGITAL_PAINTING = "Digital Painting"


def artwork_file_name(content_hash: str, image_format: str) -> str:
    return f"artwork-{content_hash[:16]}.{image_format.lower().lstrip('.')}"


def finalize_artwork(
    image_bytes: bytes,
    metadata: Mapping[str, Any],
    anchor: Anchor,
    *,
    image_format: str = "png",
    extra_fields: Mapping[str, Any] | None = None,
) -> FinalizedArtwork:
    """Fingerprint *image_bytes*, anchor it, and build the enhanced metadata.

    ``extra_fields`` are added to the enhanced metadata only; they do not
    take part in the fingerprint.
    """
    fingerprint = compute_content_fingerprint(image_bytes, metadata)
    name = artwork_file_name(fingerprint.content_hash, image_format)
    image_url = anchor.put_blob(bytes(image_bytes), name)

    enhanced: dict[str, Any] = dict(metadata)
    enhanced.update(extra_fields or {})
    enhanced.update({
        "image": image_url,
        "content_hash": fingerprint.content_hash,
        "image_hash": fingerprint.image_hash,
        "metadata_hash": fingerprint.metadata_hash,
        "image_size_bytes": fingerprint.byte_size,
        "finalized_at": datetime.now(timezone.utc).isoformat(),
    })
    logger.info("Finalized %r as %s", metadata.get("name"), name)
    return FinalizedArtwork(
        fingerprint=fingerprint,
        image_url=image_url,
        image_name=name,
        metadata=dict(metadata),
        enhanced_metadata=enhanced,
    )


def finalize_ai_artwork(
    image_bytes: bytes,
    metadata: Mapping[str, Any],
    anchor: Anchor,
    prompt: str,
    *,
    image_format: str = "png",
) -> FinalizedArtwork:
    """Finalize AI-generated art.  Only a hash of the prompt is published."""
    if not prompt or not prompt.strip():
        raise InvalidInput("AI artwork requires the generation prompt")
    return finalize_artwork(
        image_bytes,
        metadata,
        anchor,
        image_format=image_format,
        extra_fields={
            "ai_generated": True,
            "ai_prompt_hash": sha256_hex(prompt),
            "generation_method": AI_GENERATED,
        },
    )


def finalize_painted_artwork(
    image_bytes: bytes,
    metadata: Mapping[str, Any],
    anchor: Anchor,
    *,
    image_format: str = "png",
) -> FinalizedArtwork:
    return finalize_artwork(
        image_bytes,
        metadata,
        anchor,
        image_format=image_format,
        extra_fields={"ai_generated": False, "generation_method": DIGITAL_PAINTING},
    )


def verify_artwork_integrity(image_bytes: bytes, artwork: FinalizedArtwork) -> bool:
    """Recompute the fingerprint of *image_bytes* against a finalized artwork."""
    try:
        recomputed = compute_content_fingerprint(image_bytes, artwork.metadata)
    except InvalidInput:
        return False
    return recomputed.content_hash == artwork.fingerprint.content_hash

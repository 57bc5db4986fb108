"""Content fingerprint models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ContentFingerprint(BaseModel):
    """Tamper-evident identity of an artwork.

    ``content_hash = sha256(image_hash ++ canonical_metadata)``.
    """

    model_config = ConfigDict(frozen=True)

    image_hash: str
    metadata_hash: str
    content_hash: str
    canonical_metadata: str
    byte_size: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FinalizedArtwork(BaseModel):
    """An artwork whose image is anchored and whose metadata is enhanced."""

    model_config = ConfigDict(frozen=True)

    fingerprint: ContentFingerprint
    image_url: str
    image_name: str
    metadata: dict[str, Any]  # the caller's metadata, as fingerprinted
    enhanced_metadata: dict[str, Any]  # off-chain JSON published at mint time

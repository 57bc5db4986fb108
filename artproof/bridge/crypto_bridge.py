"""Crypto bridge: Ed25519 identity keys via PyNaCl (libsodium).

DID documents publish the public half of a freshly generated key pair.
Keys are exchanged as hex strings everywhere in the pipeline.
"""

from __future__ import annotations

import hashlib
import logging

import nacl.exceptions
import nacl.signing

logger = logging.getLogger(__name__)


def generate_keypair() -> tuple[str, str]:
    """Generate an Ed25519 key pair.

    Returns
    -------
    tuple[str, str]
        ``(private_key_hex, public_key_hex)``
    """
    sk = nacl.signing.SigningKey.generate()
    return (sk.encode().hex(), sk.verify_key.encode().hex())


def sign_data(data: bytes, private_key: str) -> str:
    """Sign *data* and return the hex-encoded 64-byte signature."""
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    return sk.sign(data).signature.hex()


def verify_data(data: bytes, signature: str, public_key: str) -> bool:
    """Verify a hex signature against *public_key*.  Malformed input is False."""
    try:
        vk = nacl.signing.VerifyKey(bytes.fromhex(public_key))
        vk.verify(data, bytes.fromhex(signature))
    except (nacl.exceptions.BadSignatureError, ValueError, TypeError) as exc:
        logger.debug("Signature verification failed: %s", exc)
        return False
    return True


def key_fingerprint(public_key: str) -> str:
    """Short stable fingerprint of a public key (first 16 hex of SHA-256)."""
    if not public_key:
        return ""
    return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:16]

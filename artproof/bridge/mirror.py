"""Mirror capability: read-only, eventually consistent ledger queries.

``MirrorClient`` talks to the public Mirror REST API (``/api/v1``) over
httpx.  Missing resources come back as None or empty lists; transport
failures and server errors raise ``MirrorUnavailable`` so callers (and
``MirrorPoller``) can tell "not indexed yet" from "cannot ask".
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import httpx

from artproof.core.errors import MirrorUnavailable
from artproof.models.ledger import to_mirror_transaction_id

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 15.0


@runtime_checkable
class Mirror(Protocol):
    """Read-only query surface over indexed ledger state."""

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None: ...

    def get_account_transactions(
        self,
        account_id: str,
        *,
        transaction_type: str | None = None,
        limit: int = 100,
        order: str = "desc",
    ) -> list[dict[str, Any]]: ...

    def get_topic_messages(
        self, topic_id: str, *, limit: int = 100, order: str = "asc"
    ) -> list[dict[str, Any]]: ...

    def get_topic_message(
        self, topic_id: str, sequence_number: int
    ) -> dict[str, Any] | None: ...

    def get_account(self, account_id: str) -> dict[str, Any] | None: ...

    def get_nft_allowances(self, account_id: str) -> list[dict[str, Any]]: ...

    def get_nft(self, token_id: str, serial_number: int) -> dict[str, Any] | None: ...

    def get_account_tokens(
        self, account_id: str, token_id: str | None = None
    ) -> list[dict[str, Any]]: ...


# ---------------------------------------------------------------------------
# Record decoding helpers
# ---------------------------------------------------------------------------


def decode_base64_text(value: str | None) -> str:
    """Decode a base64 field (memo_base64, message) to text; '' if undecodable."""
    if not value:
        return ""
    try:
        return base64.b64decode(value).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return ""


def decode_message(record: dict[str, Any] | None) -> dict[str, Any] | None:
    """Decode a topic message record's JSON body, or None if it is not JSON."""
    if not record:
        return None
    text = decode_base64_text(record.get("message"))
    if not text:
        return None
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return None
    return body if isinstance(body, dict) else None


def account_public_key(account: dict[str, Any] | None) -> str | None:
    """Extract the account's public key from a Mirror account record."""
    if not account:
        return None
    key = account.get("key")
    if isinstance(key, str):
        return key or None
    if isinstance(key, dict):
        return key.get("key") or key.get("ed25519") or key.get("ECDSA_secp256k1")
    return None


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


class MirrorClient:
    """Mirror REST client.

    Parameters
    ----------
    base_url:
        Mirror root, e.g. ``https://testnet.mirrornode.hedera.com``.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(self, base_url: str, timeout: float = _DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> MirrorClient:
        return cls(cfg.resolved_mirror_url, timeout=cfg.mirror_timeout_seconds)

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """Issue one GET against ``/api/v1``.  None means 404 / no content."""
        url = f"{self.base_url}/api/v1/{path.lstrip('/')}"
        try:
            resp = httpx.get(url, params=params, timeout=self.timeout)
            if resp.status_code == 404 or resp.status_code == 204 or not resp.content:
                return None
            resp.raise_for_status()
        except (httpx.HTTPStatusError, httpx.RequestError) as exc:
            logger.warning("Mirror request to %s failed: %s", url, exc)
            raise MirrorUnavailable(f"mirror request failed: {exc}", url=url) from exc
        try:
            body = resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            logger.warning("Non-JSON response from %s (status %d)", url, resp.status_code)
            raise MirrorUnavailable("mirror returned non-JSON body", url=url) from exc
        return body if isinstance(body, dict) else None

    def _get_list(self, path: str, key: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        body = self._get(path, params)
        if not body:
            return []
        return list(body.get(key) or [])

    # ------------------------------------------------------------------
    # Mirror protocol
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        records = self._get_list(
            f"transactions/{to_mirror_transaction_id(transaction_id)}", "transactions"
        )
        return records[0] if records else None

    def get_account_transactions(
        self,
        account_id: str,
        *,
        transaction_type: str | None = None,
        limit: int = 100,
        order: str = "desc",
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"account.id": account_id, "limit": limit, "order": order}
        if transaction_type:
            params["transactiontype"] = transaction_type
        return self._get_list("transactions", "transactions", params)

    def get_topic_messages(
        self, topic_id: str, *, limit: int = 100, order: str = "asc"
    ) -> list[dict[str, Any]]:
        return self._get_list(
            f"topics/{topic_id}/messages", "messages", {"limit": limit, "order": order}
        )

    def get_topic_message(
        self, topic_id: str, sequence_number: int
    ) -> dict[str, Any] | None:
        return self._get(f"topics/{topic_id}/messages/{sequence_number}")

    def get_account(self, account_id: str) -> dict[str, Any] | None:
        return self._get(f"accounts/{account_id}")

    def get_nft_allowances(self, account_id: str) -> list[dict[str, Any]]:
        return self._get_list(f"accounts/{account_id}/allowances/nfts", "allowances")

    def get_nft(self, token_id: str, serial_number: int) -> dict[str, Any] | None:
        return self._get(f"tokens/{token_id}/nfts/{serial_number}")

    def get_account_tokens(
        self, account_id: str, token_id: str | None = None
    ) -> list[dict[str, Any]]:
        params = {"token.id": token_id} if token_id else None
        return self._get_list(f"accounts/{account_id}/tokens", "tokens", params)


def consensus_to_datetime(timestamp: str | None) -> datetime | None:
    """Convert a Mirror consensus timestamp (``seconds.nanos``) to UTC."""
    if not timestamp:
        return None
    try:
        return datetime.fromtimestamp(float(timestamp), tz=timezone.utc)
    except (TypeError, ValueError):
        return None

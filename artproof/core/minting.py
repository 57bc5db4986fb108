"""NFT minting: CreateCollection -> AssociateToken -> Mint.

Each step is gated by a Signer interaction.  Created ids come only from
the Mirror, administrative keys come only from the owner's account
record on the ledger, and the on-chain metadata is only ever an Anchor
URL of at most ``max_metadata_bytes`` (100) bytes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from artproof.bridge.anchor import Anchor
from artproof.bridge.mirror import Mirror, account_public_key
from artproof.bridge.signer import Signer, sign_and_submit
from artproof.config import ArtproofConfig
from artproof.core.errors import (
    AlreadyAssociated,
    InvalidInput,
    MetadataTooLarge,
    MirrorTimeout,
)
from artproof.core.poller import MirrorPoller, PollPolicy
from artproof.models.ledger import LedgerTransaction, TransactionKind, require_entity_id
from artproof.models.minting import (
    AssociationResult,
    CollectionOptions,
    CollectionResult,
    MintedAsset,
    MintWorkflowResult,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]

_ADMIN_KEYS = ("admin_key", "supply_key", "pause_key", "freeze_key", "wipe_key")


class MintingOrchestrator:
    """Runs the three minting steps against an injected Signer.

    Parameters
    ----------
    signer:
        Wallet session of the collection owner.
    mirror:
        Read-only ledger query surface; source of truth for created ids.
    anchor:
        Off-chain storage for the full metadata JSON.
    poller:
        Shared ``MirrorPoller``.
    """

    def __init__(
        self,
        signer: Signer,
        mirror: Mirror,
        anchor: Anchor,
        *,
        poller: MirrorPoller | None = None,
        config: ArtproofConfig | None = None,
    ) -> None:
        self._config = config or ArtproofConfig()
        self._signer = signer
        self._mirror = mirror
        self._anchor = anchor
        self._poller = poller or MirrorPoller(PollPolicy.from_config(self._config))

    # ------------------------------------------------------------------
    # Step 1: collection
    # ------------------------------------------------------------------

    def resolve_owner_key(self, owner_account: str) -> str:
        """Read the owner's public key from the ledger, never from the caller."""
        account = self._mirror.get_account(owner_account)
        if account is None:
            raise InvalidInput("owner account not found on the mirror", owner=owner_account)
        key = account_public_key(account)
        if not key:
            raise InvalidInput("owner account has no public key", owner=owner_account)
        return key

    def create_collection(
        self, owner_account: str, options: CollectionOptions | None = None
    ) -> CollectionResult:
        """Create a finite-supply NFT collection owned by *owner_account*."""
        require_entity_id(owner_account, "owner_account")
        if self._signer.account_id != owner_account:
            raise InvalidInput(
                "signer account does not match the collection owner",
                signer_account=self._signer.account_id,
                owner=owner_account,
            )
        options = options or CollectionOptions()
        owner_key = self.resolve_owner_key(owner_account)

        body: dict[str, Any] = {
            "name": options.name,
            "symbol": options.symbol,
            "token_type": "NON_FUNGIBLE_UNIQUE",
            "supply_type": "FINITE",
            "max_supply": options.max_supply,
            "decimals": 0,
            "initial_supply": 0,
            "treasury_account_id": owner_account,
        }
        body.update({name: owner_key for name in _ADMIN_KEYS})

        tx_id, _ = sign_and_submit(
            self._signer,
            LedgerTransaction(
                kind=TransactionKind.TOKEN_CREATE,
                memo=options.memo,
                body=body,
                max_fee_tinybars=self._config.token_create_max_fee,
            ),
        )
        record = self._poller.wait_for_transaction(
            self._mirror, tx_id, require_entity=True, description="collection creation"
        )
        collection_id = record["entity_id"]
        logger.info("Collection %s created for %s (%s)", collection_id, owner_account, tx_id)
        return CollectionResult(
            collection_id=collection_id,
            transaction_id=tx_id,
            owner_account=owner_account,
            max_supply=options.max_supply,
        )

    # ------------------------------------------------------------------
    # Step 2: association
    # ------------------------------------------------------------------

    def associate(self, collection_id: str, owner_account: str) -> AssociationResult:
        """Associate *owner_account* with the collection.  Already associated is success."""
        require_entity_id(collection_id, "collection_id")
        require_entity_id(owner_account, "owner_account")
        tx = LedgerTransaction(
            kind=TransactionKind.TOKEN_ASSOCIATE,
            body={"account_id": owner_account, "token_ids": [collection_id]},
            max_fee_tinybars=self._config.token_associate_max_fee,
        )
        try:
            tx_id, response = sign_and_submit(self._signer, tx)
            if response.is_unknown:
                self._poller.wait_for_transaction(
                    self._mirror, tx_id, description="token association"
                )
        except AlreadyAssociated:
            logger.info("%s already associated with %s", owner_account, collection_id)
            return AssociationResult(
                token_id=collection_id,
                account_id=owner_account,
                associated=True,
                already_associated=True,
            )
        return AssociationResult(
            token_id=collection_id,
            account_id=owner_account,
            associated=True,
            transaction_id=tx_id,
        )

    # ------------------------------------------------------------------
    # Step 3: mint
    # ------------------------------------------------------------------

    def mint(
        self, collection_id: str, metadata: dict[str, Any], *, name: str = "metadata"
    ) -> MintedAsset:
        """Anchor *metadata*, then mint one serial pointing at its URL.

        Raises ``MetadataTooLarge`` before any submission if the URL
        exceeds the on-chain byte limit.
        """
        require_entity_id(collection_id, "collection_id")
        if not isinstance(metadata, dict) or not metadata:
            raise InvalidInput("mint metadata must be a non-empty mapping")

        pointer = self._anchor.put_json(metadata, f"{name}.json")
        size = len(pointer.encode("utf-8"))
        limit = self._config.max_metadata_bytes
        if size > limit:
            raise MetadataTooLarge(
                "metadata pointer exceeds the on-chain limit",
                size=size, limit=limit, pointer=pointer,
            )

        tx_id, response = sign_and_submit(
            self._signer,
            LedgerTransaction(
                kind=TransactionKind.TOKEN_MINT,
                body={"token_id": collection_id, "metadata": [pointer]},
                max_fee_tinybars=self._config.token_mint_max_fee,
            ),
        )

        if response.serials:
            serial, source = response.serials[0], "signer"
        else:
            serial, source = self._serial_from_mirror(tx_id, unknown=response.is_unknown)

        asset = MintedAsset(
            collection_id=collection_id,
            serial_number=serial,
            transaction_id=tx_id,
            on_chain_metadata_pointer=pointer,
            off_chain_metadata=metadata,
            serial_source=source,
        )
        logger.info("Minted %s (%s, serial from %s)", asset.nft_id, tx_id, source)
        return asset

    def _serial_from_mirror(self, tx_id: str, *, unknown: bool) -> tuple[int, str]:
        try:
            record = self._poller.wait_for_transaction(
                self._mirror, tx_id, description="mint confirmation"
            )
        except MirrorTimeout:
            if unknown:
                # Nothing says the mint happened
                raise
            logger.warning("Mint %s not indexed in time; assuming serial 1", tx_id)
            return 1, "default"
        for transfer in record.get("nft_transfers") or []:
            if transfer.get("serial_number") is not None:
                return int(transfer["serial_number"]), "mirror"
        return 1, "default"

    # ------------------------------------------------------------------
    # Full workflow
    # ------------------------------------------------------------------

    def run_workflow(
        self,
        owner_account: str,
        metadata: dict[str, Any],
        options: CollectionOptions | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> MintWorkflowResult:
        """Create, associate and mint in order, reporting progress between steps.

        ``on_progress(step, message)`` is an observer only; its failures are
        logged and never change the workflow.
        """

        def _report(step: str, message: str) -> None:
            if on_progress is None:
                return
            try:
                on_progress(step, message)
            except Exception:
                logger.exception("Progress callback failed at %s", step)

        _report("collection", "Creating NFT collection...")
        collection = self.create_collection(owner_account, options)
        _report("collection", f"Collection created: {collection.collection_id}")

        _report("association", "Associating collection with owner account...")
        association = self.associate(collection.collection_id, owner_account)
        _report("association", "Association confirmed")

        _report("mint", "Uploading metadata and minting...")
        minted = self.mint(
            collection.collection_id, metadata, name=str(metadata.get("name") or "metadata")
        )
        _report("mint", f"Minted {minted.nft_id}")
        return MintWorkflowResult(collection=collection, association=association, mint=minted)

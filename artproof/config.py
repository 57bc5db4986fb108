"""Runtime configuration: env-driven via pydantic-settings.

Reads from a .env file and ARTPROOF_* environment variables.  Poll,
retry and fee settings feed the orchestrators; paths feed the local
journal, record cache and anchor store.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

MIRROR_URLS: dict[str, str] = {
    "mainnet": "https://mainnet-public.mirrornode.hedera.com",
    "testnet": "https://testnet.mirrornode.hedera.com",
    "previewnet": "https://previewnet.mirrornode.hedera.com",
}


class ArtproofConfig(BaseSettings):
    """Pipeline configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export ARTPROOF_NETWORK=mainnet
        export ARTPROOF_MARKETPLACE_OPERATOR_ID=0.0.4821
        export ARTPROOF_POLL_MAX_ATTEMPTS=8

    Or via .env file::

        ARTPROOF_ENVIRONMENT=production
        ARTPROOF_ATTESTATION_TOPIC_ID=0.0.90210
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ARTPROOF_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Ledger network
    network: str = "testnet"
    mirror_url: str = ""  # derived from network when empty
    mirror_timeout_seconds: float = 15.0
    platform_name: str = "artproof"

    # Storage paths
    journal_path: Path = Path(".artproof/journal.db")
    cache_path: Path = Path(".artproof/records.db")
    anchor_path: Path = Path(".artproof/anchor")
    anchor_base_url: str = "ipfs://"

    # Marketplace and attestation topics
    marketplace_operator_id: str = ""
    attestation_topic_id: str = ""  # global topic; per-creator topics when empty

    # Mirror polling
    poll_initial_delay: float = 3.0
    poll_max_attempts: int = 10
    poll_step: float = 2.0
    poll_max_delay: float = 10.0
    poll_timeout: float = 90.0

    # Marketplace transfer confirmation
    transfer_max_retries: int = 3
    transfer_retry_delay: float = 4.0
    association_settle_delay: float = 2.0
    purchase_gas: int = 500_000

    # Ledger limits and fees (tinybars)
    max_metadata_bytes: int = 100
    max_message_bytes: int = 4096  # chunked topic messages
    token_create_max_fee: int = 20 * 100_000_000
    token_associate_max_fee: int = 5 * 100_000_000
    token_mint_max_fee: int = 10 * 100_000_000
    topic_max_fee: int = 2 * 100_000_000
    allowance_max_fee: int = 15 * 100_000_000

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"

    @property
    def resolved_mirror_url(self) -> str:
        """Mirror base URL, falling back to the public node for ``network``."""
        if self.mirror_url:
            return self.mirror_url.rstrip("/")
        return MIRROR_URLS.get(self.network, MIRROR_URLS["testnet"])


# Module-level singleton: import as `from artproof.config import config`
config = ArtproofConfig()

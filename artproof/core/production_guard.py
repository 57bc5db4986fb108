"""Production configuration guard: enforces hard constraints in production.

Runs once when a pipeline is constructed and fails hard (raises
``ProductionConfigError``) if any constraint is violated.  Other code
should not scatter ``if is_production`` checks.
"""

from __future__ import annotations

import logging

from artproof.config import ArtproofConfig
from artproof.models.ledger import is_entity_id

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The process should exit; this must not be caught and ignored.
    """


def enforce_production_constraints(config: ArtproofConfig) -> None:
    """Validate production-critical configuration.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. The network must be ``mainnet``.
    3. The Mirror must be reached over https.
    4. The marketplace operator must be a valid ``shard.realm.num`` id.
    5. The on-chain metadata limit must not exceed the ledger's 100 bytes.

    Raises
    ------
    ProductionConfigError
        Listing every violated constraint.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. Set ARTPROOF_DEBUG=false."
        )

    if config.network != "mainnet":
        violations.append(
            f"network={config.network!r} in production. Set ARTPROOF_NETWORK=mainnet."
        )

    if not config.resolved_mirror_url.startswith("https://"):
        violations.append(
            f"mirror_url {config.resolved_mirror_url!r} is not https."
        )

    if not is_entity_id(config.marketplace_operator_id):
        violations.append(
            "marketplace_operator_id is required in production. "
            "Set ARTPROOF_MARKETPLACE_OPERATOR_ID."
        )

    if config.max_metadata_bytes > 100:
        violations.append(
            f"max_metadata_bytes={config.max_metadata_bytes} exceeds the ledger limit of 100."
        )

    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")

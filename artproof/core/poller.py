"""Bounded Mirror polling: the one retry loop in the pipeline.

Every step that submits a transaction and then needs to see its effect
on the Mirror goes through ``MirrorPoller.poll_until``.  Only reads are
retried here; transactions are never resubmitted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from artproof.core.errors import (
    MirrorTimeout,
    MirrorUnavailable,
    TransactionFailed,
    classify_signer_error,
)

if TYPE_CHECKING:
    from artproof.bridge.mirror import Mirror

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollPolicy(BaseModel):
    """Attempt budget and wait schedule for ``poll_until``.

    Attempt 1 waits ``initial_delay``; attempt *k* > 1 waits
    ``min(step * k, max_delay)`` unless a custom backoff is given.
    ``timeout`` bounds the total wall-clock time across all attempts.
    """

    model_config = ConfigDict(frozen=True)

    initial_delay: float = Field(default=3.0, ge=0)
    max_attempts: int = Field(default=10, ge=1)
    step: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    timeout: float | None = 90.0

    def linear_backoff(self, attempt: int) -> float:
        return min(self.step * attempt, self.max_delay)

    @classmethod
    def from_config(cls, cfg) -> PollPolicy:
        """Build a policy from an ``ArtproofConfig``."""
        return cls(
            initial_delay=cfg.poll_initial_delay,
            max_attempts=cfg.poll_max_attempts,
            step=cfg.poll_step,
            max_delay=cfg.poll_max_delay,
            timeout=cfg.poll_timeout,
        )


class MirrorPoller:
    """Bounded poll-until-predicate helper.

    Parameters
    ----------
    policy:
        Default policy; each call may override it.
    sleep:
        Injected sleep function (tests pass a recorder).
    clock:
        Injected monotonic clock used for the overall timeout.
    """

    def __init__(
        self,
        policy: PollPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or PollPolicy()
        self._sleep = sleep
        self._clock = clock

    def poll_until(
        self,
        query_fn: Callable[[], T],
        predicate: Callable[[T], bool],
        *,
        policy: PollPolicy | None = None,
        backoff: Callable[[int], float] | None = None,
        description: str = "mirror query",
    ) -> T:
        """Call *query_fn* until *predicate* holds on its result.

        ``MirrorUnavailable`` from the query counts as a failed attempt.

        Returns
        -------
        T
            The first result for which the predicate held.

        Raises
        ------
        MirrorTimeout
            When attempts or the overall timeout run out.  Carries the last
            observed result, the attempt count and the last transport error.
        """
        policy = policy or self.policy
        backoff = backoff or policy.linear_backoff
        deadline = (
            self._clock() + policy.timeout if policy.timeout is not None else None
        )

        last_result: T | None = None
        last_error: MirrorUnavailable | None = None
        attempts = 0

        for attempt in range(1, policy.max_attempts + 1):
            delay = policy.initial_delay if attempt == 1 else backoff(attempt)
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                delay = min(delay, remaining)
            if delay > 0:
                self._sleep(delay)

            attempts = attempt
            try:
                result = query_fn()
            except MirrorUnavailable as exc:
                last_error = exc
                logger.warning(
                    "%s: mirror unavailable (attempt %d/%d): %s",
                    description, attempt, policy.max_attempts, exc,
                )
                continue

            last_result = result
            if predicate(result):
                logger.debug("%s: satisfied on attempt %d", description, attempt)
                return result
            logger.debug(
                "%s: not yet visible (attempt %d/%d)",
                description, attempt, policy.max_attempts,
            )

        raise MirrorTimeout(
            f"{description} did not succeed after {attempts} attempts",
            last_result=last_result,
            attempts=attempts,
            last_error=last_error,
        )

    def wait_for_transaction(
        self,
        mirror: Mirror,
        transaction_id: str,
        *,
        require_entity: bool = False,
        policy: PollPolicy | None = None,
        description: str | None = None,
    ) -> dict[str, Any]:
        """Poll until *transaction_id* is indexed, then check its result.

        Returns the Mirror transaction record.  A non-SUCCESS result is
        raised as a typed error; with ``require_entity`` a successful
        record without ``entity_id`` is a ``TransactionFailed``.
        """
        label = description or f"transaction {transaction_id}"
        record = self.poll_until(
            lambda: mirror.get_transaction(transaction_id),
            lambda r: r is not None,
            policy=policy,
            description=label,
        )
        result = record.get("result") or "UNKNOWN"
        if result != "SUCCESS":
            raise classify_signer_error(result, transaction_id=transaction_id)
        if require_entity and not record.get("entity_id"):
            raise TransactionFailed(
                f"{label}: mirror record has no created entity id",
                transaction_id=transaction_id,
            )
        return record

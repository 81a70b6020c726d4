"""
Push with bounded fetch-merge-retry.

git only accepts fast-forward pushes. When another clone pushed first, the
push is rejected; the coordinator then reconciles (fetch, three-way merge,
commit with the remote tip as parent) and pushes again, up to
``max_retries`` attempts.

The coordinator is pure control flow: the git work is injected as three
callables so the state machine can be exercised without a repository.
"""

import logging
from collections.abc import Callable

from tbd.core.merge.models import ConflictEntry
from tbd.core.sync.models import PushAttempt, PushAttemptStatus, PushOutcome, PushResult

logger = logging.getLogger(__name__)

MAX_RETRIES = 3


class PushRetryCoordinator:
    """
    Drives push attempts until the remote accepts or retries run out.

    Args:
        push: Pushes the local tip and classifies the answer
        reconcile: Fetches and merges the remote; returns the conflicts it
            resolved (already archived)
        verify: Confirms the remote tip equals or contains what was pushed
        max_retries: Maximum number of push attempts
        stop_on_conflicts: Return CONFLICTS_PENDING after a reconcile that
            produced conflicts instead of retrying

    Example:
        >>> coordinator = PushRetryCoordinator(push, reconcile, verify)
        >>> result = coordinator.run()
        >>> if not result.success:
        ...     print(result.error)
    """

    def __init__(
        self,
        push: Callable[[], PushAttempt],
        reconcile: Callable[[], list[ConflictEntry]],
        verify: Callable[[str | None], bool],
        max_retries: int = MAX_RETRIES,
        stop_on_conflicts: bool = False,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.push = push
        self.reconcile = reconcile
        self.verify = verify
        self.max_retries = max_retries
        self.stop_on_conflicts = stop_on_conflicts

    def run(self) -> PushResult:
        """
        Run the push loop.

        Returns:
            PushResult; ``success`` is True only when the remote provably
            holds the pushed commit
        """
        conflicts: list[ConflictEntry] = []
        last_error: str | None = None

        for attempt_number in range(1, self.max_retries + 1):
            attempt = self.push()
            logger.debug("Push attempt %d: %s", attempt_number, attempt.status.value)

            if attempt.status == PushAttemptStatus.ACCEPTED:
                if self.verify(attempt.pushed_sha):
                    logger.info("Push accepted on attempt %d", attempt_number)
                    return PushResult(
                        outcome=PushOutcome.PUSHED,
                        attempts=attempt_number,
                        pushed_sha=attempt.pushed_sha,
                        conflicts=conflicts,
                    )
                return PushResult(
                    outcome=PushOutcome.FAILED,
                    attempts=attempt_number,
                    error="Push reported success but the remote branch does not "
                    "contain the pushed commit",
                    conflicts=conflicts,
                )

            if attempt.status == PushAttemptStatus.FAILED:
                logger.warning("Push failed: %s", attempt.error)
                return PushResult(
                    outcome=PushOutcome.FAILED,
                    attempts=attempt_number,
                    error=attempt.error or "Push failed",
                    conflicts=conflicts,
                )

            # Non-fast-forward: someone else pushed first
            last_error = attempt.error
            if attempt_number == self.max_retries:
                break

            logger.info(
                "Push rejected (non-fast-forward), reconciling before attempt %d",
                attempt_number + 1,
            )
            try:
                round_conflicts = self.reconcile()
            except Exception as e:
                logger.warning("Reconcile after rejected push failed: %s", e)
                return PushResult(
                    outcome=PushOutcome.FAILED,
                    attempts=attempt_number,
                    error=f"Failed to merge remote changes: {e}",
                    conflicts=conflicts,
                )
            conflicts.extend(round_conflicts)

            if round_conflicts and self.stop_on_conflicts:
                return PushResult(
                    outcome=PushOutcome.CONFLICTS_PENDING,
                    attempts=attempt_number,
                    error=f"{len(round_conflicts)} conflict(s) resolved; review before pushing",
                    conflicts=conflicts,
                )

        return PushResult(
            outcome=PushOutcome.FAILED,
            attempts=self.max_retries,
            error=f"Push still rejected after {self.max_retries} attempts"
            + (f": {last_error}" if last_error else ""),
            conflicts=conflicts,
        )

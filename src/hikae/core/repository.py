"""Readiness gate for the backend repository."""

import logging
import time
from typing import Callable

from hikae.core.hooks import ActionOptions
from hikae.errors import HikaeError

logger = logging.getLogger(__name__)

RepositoryChecker = Callable[[ActionOptions], bool]


class RepositoryNotReadyError(HikaeError):
    """Raised when the repository is still not initialized after the last check."""

    def __init__(self, repository: str, attempts: int) -> None:
        self.repository = repository
        self.attempts = attempts
        super().__init__(
            f"repository {repository or '<unnamed>'} not initialized after {attempts} check(s)"
        )


def wait_for_repository(
    checker: RepositoryChecker,
    opts: ActionOptions,
    interval: float = 5.0,
    max_attempts: int = 360,
) -> int:
    """
    Block until the backend repository reports itself initialized.

    The first check runs immediately; subsequent checks are ``interval``
    seconds apart. A checker that raises counts as "not ready yet".

    Args:
        checker: Callable returning True once the repository is ready
        opts: Action options identifying the target and repository
        interval: Fixed seconds between checks
        max_attempts: Hard ceiling on the number of checks

    Returns:
        Number of checks it took

    Raises:
        RepositoryNotReadyError: If every check came back not-ready
    """
    for attempt in range(1, max_attempts + 1):
        try:
            ready = checker(opts)
        except Exception as exc:
            logger.debug("[%s] Repository check failed: %s", opts.target_ref, exc)
            ready = False
        if ready:
            logger.info(
                "[%s] Repository %s ready (check %d)", opts.target_ref, opts.repository, attempt
            )
            return attempt
        if attempt < max_attempts:
            logger.info(
                "[%s] Waiting %.0fs for repository %s to be initialized (%d/%d)",
                opts.target_ref,
                interval,
                opts.repository,
                attempt,
                max_attempts,
            )
            time.sleep(interval)

    logger.error("[%s] Repository %s never became ready", opts.target_ref, opts.repository)
    raise RepositoryNotReadyError(opts.repository, max_attempts)

"""Bounded polling of cluster state after a backup has finished.

Both loops sleep a fixed interval between attempts and stop at a hard
attempt ceiling, so the worst-case wait is roughly ``interval * attempts``.
Neither raises on timeout; callers inspect the returned ``PollResult``.
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from hikae.verify.workloads import accessor_for

logger = logging.getLogger(__name__)

DEFAULT_SIDECAR_NAME = "hikae"
FAILED_REASON = "Failed"


class PollOutcome(str, enum.Enum):
    OBSERVED_SUCCESS = "ObservedSuccess"
    OBSERVED_FAILURE = "ObservedFailure"
    TIMED_OUT = "TimedOut"
    CONFIRMED = "Confirmed"
    GAVE_UP = "GaveUp"


@dataclass
class PollResult:
    outcome: PollOutcome
    attempts: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome in (PollOutcome.OBSERVED_SUCCESS, PollOutcome.CONFIRMED)


def wait_for_event(
    client: Any,
    namespace: str,
    name: str,
    interval: float = 10.0,
    max_retries: int = 12,
) -> PollResult:
    """
    Wait for a named backup event and report its outcome.

    Only fetch failures consume retries: the event is fetched once, then up to
    ``max_retries`` more times with ``interval`` seconds between fetches.

    Args:
        client: Object with ``get_event(name, namespace) -> dict``
        namespace: Namespace of the event
        name: Event name
        interval: Fixed seconds between fetches
        max_retries: Fetch retries after the first attempt

    Returns:
        OBSERVED_SUCCESS, OBSERVED_FAILURE, or TIMED_OUT with the last fetch error
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            event = client.get_event(name, namespace)
        except Exception as exc:
            if attempt > max_retries:
                logger.error(
                    "Event %s/%s not observed after %d attempt(s): %s",
                    namespace,
                    name,
                    attempt,
                    exc,
                )
                return PollResult(PollOutcome.TIMED_OUT, attempt, error=str(exc))
            logger.info(
                "Waiting %.0fs for event %s/%s of backup process", interval, namespace, name
            )
            time.sleep(interval)
            continue
        break

    reason = event.get("reason", "")
    if reason == FAILED_REASON:
        message = event.get("message") or "backup failed"
        logger.warning("Event %s/%s reports failure: %s", namespace, name, message)
        return PollResult(
            PollOutcome.OBSERVED_FAILURE, attempt, error=f"restic backup failed: {message}"
        )
    logger.info("Event %s/%s observed with reason %s", namespace, name, reason or "<none>")
    return PollResult(PollOutcome.OBSERVED_SUCCESS, attempt)


def _sidecar_present(containers: list[dict[str, Any]], container_name: str) -> bool:
    return any(c.get("name") == container_name for c in containers)


def wait_for_sidecar_removal(
    client: Any,
    namespace: str,
    name: str,
    kind: str,
    container_name: str = DEFAULT_SIDECAR_NAME,
    interval: float = 20.0,
    max_attempts: int = 7,
) -> PollResult:
    """
    Wait until the backup sidecar is gone from a workload's pod template.

    Each attempt sleeps first, then reads the pod template. A failed read
    leaves the attempt inconclusive; the container list is only inspected
    when the read succeeded.

    Args:
        client: Object with ``get_workload(resource, name, namespace) -> dict``
        namespace: Workload namespace
        name: Workload name
        kind: One of ReplicationController, ReplicaSet, Deployment, DaemonSet
        container_name: Name of the sidecar container
        interval: Fixed seconds slept before each read
        max_attempts: Hard ceiling on reads

    Returns:
        CONFIRMED once the sidecar is absent, GAVE_UP otherwise

    Raises:
        ValueError: For an unsupported workload kind (before any polling)
    """
    accessor = accessor_for(kind)
    last_error: Optional[str] = None

    for attempt in range(1, max_attempts + 1):
        logger.info("Waiting %.0fs before checking %s sidecar removal", interval, container_name)
        time.sleep(interval)
        try:
            containers = accessor.containers(client, name, namespace)
        except Exception as exc:
            last_error = str(exc)
            logger.debug("Could not read %s %s/%s: %s", kind, namespace, name, exc)
            continue
        if not _sidecar_present(containers, container_name):
            logger.info("Sidecar %s removed from %s %s/%s", container_name, kind, namespace, name)
            return PollResult(PollOutcome.CONFIRMED, attempt)
        last_error = None

    error = f"{container_name} sidecar not deleted from {kind} {namespace}/{name}"
    if last_error:
        error = f"{error} (last read error: {last_error})"
    logger.error(error)
    return PollResult(PollOutcome.GAVE_UP, max_attempts, error=error)

"""Target resolution within a multi-target invoker, and host identity."""

import logging
import os
import re
from collections.abc import Iterable, Mapping
from typing import Optional

from hikae.core.models import DEFAULT_HOST, Found, NotFound, Resolution, TargetDescriptor
from hikae.errors import HikaeError

logger = logging.getLogger(__name__)

_ORDINAL_RE = re.compile(r"-(\d+)$")


class HostIdentityError(HikaeError):
    """Raised when the host identity for a target cannot be derived."""


def resolve_target(
    targets: Iterable[Optional[TargetDescriptor]],
    kind: str,
    name: str,
) -> Resolution:
    """
    Find the target matching ``(kind, name)`` among an invoker's targets.

    Entries without a concrete target (``None``) are skipped. The first exact
    match on both kind and name wins.

    Args:
        targets: Target descriptors owned by one invoker
        kind: Target kind, e.g. ``"PersistentVolumeClaim"``
        name: Target name

    Returns:
        ``Found(descriptor)`` or ``NotFound(kind, name)``
    """
    for descriptor in targets:
        if descriptor is None:
            continue
        if descriptor.ref.matches(kind, name):
            logger.debug("Resolved target %s", descriptor.ref)
            return Found(descriptor)
    logger.info("No target %s/%s in invoker", kind, name)
    return NotFound(kind, name)


def host_for_target(
    descriptor: TargetDescriptor,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Derive the host name that backup statistics are recorded under.

    An explicit alias always wins. StatefulSet replicas are recorded as
    ``host-<ordinal>`` taken from ``POD_NAME``; DaemonSet pods use the node
    name from ``NODE_NAME``. Everything else is a single host.

    Raises:
        HostIdentityError: If the required pod/node environment is missing
    """
    if env is None:
        env = os.environ
    if descriptor.alias:
        return descriptor.alias

    kind = descriptor.ref.kind
    if kind == "StatefulSet":
        pod_name = env.get("POD_NAME", "")
        match = _ORDINAL_RE.search(pod_name)
        if not match:
            raise HostIdentityError(
                f"cannot derive StatefulSet ordinal from POD_NAME={pod_name!r}"
            )
        return f"host-{int(match.group(1))}"
    if kind == "DaemonSet":
        node_name = env.get("NODE_NAME", "")
        if not node_name:
            raise HostIdentityError("NODE_NAME is not set for DaemonSet target")
        return node_name
    return DEFAULT_HOST

"""Pod-template container lookup for the workload kinds a sidecar can live in."""

from dataclasses import dataclass
from typing import Any

REPLICATION_CONTROLLER = "ReplicationController"
REPLICA_SET = "ReplicaSet"
DEPLOYMENT = "Deployment"
DAEMON_SET = "DaemonSet"


@dataclass(frozen=True)
class WorkloadAccessor:
    """
    Fetches one kind of workload and exposes its pod-template containers.

    All supported kinds carry ``spec.template.spec.containers``, so the only
    thing that differs between them is the resource name kubectl is asked for.
    """

    kind: str
    resource: str

    def fetch(self, client: Any, name: str, namespace: str) -> dict[str, Any]:
        obj: dict[str, Any] = client.get_workload(self.resource, name, namespace)
        return obj

    def containers(self, client: Any, name: str, namespace: str) -> list[dict[str, Any]]:
        return pod_template_containers(self.fetch(client, name, namespace))


WORKLOAD_ACCESSORS: dict[str, WorkloadAccessor] = {
    a.kind: a
    for a in (
        WorkloadAccessor(REPLICATION_CONTROLLER, "replicationcontrollers"),
        WorkloadAccessor(REPLICA_SET, "replicasets.apps"),
        WorkloadAccessor(DEPLOYMENT, "deployments.apps"),
        WorkloadAccessor(DAEMON_SET, "daemonsets.apps"),
    )
}


def pod_template_containers(obj: dict[str, Any]) -> list[dict[str, Any]]:
    template = ((obj.get("spec") or {}).get("template") or {}).get("spec") or {}
    return list(template.get("containers") or [])


def accessor_for(kind: str) -> WorkloadAccessor:
    """
    Return the accessor for a workload kind.

    Raises:
        ValueError: If the kind has no pod template hikae knows about
    """
    try:
        return WORKLOAD_ACCESSORS[kind]
    except KeyError:
        supported = ", ".join(sorted(WORKLOAD_ACCESSORS))
        raise ValueError(
            f"unsupported workload kind '{kind}' (expected one of: {supported})"
        ) from None

"""Cluster access through ``kubectl ... -o json``.

hikae never talks to the API server directly; every read and the single
status patch go through the ``kubectl`` binary, which already knows how to
authenticate from a kubeconfig or the in-cluster service account.
"""

import json
import logging
import shlex
import subprocess
from typing import Any, Optional

from hikae.core.hooks import ActionOptions
from hikae.core.models import InvokerInfo, TargetDescriptor, TargetRef
from hikae.errors import HikaeError

logger = logging.getLogger(__name__)

BACKUP_CONFIGURATION = "BackupConfiguration"
BACKUP_BATCH = "BackupBatch"

REPOSITORY_INITIALIZED = "BackendRepositoryInitialized"


class KubectlError(HikaeError):
    """Raised when kubectl cannot be run, exits non-zero, or returns unparsable output."""

    def __init__(self, returncode: int, stderr: str) -> None:
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"kubectl exited {returncode}: {stderr.strip()}")


class InvokerError(HikaeError):
    """Raised for unsupported or malformed backup invokers."""


def _descriptor_from_raw(raw: Optional[dict[str, Any]]) -> Optional[TargetDescriptor]:
    if not raw or not raw.get("ref"):
        return None
    return TargetDescriptor(
        ref=TargetRef.from_dict(raw["ref"]),
        alias=raw.get("alias", ""),
        paths=list(raw.get("paths") or []),
        exclude=list(raw.get("exclude") or []),
    )


def invoker_from_object(obj: dict[str, Any]) -> InvokerInfo:
    """
    Build an InvokerInfo from a BackupConfiguration or BackupBatch object.

    Raises:
        InvokerError: If the object kind is not a known invoker
    """
    kind = obj.get("kind", "")
    name = obj.get("metadata", {}).get("name", "")
    spec = obj.get("spec") or {}
    repository = (spec.get("repository") or {}).get("name", "")

    if kind == BACKUP_CONFIGURATION:
        targets = [_descriptor_from_raw(spec.get("target"))]
    elif kind == BACKUP_BATCH:
        targets = [_descriptor_from_raw(m.get("target")) for m in spec.get("members") or []]
    else:
        raise InvokerError(f"unsupported backup invoker kind '{kind}'")
    return InvokerInfo(kind=kind, name=name, repository=repository, targets=targets)


def pre_backup_actions(session: dict[str, Any], ref: TargetRef) -> list[str]:
    """Return the pre-backup actions a BackupSession assigns to a target."""
    for target in (session.get("status") or {}).get("targets") or []:
        if TargetRef.from_dict(target.get("ref") or {}).matches(ref.kind, ref.name):
            return list(target.get("preBackupActions") or [])
    return []


def repository_initialized(repository: dict[str, Any]) -> bool:
    for cond in (repository.get("status") or {}).get("conditions") or []:
        if cond.get("type") == REPOSITORY_INITIALIZED:
            return str(cond.get("status")) == "True"
    return False


class KubectlClient:
    """Thin JSON-returning facade over the kubectl binary."""

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        kubectl_bin: str = "kubectl",
        timeout: int = 60,
    ) -> None:
        self.kubeconfig = kubeconfig
        self.context = context
        self.kubectl_bin = kubectl_bin
        self.timeout = timeout

    def _base(self) -> list[str]:
        cmd = [self.kubectl_bin]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            cmd.extend(["--context", self.context])
        return cmd

    def _run(self, args: list[str]) -> str:
        cmd = self._base() + args
        logger.debug("Running kubectl: %s", shlex.join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise KubectlError(-1, f"timed out after {self.timeout}s: {shlex.join(cmd)}") from exc
        except OSError as exc:
            raise KubectlError(-1, f"could not run {self.kubectl_bin}: {exc}") from exc
        if result.returncode != 0:
            raise KubectlError(result.returncode, result.stderr or "")
        return result.stdout or ""

    def get(self, resource: str, name: str, namespace: str) -> dict[str, Any]:
        out = self._run(["get", resource, name, "--namespace", namespace, "--output", "json"])
        try:
            obj: dict[str, Any] = json.loads(out)
        except ValueError as exc:
            raise KubectlError(0, f"invalid JSON from kubectl get {resource}/{name}: {exc}")
        return obj

    # ── Backup flow lookups ─────────────────────────────────────────────────

    def get_invoker(self, kind: str, name: str, namespace: str) -> InvokerInfo:
        if kind not in (BACKUP_CONFIGURATION, BACKUP_BATCH):
            raise InvokerError(f"unsupported backup invoker kind '{kind}'")
        return invoker_from_object(self.get(kind.lower(), name, namespace))

    def get_backup_session(self, name: str, namespace: str) -> dict[str, Any]:
        return self.get("backupsession", name, namespace)

    def pre_backup_actions(self, session_name: str, namespace: str, ref: TargetRef) -> list[str]:
        return pre_backup_actions(self.get_backup_session(session_name, namespace), ref)

    def get_repository(self, name: str, namespace: str) -> dict[str, Any]:
        return self.get("repository", name, namespace)

    def repository_ready(self, opts: ActionOptions) -> bool:
        """Readiness check used by the repository gate."""
        return repository_initialized(self.get_repository(opts.repository, opts.namespace))

    def mark_repository_initialized(self, name: str, namespace: str) -> None:
        patch = {
            "status": {
                "conditions": [
                    {
                        "type": REPOSITORY_INITIALIZED,
                        "status": "True",
                        "reason": "RepositoryInitialized",
                    }
                ]
            }
        }
        self._run(
            [
                "patch",
                "repository",
                name,
                "--namespace",
                namespace,
                "--subresource",
                "status",
                "--type",
                "merge",
                "--patch",
                json.dumps(patch),
            ]
        )
        logger.info("Marked repository %s/%s initialized", namespace, name)

    # ── Verification lookups ────────────────────────────────────────────────

    def get_event(self, name: str, namespace: str) -> dict[str, Any]:
        return self.get("event", name, namespace)

    def get_workload(self, resource: str, name: str, namespace: str) -> dict[str, Any]:
        return self.get(resource, name, namespace)

"""Data model shared by the backup flow, the output sink and the verifier."""

import enum
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

DEFAULT_HOST = "host-0"
DEFAULT_SCRATCH_DIR = "/tmp"
DEFAULT_OUTPUT_FILE_NAME = "output.json"


@dataclass(frozen=True)
class TargetRef:
    """Identity of a backup target (workload or PVC)."""

    kind: str
    name: str
    api_version: str = ""

    def matches(self, kind: str, name: str) -> bool:
        return self.kind == kind and self.name == name

    def __str__(self) -> str:
        return f"{self.kind.lower()}/{self.name}"

    def to_dict(self) -> dict[str, str]:
        d = {"kind": self.kind, "name": self.name}
        if self.api_version:
            d = {"apiVersion": self.api_version, **d}
        return d

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "TargetRef":
        return cls(
            kind=raw.get("kind", ""),
            name=raw.get("name", ""),
            api_version=raw.get("apiVersion", ""),
        )


@dataclass
class TargetDescriptor:
    """Resolved target metadata, as owned by the invoker."""

    ref: TargetRef
    alias: str = ""
    paths: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    pre_backup_actions: list[str] = field(default_factory=list)


@dataclass
class InvokerInfo:
    """A backup invoker and the targets it owns.

    ``targets`` may contain ``None`` for members that carry no concrete target.
    """

    kind: str
    name: str
    repository: str = ""
    targets: list[Optional[TargetDescriptor]] = field(default_factory=list)


@dataclass
class Found:
    descriptor: TargetDescriptor

    def __bool__(self) -> bool:
        return True


@dataclass
class NotFound:
    kind: str
    name: str

    def __bool__(self) -> bool:
        return False


Resolution = Union[Found, NotFound]


# ── Engine options ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class NiceSettings:
    adjustment: Optional[int] = None


@dataclass(frozen=True)
class IONiceSettings:
    io_class: Optional[int] = None
    class_data: Optional[int] = None


@dataclass(frozen=True)
class SetupOptions:
    """Destination configuration for the restic engine.

    Frozen: the flow derives a new instance (``dataclasses.replace``) when the
    priority hints are merged in, right before the engine starts.
    """

    provider: str
    secret_dir: str
    bucket: str = ""
    endpoint: str = ""
    region: str = ""
    path: str = ""
    scratch_dir: str = DEFAULT_SCRATCH_DIR
    enable_cache: bool = False
    max_connections: int = 0
    nice: Optional[NiceSettings] = None
    ionice: Optional[IONiceSettings] = None


@dataclass
class RetentionPolicy:
    keep_last: int = 0
    keep_hourly: int = 0
    keep_daily: int = 0
    keep_weekly: int = 0
    keep_monthly: int = 0
    keep_yearly: int = 0
    keep_tags: list[str] = field(default_factory=list)
    prune: bool = False
    dry_run: bool = False

    @property
    def is_active(self) -> bool:
        # keep-* values are only applied together with a prune
        return self.prune


@dataclass
class BackupOptions:
    host: str = DEFAULT_HOST
    backup_paths: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    retention_policy: RetentionPolicy = field(default_factory=RetentionPolicy)


# ── Results ───────────────────────────────────────────────────────────────────


class HostBackupPhase(str, enum.Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass
class HostBackupStat:
    """Backup outcome for one host of a target."""

    hostname: str
    phase: HostBackupPhase
    size: Optional[str] = None
    duration: Optional[str] = None
    snapshot: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"hostname": self.hostname, "phase": self.phase.value}
        for key in ("size", "duration", "snapshot", "error"):
            value = getattr(self, key)
            if value:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "HostBackupStat":
        return cls(
            hostname=raw["hostname"],
            phase=HostBackupPhase(raw["phase"]),
            size=raw.get("size"),
            duration=raw.get("duration"),
            snapshot=raw.get("snapshot"),
            error=raw.get("error"),
        )


@dataclass
class BackupTargetStatus:
    ref: TargetRef
    stats: list[HostBackupStat] = field(default_factory=list)


@dataclass
class BackupOutput:
    """Result envelope written for the downstream reconciler."""

    target_status: BackupTargetStatus

    @property
    def failed(self) -> bool:
        return any(s.phase is HostBackupPhase.FAILED for s in self.target_status.stats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backupTargetStatus": {
                "ref": self.target_status.ref.to_dict(),
                "stats": [s.to_dict() for s in self.target_status.stats],
            }
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "BackupOutput":
        status = raw["backupTargetStatus"]
        return cls(
            target_status=BackupTargetStatus(
                ref=TargetRef.from_dict(status["ref"]),
                stats=[HostBackupStat.from_dict(s) for s in status.get("stats", [])],
            )
        )

    def write_output(self, path: Path) -> None:
        """
        Atomically write the output as JSON, replacing any previous file.

        Args:
            path: Destination file, usually ``<output-dir>/output.json``
        """
        path = Path(path)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp, path)
        except Exception:
            if tmp.exists():
                tmp.unlink(missing_ok=True)
            raise

    @classmethod
    def read_output(cls, path: Path) -> "BackupOutput":
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))

"""Restic backup engine wrapper."""

import json
import logging
import os
import shlex
import subprocess
import time
from pathlib import Path
from typing import Any, Optional

from hikae.core.models import (
    BackupOptions,
    BackupOutput,
    BackupTargetStatus,
    HostBackupPhase,
    HostBackupStat,
    RetentionPolicy,
    SetupOptions,
    TargetRef,
)

logger = logging.getLogger(__name__)

PROVIDER_LOCAL = "local"
PROVIDER_S3 = "s3"
PROVIDER_GCS = "gcs"
PROVIDER_AZURE = "azure"
PROVIDER_B2 = "b2"
PROVIDER_SWIFT = "swift"
PROVIDER_REST = "rest"

DEFAULT_S3_ENDPOINT = "s3.amazonaws.com"

# Files in the secret directory that are exported verbatim to restic.
_SECRET_ENV_KEYS = (
    "RESTIC_PASSWORD",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "GOOGLE_PROJECT_ID",
    "AZURE_ACCOUNT_NAME",
    "AZURE_ACCOUNT_KEY",
    "B2_ACCOUNT_ID",
    "B2_ACCOUNT_KEY",
    "OS_AUTH_URL",
    "OS_USERNAME",
    "OS_PASSWORD",
    "OS_PROJECT_NAME",
    "OS_REGION_NAME",
    "OS_STORAGE_URL",
    "OS_AUTH_TOKEN",
)
_GCS_KEY_FILE = "GOOGLE_SERVICE_ACCOUNT_JSON_KEY"

# Backends that understand ``-o <backend>.connections=N``.
_CONNECTION_OPTION = {
    PROVIDER_GCS: "gs.connections",
    PROVIDER_AZURE: "azure.connections",
    PROVIDER_B2: "b2.connections",
}


class ResticError(Exception):
    """Raised when restic exits with a non-zero status or cannot be set up."""

    def __init__(self, returncode: int, stderr: str, stdout: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        super().__init__(f"restic exited {returncode}: {stderr.strip()}")


def repository_url(opts: SetupOptions) -> str:
    """
    Build the restic repository string for a backend provider.

    Raises:
        ResticError: For an unknown provider or a missing bucket/endpoint
    """
    path = opts.path.strip("/")
    provider = opts.provider.lower()

    if provider == PROVIDER_LOCAL:
        if not opts.path:
            raise ResticError(1, "local provider requires a path")
        return opts.path
    if provider == PROVIDER_REST:
        if not opts.endpoint:
            raise ResticError(1, "rest provider requires an endpoint")
        return f"rest:{opts.endpoint.rstrip('/')}/{path}"

    if not opts.bucket:
        raise ResticError(1, f"{provider} provider requires a bucket")
    if provider == PROVIDER_S3:
        endpoint = (opts.endpoint or DEFAULT_S3_ENDPOINT).rstrip("/")
        return f"s3:{endpoint}/{opts.bucket}/{path}"
    if provider == PROVIDER_GCS:
        return f"gs:{opts.bucket}:/{path}"
    if provider == PROVIDER_AZURE:
        return f"azure:{opts.bucket}:/{path}"
    if provider == PROVIDER_B2:
        return f"b2:{opts.bucket}:{path}"
    if provider == PROVIDER_SWIFT:
        return f"swift:{opts.bucket}:/{path}"
    raise ResticError(1, f"unknown backend provider '{opts.provider}'")


def _format_bytes(num: float) -> str:
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(num) < 1024 or unit == "TiB":
            return f"{num:.0f} {unit}" if unit == "B" else f"{num:.3f} {unit}"
        num /= 1024
    return f"{num:.3f} TiB"


def _parse_summary(output: str) -> Optional[dict[str, Any]]:
    """Return the ``summary`` message from ``restic backup --json`` output."""
    summary = None
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            msg = json.loads(line)
        except ValueError:
            continue
        if msg.get("message_type") == "summary":
            summary = msg
    return summary


def retention_flags(policy: RetentionPolicy) -> list[str]:
    """Translate a retention policy into ``restic forget`` flags."""
    flags: list[str] = []
    for flag, value in (
        ("--keep-last", policy.keep_last),
        ("--keep-hourly", policy.keep_hourly),
        ("--keep-daily", policy.keep_daily),
        ("--keep-weekly", policy.keep_weekly),
        ("--keep-monthly", policy.keep_monthly),
        ("--keep-yearly", policy.keep_yearly),
    ):
        if value > 0:
            flags.extend([flag, str(value)])
    for tag in policy.keep_tags:
        flags.extend(["--keep-tag", tag])
    if policy.prune:
        flags.append("--prune")
    if policy.dry_run:
        flags.append("--dry-run")
    return flags


class ResticWrapper:
    """
    Runs restic against one repository.

    Construction resolves the repository URL and reads credentials from the
    secret directory, so an invalid destination fails here rather than midway
    through a backup.
    """

    def __init__(
        self,
        setup_options: SetupOptions,
        restic_bin: str = "restic",
        timeout: Optional[int] = None,
    ) -> None:
        self.setup_options = setup_options
        self.restic_bin = restic_bin
        self.timeout = timeout
        self.repository = repository_url(setup_options)
        self.env = self._build_env()

    # ── Environment / command assembly ──────────────────────────────────────

    def _build_env(self) -> dict[str, str]:
        opts = self.setup_options
        env = dict(os.environ)
        env["RESTIC_REPOSITORY"] = self.repository
        env["TMPDIR"] = opts.scratch_dir

        secret_dir = Path(opts.secret_dir)
        for key in _SECRET_ENV_KEYS:
            secret_file = secret_dir / key
            if secret_file.is_file():
                env[key] = secret_file.read_text(encoding="utf-8").strip()
        if "RESTIC_PASSWORD" not in env:
            raise ResticError(1, f"no RESTIC_PASSWORD found in {secret_dir}")

        gcs_key = secret_dir / _GCS_KEY_FILE
        if opts.provider.lower() == PROVIDER_GCS and gcs_key.is_file():
            env["GOOGLE_APPLICATION_CREDENTIALS"] = str(gcs_key)
        if opts.region:
            env["AWS_DEFAULT_REGION"] = opts.region
        return env

    def _priority_prefix(self) -> list[str]:
        prefix: list[str] = []
        nice = self.setup_options.nice
        if nice is not None and nice.adjustment is not None:
            prefix.extend(["nice", "-n", str(nice.adjustment)])
        ionice = self.setup_options.ionice
        if ionice is not None and ionice.io_class is not None:
            prefix.extend(["ionice", "-c", str(ionice.io_class)])
            if ionice.class_data is not None:
                prefix.extend(["-n", str(ionice.class_data)])
        return prefix

    def _global_flags(self) -> list[str]:
        opts = self.setup_options
        flags: list[str] = []
        if opts.enable_cache:
            flags.extend(["--cache-dir", str(Path(opts.scratch_dir) / "restic-cache")])
        else:
            flags.append("--no-cache")
        option = _CONNECTION_OPTION.get(opts.provider.lower())
        if option and opts.max_connections > 0:
            flags.extend(["-o", f"{option}={opts.max_connections}"])
        return flags

    def build_command(self, *args: str) -> list[str]:
        return [*self._priority_prefix(), self.restic_bin, *self._global_flags(), *args]

    def _run(self, *args: str) -> str:
        cmd = self.build_command(*args)
        logger.info("Running restic: %s", shlex.join(cmd))
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            env=self.env,
            timeout=self.timeout,
        )
        for line in (result.stderr or "").splitlines():
            if line.strip():
                logger.debug("[restic] %s", line)
        if result.returncode != 0:
            raise ResticError(result.returncode, result.stderr or "", result.stdout or "")
        return result.stdout or ""

    # ── Operations ──────────────────────────────────────────────────────────

    def init_repository(self) -> None:
        """Run ``restic init`` for the configured repository."""
        self._run("init")
        logger.info("Initialized restic repository %s", self.repository)

    def run_backup(self, backup_options: BackupOptions, target_ref: TargetRef) -> BackupOutput:
        """
        Back up the configured paths and apply the retention policy.

        Args:
            backup_options: Host, paths, excludes and retention policy
            target_ref: Target the statistics are reported for

        Returns:
            BackupOutput with a single ``Succeeded`` stat for the host

        Raises:
            ResticError: If restic exits non-zero
            FileNotFoundError: If the restic binary is not in PATH
        """
        if not backup_options.backup_paths:
            raise ResticError(1, "no backup paths given")

        host = backup_options.host
        args = ["backup", "--json", "--host", host]
        for pattern in backup_options.exclude:
            args.extend(["--exclude", pattern])
        args.extend(backup_options.backup_paths)

        started = time.monotonic()
        output = self._run(*args)
        elapsed = time.monotonic() - started

        stat = HostBackupStat(hostname=host, phase=HostBackupPhase.SUCCEEDED)
        summary = _parse_summary(output)
        if summary:
            stat.size = _format_bytes(float(summary.get("total_bytes_processed", 0)))
            stat.duration = f"{float(summary.get('total_duration', elapsed)):.3f}s"
            stat.snapshot = summary.get("snapshot_id")
        else:
            stat.duration = f"{elapsed:.3f}s"

        policy = backup_options.retention_policy
        if policy.is_active:
            logger.info("[%s] Applying retention policy for host %s", target_ref, host)
            self._run("forget", "--host", host, *retention_flags(policy))

        logger.info(
            "[%s] restic backup succeeded for host %s (%s in %s)",
            target_ref,
            host,
            stat.size or "?",
            stat.duration,
        )
        return BackupOutput(
            target_status=BackupTargetStatus(ref=target_ref, stats=[stat]),
        )

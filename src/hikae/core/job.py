"""Backup flow orchestration for a single target."""

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from hikae.core.hooks import (
    INITIALIZE_BACKEND_REPOSITORY,
    ActionOptions,
    HookRegistry,
    run_pre_backup_hooks,
)
from hikae.core.models import (
    DEFAULT_OUTPUT_FILE_NAME,
    BackupOptions,
    BackupOutput,
    BackupTargetStatus,
    HostBackupPhase,
    HostBackupStat,
    SetupOptions,
    TargetDescriptor,
    TargetRef,
)
from hikae.core.priority import ionice_settings_from_env, nice_settings_from_env
from hikae.core.repository import RepositoryChecker, wait_for_repository
from hikae.core.resolver import host_for_target, resolve_target
from hikae.core.restic import ResticWrapper
from hikae.errors import HikaeError

logger = logging.getLogger(__name__)

EngineFactory = Callable[[SetupOptions], Any]


@dataclass
class BackupContext:
    """
    Everything one backup invocation needs, built once at process start.

    ``cluster`` is any object offering ``get_invoker``, ``pre_backup_actions``,
    ``repository_ready`` and ``mark_repository_initialized``
    (see ``hikae.cluster.kubectl.KubectlClient``).
    """

    setup_options: SetupOptions
    backup_options: BackupOptions
    cluster: Any
    invoker_kind: str
    invoker_name: str
    target_kind: str
    target_name: str
    namespace: str = "default"
    backup_session: str = ""
    output_dir: Optional[str] = None
    hooks: Optional[HookRegistry] = None
    repository_checker: Optional[RepositoryChecker] = None
    engine_factory: EngineFactory = ResticWrapper
    readiness_interval: float = 5.0
    readiness_attempts: int = 360
    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    def __post_init__(self) -> None:
        if self.hooks is None:
            self.hooks = default_hook_registry(self.cluster, self.engine_factory)
        if self.repository_checker is None:
            self.repository_checker = self.cluster.repository_ready


@dataclass
class BackupRun:
    """Outcome of one backup invocation that reached the engine stage."""

    output: BackupOutput
    error: Optional[BaseException] = None
    output_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.error is None


class MissingRepositoryError(HikaeError):
    """Raised when a backup invoker names no Repository to back up into."""


class OutputWriteError(HikaeError):
    """Raised when output.json cannot be written."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"failed to write backup output to {path}: {reason}")


def default_hook_registry(cluster: Any, engine_factory: EngineFactory) -> HookRegistry:
    """Registry with the built-in pre-backup actions."""

    def initialize_repository(opts: ActionOptions) -> None:
        engine_factory(opts.setup_options).init_repository()
        cluster.mark_repository_initialized(opts.repository, opts.namespace)

    return HookRegistry({INITIALIZE_BACKEND_REPOSITORY: initialize_repository})


def failed_output(ref: TargetRef, host: str, error: BaseException) -> BackupOutput:
    """Represent an engine-stage failure as a single ``Failed`` host stat."""
    return BackupOutput(
        target_status=BackupTargetStatus(
            ref=ref,
            stats=[
                HostBackupStat(
                    hostname=host,
                    phase=HostBackupPhase.FAILED,
                    error=str(error),
                )
            ],
        )
    )


def run_backup(
    ctx: BackupContext,
    descriptor: TargetDescriptor,
    host: str,
    actions: Optional[list[str]] = None,
    repository: str = "",
) -> BackupRun:
    """
    Run hooks, wait for the repository, then back up one target.

    Workflow:
        1. Execute pre-backup actions
        2. Wait for the backend repository to be initialized
        3. Merge nice/ionice settings from the environment
        4. Run restic and turn any engine failure into a ``Failed`` output

    Failures in steps 1-3 propagate; there is no output for them.

    Args:
        ctx: Backup context
        descriptor: Resolved target
        host: Host identity the stats are recorded under
        actions: Pre-backup action names assigned to the target
        repository: Name of the Repository object for the readiness gate

    Returns:
        BackupRun whose ``output`` is always populated
    """
    ref = descriptor.ref
    logger.info("=== Starting backup of %s (host %s) ===", ref, host)

    # ── Step 1: Pre-backup actions ──────────────────────────────────────────
    action_opts = ActionOptions(
        target_ref=ref,
        setup_options=ctx.setup_options,
        backup_session=ctx.backup_session,
        namespace=ctx.namespace,
        repository=repository,
        actions=list(actions or []),
    )
    run_pre_backup_hooks(ctx.hooks, action_opts)

    # ── Step 2: Wait for the repository ─────────────────────────────────────
    wait_for_repository(
        ctx.repository_checker,
        action_opts,
        interval=ctx.readiness_interval,
        max_attempts=ctx.readiness_attempts,
    )

    # ── Step 3: Scheduling hints ────────────────────────────────────────────
    setup_options = dataclasses.replace(
        ctx.setup_options,
        nice=nice_settings_from_env(ctx.env),
        ionice=ionice_settings_from_env(ctx.env),
    )

    # ── Step 4: Engine ──────────────────────────────────────────────────────
    backup_options = dataclasses.replace(
        ctx.backup_options,
        host=host,
        exclude=ctx.backup_options.exclude
        + [p for p in descriptor.exclude if p not in ctx.backup_options.exclude],
    )
    try:
        engine = ctx.engine_factory(setup_options)
        output: BackupOutput = engine.run_backup(backup_options, ref)
    except Exception as exc:
        logger.error("[%s] Backup failed for host %s: %s", ref, host, exc)
        return BackupRun(output=failed_output(ref, host, exc), error=exc)

    logger.info("=== Backup of %s complete ===", ref)
    return BackupRun(output=output)


def backup_target(ctx: BackupContext) -> Optional[BackupRun]:
    """
    Look up the invoker, resolve the selected target and back it up.

    Returns:
        The BackupRun, or None when the invoker has no matching target
        (nothing is written in that case)

    Raises:
        MissingRepositoryError: If the invoker names no repository
        OutputWriteError: If output.json cannot be written
    """
    invoker = ctx.cluster.get_invoker(ctx.invoker_kind, ctx.invoker_name, ctx.namespace)
    resolution = resolve_target(invoker.targets, ctx.target_kind, ctx.target_name)
    if not resolution:
        logger.warning(
            "Target %s/%s not found in %s %s, nothing to do",
            ctx.target_kind,
            ctx.target_name,
            invoker.kind,
            invoker.name,
        )
        return None
    descriptor = resolution.descriptor
    if not invoker.repository:
        raise MissingRepositoryError(
            f"{invoker.kind} {ctx.namespace}/{invoker.name} does not reference a repository"
        )

    actions = list(descriptor.pre_backup_actions)
    if not actions and ctx.backup_session:
        actions = ctx.cluster.pre_backup_actions(ctx.backup_session, ctx.namespace, descriptor.ref)

    # The repository was created under this identity; a user-supplied host is replaced.
    host = host_for_target(descriptor, ctx.env)
    if ctx.backup_options.host != host:
        logger.debug(
            "Host %s replaced by %s derived from %s", ctx.backup_options.host, host, descriptor.ref
        )
    run = run_backup(ctx, descriptor, host, actions=actions, repository=invoker.repository)

    if ctx.output_dir:
        path = Path(ctx.output_dir) / DEFAULT_OUTPUT_FILE_NAME
        try:
            run.output.write_output(path)
        except OSError as exc:
            raise OutputWriteError(path, str(exc)) from exc
        run.output_path = path
        logger.info("Wrote backup output to %s", path)
    return run

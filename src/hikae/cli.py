"""Command-line interface for hikae."""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

import click

from hikae import __version__
from hikae.verify.workloads import WORKLOAD_ACCESSORS

DEFAULT_CONFIG = Path.home() / ".config" / "hikae" / "config.yaml"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_defaults(config: Optional[str]) -> dict[str, Any]:
    """Read the YAML config file into a click ``default_map``."""
    from hikae.config.loader import (
        LIST_PARAMS,
        load_config,
        normalize_section,
        split_list,
        validate_config,
    )

    if config is None:
        path = DEFAULT_CONFIG
        if not path.exists():
            return {}
    else:
        path = Path(config)
        if not path.exists():
            click.echo(f"Config file not found: {path}", err=True)
            sys.exit(1)
    raw = load_config(path)
    if not raw:
        return {}
    errors = validate_config(raw)
    if errors:
        click.echo("Config validation errors:", err=True)
        for e in errors:
            click.echo(f"  • {e}", err=True)
        sys.exit(1)

    backup = normalize_section(raw.get("backup") or {})
    for key in LIST_PARAMS:
        if key in backup:
            backup[key] = split_list(backup[key])
    verify = normalize_section(raw.get("verify") or {})
    return {
        "backup-pvc": backup,
        "verify": {"event": verify, "teardown": verify},
    }


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="hikae")
@click.option(
    "--config",
    "-c",
    default=None,
    envvar="HIKAE_CONFIG",
    help=f"Path to a YAML file with option defaults [default: {DEFAULT_CONFIG}]",
)
@click.option("--kubeconfig", envvar="KUBECONFIG", help="Path to the kubeconfig kubectl should use")
@click.option("--context", "kube_context", help="kubeconfig context to use")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    config: Optional[str],
    kubeconfig: Optional[str],
    kube_context: Optional[str],
    verbose: bool,
) -> None:
    """hikae — restic backups for cluster workloads."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.default_map = _load_defaults(config)

    from hikae.cluster.kubectl import KubectlClient

    ctx.obj["client"] = KubectlClient(kubeconfig=kubeconfig, context=kube_context)


# ── backup-pvc ────────────────────────────────────────────────────────────────


@main.command("backup-pvc")
@click.option("--provider", help="Backend provider (local, s3, gcs, azure, b2, swift, rest)")
@click.option("--bucket", default="", help="Bucket/container name (empty for local backend)")
@click.option("--endpoint", default="", help="Endpoint for s3 compatible backend or REST URL")
@click.option("--region", default="", help="Region for s3 compatible backend")
@click.option("--path", default="", help="Directory inside the bucket for the backed up data")
@click.option("--secret-dir", help="Directory where the storage secret is mounted")
@click.option("--scratch-dir", default="/tmp", show_default=True, help="Temporary directory")
@click.option("--enable-cache", is_flag=True, help="Enable the restic cache")
@click.option(
    "--max-connections",
    default=0,
    type=click.IntRange(min=0),
    help="Maximum concurrent connections for GCS, Azure and B2",
)
@click.option("--namespace", default="default", envvar="NAMESPACE", show_default=True)
@click.option("--backupsession", default="", help="Name of the backup session")
@click.option(
    "--hostname",
    default="host-0",
    help="Host identity placeholder, replaced by the identity derived from the target",
)
@click.option("--backup-paths", multiple=True, help="Paths to back up (repeat or comma-separate)")
@click.option("--exclude", multiple=True, help="Patterns of files/directories to skip")
@click.option("--invoker-kind", default="BackupConfiguration", show_default=True)
@click.option("--invoker-name", default="", help="Name of the backup invoker")
@click.option("--target-kind", default="PersistentVolumeClaim", show_default=True)
@click.option("--target-name", default="", help="Name of the target")
@click.option("--retention-keep-last", default=0, type=click.IntRange(min=0))
@click.option("--retention-keep-hourly", default=0, type=click.IntRange(min=0))
@click.option("--retention-keep-daily", default=0, type=click.IntRange(min=0))
@click.option("--retention-keep-weekly", default=0, type=click.IntRange(min=0))
@click.option("--retention-keep-monthly", default=0, type=click.IntRange(min=0))
@click.option("--retention-keep-yearly", default=0, type=click.IntRange(min=0))
@click.option("--retention-keep-tags", multiple=True, help="Snapshot tags to always keep")
@click.option("--retention-prune", is_flag=True, help="Prune old snapshot data")
@click.option("--retention-dry-run", is_flag=True, help="Test the policy without deleting data")
@click.option("--output-dir", default="", help="Directory to write output.json into")
@click.pass_context
def backup_pvc(ctx: click.Context, **params: Any) -> None:
    """Back up one target of a backup invoker."""
    from hikae.config.loader import (
        ConfigError,
        backup_options_from_params,
        setup_options_from_params,
    )
    from hikae.core.job import BackupContext, backup_target
    from hikae.errors import HikaeError

    try:
        setup_opts = setup_options_from_params(params)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    backup_ctx = BackupContext(
        setup_options=setup_opts,
        backup_options=backup_options_from_params(params),
        cluster=ctx.obj["client"],
        invoker_kind=params["invoker_kind"],
        invoker_name=params["invoker_name"],
        target_kind=params["target_kind"],
        target_name=params["target_name"],
        namespace=params["namespace"],
        backup_session=params["backupsession"],
        output_dir=params["output_dir"] or None,
    )

    try:
        run = backup_target(backup_ctx)
    except HikaeError as exc:
        click.echo(f"✗  Backup aborted: {exc}", err=True)
        sys.exit(1)

    target = f"{params['target_kind']}/{params['target_name']}"
    if run is None:
        invoker = f"{params['invoker_kind']} {params['invoker_name']}"
        click.echo(f"Target {target} not found in {invoker}, nothing to back up")
        return
    if run.success:
        click.echo(f"✓  Backup of {target} succeeded")
    elif run.output_path is not None:
        click.echo(f"✗  Backup of {target} failed: {run.error} (reported in {run.output_path})")
    else:
        click.echo(f"✗  Backup of {target} failed: {run.error}", err=True)
        sys.exit(2)


# ── verify group ──────────────────────────────────────────────────────────────


@main.group()
def verify() -> None:
    """Confirm the cluster state a backup should leave behind."""


@verify.command("event")
@click.argument("name")
@click.option("--namespace", default="default", envvar="NAMESPACE", show_default=True)
@click.option("--interval", default=10.0, show_default=True, help="Seconds between fetches")
@click.option("--retries", default=12, show_default=True, help="Fetch retries before giving up")
@click.pass_context
def verify_event(
    ctx: click.Context, name: str, namespace: str, interval: float, retries: int
) -> None:
    """Wait for the backup event NAME and check its reason."""
    from hikae.verify.poller import wait_for_event

    result = wait_for_event(
        ctx.obj["client"], namespace, name, interval=interval, max_retries=retries
    )
    if result.ok:
        click.echo(f"✓  Event {name} observed ({result.attempts} attempt(s))")
        return
    click.echo(f"✗  {result.outcome.value}: {result.error}", err=True)
    sys.exit(2)


@verify.command("teardown")
@click.argument("kind", type=click.Choice(sorted(WORKLOAD_ACCESSORS)))
@click.argument("name")
@click.option("--namespace", default="default", envvar="NAMESPACE", show_default=True)
@click.option("--container", default="hikae", show_default=True, help="Sidecar container name")
@click.option("--interval", default=20.0, show_default=True, help="Seconds before each check")
@click.option("--attempts", default=7, show_default=True, help="Checks before giving up")
@click.pass_context
def verify_teardown(
    ctx: click.Context,
    kind: str,
    name: str,
    namespace: str,
    container: str,
    interval: float,
    attempts: int,
) -> None:
    """Wait until the backup sidecar is removed from workload KIND/NAME."""
    from hikae.verify.poller import wait_for_sidecar_removal

    result = wait_for_sidecar_removal(
        ctx.obj["client"],
        namespace,
        name,
        kind,
        container_name=container,
        interval=interval,
        max_attempts=attempts,
    )
    if result.ok:
        click.echo(f"✓  Sidecar {container} removed from {kind}/{name}")
        return
    click.echo(f"✗  {result.outcome.value}: {result.error}", err=True)
    sys.exit(2)


if __name__ == "__main__":
    main()

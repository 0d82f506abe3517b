"""Tests for the restic engine wrapper."""

import dataclasses
import json
import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from hikae.core.models import (
    BackupOptions,
    HostBackupPhase,
    IONiceSettings,
    NiceSettings,
    RetentionPolicy,
    SetupOptions,
    TargetRef,
)
from hikae.core.restic import ResticError, ResticWrapper, repository_url, retention_flags

REF = TargetRef(kind="PersistentVolumeClaim", name="data")

SUMMARY = json.dumps(
    {
        "message_type": "summary",
        "total_bytes_processed": 3 * 1024 * 1024,
        "total_duration": 4.5,
        "snapshot_id": "1a2b3c",
    }
)


def _opts(**kwargs: object) -> SetupOptions:
    defaults: dict = dict(provider="s3", secret_dir="/nonexistent", bucket="backups", path="demo")
    defaults.update(kwargs)
    return SetupOptions(**defaults)


class TestRepositoryUrl:
    @pytest.mark.parametrize(
        "provider,expected",
        [
            ("s3", "s3:s3.amazonaws.com/backups/demo/data"),
            ("gcs", "gs:backups:/demo/data"),
            ("azure", "azure:backups:/demo/data"),
            ("b2", "b2:backups:demo/data"),
            ("swift", "swift:backups:/demo/data"),
        ],
    )
    def test_bucket_providers(self, provider: str, expected: str) -> None:
        assert repository_url(_opts(provider=provider, path="/demo/data/")) == expected

    def test_s3_custom_endpoint(self) -> None:
        opts = _opts(endpoint="http://minio.local:9000/")
        assert repository_url(opts) == "s3:http://minio.local:9000/backups/demo"

    def test_local_uses_path(self) -> None:
        assert repository_url(_opts(provider="local", bucket="", path="/safe/repo")) == "/safe/repo"

    def test_rest_requires_endpoint(self) -> None:
        with pytest.raises(ResticError):
            repository_url(_opts(provider="rest"))

    def test_bucket_required(self) -> None:
        with pytest.raises(ResticError):
            repository_url(_opts(bucket=""))

    def test_unknown_provider(self) -> None:
        with pytest.raises(ResticError):
            repository_url(_opts(provider="ftp"))


class TestRetentionFlags:
    def test_only_positive_keeps(self) -> None:
        flags = retention_flags(RetentionPolicy(keep_last=3, keep_daily=7, prune=True))
        assert flags == ["--keep-last", "3", "--keep-daily", "7", "--prune"]

    def test_tags_and_dry_run(self) -> None:
        flags = retention_flags(RetentionPolicy(keep_tags=["gold"], prune=True, dry_run=True))
        assert flags == ["--keep-tag", "gold", "--prune", "--dry-run"]


class TestResticWrapper:
    def test_reads_credentials_from_secret_dir(self, setup_options: SetupOptions) -> None:
        secret = Path(setup_options.secret_dir)
        (secret / "AWS_ACCESS_KEY_ID").write_text("AKIA\n")

        wrapper = ResticWrapper(setup_options)

        assert wrapper.env["RESTIC_PASSWORD"] == "s3cr3t"
        assert wrapper.env["AWS_ACCESS_KEY_ID"] == "AKIA"
        assert wrapper.env["RESTIC_REPOSITORY"] == setup_options.path
        assert wrapper.env["TMPDIR"] == setup_options.scratch_dir

    def test_missing_password_raises(self, tmp_path: Path) -> None:
        opts = _opts(provider="local", bucket="", path="/repo", secret_dir=str(tmp_path))
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ResticError):
                ResticWrapper(opts)

    def test_no_cache_by_default(self, setup_options: SetupOptions) -> None:
        cmd = ResticWrapper(setup_options).build_command("snapshots")
        assert cmd[:2] == ["restic", "--no-cache"]

    def test_cache_dir_under_scratch(self, setup_options: SetupOptions) -> None:
        opts = dataclasses.replace(setup_options, enable_cache=True)
        cmd = ResticWrapper(opts).build_command("snapshots")
        assert "--cache-dir" in cmd
        assert str(Path(opts.scratch_dir) / "restic-cache") in cmd

    def test_max_connections_for_gcs(self, secret_dir: Path) -> None:
        opts = _opts(provider="gcs", secret_dir=str(secret_dir), max_connections=4)
        cmd = ResticWrapper(opts).build_command("snapshots")
        assert "gs.connections=4" in cmd

    def test_priority_prefix(self, setup_options: SetupOptions) -> None:
        opts = dataclasses.replace(
            setup_options,
            nice=NiceSettings(adjustment=10),
            ionice=IONiceSettings(io_class=2, class_data=7),
        )
        cmd = ResticWrapper(opts).build_command("backup")
        assert cmd[:8] == ["nice", "-n", "10", "ionice", "-c", "2", "-n", "7"]
        assert cmd[8] == "restic"

    @patch("hikae.core.restic.subprocess.run")
    def test_run_backup_success(self, mock_run: MagicMock, setup_options: SetupOptions) -> None:
        mock_run.return_value = MagicMock(returncode=0, stdout=SUMMARY + "\n", stderr="")
        backup_opts = BackupOptions(host="host-0", backup_paths=["/data"], exclude=["*.tmp"])

        output = ResticWrapper(setup_options).run_backup(backup_opts, REF)

        args = mock_run.call_args[0][0]
        assert args[-1] == "/data"
        assert ["--host", "host-0"] == args[args.index("--host") : args.index("--host") + 2]
        assert "--exclude" in args and "*.tmp" in args
        stat = output.target_status.stats[0]
        assert output.target_status.ref == REF
        assert stat.phase is HostBackupPhase.SUCCEEDED
        assert stat.hostname == "host-0"
        assert stat.size == "3.000 MiB"
        assert stat.duration == "4.500s"
        assert stat.snapshot == "1a2b3c"

    @patch("hikae.core.restic.subprocess.run")
    def test_run_backup_failure_raises(
        self, mock_run: MagicMock, setup_options: SetupOptions
    ) -> None:
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="connection refused")

        with pytest.raises(ResticError) as exc_info:
            ResticWrapper(setup_options).run_backup(BackupOptions(backup_paths=["/data"]), REF)

        assert exc_info.value.returncode == 1
        assert "connection refused" in str(exc_info.value)

    @patch("hikae.core.restic.subprocess.run")
    def test_retention_skipped_without_prune(
        self, mock_run: MagicMock, setup_options: SetupOptions
    ) -> None:
        mock_run.return_value = MagicMock(returncode=0, stdout=SUMMARY, stderr="")
        backup_opts = BackupOptions(
            backup_paths=["/data"], retention_policy=RetentionPolicy(keep_last=5)
        )

        ResticWrapper(setup_options).run_backup(backup_opts, REF)

        assert mock_run.call_count == 1

    @patch("hikae.core.restic.subprocess.run")
    def test_retention_applied_with_prune(
        self, mock_run: MagicMock, setup_options: SetupOptions
    ) -> None:
        mock_run.return_value = MagicMock(returncode=0, stdout=SUMMARY, stderr="")
        policy = RetentionPolicy(keep_last=5, prune=True, dry_run=True)
        backup_opts = BackupOptions(backup_paths=["/data"], retention_policy=policy)

        ResticWrapper(setup_options).run_backup(backup_opts, REF)

        assert mock_run.call_count == 2
        forget = mock_run.call_args_list[1][0][0]
        assert "forget" in forget
        assert "--prune" in forget and "--dry-run" in forget

    @patch("hikae.core.restic.subprocess.run")
    def test_init_repository(self, mock_run: MagicMock, setup_options: SetupOptions) -> None:
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")

        ResticWrapper(setup_options).init_repository()

        assert mock_run.call_args[0][0][-1] == "init"

    def test_no_paths_raises(self, setup_options: SetupOptions) -> None:
        with pytest.raises(ResticError):
            ResticWrapper(setup_options).run_backup(BackupOptions(), REF)

"""Shared fixtures."""

from pathlib import Path

import pytest

from hikae.core.models import SetupOptions


@pytest.fixture
def secret_dir(tmp_path: Path) -> Path:
    d = tmp_path / "secret"
    d.mkdir()
    (d / "RESTIC_PASSWORD").write_text("s3cr3t\n")
    return d


@pytest.fixture
def setup_options(secret_dir: Path, tmp_path: Path) -> SetupOptions:
    return SetupOptions(
        provider="local",
        secret_dir=str(secret_dir),
        path=str(tmp_path / "repo"),
        scratch_dir=str(tmp_path / "scratch"),
    )


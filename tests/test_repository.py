"""Tests for the repository readiness gate."""

from unittest.mock import MagicMock, patch

import pytest

from hikae.core.hooks import ActionOptions
from hikae.core.models import SetupOptions, TargetRef
from hikae.core.repository import RepositoryNotReadyError, wait_for_repository


def _opts() -> ActionOptions:
    return ActionOptions(
        target_ref=TargetRef(kind="PersistentVolumeClaim", name="data"),
        setup_options=SetupOptions(provider="local", secret_dir="/etc/secret", path="/repo"),
        repository="local-repo",
    )


class TestWaitForRepository:
    @patch("hikae.core.repository.time.sleep")
    def test_ready_repository_returns_immediately(self, mock_sleep: MagicMock) -> None:
        checker = MagicMock(return_value=True)

        assert wait_for_repository(checker, _opts()) == 1
        mock_sleep.assert_not_called()

    @patch("hikae.core.repository.time.sleep")
    def test_waits_fixed_interval_until_ready(self, mock_sleep: MagicMock) -> None:
        checker = MagicMock(side_effect=[False, False, True])

        assert wait_for_repository(checker, _opts(), interval=5.0) == 3
        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(5.0)

    @patch("hikae.core.repository.time.sleep")
    def test_checker_exception_counts_as_not_ready(self, mock_sleep: MagicMock) -> None:
        checker = MagicMock(side_effect=[RuntimeError("not found"), True])

        assert wait_for_repository(checker, _opts()) == 2

    @patch("hikae.core.repository.time.sleep")
    def test_times_out_after_max_attempts(self, mock_sleep: MagicMock) -> None:
        checker = MagicMock(return_value=False)

        with pytest.raises(RepositoryNotReadyError) as exc_info:
            wait_for_repository(checker, _opts(), interval=2.0, max_attempts=4)

        assert exc_info.value.attempts == 4
        assert checker.call_count == 4
        assert mock_sleep.call_count == 3
        assert "local-repo" in str(exc_info.value)

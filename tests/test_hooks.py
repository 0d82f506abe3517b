"""Tests for the pre-backup hook runner."""

from unittest.mock import MagicMock

import pytest

from hikae.core.hooks import ActionOptions, HookError, HookRegistry, run_pre_backup_hooks
from hikae.core.models import SetupOptions, TargetRef


def _opts(actions: list[str]) -> ActionOptions:
    return ActionOptions(
        target_ref=TargetRef(kind="Deployment", name="app-x"),
        setup_options=SetupOptions(provider="local", secret_dir="/etc/secret", path="/repo"),
        backup_session="app-x-1700000000",
        namespace="demo",
        repository="local-repo",
        actions=actions,
    )


class TestRunPreBackupHooks:
    def test_no_actions_succeeds_trivially(self) -> None:
        run_pre_backup_hooks(HookRegistry(), _opts([]))

    def test_actions_run_in_order_with_options(self) -> None:
        calls: list[str] = []
        registry = HookRegistry(
            {
                "Freeze": lambda o: calls.append(f"freeze:{o.target_ref.name}"),
                "Snapshot": lambda o: calls.append(f"snap:{o.backup_session}"),
            }
        )

        run_pre_backup_hooks(registry, _opts(["Freeze", "Snapshot"]))

        assert calls == ["freeze:app-x", "snap:app-x-1700000000"]

    def test_failure_stops_remaining_actions(self) -> None:
        later = MagicMock()
        registry = HookRegistry(
            {"Freeze": MagicMock(side_effect=RuntimeError("writer busy")), "Later": later}
        )

        with pytest.raises(HookError) as exc_info:
            run_pre_backup_hooks(registry, _opts(["Freeze", "Later"]))

        assert exc_info.value.action == "Freeze"
        assert "writer busy" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        later.assert_not_called()

    def test_unknown_action_raises(self) -> None:
        with pytest.raises(HookError) as exc_info:
            run_pre_backup_hooks(HookRegistry(), _opts(["Missing"]))
        assert exc_info.value.action == "Missing"


class TestHookRegistry:
    def test_register_and_lookup(self) -> None:
        registry = HookRegistry()
        action = MagicMock()
        registry.register("Freeze", action)

        assert registry.get("Freeze") is action

    def test_get_unknown_returns_none(self) -> None:
        assert HookRegistry().get("nope") is None

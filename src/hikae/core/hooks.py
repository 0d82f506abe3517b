"""Pre-backup actions executed before any data is transferred."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from hikae.core.models import SetupOptions, TargetRef
from hikae.errors import HikaeError

logger = logging.getLogger(__name__)

INITIALIZE_BACKEND_REPOSITORY = "InitializeBackendRepository"


class HookError(HikaeError):
    """Raised when a pre-backup action fails or is not registered."""

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(f"pre-backup action {action} failed: {reason}")


@dataclass
class ActionOptions:
    """Everything a pre-backup action (and the readiness gate) gets to see."""

    target_ref: TargetRef
    setup_options: SetupOptions
    backup_session: str = ""
    namespace: str = "default"
    repository: str = ""
    actions: list[str] = field(default_factory=list)


Action = Callable[[ActionOptions], None]


class HookRegistry:
    """Maps pre-backup action names to callables."""

    def __init__(self, actions: Optional[dict[str, Action]] = None) -> None:
        self._actions: dict[str, Action] = dict(actions or {})

    def register(self, name: str, action: Action) -> None:
        self._actions[name] = action

    def get(self, name: str) -> Optional[Action]:
        return self._actions.get(name)


def run_pre_backup_hooks(registry: HookRegistry, opts: ActionOptions) -> None:
    """
    Execute the pre-backup actions assigned to a target, in order.

    Stops at the first failure; nothing after it (readiness wait, engine)
    should run.

    Raises:
        HookError: If an action is unknown or raises
    """
    if not opts.actions:
        logger.debug("[%s] No pre-backup actions", opts.target_ref)
        return

    for name in opts.actions:
        action = registry.get(name)
        if action is None:
            raise HookError(name, "no such action registered")
        logger.info("[%s] Running pre-backup action %s", opts.target_ref, name)
        try:
            action(opts)
        except Exception as exc:
            logger.error("[%s] Pre-backup action %s failed: %s", opts.target_ref, name, exc)
            raise HookError(name, str(exc)) from exc
    logger.info("[%s] %d pre-backup action(s) done", opts.target_ref, len(opts.actions))

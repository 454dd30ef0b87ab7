# Overview: Post-commit side effects (notifications, audit) with per-hook error isolation.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..extensions import db


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HookResult:
    name: str
    ok: bool
    error: str | None = None


class PostCommitHooks:
    """
    Side effects queued during a transaction and run only after it commits.

    A failing hook is rolled back, logged and reported in its HookResult; it
    never propagates and never affects the other hooks or the committed data.
    """

    def __init__(self):
        self._hooks: list[tuple[str, Callable[..., Any], tuple, dict]] = []

    def add(self, name: str, func: Callable[..., Any], *args, **kwargs) -> None:
        self._hooks.append((name, func, args, kwargs))

    def __len__(self) -> int:
        return len(self._hooks)

    def run(self) -> list[HookResult]:
        results: list[HookResult] = []
        hooks, self._hooks = self._hooks, []
        for name, func, args, kwargs in hooks:
            try:
                func(*args, **kwargs)
            except Exception as exc:
                db.session.rollback()
                logger.exception(f"Post-commit hook '{name}' failed")
                results.append(HookResult(name=name, ok=False, error=str(exc)))
            else:
                results.append(HookResult(name=name, ok=True))
        return results

from __future__ import annotations

import itertools
import threading
from collections.abc import Mapping, Sequence
from typing import Any

from .errors import ControlProtocolError
from .hooks import HookCallback, HookMatcher
from .permissions import CanUseTool


class CallbackRegistry:
    """Permission callback plus hook callbacks keyed by generated id.

    Shared between the client and the control engine; entries live as long
    as the connection.
    """

    def __init__(self, can_use_tool: CanUseTool | None = None) -> None:
        self._lock = threading.Lock()
        self._permission = can_use_tool
        self._hooks: dict[str, HookCallback] = {}
        self._ids = itertools.count()

    @property
    def permission_callback(self) -> CanUseTool | None:
        return self._permission

    def register_hook(self, callback: HookCallback) -> str:
        with self._lock:
            callback_id = f"hook_{next(self._ids)}"
            self._hooks[callback_id] = callback
        return callback_id

    def get_hook(self, callback_id: str) -> HookCallback:
        with self._lock:
            callback = self._hooks.get(callback_id)
        if callback is None:
            raise ControlProtocolError(f"No hook callback found for ID: {callback_id}")
        return callback

    def hook_ids(self) -> list[str]:
        with self._lock:
            return list(self._hooks)

    def build_hooks_config(
        self, hooks: Mapping[str, Sequence[HookMatcher]] | None
    ) -> dict[str, Any] | None:
        """Register every hook callback and return the initialize payload form."""
        if not hooks:
            return None
        config: dict[str, Any] = {}
        for event, matchers in hooks.items():
            if not matchers:
                continue
            entries: list[dict[str, Any]] = []
            for matcher in matchers:
                entry: dict[str, Any] = {
                    "matcher": matcher.matcher,
                    "hookCallbackIds": [
                        self.register_hook(callback) for callback in matcher.hooks
                    ],
                }
                if matcher.timeout is not None:
                    entry["timeout"] = matcher.timeout
                entries.append(entry)
            config[event] = entries
        return config or None

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

PermissionMode = Literal["default", "acceptEdits", "plan", "bypassPermissions"]
PermissionBehavior = Literal["allow", "deny", "ask"]
PermissionUpdateType = Literal[
    "addRules",
    "replaceRules",
    "removeRules",
    "setMode",
    "addDirectories",
    "removeDirectories",
]
PermissionUpdateDestination = Literal[
    "userSettings", "projectSettings", "localSettings", "session"
]

PERMISSION_MODES: tuple[str, ...] = ("default", "acceptEdits", "plan", "bypassPermissions")

_RULE_UPDATES = ("addRules", "replaceRules", "removeRules")
_DIRECTORY_UPDATES = ("addDirectories", "removeDirectories")


@dataclass(frozen=True, slots=True)
class PermissionRuleValue:
    tool_name: str
    rule_content: str | None = None


@dataclass(slots=True)
class PermissionUpdate:
    type: PermissionUpdateType
    rules: list[PermissionRuleValue] | None = None
    behavior: PermissionBehavior | None = None
    mode: PermissionMode | None = None
    directories: list[str] | None = None
    destination: PermissionUpdateDestination | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form used in ``updatedPermissions`` (camelCase rule keys)."""
        result: dict[str, Any] = {"type": self.type}
        if self.destination is not None:
            result["destination"] = self.destination

        if self.type in _RULE_UPDATES:
            if self.rules is not None:
                result["rules"] = [
                    {"toolName": rule.tool_name, "ruleContent": rule.rule_content}
                    for rule in self.rules
                ]
            if self.behavior is not None:
                result["behavior"] = self.behavior
        elif self.type == "setMode":
            if self.mode is not None:
                result["mode"] = self.mode
        elif self.type in _DIRECTORY_UPDATES:
            if self.directories is not None:
                result["directories"] = list(self.directories)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PermissionUpdate:
        update_type = data.get("type")
        if not isinstance(update_type, str):
            raise ValueError(f"permission update missing type: {data!r}")
        rules = data.get("rules")
        return cls(
            type=update_type,  # type: ignore[arg-type]
            rules=None
            if rules is None
            else [
                PermissionRuleValue(
                    tool_name=rule.get("toolName", ""),
                    rule_content=rule.get("ruleContent"),
                )
                for rule in rules
            ],
            behavior=data.get("behavior"),
            mode=data.get("mode"),
            directories=data.get("directories"),
            destination=data.get("destination"),
        )


@dataclass(slots=True)
class ToolPermissionContext:
    suggestions: list[PermissionUpdate] = field(default_factory=list)
    blocked_path: str | None = None
    # Reserved for a future abort signal; always None for now.
    signal: Any | None = None


@dataclass(slots=True)
class PermissionResultAllow:
    updated_input: dict[str, Any] | None = None
    updated_permissions: list[PermissionUpdate] | None = None

    @property
    def behavior(self) -> str:
        return "allow"


@dataclass(slots=True)
class PermissionResultDeny:
    message: str = ""
    interrupt: bool = False

    @property
    def behavior(self) -> str:
        return "deny"


PermissionResult = PermissionResultAllow | PermissionResultDeny


@runtime_checkable
class CanUseTool(Protocol):
    def __call__(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        context: ToolPermissionContext,
    ) -> Awaitable[PermissionResult]: ...


def permission_response(
    result: PermissionResult, original_input: dict[str, Any]
) -> dict[str, Any]:
    match result:
        case PermissionResultAllow():
            payload: dict[str, Any] = {
                "behavior": "allow",
                "updatedInput": result.updated_input
                if result.updated_input is not None
                else original_input,
            }
            if result.updated_permissions:
                payload["updatedPermissions"] = [
                    update.to_dict() for update in result.updated_permissions
                ]
            return payload
        case PermissionResultDeny():
            payload = {"behavior": "deny", "message": result.message}
            if result.interrupt:
                payload["interrupt"] = True
            return payload
    raise TypeError(
        "permission callback must return PermissionResultAllow or "
        f"PermissionResultDeny, got {type(result).__name__}"
    )

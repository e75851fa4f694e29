__version__ = "0.1.0"

from .client import DuplexClient
from .engine import ControlEngine, EngineState
from .errors import (
    ClaudeSDKError,
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ConfigError,
    ControlProtocolError,
    ControlTimeoutError,
    MessageParseError,
    MessageTooLargeError,
    ProcessError,
)
from .hooks import (
    HookContext,
    HookJSONOutput,
    HookMatcher,
    PreToolUseHookSpecificOutput,
)
from .logging import setup_logging
from .messages import (
    AssistantMessage,
    Message,
    ResultMessage,
    StreamEvent,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
)
from .options import AgentDefinition, ClaudeAgentOptions, SystemPromptPreset, ToolsPreset
from .permissions import (
    PermissionResultAllow,
    PermissionResultDeny,
    PermissionRuleValue,
    PermissionUpdate,
    ToolPermissionContext,
)
from .query import query
from .settings import DuplexSettings, load_settings

__all__ = [
    "AgentDefinition",
    "AssistantMessage",
    "CLIConnectionError",
    "CLIJSONDecodeError",
    "CLINotFoundError",
    "ClaudeAgentOptions",
    "ClaudeSDKError",
    "ConfigError",
    "ControlEngine",
    "ControlProtocolError",
    "ControlTimeoutError",
    "DuplexClient",
    "DuplexSettings",
    "EngineState",
    "HookContext",
    "HookJSONOutput",
    "HookMatcher",
    "Message",
    "MessageParseError",
    "MessageTooLargeError",
    "PermissionResultAllow",
    "PermissionResultDeny",
    "PermissionRuleValue",
    "PermissionUpdate",
    "PreToolUseHookSpecificOutput",
    "ProcessError",
    "ResultMessage",
    "StreamEvent",
    "SystemMessage",
    "SystemPromptPreset",
    "TextBlock",
    "ThinkingBlock",
    "ToolPermissionContext",
    "ToolResultBlock",
    "ToolUseBlock",
    "ToolsPreset",
    "UserMessage",
    "__version__",
    "load_settings",
    "query",
    "setup_logging",
]

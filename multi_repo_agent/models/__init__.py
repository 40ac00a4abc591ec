"""データモデルモジュール。"""

from .agent import (
    AgentDefinition,
    AgentExecutionRequest,
    AgentExecutionResult,
    ConversationMessage,
    MessageRole,
    SkillDefinition,
    TaskRequest,
    TaskResult,
)
from .pull_request import CreatePROptions, MultiPRResult, PRResult
from .repository import GitProvider, RepositoryConfig
from .workspace import CleanupReport, PushedBranch, Workspace

__all__ = [
    "AgentDefinition",
    "AgentExecutionRequest",
    "AgentExecutionResult",
    "CleanupReport",
    "ConversationMessage",
    "CreatePROptions",
    "GitProvider",
    "MessageRole",
    "MultiPRResult",
    "PRResult",
    "PushedBranch",
    "RepositoryConfig",
    "SkillDefinition",
    "TaskRequest",
    "TaskResult",
    "Workspace",
]

"""エージェントモデル定義。"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .pull_request import PRResult
from .repository import RepositoryConfig


class AgentDefinition(BaseModel):
    """Markdown ファイルから読み込んだエージェント定義。"""

    name: str = Field(description="エージェント名")
    system_prompt: str = Field(description="システムプロンプト（frontmatter 除去後の本文）")
    tools: list[str] | None = Field(default=None, description="許可ツール（None はデフォルト）")
    model: str | None = Field(default=None, description="モデル上書き")
    description: str | None = Field(default=None, description="エージェントの説明")
    source_path: str | None = Field(default=None, description="読み込んだファイルのパス")


class SkillDefinition(BaseModel):
    """SKILL.md から読み込んだスキル定義。"""

    name: str
    description: str = ""
    content: str
    script_path: str = Field(description="スキルディレクトリのパス")
    allowed_tools: list[str] | None = None
    model: str | None = None


class MessageRole(str, Enum):
    """会話メッセージの話者。"""

    USER = "user"
    ASSISTANT = "assistant"


class ConversationMessage(BaseModel):
    """過去の会話メッセージ。"""

    model_config = ConfigDict(use_enum_values=True)

    role: MessageRole
    content: str
    timestamp: str | None = None


class AgentExecutionRequest(BaseModel):
    """エージェント実行パラメータ。"""

    agent_prompt: str = Field(description="エージェント定義のシステムプロンプト")
    working_dir: str = Field(description="主作業ディレクトリ")
    worktrees: dict[str, str] = Field(
        default_factory=dict, description="追加でアクセスを許可するディレクトリ"
    )
    model: str
    max_turns: int = 50
    timeout_seconds: int = 600
    resume_session_id: str | None = None
    allowed_tools: list[str] | None = None
    claude_md_path: str | None = None
    conversation_context: list[ConversationMessage] = Field(default_factory=list)


class AgentExecutionResult(BaseModel):
    """エージェント実行結果。"""

    success: bool
    output: str = ""
    files_modified: list[str] = Field(default_factory=list)
    session_id: str = ""
    turn_count: int = 0
    session_created: datetime
    last_activity: datetime
    conversation_summary: str = ""
    has_action: bool = False
    timed_out: bool = False
    error: str | None = None


class TaskRequest(BaseModel):
    """オーケストレーターへのタスク要求。"""

    agent_name: str = Field(description="エージェント名（custom の場合は custom_agent_path を使用）")
    custom_agent_path: str | None = None
    repositories: list[RepositoryConfig] = Field(default_factory=list)
    prompt: str
    branch_name: str | None = None
    base_branch: str = "main"
    create_pr: bool = True
    model: str | None = None
    max_turns: int = 50
    timeout_seconds: int = 600
    resume_session_id: str | None = None


class TaskResult(BaseModel):
    """タスク実行結果。"""

    success: bool
    output: str = ""
    files_modified: list[str] = Field(default_factory=list)
    session_id: str = ""
    task_id: str | None = None
    branch_name: str | None = None
    agent_name: str | None = None
    prs: list[PRResult] = Field(default_factory=list)
    error: str | None = None
    cleanup_warnings: list[str] = Field(default_factory=list)

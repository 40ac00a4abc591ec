"""設定管理モジュール。"""

import os
from pathlib import Path

from pydantic import ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from multi_repo_agent.errors import ConfigurationError

PROJECT_CONFIG_DIR = ".multi-repo-agent"
"""プロジェクト別設定ディレクトリ名"""


def resolve_project_env_file(project_root: str | os.PathLike[str] | None) -> str | None:
    """指定した project_root から .env ファイルを解決する。

    Args:
        project_root: プロジェクトルートパス

    Returns:
        .env ファイルのパス（存在する場合）、または None
    """
    if not project_root:
        return None

    env_file = Path(project_root) / PROJECT_CONFIG_DIR / ".env"
    if env_file.exists():
        return str(env_file)
    return None


def get_project_env_file() -> str | None:
    """プロジェクト別 .env ファイルのパスを取得。

    AGENT_PROJECT_ROOT 環境変数が設定されている場合、
    {project_root}/.multi-repo-agent/.env を返す。
    """
    return resolve_project_env_file(os.getenv("AGENT_PROJECT_ROOT"))


class ModelDefaults:
    """デフォルトモデル名の定数。"""

    SONNET = "claude-sonnet-4-20250514"
    OPUS = "claude-opus-4-20250514"
    HAIKU = "claude-3-5-haiku-20241022"


class Settings(BaseSettings):
    """Multi-Repo Agent の設定。

    環境変数で上書き可能。プレフィックスは AGENT_。
    例: AGENT_DEFAULT_MAX_TURNS=100

    優先順位:
    1. 環境変数（最優先）
    2. プロジェクト別 .env ファイル（{project}/.multi-repo-agent/.env）
    3. デフォルト値
    """

    model_config = ConfigDict(
        env_prefix="AGENT_",
        env_file=get_project_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # エージェント定義
    agents_dir: str = "~/.claude/agents"
    """ユーザー定義エージェントのディレクトリ"""

    builtin_agents_dir: str | None = None
    """同梱エージェントのディレクトリ（None の場合はパッケージ同梱の agents/）"""

    skills_dirs: list[str] = Field(
        default=["~/.claude/skills"],
        description="スキル定義の探索ディレクトリ（先頭優先）",
    )

    # エージェント実行
    agent_cli: str = "claude"
    """エージェント CLI コマンド"""

    default_model: str = ModelDefaults.SONNET
    """エージェント定義でモデル未指定時に使うモデル"""

    default_max_turns: int = 50
    """最大ターン数のデフォルト"""

    default_timeout_seconds: int = 600
    """エージェント実行タイムアウト（秒）のデフォルト"""

    # git 設定
    default_base_branch: str = "main"
    """worktree の基点ブランチ"""

    git_remote: str = "origin"
    """fetch / push 先のリモート名"""

    # PR プロバイダー設定
    pr_cli_timeout_seconds: float = 30.0
    """PR 作成・本文更新 CLI のタイムアウト（秒）"""

    gitea_cli: str = "gitea"
    """Gitea CLI コマンド"""

    github_cli: str = "github"
    """GitHub CLI コマンド"""

    gitea_base_url: str = "https://gitea.com"
    """Gitea の Web URL（PR URL の組み立てに使用）"""

    github_base_url: str = "https://github.com"
    """GitHub の Web URL（PR URL の組み立てに使用）"""

    # 出力整形
    commit_prompt_preview_chars: int = 200
    """コミットメッセージに含めるプロンプトの最大文字数"""

    pr_title_preview_chars: int = 60
    """PR タイトルに含めるプロンプトの最大文字数"""

    pr_body_max_chars: int = 2000
    """PR 本文に含めるエージェント出力の最大文字数"""

    @field_validator("gitea_base_url", "github_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """URL 末尾のスラッシュを取り除く。"""
        return value.rstrip("/")

    @field_validator("pr_cli_timeout_seconds")
    @classmethod
    def validate_pr_cli_timeout(cls, value: float) -> float:
        """PR CLI タイムアウトは正の値に限定する。"""
        if value <= 0:
            raise ValueError("AGENT_PR_CLI_TIMEOUT_SECONDS は正の値を指定してください")
        return value

    def get_agents_dir(self) -> Path:
        """ユーザー定義エージェントディレクトリを展開して返す。"""
        return Path(self.agents_dir).expanduser()

    def get_builtin_agents_dir(self) -> Path:
        """同梱エージェントディレクトリを返す。"""
        if self.builtin_agents_dir:
            return Path(self.builtin_agents_dir).expanduser()
        # multi_repo_agent/config/settings.py からの相対パス
        return Path(__file__).parent.parent.parent / "agents"

    def get_skills_dirs(self) -> list[Path]:
        """スキル探索ディレクトリを展開して返す。"""
        return [Path(d).expanduser() for d in self.skills_dirs]


def load_settings_for_project(project_root: str | os.PathLike[str] | None) -> Settings:
    """指定 project_root の .env を優先して Settings を生成する。

    Args:
        project_root: プロジェクトルートパス

    Returns:
        読み込み済み Settings インスタンス

    Raises:
        ConfigurationError: 環境変数や .env の値が不正な場合
    """
    env_file = resolve_project_env_file(project_root)
    try:
        if env_file:
            return Settings(_env_file=env_file)
        # model_config 側の env_file を使わず、環境変数 + デフォルトのみで構築
        return Settings(_env_file=None)
    except ValidationError as e:
        raise ConfigurationError(
            f"設定の読み込みに失敗しました: {e}", {"env_file": env_file}
        ) from e

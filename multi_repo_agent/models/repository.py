"""リポジトリ設定モデル定義。"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GitProvider(str, Enum):
    """PR を作成するホスティングサービス。"""

    GITEA = "gitea"
    GITHUB = "github"
    NONE = "none"
    """PR を作成しない"""


class RepositoryConfig(BaseModel):
    """エージェントが触るリポジトリ 1 つ分の設定。

    タスク実行中は変更されない。
    """

    model_config = ConfigDict(frozen=True)

    repo_path: str = Field(description="正準チェックアウトの絶対パス")
    worktrees_base: str = Field(description="worktree を作成するベースディレクトリ")
    repo_name: str = Field(min_length=1, description="タスク内で一意なリポジトリ名")
    git_provider: GitProvider = Field(default=GitProvider.NONE, description="PR プロバイダー")
    remote_owner: str = Field(default="", description="プロバイダー上のオーナー/組織")
    remote_repo: str = Field(default="", description="プロバイダー上のリポジトリ名")
    gitea_cli_path: str | None = Field(default=None, description="Gitea CLI のパス上書き")
    github_cli_path: str | None = Field(default=None, description="GitHub CLI のパス上書き")

    @model_validator(mode="after")
    def check_remote(self) -> "RepositoryConfig":
        """provider が none 以外なら owner / repo を必須とする。"""
        if self.git_provider != GitProvider.NONE:
            if not self.remote_owner or not self.remote_repo:
                raise ValueError(
                    f"{self.repo_name}: git_provider={self.git_provider.value} の場合 "
                    "remote_owner と remote_repo は必須です"
                )
        return self

    @property
    def remote_slug(self) -> str:
        """owner/repo 形式の識別子。"""
        return f"{self.remote_owner}/{self.remote_repo}"

"""ワークスペース・Worktreeモデル定義。"""

from pydantic import BaseModel, Field

from .repository import RepositoryConfig


class Workspace(BaseModel):
    """タスク 1 つ分のワークスペース情報。"""

    task_id: str = Field(description="タスクID")
    branch_name: str = Field(description="全リポジトリ共通の作業ブランチ名")
    worktrees: dict[str, str] = Field(
        default_factory=dict, description="リポジトリ名 → worktree パス"
    )
    configs: dict[str, RepositoryConfig] = Field(
        default_factory=dict, description="リポジトリ名 → 設定"
    )
    working_dir: str = Field(description="エージェントの主作業ディレクトリ")
    warnings: list[str] = Field(
        default_factory=list, description="致命的でない警告（シンボリックリンク失敗など）"
    )


class PushedBranch(BaseModel):
    """push 済みブランチ情報。PR 作成の入力になる。"""

    branch: str = Field(description="push したブランチ名")
    config: RepositoryConfig = Field(description="リポジトリ設定")


class CleanupReport(BaseModel):
    """ワークスペース削除結果。"""

    removed: list[str] = Field(default_factory=list, description="削除したリポジトリ名")
    warnings: list[str] = Field(default_factory=list, description="削除時の警告")

    @property
    def has_warnings(self) -> bool:
        """警告があるかどうか。"""
        return bool(self.warnings)

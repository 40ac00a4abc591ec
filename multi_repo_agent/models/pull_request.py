"""Pull Request モデル定義。"""

from pydantic import BaseModel, Field

from .repository import RepositoryConfig


class CreatePROptions(BaseModel):
    """PR 作成パラメータ。"""

    config: RepositoryConfig
    branch: str
    base_branch: str
    title: str
    body: str


class PRResult(BaseModel):
    """作成された PR。"""

    repo_name: str = Field(description="リポジトリ名")
    url: str = Field(description="PR の URL")
    number: int = Field(description="PR 番号（0 は不明を意味する）")
    provider: str = Field(description="プロバイダー名")


class MultiPRResult(BaseModel):
    """複数リポジトリの PR 作成結果。"""

    task_id: str = Field(description="タスクID")
    prs: list[PRResult] = Field(default_factory=list, description="作成された PR")
    linked_description: str = Field(description="全 PR 共通の相互リンク付き本文")
    warnings: list[str] = Field(
        default_factory=list, description="作成・本文更新の失敗（致命的ではない）"
    )

"""例外クラス定義。

各例外はデバッグ用のコンテキスト辞書を保持する。
"""

from typing import Any


class AgentTaskError(Exception):
    """エージェントタスク関連エラーの基底クラス。"""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}


class WorktreeError(AgentTaskError):
    """リポジトリ単位のワークスペース操作エラー。

    作成・コミット・プッシュ・クリーンアップの失敗を表す。
    """

    def __init__(
        self,
        message: str,
        repo_key: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, {"repo_key": repo_key, **(context or {})})
        self.repo_key = repo_key


class PRCreationError(AgentTaskError):
    """PR 作成エラー。"""

    def __init__(
        self,
        message: str,
        provider: str,
        repo: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, {"provider": provider, "repo": repo, **(context or {})})
        self.provider = provider
        self.repo = repo


class PRUpdateError(AgentTaskError):
    """PR 本文更新エラー（PR 自体は作成済み）。"""

    def __init__(
        self,
        message: str,
        provider: str,
        repo: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, {"provider": provider, "repo": repo, **(context or {})})
        self.provider = provider
        self.repo = repo


class ValidationError(AgentTaskError):
    """入力値の検証エラー。I/O 開始前に送出される。"""

    def __init__(self, message: str, field: str, value: Any) -> None:
        super().__init__(message, {"field": field, "value": value})
        self.field = field
        self.value = value


class AgentExecutionError(AgentTaskError):
    """エージェント実行エラー。"""

    def __init__(
        self,
        message: str,
        session_id: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, {"session_id": session_id, **(context or {})})
        self.session_id = session_id


class AgentNotFoundError(AgentTaskError):
    """エージェント定義が見つからない。"""

    def __init__(self, message: str, name: str, searched: list[str] | None = None) -> None:
        super().__init__(message, {"name": name, "searched": searched or []})
        self.name = name
        self.searched = searched or []


class ConfigurationError(AgentTaskError):
    """設定エラー。"""

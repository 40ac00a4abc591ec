"""複数リポジトリの PR 作成と相互リンク。

PR 番号は作成後にしか分からないため、2 フェーズで処理する:
1. 全リポジトリの PR を仮の本文で作成する
2. 作成できた全 PR を列挙した共通本文で各 PR を更新する
"""

import logging
from collections.abc import Callable, Mapping

from multi_repo_agent.config.settings import Settings
from multi_repo_agent.errors import AgentTaskError, PRCreationError
from multi_repo_agent.models.pull_request import CreatePROptions, MultiPRResult, PRResult
from multi_repo_agent.models.repository import GitProvider, RepositoryConfig
from multi_repo_agent.models.workspace import PushedBranch

from .pr_providers import PRProvider, get_provider

logger = logging.getLogger(__name__)

PLACEHOLDER_BODY = "Creating PR... (will update with links)"
FOOTER = "*Generated by Multi-Repo Agent*"


def build_linked_description(task_id: str, body: str, prs: list[PRResult]) -> str:
    """全 PR 共通の相互リンク付き本文を組み立てる。"""
    lines = [body, "", "---", "", "## Related PRs", "", f"Task ID: `{task_id}`", ""]
    for pr in prs:
        lines.append(f"- [{pr.repo_name}: PR #{pr.number}]({pr.url}) ({pr.provider})")
    lines.extend(["", "---", FOOTER])
    return "\n".join(lines)


class PRCoordinator:
    """プロバイダーを選択して PR を作成・相互リンクするクラス。"""

    def __init__(
        self,
        settings: Settings | None = None,
        provider_factory: Callable[[RepositoryConfig, Settings], PRProvider] | None = None,
    ) -> None:
        """PRCoordinatorを初期化する。

        Args:
            settings: アプリケーション設定
            provider_factory: プロバイダー生成関数（省略時は get_provider）
        """
        self.settings = settings or Settings()
        self._provider_factory = provider_factory or get_provider

    def _get_provider(self, config: RepositoryConfig) -> PRProvider:
        return self._provider_factory(config, self.settings)

    async def create_multi_repo_prs(
        self,
        task_id: str,
        repos: Mapping[str, PushedBranch],
        base_branch: str,
        title: str,
        body: str,
    ) -> MultiPRResult:
        """push 済みの全リポジトリに PR を作成し、本文で相互リンクする。

        provider=none のリポジトリはスキップする（エラーにもしない）。
        1 リポジトリの作成失敗は記録のみで、他のリポジトリの作成は継続する。
        本文更新の失敗も致命的ではない。

        Args:
            task_id: タスクID
            repos: リポジトリ名 → push 済みブランチ情報
            base_branch: マージ先ブランチ
            title: PR タイトル
            body: PR 本文（相互リンク前）

        Returns:
            作成結果
        """
        if not repos:
            return MultiPRResult(task_id=task_id, prs=[], linked_description=body)

        prs: list[PRResult] = []
        warnings: list[str] = []

        for repo_key, pushed in repos.items():
            config = pushed.config
            if config.git_provider == GitProvider.NONE:
                logger.info(f"PR 作成をスキップします: {repo_key}（provider 未設定）")
                continue

            provider = self._get_provider(config)
            try:
                pr = await provider.create_pr(
                    CreatePROptions(
                        config=config,
                        branch=pushed.branch,
                        base_branch=base_branch,
                        title=title,
                        body=PLACEHOLDER_BODY,
                    )
                )
            except Exception as e:
                message = e.message if isinstance(e, AgentTaskError) else str(e)
                logger.error(f"PR 作成に失敗しました: {repo_key}: {message}")
                warnings.append(f"{repo_key}: {message}")
                continue

            prs.append(pr)
            logger.info(f"PR を作成しました: {repo_key} #{pr.number} ({pr.url})")

        linked_description = build_linked_description(task_id, body, prs)

        for pr in prs:
            pushed = repos.get(pr.repo_name)
            if pushed is None:
                continue
            provider = self._get_provider(pushed.config)
            update_pr_body = getattr(provider, "update_pr_body", None)
            if update_pr_body is None:
                continue
            try:
                await update_pr_body(pushed.config, pr.number, linked_description)
            except Exception as e:
                message = e.message if isinstance(e, AgentTaskError) else str(e)
                logger.warning(f"PR 本文の更新に失敗しました（PR は作成済み）: {message}")
                warnings.append(f"{pr.repo_name}: {message}")

        return MultiPRResult(
            task_id=task_id,
            prs=prs,
            linked_description=linked_description,
            warnings=warnings,
        )

    async def create_pr(self, options: CreatePROptions) -> PRResult:
        """単一リポジトリの PR を作成する（相互リンクなし）。

        Raises:
            PRCreationError: provider=none、または作成に失敗した場合
        """
        if options.config.git_provider == GitProvider.NONE:
            raise PRCreationError(
                "このリポジトリでは PR 作成が無効です (disabled for this repository)",
                GitProvider.NONE.value,
                options.config.repo_name,
            )
        return await self._get_provider(options.config).create_pr(options)


async def create_multi_repo_prs(
    task_id: str,
    repos: Mapping[str, PushedBranch],
    base_branch: str,
    title: str,
    body: str,
    settings: Settings | None = None,
) -> MultiPRResult:
    """PRCoordinator.create_multi_repo_prs のショートカット。"""
    return await PRCoordinator(settings).create_multi_repo_prs(
        task_id, repos, base_branch, title, body
    )


async def create_pr(options: CreatePROptions, settings: Settings | None = None) -> PRResult:
    """PRCoordinator.create_pr のショートカット。"""
    return await PRCoordinator(settings).create_pr(options)

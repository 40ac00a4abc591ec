"""PR プロバイダー実装。

Gitea / GitHub はそれぞれの CLI を引数リストで呼び出す（シェルを経由しない）。
プロバイダーは git_provider をキーにしたディスパッチテーブルで選択する。
本文更新 (update_pr_body) は任意のケイパビリティで、持たないプロバイダーもある。
"""

import asyncio
import json
import logging
import re
import subprocess
from collections.abc import Callable
from typing import Protocol

from multi_repo_agent.config.settings import Settings
from multi_repo_agent.config.validation import validate_branch_name
from multi_repo_agent.errors import PRCreationError, PRUpdateError
from multi_repo_agent.models.pull_request import CreatePROptions, PRResult
from multi_repo_agent.models.repository import GitProvider, RepositoryConfig

logger = logging.getLogger(__name__)

DEFAULT_CLI_TIMEOUT_SECONDS = 30.0

_PR_NUMBER_PATTERNS = (
    re.compile(r"PR #(\d+)", re.IGNORECASE),
    re.compile(r"#(\d+)"),
)


def parse_pr_number(output: str) -> int:
    """CLI の出力から PR 番号を取り出す。見つからない場合は 0（不明）。"""
    for pattern in _PR_NUMBER_PATTERNS:
        match = pattern.search(output)
        if match:
            return int(match.group(1))
    return 0


async def run_cli(*args: str, timeout: float = DEFAULT_CLI_TIMEOUT_SECONDS) -> tuple[int, str, str]:
    """外部 CLI をタイムアウト付きで実行する。

    タイムアウトした場合はプロセスを kill する。

    Returns:
        (リターンコード, stdout, stderr) のタプル
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return 1, "", f"コマンドが見つかりません: {args[0]}"
    except (OSError, subprocess.SubprocessError) as e:
        logger.error(f"コマンド実行エラー: {e}")
        return 1, "", str(e)

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return 1, "", f"タイムアウトしました ({timeout:g} 秒): {args[0]}"

    return (
        proc.returncode or 0,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace"),
    )


class PRProvider(Protocol):
    """PR プロバイダーのケイパビリティ。

    update_pr_body は任意で、getattr で有無を判定する。
    """

    name: str

    async def create_pr(self, options: CreatePROptions) -> PRResult: ...


class CliPRProvider:
    """CLI ベースの PR プロバイダー共通実装。"""

    name = ""
    display_name = ""

    def __init__(
        self,
        cli_path: str,
        base_url: str,
        timeout: float = DEFAULT_CLI_TIMEOUT_SECONDS,
    ) -> None:
        """CliPRProviderを初期化する。

        Args:
            cli_path: CLI コマンドのパス
            base_url: Web URL（PR URL の組み立てに使用）
            timeout: CLI 実行のタイムアウト（秒）
        """
        self.cli_path = cli_path
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def build_url(self, slug: str, number: int) -> str:
        """PR の URL を組み立てる。"""
        raise NotImplementedError

    async def _run_cli(self, *args: str) -> tuple[int, str, str]:
        return await run_cli(self.cli_path, *args, timeout=self.timeout)

    async def create_pr(self, options: CreatePROptions) -> PRResult:
        """PR を作成する。

        Raises:
            ValidationError: ブランチ名が不正な場合
            PRCreationError: CLI の実行に失敗した場合
        """
        validate_branch_name(options.branch)
        validate_branch_name(options.base_branch)

        slug = options.config.remote_slug
        code, stdout, stderr = await self._run_cli(
            "pr:create",
            slug,
            options.branch,
            options.base_branch,
            options.title,
            f"--body={options.body}",
        )
        if code != 0:
            raise PRCreationError(
                f"{self.display_name} PR の作成に失敗しました: {(stderr or stdout).strip()}",
                self.name,
                slug,
                {"branch": options.branch, "base_branch": options.base_branch},
            )

        number = parse_pr_number(stdout)
        if number == 0:
            logger.warning(f"PR 番号を出力から取得できませんでした ({slug}): {stdout.strip()}")

        return PRResult(
            repo_name=options.config.repo_name,
            url=self.build_url(slug, number),
            number=number,
            provider=self.name,
        )

    async def update_pr_body(self, config: RepositoryConfig, number: int, body: str) -> None:
        """PR の本文を置き換える。

        Raises:
            PRUpdateError: CLI の実行に失敗した場合
        """
        slug = config.remote_slug
        code, stdout, stderr = await self._run_cli(
            "raw:patch",
            f"repos/{slug}/pulls/{number}",
            json.dumps({"body": body}),
        )
        if code != 0:
            raise PRUpdateError(
                f"{self.display_name} PR 本文の更新に失敗しました "
                f"({slug}#{number}): {(stderr or stdout).strip()}",
                self.name,
                slug,
                {"number": number},
            )


class GiteaProvider(CliPRProvider):
    """gitea CLI を使う PR プロバイダー。"""

    name = GitProvider.GITEA.value
    display_name = "Gitea"

    def build_url(self, slug: str, number: int) -> str:
        return f"{self.base_url}/{slug}/pulls/{number}"


class GitHubProvider(CliPRProvider):
    """github CLI を使う PR プロバイダー。"""

    name = GitProvider.GITHUB.value
    display_name = "GitHub"

    def build_url(self, slug: str, number: int) -> str:
        return f"{self.base_url}/{slug}/pull/{number}"


class NoOpProvider:
    """PR 作成が無効なリポジトリ用のプロバイダー。

    直接呼び出された場合は必ず失敗する。本文更新のケイパビリティは持たない。
    """

    name = GitProvider.NONE.value

    async def create_pr(self, options: CreatePROptions) -> PRResult:
        raise PRCreationError(
            "このリポジトリでは PR 作成が無効です (disabled for this repository)",
            self.name,
            options.config.repo_name,
        )


ProviderFactory = Callable[[RepositoryConfig, Settings], PRProvider]

PROVIDER_FACTORIES: dict[GitProvider, ProviderFactory] = {
    GitProvider.GITEA: lambda config, settings: GiteaProvider(
        config.gitea_cli_path or settings.gitea_cli,
        settings.gitea_base_url,
        settings.pr_cli_timeout_seconds,
    ),
    GitProvider.GITHUB: lambda config, settings: GitHubProvider(
        config.github_cli_path or settings.github_cli,
        settings.github_base_url,
        settings.pr_cli_timeout_seconds,
    ),
    GitProvider.NONE: lambda config, settings: NoOpProvider(),
}


def get_provider(config: RepositoryConfig, settings: Settings | None = None) -> PRProvider:
    """リポジトリ設定に対応するプロバイダーを返す。"""
    factory = PROVIDER_FACTORIES.get(config.git_provider, PROVIDER_FACTORIES[GitProvider.NONE])
    return factory(config, settings or Settings())

"""エージェントタスク実行ツール。"""

import logging
import os
from typing import Any

from mcp.server.fastmcp import Context, FastMCP
from pydantic import ValidationError as PydanticValidationError

from multi_repo_agent.config.validation import (
    sanitize_for_display,
    validate_max_turns,
    validate_path,
    validate_prompt,
    validate_repo_config,
    validate_timeout,
)
from multi_repo_agent.context import AppContext
from multi_repo_agent.errors import AgentTaskError, ValidationError
from multi_repo_agent.models.agent import AgentExecutionRequest, TaskRequest
from multi_repo_agent.models.repository import GitProvider, RepositoryConfig

logger = logging.getLogger(__name__)


def build_repository_config(repo: dict[str, Any]) -> RepositoryConfig:
    """ツール入力のリポジトリ指定を RepositoryConfig に変換する。

    Args:
        repo: local_path, worktrees_base, repo_name, git_provider,
            remote_owner, remote_repo を持つ辞書

    Raises:
        ValidationError: 入力が不正な場合
    """
    repo_name = str(repo.get("repo_name") or "")
    git_provider = str(repo.get("git_provider") or GitProvider.NONE.value)
    local_path = str(repo.get("local_path") or "")
    worktrees_base = str(repo.get("worktrees_base") or "")
    remote_owner = str(repo.get("remote_owner") or "")
    remote_repo = str(repo.get("remote_repo") or "")

    try:
        validate_repo_config(local_path, worktrees_base, git_provider, remote_owner, remote_repo)
    except ValidationError as e:
        raise ValidationError(
            f'リポジトリ "{sanitize_for_display(repo_name)}": {e.message}', e.field, e.value
        ) from e

    try:
        return RepositoryConfig(
            repo_path=local_path,
            worktrees_base=worktrees_base,
            repo_name=repo_name,
            git_provider=GitProvider(git_provider),
            remote_owner=remote_owner,
            remote_repo=remote_repo,
            gitea_cli_path=repo.get("gitea_cli_path"),
            github_cli_path=repo.get("github_cli_path"),
        )
    except PydanticValidationError as e:
        raise ValidationError(
            f"リポジトリ設定が不正です: {e.errors()[0]['msg']}", "repositories", repo_name
        ) from e


def register_tools(mcp: FastMCP) -> None:
    """エージェントタスクツールを登録する。"""

    @mcp.tool()
    async def run_agent_task(
        agent_name: str,
        repositories: list[dict[str, Any]],
        prompt: str,
        branch_name: str = "",
        base_branch: str = "",
        create_pr: bool = True,
        model: str = "",
        max_turns: int = 0,
        timeout_seconds: int = 0,
        resume_session_id: str = "",
        custom_agent_path: str = "",
        ctx: Context = None,
    ) -> dict[str, Any]:
        """複数リポジトリにまたがるエージェントタスクを実行する。

        全リポジトリに同名ブランチの worktree を作成してエージェントを実行し、
        変更があればコミット・プッシュして相互リンク付きの PR を作成する。
        worktree は成否にかかわらず削除される。

        Args:
            agent_name: エージェント名（custom の場合は custom_agent_path を使用）
            repositories: リポジトリ指定のリスト（先頭が主リポジトリ）
            prompt: タスク内容
            branch_name: ブランチ名（空なら agent/<task_id>）
            base_branch: 基点ブランチ（空なら設定値）
            create_pr: 変更があれば PR を作成するか
            model: モデル（空なら設定値。エージェント定義の指定が優先）
            max_turns: 最大ターン数（0 なら設定値）
            timeout_seconds: タイムアウト秒数（0 なら設定値）
            resume_session_id: 再開するセッションID
            custom_agent_path: custom エージェント定義ファイルのパス

        Returns:
            実行結果（success, output, files_modified, session_id, task_id,
            branch_name, agent_name, prs, error, warnings）
        """
        app_ctx: AppContext = ctx.request_context.lifespan_context
        settings = app_ctx.settings

        try:
            configs = [build_repository_config(repo) for repo in repositories]
            request = TaskRequest(
                agent_name=agent_name,
                custom_agent_path=custom_agent_path or None,
                repositories=configs,
                prompt=prompt,
                branch_name=branch_name or None,
                base_branch=base_branch or settings.default_base_branch,
                create_pr=create_pr,
                model=model or None,
                max_turns=max_turns or settings.default_max_turns,
                timeout_seconds=timeout_seconds or settings.default_timeout_seconds,
                resume_session_id=resume_session_id or None,
            )
            result = await app_ctx.orchestrator.run(request)
        except AgentTaskError as e:
            logger.error(f"エージェントタスクに失敗しました: {e.message}")
            return {
                "success": False,
                "error": e.message,
                "error_type": type(e).__name__,
            }

        return {
            "success": result.success,
            "output": result.output,
            "files_modified": result.files_modified,
            "session_id": result.session_id,
            "task_id": result.task_id,
            "branch_name": result.branch_name,
            "agent_name": result.agent_name,
            "prs": [
                {"repo": pr.repo_name, "number": pr.number, "url": pr.url, "provider": pr.provider}
                for pr in result.prs
            ],
            "error": result.error,
            "warnings": result.cleanup_warnings,
        }

    @mcp.tool()
    async def continue_agent_session(
        session_id: str,
        prompt: str,
        working_dir: str,
        model: str = "",
        max_turns: int = 0,
        timeout_seconds: int = 0,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """既存のエージェントセッションに追加メッセージを送る。

        worktree の作成・コミット・PR 作成は行わず、指定ディレクトリで
        セッションを再開するだけ。

        Args:
            session_id: 再開するセッションID
            prompt: 追加メッセージ
            working_dir: 作業ディレクトリ
            model: モデル（空なら設定値）
            max_turns: 最大ターン数（0 なら設定値）
            timeout_seconds: タイムアウト秒数（0 なら設定値）

        Returns:
            実行結果（success, output, files_modified, session_id,
            turn_count, timed_out, error）
        """
        app_ctx: AppContext = ctx.request_context.lifespan_context
        settings = app_ctx.settings
        max_turns = max_turns or settings.default_max_turns
        timeout_seconds = timeout_seconds or settings.default_timeout_seconds

        try:
            validate_prompt(prompt)
            validate_path(working_dir, "working_dir")
            validate_max_turns(max_turns)
            validate_timeout(timeout_seconds)
            if not os.path.isdir(working_dir):
                raise ValidationError(
                    f"作業ディレクトリが存在しません: {working_dir}", "working_dir", working_dir
                )
            request = AgentExecutionRequest(
                agent_prompt="",
                working_dir=working_dir,
                model=model or settings.default_model,
                max_turns=max_turns,
                timeout_seconds=timeout_seconds,
            )
            result = await app_ctx.executor.continue_session(session_id, prompt, request)
        except AgentTaskError as e:
            logger.error(f"セッションの再開に失敗しました: {e.message}")
            return {
                "success": False,
                "error": e.message,
                "error_type": type(e).__name__,
            }

        return {
            "success": result.success,
            "output": result.output,
            "files_modified": result.files_modified,
            "session_id": result.session_id,
            "turn_count": result.turn_count,
            "timed_out": result.timed_out,
            "error": result.error,
        }

    @mcp.tool()
    async def list_agents(ctx: Context = None) -> dict[str, Any]:
        """利用可能なエージェントの一覧を取得する。

        Returns:
            エージェント一覧（success, agents, count）
        """
        app_ctx: AppContext = ctx.request_context.lifespan_context
        agents = app_ctx.agent_loader.list_agents()

        return {
            "success": True,
            "agents": agents,
            "count": len(agents),
        }

    @mcp.tool()
    async def get_agent(name: str, ctx: Context = None) -> dict[str, Any]:
        """エージェント定義の詳細を取得する。

        Args:
            name: エージェント名

        Returns:
            エージェント定義（success, agent または error）
        """
        app_ctx: AppContext = ctx.request_context.lifespan_context

        try:
            agent = app_ctx.agent_loader.load(name)
        except AgentTaskError as e:
            return {
                "success": False,
                "error": e.message,
            }

        return {
            "success": True,
            "agent": agent.model_dump(),
        }

    @mcp.tool()
    async def list_skills(ctx: Context = None) -> dict[str, Any]:
        """利用可能なスキルの一覧を取得する。

        Returns:
            スキル一覧（success, skills, count）
        """
        app_ctx: AppContext = ctx.request_context.lifespan_context
        skills = [
            {"name": s.name, "description": s.description}
            for s in app_ctx.skill_loader.load_all()
        ]

        return {
            "success": True,
            "skills": skills,
            "count": len(skills),
        }

"""タスクオーケストレーター。

1 タスクの流れ: 入力検証 → エージェント読み込み → worktree 作成 → エージェント実行
→（PR 要求かつ変更あり）コミット・プッシュ・PR 作成 → 必ずクリーンアップ。
"""

import logging
from collections.abc import Callable, Sequence

from multi_repo_agent.config.settings import Settings
from multi_repo_agent.config.validation import (
    validate_branch_name,
    validate_max_turns,
    validate_prompt,
    validate_timeout,
)
from multi_repo_agent.errors import ValidationError
from multi_repo_agent.models.agent import (
    AgentDefinition,
    AgentExecutionRequest,
    TaskRequest,
    TaskResult,
)
from multi_repo_agent.models.pull_request import PRResult
from multi_repo_agent.models.repository import RepositoryConfig

from .agent_executor import AgentExecutor
from .agent_loader import CUSTOM_AGENT_NAME, AgentLoader
from .pr_coordinator import PRCoordinator
from .worktree_manager import MultiRepoWorktreeManager

logger = logging.getLogger(__name__)

WorktreeManagerFactory = Callable[
    [Sequence[RepositoryConfig], str | None, str], MultiRepoWorktreeManager
]


def validate_task_request(request: TaskRequest) -> None:
    """I/O の前にタスク要求を検証する。

    Raises:
        ValidationError: 不正な入力の場合
    """
    validate_prompt(request.prompt)
    validate_branch_name(request.branch_name)
    validate_branch_name(request.base_branch)
    validate_timeout(request.timeout_seconds)
    validate_max_turns(request.max_turns)

    if not request.repositories:
        raise ValidationError("リポジトリを 1 つ以上指定してください", "repositories", [])


class TaskOrchestrator:
    """エージェントタスクを最後まで実行するクラス。"""

    def __init__(
        self,
        settings: Settings,
        agent_loader: AgentLoader,
        executor: AgentExecutor,
        coordinator: PRCoordinator | None = None,
        worktree_manager_factory: WorktreeManagerFactory | None = None,
    ) -> None:
        """TaskOrchestratorを初期化する。

        Args:
            settings: アプリケーション設定
            agent_loader: エージェントローダー
            executor: エージェント実行クラス
            coordinator: PR コーディネーター（省略時は settings から生成）
            worktree_manager_factory: worktree マネージャー生成関数（テスト用）
        """
        self.settings = settings
        self.agent_loader = agent_loader
        self.executor = executor
        self.coordinator = coordinator or PRCoordinator(settings)
        self._worktree_manager_factory = worktree_manager_factory or MultiRepoWorktreeManager

    def load_agent(self, request: TaskRequest) -> AgentDefinition:
        """タスク要求に対応するエージェント定義を読み込む。"""
        if request.agent_name == CUSTOM_AGENT_NAME and request.custom_agent_path:
            return self.agent_loader.load_from_path(request.custom_agent_path)
        return self.agent_loader.load(request.agent_name)

    def build_commit_message(self, agent_name: str, prompt: str) -> str:
        return f"Agent: {agent_name}\n\n{prompt[: self.settings.commit_prompt_preview_chars]}"

    def build_pr_title(self, agent_name: str, prompt: str) -> str:
        return f"[Agent/{agent_name}] {prompt[: self.settings.pr_title_preview_chars]}"

    async def run(self, request: TaskRequest) -> TaskResult:
        """タスクを実行する。

        worktree 作成前の失敗（検証・エージェント未検出・worktree 作成）と
        コミット・プッシュの失敗は例外として送出する。worktree は
        どの経路でも必ず削除される。

        Args:
            request: タスク要求

        Returns:
            タスク実行結果

        Raises:
            AgentTaskError: タスクを継続できない場合
        """
        validate_task_request(request)

        agent = self.load_agent(request)
        logger.info(f"エージェントを読み込みました: {agent.name}")

        manager = self._worktree_manager_factory(
            request.repositories, request.branch_name, self.settings.git_remote
        )
        workspace = await manager.create(request.base_branch)
        logger.info(
            f"ワークスペースを作成しました: task={workspace.task_id}, "
            f"branch={workspace.branch_name}, working_dir={workspace.working_dir}"
        )

        prs: list[PRResult] = []
        try:
            execution = await self.executor.execute(
                AgentExecutionRequest(
                    agent_prompt=agent.system_prompt,
                    working_dir=workspace.working_dir,
                    worktrees=workspace.worktrees,
                    model=agent.model or request.model or self.settings.default_model,
                    max_turns=request.max_turns,
                    timeout_seconds=request.timeout_seconds,
                    resume_session_id=request.resume_session_id,
                    allowed_tools=agent.tools,
                ),
                request.prompt,
            )
            logger.info(
                f"エージェント実行完了: success={execution.success}, "
                f"files={len(execution.files_modified)}, session={execution.session_id}"
            )

            if request.create_pr and execution.files_modified:
                await manager.commit_all(self.build_commit_message(agent.name, request.prompt))
                pushed = await manager.push_all()
                if pushed:
                    pr_result = await self.coordinator.create_multi_repo_prs(
                        task_id=workspace.task_id,
                        repos=pushed,
                        base_branch=request.base_branch,
                        title=self.build_pr_title(agent.name, request.prompt),
                        body=execution.output[: self.settings.pr_body_max_chars],
                    )
                    prs = pr_result.prs
                    for warning in pr_result.warnings:
                        logger.warning(f"PR 作成の警告: {warning}")
                    logger.info(f"{len(prs)} 件の PR を作成しました")
        finally:
            report = await manager.cleanup_all()
            logger.info(f"ワークスペースを削除しました: {workspace.task_id}")

        return TaskResult(
            success=execution.success,
            output=execution.output,
            files_modified=execution.files_modified,
            session_id=execution.session_id,
            task_id=workspace.task_id,
            branch_name=workspace.branch_name,
            agent_name=agent.name,
            prs=prs,
            error=execution.error,
            cleanup_warnings=workspace.warnings + report.warnings,
        )

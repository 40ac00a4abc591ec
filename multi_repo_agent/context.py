"""アプリケーションコンテキストの定義。"""

from dataclasses import dataclass

from multi_repo_agent.config.settings import Settings
from multi_repo_agent.managers.agent_executor import AgentExecutor
from multi_repo_agent.managers.agent_loader import AgentLoader
from multi_repo_agent.managers.orchestrator import TaskOrchestrator
from multi_repo_agent.managers.skill_loader import SkillLoader


@dataclass
class AppContext:
    """アプリケーションコンテキスト。

    サーバー起動時に 1 度だけ生成され、全ツールで共有される。
    タスクごとの状態（worktree 等）は持たない。
    """

    settings: Settings
    agent_loader: AgentLoader
    skill_loader: SkillLoader
    executor: AgentExecutor
    orchestrator: TaskOrchestrator


def build_app_context(settings: Settings) -> AppContext:
    """設定からアプリケーションコンテキストを組み立てる。"""
    agent_loader = AgentLoader(settings.get_agents_dir(), settings.get_builtin_agents_dir())
    skill_loader = SkillLoader(settings.get_skills_dirs())
    executor = AgentExecutor(settings, skill_loader)
    return AppContext(
        settings=settings,
        agent_loader=agent_loader,
        skill_loader=skill_loader,
        executor=executor,
        orchestrator=TaskOrchestrator(settings, agent_loader, executor),
    )

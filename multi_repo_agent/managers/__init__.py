"""マネージャーモジュール。"""

from .agent_executor import AgentExecutor
from .agent_loader import AgentLoader
from .orchestrator import TaskOrchestrator
from .pr_coordinator import PRCoordinator, create_multi_repo_prs, create_pr
from .pr_providers import GiteaProvider, GitHubProvider, NoOpProvider, get_provider
from .skill_loader import SkillLoader
from .worktree_manager import GitRepository, MultiRepoWorktreeManager

__all__ = [
    "AgentExecutor",
    "AgentLoader",
    "GitHubProvider",
    "GitRepository",
    "GiteaProvider",
    "MultiRepoWorktreeManager",
    "NoOpProvider",
    "PRCoordinator",
    "SkillLoader",
    "TaskOrchestrator",
    "create_multi_repo_prs",
    "create_pr",
    "get_provider",
]

"""server.py のテスト。"""

import pytest

from multi_repo_agent.context import AppContext
from multi_repo_agent.managers.orchestrator import TaskOrchestrator
from multi_repo_agent.server import app_lifespan, mcp


class TestServer:
    """MCP サーバー定義のテスト。"""

    def test_server_name(self):
        """サーバー名を確認する。"""
        assert mcp.name == "Multi-Repo Agent"

    def test_tools_registered(self):
        """エージェントタスクツールが登録されていることをテスト。"""
        names = {tool.name for tool in mcp._tool_manager._tools.values()}
        assert {
            "run_agent_task",
            "continue_agent_session",
            "list_agents",
            "get_agent",
            "list_skills",
        } <= names

    @pytest.mark.asyncio
    async def test_lifespan_builds_context(self, temp_dir, monkeypatch):
        """ライフサイクルでアプリケーションコンテキストが作成されることをテスト。"""
        project_dir = temp_dir / ".multi-repo-agent"
        project_dir.mkdir()
        (project_dir / ".env").write_text("AGENT_DEFAULT_MAX_TURNS=77\n")
        monkeypatch.setenv("AGENT_PROJECT_ROOT", str(temp_dir))
        monkeypatch.delenv("AGENT_DEFAULT_MAX_TURNS", raising=False)

        async with app_lifespan(mcp) as app_ctx:
            assert isinstance(app_ctx, AppContext)
            assert isinstance(app_ctx.orchestrator, TaskOrchestrator)
            assert app_ctx.settings.default_max_turns == 77
            assert app_ctx.executor.skill_loader is app_ctx.skill_loader

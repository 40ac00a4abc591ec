"""MCP Tools モジュール。"""

from mcp.server.fastmcp import FastMCP

from multi_repo_agent.tools import agent_task


def register_all_tools(mcp: FastMCP) -> None:
    """全ツールをMCPサーバーに登録する。

    Args:
        mcp: FastMCPインスタンス
    """
    # エージェントタスク実行・エージェント一覧
    agent_task.register_tools(mcp)

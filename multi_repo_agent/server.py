"""Multi-Repo Agent MCP Server エントリーポイント。"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from multi_repo_agent.config.settings import load_settings_for_project
from multi_repo_agent.context import AppContext, build_app_context
from multi_repo_agent.tools import register_all_tools

# ログ設定（stderrに出力）
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """サーバーライフサイクルを管理する。

    AGENT_PROJECT_ROOT が設定されていれば、そのプロジェクトの .env を優先する。

    Args:
        server: FastMCPサーバーインスタンス

    Yields:
        アプリケーションコンテキスト
    """
    logger.info("Multi-Repo Agent MCP Server を起動しています...")

    settings = load_settings_for_project(os.getenv("AGENT_PROJECT_ROOT"))
    app_ctx = build_app_context(settings)
    agents = app_ctx.agent_loader.list_agents()
    logger.info(f"利用可能なエージェント: {', '.join(agents) or '(なし)'}")

    try:
        yield app_ctx
    finally:
        logger.info("サーバーをシャットダウンしています...")


# FastMCPサーバーを作成
mcp = FastMCP("Multi-Repo Agent", lifespan=app_lifespan)

register_all_tools(mcp)


def main() -> None:
    """MCPサーバーを起動する。"""
    mcp.run()


if __name__ == "__main__":
    main()

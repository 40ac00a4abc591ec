"""Multi-Repo Agent: 複数リポジトリ横断でエージェントを実行する MCP サーバー。"""

__version__ = "0.1.0"

"""エージェント定義ローダー。

エージェントは YAML front matter 付きの Markdown ファイルで定義する:

    ---
    tools: [Read, Write, Bash]
    model: opus
    description: 説明
    ---
    # Agent Name

    システムプロンプト...

ユーザー定義ディレクトリを優先し、見つからなければ同梱の agents/ を探す。
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from multi_repo_agent.errors import AgentNotFoundError
from multi_repo_agent.models.agent import AgentDefinition

logger = logging.getLogger(__name__)

CUSTOM_AGENT_NAME = "custom"


def split_front_matter(content: str) -> tuple[dict[str, Any], str]:
    """Markdown から front matter と本文を分離する。

    Returns:
        (front matter の辞書, 本文) のタプル。front matter がなければ空辞書
    """
    if not content.startswith("---"):
        return {}, content

    parts = content.split("---", 2)
    if len(parts) < 3:
        return {}, content

    try:
        front_matter = yaml.safe_load(parts[1])
    except yaml.YAMLError as e:
        logger.warning(f"front matter の解析に失敗しました: {e}")
        return {}, content

    if not isinstance(front_matter, dict):
        return {}, content
    return front_matter, parts[2].strip()


def normalize_tool_list(value: Any) -> list[str] | None:
    """tools 指定をリストに正規化する（"Read, Write" 形式も許容）。"""
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list):
        items = [str(v) for v in value]
    else:
        return None
    tools = [item.strip().strip("'\"") for item in items]
    return [t for t in tools if t]


def parse_agent_markdown(name: str, content: str, source_path: str | None = None) -> AgentDefinition:
    """エージェント定義 Markdown をパースする。"""
    front_matter, body = split_front_matter(content)
    model = front_matter.get("model")
    description = front_matter.get("description")
    return AgentDefinition(
        name=name,
        system_prompt=body if front_matter else content,
        tools=normalize_tool_list(front_matter.get("tools")),
        model=str(model) if model else None,
        description=str(description) if description else None,
        source_path=source_path,
    )


class AgentLoader:
    """エージェント定義を読み込むクラス。"""

    def __init__(self, user_dir: Path, builtin_dir: Path) -> None:
        """AgentLoaderを初期化する。

        Args:
            user_dir: ユーザー定義エージェントのディレクトリ
            builtin_dir: 同梱エージェントのディレクトリ
        """
        self.user_dir = user_dir
        self.builtin_dir = builtin_dir

    def load(self, name: str) -> AgentDefinition:
        """名前でエージェント定義を読み込む。

        Raises:
            AgentNotFoundError: 見つからない、または名前が不正な場合
        """
        if name == CUSTOM_AGENT_NAME:
            raise AgentNotFoundError(
                "custom エージェントには custom_agent_path の指定が必要です", name
            )
        if not name or "/" in name or "\\" in name or ".." in name:
            raise AgentNotFoundError(f"不正なエージェント名です: {name!r}", name)

        candidates = [self.user_dir / f"{name}.md", self.builtin_dir / f"{name}.md"]
        for path in candidates:
            if path.is_file():
                try:
                    content = path.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    raise AgentNotFoundError(
                        f"エージェント定義を読み込めません: {path}: {e}", name, [str(path)]
                    ) from e
                logger.info(f"エージェント {name} を読み込みました: {path}")
                return parse_agent_markdown(name, content, str(path))

        searched = [str(p) for p in candidates]
        raise AgentNotFoundError(
            f"エージェント {name!r} が見つかりません。探索先: {', '.join(searched)}",
            name,
            searched,
        )

    def load_from_path(self, file_path: str | Path) -> AgentDefinition:
        """任意のパスからエージェント定義を読み込む。

        Raises:
            AgentNotFoundError: 読み込めない場合
        """
        path = Path(file_path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise AgentNotFoundError(
                f"エージェント定義を読み込めません: {path}: {e}", path.stem, [str(path)]
            ) from e
        return parse_agent_markdown(path.stem, content, str(path))

    def list_agents(self) -> list[str]:
        """利用可能なエージェント名の一覧（ユーザー定義 + 同梱）を返す。"""
        names: set[str] = set()
        for directory in (self.user_dir, self.builtin_dir):
            if not directory.is_dir():
                continue
            names.update(p.stem for p in directory.glob("*.md"))
        return sorted(names)

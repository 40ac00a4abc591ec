"""スキル定義ローダー。

スキルは <skills_dir>/<name>/SKILL.md に置く。front matter の description は必須。
複数ディレクトリを探索し、先に見つかった同名スキルを優先する。
"""

import logging
from pathlib import Path

from multi_repo_agent.models.agent import SkillDefinition

from .agent_loader import normalize_tool_list, split_front_matter

logger = logging.getLogger(__name__)

SKILL_FILENAME = "SKILL.md"


def parse_skill_markdown(name: str, content: str, base_dir: Path) -> SkillDefinition | None:
    """SKILL.md をパースする。front matter または description がなければ None。"""
    front_matter, body = split_front_matter(content)
    if not front_matter:
        logger.warning(f"スキル {name} に front matter がないためスキップします")
        return None

    description = front_matter.get("description")
    if not description:
        logger.warning(f"スキル {name} に description がないためスキップします")
        return None

    model = front_matter.get("model")
    return SkillDefinition(
        name=name,
        description=str(description).strip(),
        content=body,
        script_path=str(base_dir / name / "scripts"),
        allowed_tools=normalize_tool_list(front_matter.get("allowed-tools")),
        model=str(model).strip() if model else None,
    )


class SkillLoader:
    """スキル定義を読み込むクラス。"""

    def __init__(self, directories: list[Path]) -> None:
        """SkillLoaderを初期化する。

        Args:
            directories: 探索ディレクトリ（先頭優先）
        """
        self.directories = directories

    def load_all(self) -> list[SkillDefinition]:
        """全ディレクトリからスキルを読み込む。"""
        skills: list[SkillDefinition] = []
        seen: set[str] = set()

        for directory in self.directories:
            if not directory.is_dir():
                continue
            for entry in sorted(directory.iterdir()):
                if not entry.is_dir() or entry.name in seen:
                    continue
                skill_path = entry / SKILL_FILENAME
                if not skill_path.is_file():
                    continue
                try:
                    content = skill_path.read_text(encoding="utf-8")
                except OSError as e:
                    logger.warning(f"スキルの読み込みに失敗 ({skill_path}): {e}")
                    continue
                skill = parse_skill_markdown(entry.name, content, directory)
                if skill:
                    skills.append(skill)
                    seen.add(entry.name)
                    logger.debug(f"スキル {entry.name} を読み込みました: {skill_path}")

        return skills

    def load(self, name: str) -> SkillDefinition | None:
        """名前でスキルを読み込む。

        Raises:
            ValueError: 名前が空、またはパス区切りを含む場合
        """
        if not name or not name.strip():
            raise ValueError("スキル名は必須です")
        if "/" in name or "\\" in name or ".." in name:
            raise ValueError(f"不正なスキル名です: {name!r}（パスではなく名前を指定してください）")

        for directory in self.directories:
            skill_path = directory / name / SKILL_FILENAME
            if not skill_path.is_file():
                continue
            skill = parse_skill_markdown(name, skill_path.read_text(encoding="utf-8"), directory)
            if skill:
                return skill
        return None

    def list_skills(self) -> list[str]:
        """利用可能なスキル名の一覧を返す。"""
        return sorted(s.name for s in self.load_all())


def build_skill_context(skills: list[SkillDefinition]) -> str:
    """プロンプトに埋め込むスキルコンテキストを組み立てる。"""
    if not skills:
        return ""
    sections = "\n\n---\n\n".join(f"## {s.name}\n\n{s.content}" for s in skills)
    return (
        "\n\n# Available Skills\n\n"
        "The following tools are available for this task:\n\n"
        f"{sections}"
    )

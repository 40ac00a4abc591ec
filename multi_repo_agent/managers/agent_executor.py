"""エージェント実行マネージャー。

エージェント CLI をヘッドレスモード（stream-json 出力）で起動し、
出力メッセージからセッションID・テキスト・変更ファイルを収集する。

タイムアウトはベストエフォート: 期限を過ぎると出力の読み取りを止めるが、
プロセス自体は停止しない。
"""

import asyncio
import json
import logging
import os
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Any

from multi_repo_agent.config.settings import Settings
from multi_repo_agent.errors import AgentExecutionError
from multi_repo_agent.models.agent import (
    AgentExecutionRequest,
    AgentExecutionResult,
    ConversationMessage,
)

from .skill_loader import SkillLoader, build_skill_context

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_TOOLS = [
    "Read",
    "Write",
    "Edit",
    "MultiEdit",
    "Bash",
    "Glob",
    "Grep",
    "WebFetch",
    "WebSearch",
    "Task",
    "TodoWrite",
    "NotebookEdit",
    "NotebookRead",
]

FILE_WRITE_TOOLS = frozenset({"Write", "Edit", "MultiEdit"})

ACTION_KEYWORDS = ("created issue", "issue erstellt", "committed", "pushed")

STREAM_LINE_LIMIT = 16 * 1024 * 1024


def load_claude_md(custom_path: str | None = None, working_dir: str | None = None) -> str:
    """CLAUDE.md を探して読み込む（指定パス → 作業ディレクトリ → ホーム）。"""
    search_paths: list[Path] = []
    if custom_path:
        search_paths.append(Path(custom_path))
    if working_dir:
        search_paths.append(Path(working_dir) / "CLAUDE.md")
    search_paths.append(Path.home() / "CLAUDE.md")

    for path in search_paths:
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            continue
        logger.info(f"CLAUDE.md を読み込みました: {path}")
        return f"\n\n# Context (from {path})\n\n{content}"

    logger.debug("CLAUDE.md が見つかりませんでした")
    return ""


def build_workspace_context(worktrees: dict[str, str]) -> str:
    """複数リポジトリ構成をエージェントに伝えるコンテキストを組み立てる。"""
    if not worktrees:
        return ""
    paths = "\n".join(f"- {name}: {path}" for name, path in worktrees.items())
    return f"\n\n# Workspace\n\nYou are working in the following directories:\n{paths}\n"


def build_conversation_context(messages: list[ConversationMessage]) -> str:
    """過去の会話をプロンプト用に整形する。"""
    if not messages:
        return ""
    formatted = []
    for msg in messages:
        timestamp = f" [{msg.timestamp}]" if msg.timestamp else ""
        role = "User" if msg.role == "user" else "Assistant"
        formatted.append(f"[{role}{timestamp}]: {msg.content}")
    return "\n\n# Previous Conversation\n\n" + "\n\n".join(formatted) + "\n\n---\n"


def _preview(text: str, limit: int = 100) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def summarize_conversation(messages: list[ConversationMessage], output: str) -> str:
    """直近 4 メッセージと今回の出力を 1 行に要約する。"""
    parts = []
    for msg in messages[-4:]:
        role = "User" if msg.role == "user" else "Bot"
        parts.append(f"{role}: {_preview(msg.content)}")
    if output:
        parts.append(f"Bot: {_preview(output)}")
    return " | ".join(parts)


def extract_assistant_text(message: dict[str, Any]) -> str:
    """assistant メッセージからテキストを取り出す。"""
    if message.get("type") != "assistant":
        return ""
    content = (message.get("message") or {}).get("content")
    if not isinstance(content, list):
        return ""
    return "".join(
        block.get("text") or ""
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def extract_modified_files(message: dict[str, Any]) -> list[str]:
    """assistant メッセージの tool_use からファイル書き込み先を取り出す。"""
    if message.get("type") != "assistant":
        return []
    content = (message.get("message") or {}).get("content")
    if not isinstance(content, list):
        return []

    files = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_use":
            continue
        if block.get("name") not in FILE_WRITE_TOOLS:
            continue
        file_path = (block.get("input") or {}).get("file_path")
        if file_path:
            files.append(file_path)
    return files


class _StreamState:
    """stream-json の読み取り状態。"""

    def __init__(self, session_id: str = "") -> None:
        self.session_id = session_id
        self.output: list[str] = []
        self.files: list[str] = []
        self.turn_count = 0
        self.is_error = False

    def consume(self, raw_line: bytes) -> None:
        line = raw_line.decode(errors="replace").strip()
        if not line:
            return
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"JSON 以外の出力を無視します: {_preview(line)}")
            return
        if not isinstance(message, dict):
            return

        if message.get("session_id"):
            self.session_id = message["session_id"]

        msg_type = message.get("type")
        if msg_type == "assistant":
            self.turn_count += 1
            text = extract_assistant_text(message)
            if text:
                self.output.append(text)
            self.files.extend(extract_modified_files(message))
        elif msg_type == "result":
            if message.get("result"):
                self.output.append(message["result"])
            if message.get("is_error"):
                self.is_error = True

    def unique_files(self) -> list[str]:
        return list(dict.fromkeys(self.files))


class AgentExecutor:
    """エージェント CLI を実行するクラス。"""

    def __init__(self, settings: Settings, skill_loader: SkillLoader | None = None) -> None:
        """AgentExecutorを初期化する。

        Args:
            settings: アプリケーション設定
            skill_loader: スキルローダー（None の場合はスキルを注入しない）
        """
        self.settings = settings
        self.skill_loader = skill_loader

    def _skill_context(self) -> str:
        if self.skill_loader is None:
            return ""
        try:
            skills = self.skill_loader.load_all()
        except OSError as e:
            logger.warning(f"スキルの読み込みに失敗しました: {e}")
            return ""
        if skills:
            logger.info(f"{len(skills)} 件のスキルを読み込みました: {', '.join(s.name for s in skills)}")
        return build_skill_context(skills)

    def build_prompt(self, request: AgentExecutionRequest, task_prompt: str) -> str:
        """エージェント定義・コンテキスト・タスクを結合したプロンプトを組み立てる。"""
        system_prompt = (
            request.agent_prompt
            + load_claude_md(request.claude_md_path, request.working_dir)
            + build_workspace_context(request.worktrees)
            + self._skill_context()
        )
        conversation = build_conversation_context(request.conversation_context)
        if conversation:
            return f"{system_prompt}{conversation}\n# Current Message\n\n{task_prompt}"
        return f"{system_prompt}\n\n---\n\n# Task\n\n{task_prompt}"

    def build_command(self, request: AgentExecutionRequest, prompt: str) -> list[str]:
        """CLI の引数リストを組み立てる。"""
        tools = request.allowed_tools or DEFAULT_ALLOWED_TOOLS
        command = [
            self.settings.agent_cli,
            "-p",
            prompt,
            "--output-format",
            "stream-json",
            "--verbose",
            "--model",
            request.model,
            "--max-turns",
            str(request.max_turns),
            "--allowedTools",
            ",".join(tools),
        ]
        for directory in request.worktrees.values():
            command.extend(["--add-dir", directory])
        if request.resume_session_id:
            command.extend(["--resume", request.resume_session_id])
        return command

    async def execute(self, request: AgentExecutionRequest, task_prompt: str) -> AgentExecutionResult:
        """エージェントを実行する。失敗しても例外は送出せず結果で返す。"""
        prompt = self.build_prompt(request, task_prompt)
        command = self.build_command(request, prompt)
        return await self._run(command, request, request.resume_session_id or "")

    async def continue_session(
        self, session_id: str, follow_up_prompt: str, request: AgentExecutionRequest
    ) -> AgentExecutionResult:
        """既存セッションに追加メッセージを送る。

        Raises:
            AgentExecutionError: セッションIDが指定されていない場合
        """
        if not session_id:
            raise AgentExecutionError("再開するセッションIDが指定されていません")
        resumed = request.model_copy(update={"resume_session_id": session_id})
        command = self.build_command(resumed, follow_up_prompt)
        return await self._run(command, resumed, session_id)

    async def _run(
        self, command: list[str], request: AgentExecutionRequest, session_id: str
    ) -> AgentExecutionResult:
        session_created = datetime.now()
        state = _StreamState(session_id)
        timed_out = False
        error: str | None = None

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=request.working_dir if os.path.isdir(request.working_dir) else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LINE_LIMIT,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.error(f"エージェント CLI を起動できません: {e}")
            return self._build_result(state, request, session_created, False, f"{e}", False)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + request.timeout_seconds
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    timed_out = True
                    break
                try:
                    line = await asyncio.wait_for(proc.stdout.readline(), timeout=remaining)
                except asyncio.TimeoutError:
                    timed_out = True
                    break
                if not line:
                    break
                state.consume(line)
        except ValueError as e:
            error = f"出力の読み取りに失敗しました: {e}"

        if timed_out:
            logger.warning(
                f"エージェント実行がタイムアウトしました ({request.timeout_seconds} 秒)。"
                "出力の読み取りを終了します"
            )
            error = f"タイムアウトしました ({request.timeout_seconds} 秒)"
        elif error is None:
            returncode = await proc.wait()
            stderr = (await proc.stderr.read()).decode(errors="replace").strip()
            if returncode != 0:
                error = stderr or f"エージェント CLI が終了コード {returncode} で終了しました"
            elif state.is_error:
                error = "エージェントがエラーを報告しました"

        return self._build_result(state, request, session_created, error is None, error, timed_out)

    def _build_result(
        self,
        state: _StreamState,
        request: AgentExecutionRequest,
        session_created: datetime,
        success: bool,
        error: str | None,
        timed_out: bool,
    ) -> AgentExecutionResult:
        output = "\n".join(state.output)
        files = state.unique_files()
        lowered = output.lower()
        has_action = bool(files) or any(k in lowered for k in ACTION_KEYWORDS)
        return AgentExecutionResult(
            success=success,
            output=output,
            files_modified=files,
            session_id=state.session_id,
            turn_count=state.turn_count,
            session_created=session_created,
            last_activity=datetime.now(),
            conversation_summary=summarize_conversation(request.conversation_context, output),
            has_action=success and has_action,
            timed_out=timed_out,
            error=error,
        )

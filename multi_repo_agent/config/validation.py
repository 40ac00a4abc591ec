"""入力値の検証関数。

すべて純粋関数で、不正な値に対して ValidationError を送出する。
"""

import re

from multi_repo_agent.errors import ValidationError

GIT_BRANCH_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._/-]*$")

MAX_PROMPT_LENGTH = 50 * 1024
MAX_BRANCH_NAME_LENGTH = 255
MAX_PATH_LENGTH = 4096

MIN_TIMEOUT_SECONDS = 10
MAX_TIMEOUT_SECONDS = 3600

MIN_MAX_TURNS = 1
MAX_MAX_TURNS = 200

VALID_PROVIDERS = ("gitea", "github", "none")

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_branch_name(name: str | None) -> None:
    """git ブランチ名を検証する。

    空文字は自動生成扱いとして許可する。

    Args:
        name: ブランチ名

    Raises:
        ValidationError: 不正なブランチ名の場合
    """
    if not name:
        return

    if len(name) > MAX_BRANCH_NAME_LENGTH:
        raise ValidationError(
            f"ブランチ名が長すぎます（最大 {MAX_BRANCH_NAME_LENGTH} 文字）",
            "branch_name",
            name[:50] + "...",
        )

    if not GIT_BRANCH_PATTERN.match(name):
        raise ValidationError(
            "不正なブランチ名です。英数字、ドット、アンダースコア、ハイフン、スラッシュのみ使用できます",
            "branch_name",
            name,
        )

    if ".." in name or name.startswith("/") or name.endswith("/"):
        raise ValidationError(
            "ブランチ名に '..' を含めたり、'/' で開始・終了することはできません",
            "branch_name",
            name,
        )


def validate_prompt(prompt: str | None) -> None:
    """プロンプトを検証する。"""
    if not prompt or not prompt.strip():
        raise ValidationError("プロンプトは空にできません", "prompt", "")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            f"プロンプトが長すぎます（最大 {MAX_PROMPT_LENGTH // 1024}KB）",
            "prompt",
            f"{len(prompt)} characters",
        )


def validate_timeout(timeout: int) -> None:
    """タイムアウト秒数を検証する。"""
    if (
        isinstance(timeout, bool)
        or not isinstance(timeout, int)
        or not MIN_TIMEOUT_SECONDS <= timeout <= MAX_TIMEOUT_SECONDS
    ):
        raise ValidationError(
            f"タイムアウトは {MIN_TIMEOUT_SECONDS} 〜 {MAX_TIMEOUT_SECONDS} 秒で指定してください",
            "timeout",
            timeout,
        )


def validate_max_turns(max_turns: int) -> None:
    """最大ターン数を検証する。"""
    if (
        isinstance(max_turns, bool)
        or not isinstance(max_turns, int)
        or not MIN_MAX_TURNS <= max_turns <= MAX_MAX_TURNS
    ):
        raise ValidationError(
            f"最大ターン数は {MIN_MAX_TURNS} 〜 {MAX_MAX_TURNS} で指定してください",
            "max_turns",
            max_turns,
        )


def validate_path(file_path: str | None, field_name: str) -> None:
    """ファイルパスを検証する。

    Args:
        file_path: 検証するパス
        field_name: エラーメッセージに使うフィールド名

    Raises:
        ValidationError: 空、長すぎる、またはパストラバーサルを含む場合
    """
    if not file_path:
        raise ValidationError(f"{field_name} は空にできません", field_name, "")

    if len(file_path) > MAX_PATH_LENGTH:
        raise ValidationError(
            f"{field_name} が長すぎます（最大 {MAX_PATH_LENGTH} 文字）",
            field_name,
            file_path[:50] + "...",
        )

    if ".." in file_path:
        raise ValidationError(
            f"{field_name} にパストラバーサル (..) を含めることはできません",
            field_name,
            file_path,
        )


def validate_repo_config(
    local_path: str,
    worktrees_base: str,
    git_provider: str,
    remote_owner: str | None = None,
    remote_repo: str | None = None,
) -> None:
    """リポジトリ設定の入力値を検証する。"""
    validate_path(local_path, "local_path")
    validate_path(worktrees_base, "worktrees_base")

    if git_provider not in VALID_PROVIDERS:
        raise ValidationError(
            f"不正な git provider です。次のいずれかを指定してください: {', '.join(VALID_PROVIDERS)}",
            "git_provider",
            git_provider,
        )

    # provider が none 以外なら owner / repo は必須
    if git_provider != "none":
        if not remote_owner:
            raise ValidationError(
                "git provider を設定した場合 remote_owner は必須です", "remote_owner", ""
            )
        if not remote_repo:
            raise ValidationError(
                "git provider を設定した場合 remote_repo は必須です", "remote_repo", ""
            )


def sanitize_for_display(value: str, max_length: int = 100) -> str:
    """表示用に制御文字を除去して切り詰める（実行用ではない）。"""
    return _CONTROL_CHARS.sub("", value)[:max_length]

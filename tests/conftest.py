"""pytest設定とフィクスチャ。"""

import subprocess
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from multi_repo_agent.config.settings import Settings
from multi_repo_agent.models.repository import GitProvider, RepositoryConfig


def run_git(*args: str, cwd: Path | None = None) -> str:
    """テスト準備用に git を同期実行する。"""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def make_remote_repo(base: Path, name: str) -> Path:
    """bare の origin と、main に 1 コミットあるクローンを作成する。

    Returns:
        クローン（正準チェックアウト）のパス
    """
    origin = base / "remotes" / f"{name}.git"
    origin.parent.mkdir(parents=True, exist_ok=True)
    run_git("init", "--bare", str(origin))
    run_git("symbolic-ref", "HEAD", "refs/heads/main", cwd=origin)

    clone = base / "repos" / name
    clone.parent.mkdir(parents=True, exist_ok=True)
    run_git("clone", str(origin), str(clone))
    run_git("symbolic-ref", "HEAD", "refs/heads/main", cwd=clone)

    (clone / "README.md").write_text(f"# {name}\n", encoding="utf-8")
    run_git("add", "README.md", cwd=clone)
    run_git("commit", "-m", "init", cwd=clone)
    run_git("push", "-u", "origin", "main", cwd=clone)
    return clone


@pytest.fixture(autouse=True)
def git_identity(monkeypatch):
    """ユーザー環境の git 設定に依存しないようにする。"""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test Agent")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "agent@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test Agent")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "agent@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", "/dev/null")


@pytest.fixture
def git():
    """テスト準備用の git 実行関数。"""
    return run_git


@pytest.fixture
def temp_dir():
    """一時ディレクトリを作成する。"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def settings(temp_dir):
    """テスト用の設定を作成する。"""
    return Settings(
        _env_file=None,
        agents_dir=str(temp_dir / "user-agents"),
        skills_dirs=[str(temp_dir / "skills")],
        gitea_base_url="https://gitea.example.com",
        github_base_url="https://github.example.com",
    )


@pytest.fixture
def repo_factory(temp_dir):
    """origin 付きの git リポジトリを作成し、RepositoryConfig を返すファクトリ。"""

    def _make(
        name: str,
        git_provider: GitProvider = GitProvider.NONE,
        remote_owner: str = "",
        remote_repo: str = "",
    ) -> RepositoryConfig:
        clone = make_remote_repo(temp_dir, name)
        return RepositoryConfig(
            repo_path=str(clone),
            worktrees_base=str(temp_dir / "worktrees"),
            repo_name=name,
            git_provider=git_provider,
            remote_owner=remote_owner,
            remote_repo=remote_repo or (name if git_provider != GitProvider.NONE else ""),
        )

    return _make


@pytest.fixture
def gitea_config(temp_dir):
    """I/O を伴わない Gitea リポジトリ設定。"""

    def _make(name: str) -> RepositoryConfig:
        return RepositoryConfig(
            repo_path=str(temp_dir / name),
            worktrees_base=str(temp_dir / "worktrees"),
            repo_name=name,
            git_provider=GitProvider.GITEA,
            remote_owner="acme",
            remote_repo=name,
        )

    return _make


@pytest.fixture
def mock_ctx():
    """MCP Context のモックを作成するファクトリ。"""

    def _make(app_ctx):
        ctx = MagicMock()
        ctx.request_context.lifespan_context = app_ctx
        return ctx

    return _make

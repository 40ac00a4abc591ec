"""MultiRepoWorktreeManagerのテスト。"""

import os
import re
from unittest.mock import AsyncMock, patch

import pytest

from multi_repo_agent.config.validation import validate_branch_name
from multi_repo_agent.errors import ValidationError, WorktreeError
from multi_repo_agent.managers.worktree_manager import GitRepository, MultiRepoWorktreeManager
from multi_repo_agent.models.repository import RepositoryConfig


class TestGitRepository:
    """GitRepositoryのテスト。"""

    @pytest.mark.asyncio
    async def test_is_git_repo(self, repo_factory):
        """gitリポジトリかどうかを確認できることをテスト。"""
        config = repo_factory("api")
        assert await GitRepository(config.repo_path).is_git_repo() is True

    @pytest.mark.asyncio
    async def test_is_git_repo_invalid(self, temp_dir):
        """無効なパスでFalseを返すことをテスト。"""
        repo = GitRepository(str(temp_dir / "nonexistent"))
        assert await repo.is_git_repo() is False

    @pytest.mark.asyncio
    async def test_changed_files_excludes_names(self, repo_factory):
        """除外名に一致するトップレベルのパスが無視されることをテスト。"""
        config = repo_factory("api")
        repo_path = config.repo_path
        with open(os.path.join(repo_path, "new.txt"), "w") as f:
            f.write("x")
        with open(os.path.join(repo_path, "web"), "w") as f:
            f.write("link placeholder")

        success, files = await GitRepository(repo_path).changed_files(exclude=["web"])

        assert success is True
        assert files == ["new.txt"]


class TestMultiRepoWorktreeManagerInit:
    """コンストラクタ（I/O なし）のテスト。"""

    def test_custom_branch_name_used_verbatim(self, gitea_config):
        """指定したブランチ名がそのまま使われることをテスト。"""
        manager = MultiRepoWorktreeManager([gitea_config("api")], branch_name="feature/login")
        assert manager.branch_name == "feature/login"

    def test_auto_branch_name(self, gitea_config):
        """自動生成ブランチ名が agent/<task_id> 形式で検証を通ることをテスト。"""
        manager = MultiRepoWorktreeManager([gitea_config("api")])

        assert re.fullmatch(r"[0-9a-f]{8}", manager.task_id)
        assert manager.branch_name == f"agent/{manager.task_id}"
        validate_branch_name(manager.branch_name)

    def test_task_ids_are_unique(self, gitea_config):
        """インスタンスごとに task_id が異なることをテスト。"""
        ids = {MultiRepoWorktreeManager([gitea_config("api")]).task_id for _ in range(20)}
        assert len(ids) == 20

    @pytest.mark.parametrize("branch", ["../escape", "-rf", "a b", "/leading", "trailing/"])
    def test_invalid_branch_name_rejected(self, gitea_config, branch):
        """不正なブランチ名が I/O 前に拒否されることをテスト。"""
        with pytest.raises(ValidationError) as exc_info:
            MultiRepoWorktreeManager([gitea_config("api")], branch_name=branch)
        assert exc_info.value.field == "branch_name"

    def test_duplicate_repo_names_rejected(self, gitea_config):
        """リポジトリ名の重複が拒否されることをテスト。"""
        with pytest.raises(ValidationError):
            MultiRepoWorktreeManager([gitea_config("api"), gitea_config("api")])

    def test_worktree_path_is_deterministic(self, gitea_config, temp_dir):
        """worktree パスが worktrees_base/repo_name/task_id になることをテスト。"""
        config = gitea_config("api")
        manager = MultiRepoWorktreeManager([config])

        assert manager.worktree_path_for(config) == str(
            temp_dir / "worktrees" / "api" / manager.task_id
        )


class TestMultiRepoWorktreeManagerCreate:
    """create のテスト。"""

    @pytest.mark.asyncio
    async def test_create_without_repositories(self):
        """リポジトリなしの場合は空のワークスペースになることをテスト。"""
        manager = MultiRepoWorktreeManager([])

        workspace = await manager.create("main")

        assert workspace.worktrees == {}
        assert workspace.working_dir == os.getcwd()
        assert manager.primary_repo_name is None

    @pytest.mark.asyncio
    async def test_create_three_repositories(self, repo_factory):
        """3 リポジトリで共通ブランチの worktree とリンクが作成されることをテスト。"""
        configs = [repo_factory("frontend"), repo_factory("backend"), repo_factory("shared")]
        manager = MultiRepoWorktreeManager(configs)

        workspace = await manager.create("main")
        try:
            assert list(workspace.worktrees) == ["frontend", "backend", "shared"]
            assert workspace.working_dir == workspace.worktrees["frontend"]

            for path in workspace.worktrees.values():
                assert os.path.isdir(path)
                assert await GitRepository(path).current_branch() == workspace.branch_name

            links = [
                name
                for name in os.listdir(workspace.working_dir)
                if os.path.islink(os.path.join(workspace.working_dir, name))
            ]
            assert sorted(links) == ["backend", "shared"]
            for name in links:
                link = os.path.join(workspace.working_dir, name)
                assert os.path.realpath(link) == os.path.realpath(workspace.worktrees[name])
            assert workspace.warnings == []
        finally:
            await manager.cleanup_all()

    @pytest.mark.asyncio
    async def test_symlink_failure_is_warning(self, repo_factory):
        """シンボリックリンク作成の失敗が警告として記録されることをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("frontend"), repo_factory("backend")])

        with patch(
            "multi_repo_agent.managers.worktree_manager.os.symlink",
            side_effect=OSError("permission denied"),
        ):
            workspace = await manager.create("main")
        try:
            assert list(workspace.worktrees) == ["frontend", "backend"]
            assert len(workspace.warnings) == 1
            assert workspace.warnings[0].startswith("backend: ")
            assert "permission denied" in workspace.warnings[0]
            assert not os.path.lexists(os.path.join(workspace.working_dir, "backend"))
        finally:
            await manager.cleanup_all()

    @pytest.mark.asyncio
    async def test_create_rolls_back_on_failure(self, repo_factory, temp_dir, git):
        """2 番目のリポジトリで失敗すると作成済み worktree が削除されることをテスト。"""
        good = repo_factory("frontend")
        missing = RepositoryConfig(
            repo_path=str(temp_dir / "does-not-exist"),
            worktrees_base=str(temp_dir / "worktrees"),
            repo_name="backend",
        )
        manager = MultiRepoWorktreeManager([good, missing])
        good_path = manager.worktree_path_for(good)

        with pytest.raises(WorktreeError) as exc_info:
            await manager.create("main")

        assert exc_info.value.repo_key == "backend"
        assert not os.path.exists(good_path)
        assert manager.get_worktree("frontend") is None
        assert good_path not in git("worktree", "list", cwd=good.repo_path)

    @pytest.mark.asyncio
    async def test_create_rejects_non_git_directory(self, temp_dir):
        """git リポジトリでないディレクトリは WorktreeError になることをテスト。"""
        plain = temp_dir / "plain"
        plain.mkdir()
        config = RepositoryConfig(
            repo_path=str(plain), worktrees_base=str(temp_dir / "worktrees"), repo_name="plain"
        )

        with pytest.raises(WorktreeError) as exc_info:
            await MultiRepoWorktreeManager([config]).create("main")

        assert "git リポジトリではありません" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_create_with_unknown_base_branch_fails(self, repo_factory):
        """存在しない基点ブランチで WorktreeError になることをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("api")])

        with pytest.raises(WorktreeError):
            await manager.create("no-such-branch")

    @pytest.mark.asyncio
    async def test_create_retries_after_stale_branch(self, repo_factory, git):
        """同名ブランチが残っていても削除して再作成できることをテスト。"""
        config = repo_factory("api")
        git("branch", "agent/stale", cwd=config.repo_path)
        manager = MultiRepoWorktreeManager([config], branch_name="agent/stale")

        workspace = await manager.create("main")
        try:
            assert os.path.isdir(workspace.worktrees["api"])
        finally:
            await manager.cleanup_all()


class TestMultiRepoWorktreeManagerCommitAndPush:
    """commit_all / push_all のテスト。"""

    @pytest.mark.asyncio
    async def test_commit_all_is_idempotent(self, repo_factory, git):
        """2 回呼んでもコミットは 1 つだけであることをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("api")])
        workspace = await manager.create("main")
        try:
            path = workspace.worktrees["api"]
            with open(os.path.join(path, "feature.py"), "w") as f:
                f.write("print('hello')\n")

            assert await manager.commit_all("Agent: test") == ["api"]
            assert await manager.commit_all("Agent: test") == []
            assert git("rev-list", "--count", "origin/main..HEAD", cwd=path) == "1"
        finally:
            await manager.cleanup_all()

    @pytest.mark.asyncio
    async def test_symlinks_are_not_committed(self, repo_factory):
        """主 worktree 内のリンクだけでは変更扱いにならないことをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("frontend"), repo_factory("backend")])
        await manager.create("main")
        try:
            assert await manager.commit_all("Agent: test") == []
            assert await manager.push_all() == {}
        finally:
            await manager.cleanup_all()

    @pytest.mark.asyncio
    async def test_push_all_returns_only_ahead_repositories(self, repo_factory, temp_dir, git):
        """先行コミットのあるリポジトリだけが push されることをテスト。"""
        frontend = repo_factory("frontend")
        backend = repo_factory("backend")
        manager = MultiRepoWorktreeManager([frontend, backend])
        workspace = await manager.create("main")
        try:
            with open(os.path.join(workspace.worktrees["backend"], "api.py"), "w") as f:
                f.write("VERSION = 2\n")
            # 主 worktree 内のリンク経由でも同じ worktree に書き込める
            link_file = os.path.join(workspace.working_dir, "backend", "linked.py")
            with open(link_file, "w") as f:
                f.write("LINKED = True\n")

            assert await manager.commit_all("Agent: test") == ["backend"]
            pushed = await manager.push_all()

            assert list(pushed) == ["backend"]
            assert pushed["backend"].branch == workspace.branch_name
            assert pushed["backend"].config == backend

            origin = temp_dir / "remotes" / "backend.git"
            assert workspace.branch_name in git("branch", "--list", cwd=origin)
            files = git("ls-tree", "--name-only", workspace.branch_name, cwd=origin)
            assert "api.py" in files.splitlines()
            assert "linked.py" in files.splitlines()
        finally:
            await manager.cleanup_all()

    @pytest.mark.asyncio
    async def test_push_failure_aborts(self, repo_factory):
        """push 失敗時は WorktreeError で中断することをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("frontend"), repo_factory("backend")])
        workspace = await manager.create("main")
        try:
            for path in workspace.worktrees.values():
                with open(os.path.join(path, "change.txt"), "w") as f:
                    f.write("change\n")
            await manager.commit_all("Agent: test")

            with patch.object(
                GitRepository, "push", AsyncMock(return_value=(False, "rejected"))
            ) as mock_push:
                with pytest.raises(WorktreeError) as exc_info:
                    await manager.push_all()

            assert exc_info.value.repo_key == "frontend"
            assert mock_push.await_count == 1
        finally:
            await manager.cleanup_all()


class TestMultiRepoWorktreeManagerCleanup:
    """cleanup_all / session のテスト。"""

    @pytest.mark.asyncio
    async def test_cleanup_removes_worktrees(self, repo_factory):
        """全 worktree が削除されることをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("frontend"), repo_factory("backend")])
        workspace = await manager.create("main")

        report = await manager.cleanup_all()

        assert sorted(report.removed) == ["backend", "frontend"]
        assert report.has_warnings is False
        for path in workspace.worktrees.values():
            assert not os.path.exists(path)

    @pytest.mark.asyncio
    async def test_cleanup_falls_back_to_directory_removal(self, repo_factory):
        """worktree remove が失敗してもディレクトリが削除されることをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("frontend"), repo_factory("backend")])
        workspace = await manager.create("main")

        with patch.object(
            GitRepository, "remove_worktree", AsyncMock(return_value=(False, "locked"))
        ):
            report = await manager.cleanup_all()

        assert sorted(report.removed) == ["backend", "frontend"]
        for path in workspace.worktrees.values():
            assert not os.path.lexists(path)

    @pytest.mark.asyncio
    async def test_cleanup_reports_directory_left_behind(self, repo_factory):
        """直接削除後もディレクトリが残る場合は警告になり、例外は送出しないことをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("api")])
        workspace = await manager.create("main")

        with patch.object(
            GitRepository, "remove_worktree", AsyncMock(return_value=(False, "locked"))
        ), patch("multi_repo_agent.managers.worktree_manager.shutil.rmtree"):
            report = await manager.cleanup_all()

        assert report.removed == []
        assert len(report.warnings) == 1
        assert report.warnings[0].startswith("api: ")
        assert "残っています" in report.warnings[0]
        assert os.path.isdir(workspace.worktrees["api"])

    @pytest.mark.asyncio
    async def test_cleanup_reports_directory_removal_error(self, repo_factory):
        """直接削除が失敗しても警告になり、他の worktree は削除されることをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("frontend"), repo_factory("backend")])
        workspace = await manager.create("main")
        frontend_path = workspace.worktrees["frontend"]
        real_remove = GitRepository.remove_worktree

        async def remove_worktree(self, path, force=False):
            if path == frontend_path:
                return False, "locked"
            return await real_remove(self, path, force=force)

        with patch.object(GitRepository, "remove_worktree", remove_worktree), patch(
            "multi_repo_agent.managers.worktree_manager.shutil.rmtree",
            side_effect=PermissionError("read-only file system"),
        ):
            report = await manager.cleanup_all()

        assert report.removed == ["backend"]
        assert len(report.warnings) == 1
        assert report.warnings[0].startswith("frontend: ")
        assert "read-only file system" in report.warnings[0]
        assert not os.path.exists(workspace.worktrees["backend"])

    @pytest.mark.asyncio
    async def test_prune_failure_is_warning(self, repo_factory):
        """worktree prune の失敗が警告として報告されることをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("api")])
        workspace = await manager.create("main")

        with patch.object(
            GitRepository, "prune_worktrees", AsyncMock(return_value=(False, "x"))
        ):
            report = await manager.cleanup_all()

        assert report.removed == ["api"]
        assert report.warnings == ["api: worktree prune に失敗しました: x"]
        assert not os.path.exists(workspace.worktrees["api"])

    @pytest.mark.asyncio
    async def test_cleanup_twice_is_noop(self, repo_factory):
        """2 回目のクリーンアップは何もしないことをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("api")])
        await manager.create("main")

        await manager.cleanup_all()
        report = await manager.cleanup_all()

        assert report.removed == []
        assert report.warnings == []

    @pytest.mark.asyncio
    async def test_session_cleans_up_on_error(self, repo_factory):
        """session 内で例外が発生しても worktree が削除されることをテスト。"""
        manager = MultiRepoWorktreeManager([repo_factory("api")])
        paths = []

        with pytest.raises(RuntimeError):
            async with manager.session("main") as workspace:
                paths.extend(workspace.worktrees.values())
                raise RuntimeError("agent crashed")

        assert paths
        assert not os.path.exists(paths[0])

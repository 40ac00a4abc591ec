"""複数リポジトリの git worktree 管理モジュール。

1 タスクにつき、設定された全リポジトリへ同じブランチ名の worktree を作成し、
コミット・プッシュ・削除をリポジトリ単位で順番に実行する。
リポジトリ間の並列実行は行わない（同一リポジトリの ref / worktree 登録情報を
同時に書き換えないため）。
"""

import asyncio
import logging
import os
import shutil
import subprocess
import uuid
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass

from multi_repo_agent.config.validation import validate_branch_name
from multi_repo_agent.errors import ValidationError, WorktreeError
from multi_repo_agent.models.repository import RepositoryConfig
from multi_repo_agent.models.workspace import CleanupReport, PushedBranch, Workspace

logger = logging.getLogger(__name__)


class GitRepository:
    """特定ディレクトリを起点に git コマンドを実行するクラス。

    コマンドは常に引数リストで渡し、シェル文字列は組み立てない。
    非ゼロ終了は例外にせず (成功フラグ, メッセージ) で返す。
    """

    def __init__(self, path: str) -> None:
        """GitRepositoryを初期化する。

        Args:
            path: git コマンドの作業ディレクトリ
        """
        self.path = path

    async def _run_command(self, *args: str, cwd: str | None = None) -> tuple[int, str, str]:
        """コマンドを実行する。

        Args:
            *args: コマンドと引数
            cwd: 作業ディレクトリ（省略時は path）

        Returns:
            (リターンコード, stdout, stderr) のタプル
        """
        work_dir = cwd or self.path
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=work_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
            return (
                proc.returncode or 0,
                stdout.decode(errors="replace"),
                stderr.decode(errors="replace"),
            )
        except FileNotFoundError:
            return 1, "", f"コマンドまたはディレクトリが見つかりません: {args[0]} (cwd={work_dir})"
        except (OSError, subprocess.SubprocessError) as e:
            logger.error(f"コマンド実行エラー: {e}")
            return 1, "", str(e)

    async def _run_git(self, *args: str) -> tuple[int, str, str]:
        """gitコマンドを実行する。"""
        return await self._run_command("git", *args)

    @staticmethod
    def _error_text(stdout: str, stderr: str) -> str:
        return (stderr or stdout).strip()

    async def is_git_repo(self) -> bool:
        """有効なgitリポジトリか確認する。"""
        code, _, _ = await self._run_git("rev-parse", "--git-dir")
        return code == 0

    async def fetch(self, remote: str = "origin") -> tuple[bool, str]:
        """リモートから最新情報を取得する。"""
        code, stdout, stderr = await self._run_git("fetch", remote)
        if code != 0:
            return False, self._error_text(stdout, stderr)
        return True, "fetchが完了しました"

    async def add_worktree(self, path: str, branch: str, start_point: str) -> tuple[bool, str]:
        """新しいブランチで worktree を作成する。"""
        code, stdout, stderr = await self._run_git(
            "worktree", "add", "-b", branch, path, start_point
        )
        if code != 0:
            return False, self._error_text(stdout, stderr)
        return True, f"worktreeを作成しました: {path}"

    async def delete_branch(self, branch: str) -> tuple[bool, str]:
        """ローカルブランチを強制削除する。"""
        code, stdout, stderr = await self._run_git("branch", "-D", branch)
        if code != 0:
            return False, self._error_text(stdout, stderr)
        return True, f"ブランチを削除しました: {branch}"

    async def remove_worktree(self, path: str, force: bool = False) -> tuple[bool, str]:
        """worktreeを削除する。"""
        args = ["worktree", "remove", path]
        if force:
            args.append("--force")
        code, stdout, stderr = await self._run_git(*args)
        if code != 0:
            return False, self._error_text(stdout, stderr)
        return True, f"worktreeを削除しました: {path}"

    async def prune_worktrees(self) -> tuple[bool, str]:
        """削除済み worktree の管理情報をクリーンアップする。"""
        code, stdout, stderr = await self._run_git("worktree", "prune")
        if code != 0:
            return False, self._error_text(stdout, stderr)
        return True, "worktree情報をクリーンアップしました"

    async def changed_files(self, exclude: Iterable[str] = ()) -> tuple[bool, list[str]]:
        """変更・未追跡ファイルの一覧を取得する。

        Args:
            exclude: 無視するトップレベルのパス名

        Returns:
            (成功フラグ, ファイルパスのリスト) のタプル
        """
        code, stdout, stderr = await self._run_git("status", "--porcelain")
        if code != 0:
            logger.error(f"git status エラー ({self.path}): {stderr}")
            return False, []

        excluded = {name.rstrip("/") for name in exclude}
        files: list[str] = []
        for line in stdout.splitlines():
            if len(line) < 4:
                continue
            path = line[3:]
            # リネームは "old -> new" 形式
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            path = path.strip('"')
            if path.rstrip("/") in excluded:
                continue
            files.append(path)
        return True, files

    async def stage_all(self, exclude: Iterable[str] = ()) -> tuple[bool, str]:
        """全変更をステージする。"""
        args = ["add", "-A", "--", "."]
        args.extend(f":(exclude){name}" for name in exclude)
        code, stdout, stderr = await self._run_git(*args)
        if code != 0:
            return False, self._error_text(stdout, stderr)
        return True, "ステージしました"

    async def commit(self, message: str) -> tuple[bool, str]:
        """ステージ済みの変更をコミットする。"""
        code, stdout, stderr = await self._run_git("commit", "-m", message)
        if code != 0:
            return False, self._error_text(stdout, stderr)
        return True, "コミットしました"

    async def ahead_count(self) -> tuple[bool, int]:
        """upstream に対して先行しているコミット数を取得する。

        upstream 未設定の場合はリモート追跡ブランチのどれにも含まれない
        コミット数を返す。
        """
        code, stdout, _ = await self._run_git("rev-list", "--count", "@{upstream}..HEAD")
        if code != 0:
            code, stdout, stderr = await self._run_git(
                "rev-list", "--count", "HEAD", "--not", "--remotes"
            )
            if code != 0:
                logger.error(f"ahead 数の取得エラー ({self.path}): {stderr}")
                return False, 0
        try:
            return True, int(stdout.strip() or "0")
        except ValueError:
            return False, 0

    async def push(
        self, remote: str, branch: str, set_upstream: bool = True
    ) -> tuple[bool, str]:
        """ブランチをリモートへ push する。"""
        args = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        args.extend([remote, branch])
        code, stdout, stderr = await self._run_git(*args)
        if code != 0:
            return False, self._error_text(stdout, stderr)
        return True, f"pushしました: {branch}"

    async def current_branch(self) -> str:
        """現在のブランチ名を取得する。"""
        code, stdout, _ = await self._run_git("rev-parse", "--abbrev-ref", "HEAD")
        return stdout.strip() if code == 0 else ""


@dataclass
class WorktreeEntry:
    """作成済み worktree の情報。"""

    path: str
    config: RepositoryConfig
    source: GitRepository
    """元リポジトリ（worktree remove / prune の実行先）"""
    worktree: GitRepository
    """worktree 側（status / commit / push の実行先）"""


class MultiRepoWorktreeManager:
    """1 タスク分の複数リポジトリ worktree を管理するクラス。

    全リポジトリで同じブランチ名を使うことで、リポジトリ横断の変更を
    1 つの論理単位として扱う。
    """

    def __init__(
        self,
        configs: Sequence[RepositoryConfig],
        branch_name: str | None = None,
        remote: str = "origin",
    ) -> None:
        """MultiRepoWorktreeManagerを初期化する。I/O は行わない。

        Args:
            configs: リポジトリ設定のリスト（先頭が主リポジトリ）
            branch_name: ブランチ名（省略時は agent/<task_id>）
            remote: fetch / push 先のリモート名

        Raises:
            ValidationError: ブランチ名が不正、またはリポジトリ名が重複している場合
        """
        validate_branch_name(branch_name)

        names = [c.repo_name for c in configs]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValidationError(
                f"リポジトリ名が重複しています: {', '.join(duplicates)}",
                "repo_name",
                duplicates,
            )

        self._task_id = uuid.uuid4().hex[:8]
        self._branch_name = branch_name or f"agent/{self._task_id}"
        self._configs = list(configs)
        self._remote = remote
        self._worktrees: dict[str, WorktreeEntry] = {}
        self._link_names: set[str] = set()
        self._warnings: list[str] = []

    @property
    def task_id(self) -> str:
        """タスクID。"""
        return self._task_id

    @property
    def branch_name(self) -> str:
        """全リポジトリ共通のブランチ名。"""
        return self._branch_name

    @property
    def primary_repo_name(self) -> str | None:
        """主リポジトリ名（先頭の設定）。"""
        return self._configs[0].repo_name if self._configs else None

    def get_worktree(self, repo_name: str) -> WorktreeEntry | None:
        """指定リポジトリの worktree 情報を取得する。"""
        return self._worktrees.get(repo_name)

    def worktree_path_for(self, config: RepositoryConfig) -> str:
        """worktree のパスを決定的に算出する（worktrees_base/repo_name/task_id）。"""
        return os.path.abspath(
            os.path.join(config.worktrees_base, config.repo_name, self._task_id)
        )

    async def create(self, base_branch: str = "main") -> Workspace:
        """全リポジトリの worktree を作成する。

        いずれかのリポジトリで失敗した場合、このタスクで作成済みの
        worktree を全て削除してから例外を再送出する。

        Args:
            base_branch: 基点ブランチ（origin/<base_branch> から分岐する）

        Returns:
            エージェントが使うワークスペース情報

        Raises:
            WorktreeError: worktree の作成に失敗した場合
        """
        validate_branch_name(base_branch)

        for config in self._configs:
            try:
                await self._create_single_worktree(config, base_branch)
            except Exception:
                report = await self.cleanup_all()
                logger.warning(
                    f"worktree作成に失敗したためロールバックしました: "
                    f"task={self._task_id}, removed={report.removed}"
                )
                raise

        self._create_cross_repo_symlinks()

        primary = self.primary_repo_name
        primary_entry = self._worktrees.get(primary) if primary else None

        return Workspace(
            task_id=self._task_id,
            branch_name=self._branch_name,
            worktrees={key: entry.path for key, entry in self._worktrees.items()},
            configs={key: entry.config for key, entry in self._worktrees.items()},
            working_dir=primary_entry.path if primary_entry else os.getcwd(),
            warnings=list(self._warnings),
        )

    async def _create_single_worktree(self, config: RepositoryConfig, base_branch: str) -> None:
        """1 リポジトリ分の worktree を作成する。"""
        repo_key = config.repo_name

        if not os.path.exists(config.repo_path):
            raise WorktreeError(
                f"元リポジトリが見つかりません: {config.repo_path}",
                repo_key,
                {"repo_path": config.repo_path},
            )

        source = GitRepository(config.repo_path)
        if not await source.is_git_repo():
            raise WorktreeError(
                f"git リポジトリではありません: {config.repo_path}",
                repo_key,
                {"repo_path": config.repo_path},
            )
        worktree_path = self.worktree_path_for(config)

        try:
            os.makedirs(os.path.dirname(worktree_path), exist_ok=True)
        except OSError as e:
            raise WorktreeError(
                f"worktree ディレクトリを作成できません: {e}",
                repo_key,
                {"worktree_path": worktree_path},
            ) from e

        success, message = await source.fetch(self._remote)
        if not success:
            raise WorktreeError(f"{self._remote} からの fetch に失敗しました: {message}", repo_key)

        start_point = f"{self._remote}/{base_branch}"
        success, message = await source.add_worktree(worktree_path, self._branch_name, start_point)
        if not success:
            # 前回中断したタスクのブランチが残っている場合は削除して 1 回だけ再試行する
            logger.info(f"worktree作成を再試行します ({repo_key}): {message}")
            deleted, delete_message = await source.delete_branch(self._branch_name)
            if not deleted:
                logger.debug(f"ブランチ削除に失敗 ({repo_key}): {delete_message}")
            success, message = await source.add_worktree(
                worktree_path, self._branch_name, start_point
            )
            if not success:
                raise WorktreeError(
                    f"worktree作成に失敗しました: {message}",
                    repo_key,
                    {"branch_name": self._branch_name, "worktree_path": worktree_path},
                )

        self._worktrees[repo_key] = WorktreeEntry(
            path=worktree_path,
            config=config,
            source=source,
            worktree=GitRepository(worktree_path),
        )
        logger.info(f"worktreeを作成しました: {repo_key} ({worktree_path})")

    def _create_cross_repo_symlinks(self) -> None:
        """主 worktree 内に他リポジトリ worktree へのシンボリックリンクを作る。

        失敗は致命的ではなく、ワークスペースの警告として記録する。
        """
        if len(self._configs) <= 1:
            return

        primary_entry = self._worktrees.get(self._configs[0].repo_name)
        if primary_entry is None:
            return

        for config in self._configs[1:]:
            other = self._worktrees.get(config.repo_name)
            if other is None:
                continue
            link_path = os.path.join(primary_entry.path, config.repo_name)
            try:
                os.symlink(other.path, link_path, target_is_directory=True)
                self._link_names.add(config.repo_name)
            except OSError as e:
                logger.debug(f"シンボリックリンク作成をスキップ: {link_path} ({e})")
                self._warnings.append(f"{config.repo_name}: シンボリックリンクを作成できません: {e}")

    async def commit_all(self, message: str) -> list[str]:
        """変更のある worktree を同じメッセージでコミットする。

        変更のない worktree はスキップし、空コミットは作らない。
        1 リポジトリでも失敗した場合は残りを処理せずに例外を送出する。

        Args:
            message: コミットメッセージ

        Returns:
            コミットしたリポジトリ名のリスト

        Raises:
            WorktreeError: status / add / commit に失敗した場合
        """
        committed: list[str] = []
        primary = self.primary_repo_name

        for repo_key, entry in self._worktrees.items():
            exclude = sorted(self._link_names) if repo_key == primary else []

            success, files = await entry.worktree.changed_files(exclude)
            if not success:
                raise WorktreeError("git status の取得に失敗しました", repo_key, {"path": entry.path})
            if not files:
                logger.debug(f"変更なしのためコミットをスキップ: {repo_key}")
                continue

            success, output = await entry.worktree.stage_all(exclude)
            if not success:
                raise WorktreeError(f"git add に失敗しました: {output}", repo_key)

            success, output = await entry.worktree.commit(message)
            if not success:
                raise WorktreeError(f"コミットに失敗しました: {output}", repo_key)

            committed.append(repo_key)
            logger.info(f"コミットしました: {repo_key} ({len(files)} files)")

        return committed

    async def push_all(self) -> dict[str, PushedBranch]:
        """upstream より先行している worktree を push する。

        先行コミットがないリポジトリは結果に含めない（PR 作成対象外）。
        1 リポジトリでも push に失敗した場合は残りを処理せずに例外を送出する。

        Returns:
            リポジトリ名 → push 済みブランチ情報

        Raises:
            WorktreeError: ahead 数の取得または push に失敗した場合
        """
        results: dict[str, PushedBranch] = {}

        for repo_key, entry in self._worktrees.items():
            success, ahead = await entry.worktree.ahead_count()
            if not success:
                raise WorktreeError("先行コミット数を取得できません", repo_key, {"path": entry.path})
            if ahead <= 0:
                continue

            success, output = await entry.worktree.push(self._remote, self._branch_name)
            if not success:
                raise WorktreeError(
                    f"push に失敗しました: {output}",
                    repo_key,
                    {"branch_name": self._branch_name},
                )

            results[repo_key] = PushedBranch(branch=self._branch_name, config=entry.config)
            logger.info(f"pushしました: {repo_key} ({self._branch_name})")

        return results

    async def cleanup_all(self) -> CleanupReport:
        """全 worktree を削除する。例外は送出しない。

        worktree remove --force が失敗した場合はディレクトリを直接削除し、
        削除できたことを確認する。最後に元リポジトリで worktree prune を実行する。

        Returns:
            削除結果（警告を含む）
        """
        report = CleanupReport()

        for repo_key, entry in self._worktrees.items():
            try:
                await self._cleanup_single_worktree(repo_key, entry)
                report.removed.append(repo_key)
            except WorktreeError as e:
                report.warnings.append(f"{repo_key}: {e.message}")
            except Exception as e:
                report.warnings.append(f"{repo_key}: 予期しないエラー: {e}")

        pruned: set[str] = set()
        for repo_key, entry in self._worktrees.items():
            if entry.config.repo_path in pruned:
                continue
            pruned.add(entry.config.repo_path)
            success, message = await entry.source.prune_worktrees()
            if not success:
                logger.debug(f"worktree prune に失敗 ({repo_key}): {message}")
                report.warnings.append(f"{repo_key}: worktree prune に失敗しました: {message}")

        self._worktrees.clear()
        self._link_names.clear()

        if report.warnings:
            logger.warning(
                f"クリーンアップが {len(report.warnings)} 件の警告付きで完了しました: "
                f"{report.warnings}"
            )
        return report

    async def _cleanup_single_worktree(self, repo_key: str, entry: WorktreeEntry) -> None:
        """1 リポジトリ分の worktree を削除する。"""
        success, message = await entry.source.remove_worktree(entry.path, force=True)
        if success:
            logger.info(f"worktreeを削除しました: {repo_key}")
            return

        logger.info(f"worktree remove に失敗したためディレクトリを直接削除します ({repo_key}): {message}")
        try:
            shutil.rmtree(entry.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise WorktreeError(
                f"worktree の削除に失敗しました: {e}", repo_key, {"path": entry.path}
            ) from e

        if os.path.lexists(entry.path):
            raise WorktreeError(
                "削除後も worktree ディレクトリが残っています", repo_key, {"path": entry.path}
            )
        logger.info(f"worktreeを直接削除しました: {repo_key}")

    @asynccontextmanager
    async def session(self, base_branch: str = "main") -> AsyncIterator[Workspace]:
        """ワークスペースを作成し、終了時に必ず削除するコンテキストマネージャー。

        Example:
            async with manager.session("main") as workspace:
                ...
        """
        workspace = await self.create(base_branch)
        try:
            yield workspace
        finally:
            await self.cleanup_all()

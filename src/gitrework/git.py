"""Git operations for git-rework."""

import subprocess
from pathlib import Path

from git import Repo
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError


class GitError(Exception):
    """Git operation failed."""

    pass


class GitOperations:
    """Git operations wrapper.

    Every primitive the split engine needs lives here. Ref and object
    lookups go through GitPython; patches are produced and applied with
    the git binary directly so binary content survives the round trip.
    """

    def __init__(self, repo_path: str | Path | None = None):
        start = Path(repo_path) if repo_path else Path.cwd()
        try:
            self.repo = Repo(start, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitError(f"Not a git repository: {start}")

        if self.repo.working_tree_dir is None:
            raise GitError(f"Not a git working copy: {start}")

        self.repo_path = Path(self.repo.working_tree_dir)

    @property
    def git_dir(self) -> Path:
        """The control directory of this working copy (worktree aware)."""
        return Path(self.repo.git_dir)

    @property
    def current_branch(self) -> str | None:
        """Get the current branch name, or None when HEAD is detached."""
        if self.repo.head.is_detached:
            return None
        return self.repo.active_branch.name

    @property
    def head_commit(self) -> str:
        """Full id of the commit HEAD points at."""
        try:
            return self.repo.head.commit.hexsha
        except ValueError as e:
            raise GitError(f"HEAD does not point at a commit: {e}")

    def is_clean(self) -> bool:
        """True when there are no staged, unstaged or untracked changes."""
        try:
            return not self.repo.git.status("--porcelain")
        except GitCommandError as e:
            raise GitError(f"Failed to read status: {e}")

    def has_staged_changes(self) -> bool:
        """True when the index differs from HEAD."""
        try:
            self.repo.git.diff("--cached", "--quiet")
        except GitCommandError as e:
            if e.status == 1:
                return True
            raise GitError(f"Failed to compare index: {e}")
        return False

    def resolve_tip(self, ref: str) -> str:
        """Resolve a ref to a full commit id."""
        try:
            return self.repo.commit(ref).hexsha
        except (BadName, ValueError) as e:
            raise GitError(f"Unknown revision {ref}: {e}")

    def resolve_parent(self, commit: str) -> str | None:
        """First parent of a commit, or None for a root commit."""
        parents = self._commit(commit).parents
        if not parents:
            return None
        return parents[0].hexsha

    def parent_count(self, commit: str) -> int:
        return len(self._commit(commit).parents)

    def short_id(self, ref: str) -> str:
        try:
            return self.repo.git.rev_parse("--short", ref)
        except GitCommandError as e:
            raise GitError(f"Unknown revision {ref}: {e}")

    def get_tree_hash(self, ref: str = "HEAD") -> str:
        """Get the tree hash for a ref (commit-independent content hash)."""
        return self._commit(ref).tree.hexsha

    def _commit(self, ref: str):
        try:
            return self.repo.commit(ref)
        except (BadName, ValueError) as e:
            raise GitError(f"Unknown revision {ref}: {e}")

    def create_branch(self, name: str, at: str = "HEAD", force: bool = False) -> None:
        """Create a new branch."""
        try:
            self.repo.create_head(name, at, force=force)
        except (GitCommandError, OSError) as e:
            raise GitError(f"Failed to create branch {name}: {e}")

    def delete_branch(self, name: str, force: bool = True) -> None:
        """Delete a branch."""
        try:
            self.repo.delete_head(name, force=force)
        except GitCommandError as e:
            raise GitError(f"Failed to delete branch {name}: {e}")

    def branch_exists(self, name: str) -> bool:
        """Check if a branch exists."""
        return name in [h.name for h in self.repo.heads]

    def force_move_branch(self, name: str, to: str) -> None:
        """Point an existing branch at another commit."""
        try:
            self.repo.git.branch("-f", name, to)
        except GitCommandError as e:
            raise GitError(f"Failed to move branch {name}: {e}")

    def checkout(self, ref: str, detach: bool = False) -> None:
        """Checkout a branch, or a commit in detached state."""
        args = ["-q"]
        if detach:
            args.append("--detach")
        try:
            self.repo.git.checkout(*args, ref)
        except GitCommandError as e:
            raise GitError(f"Failed to checkout {ref}: {e}")

    def commit(self, message: str, allow_empty: bool = False, verify: bool = True) -> str:
        """Commit the index and return the new commit id."""
        args = ["-q", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        if not verify:
            args.append("--no-verify")

        try:
            self.repo.git.commit(*args)
        except GitCommandError as e:
            raise GitError(f"Failed to commit: {e}")

        return self.head_commit

    def discard_working_copy(self) -> None:
        """Remove untracked files and revert tracked edits to the index."""
        try:
            self.repo.git.clean("-fdq")
            if self.repo.git.ls_files():
                self.repo.git.checkout("--", ".")
        except GitCommandError as e:
            raise GitError(f"Failed to discard working copy: {e}")

    def reset_hard(self, ref: str = "HEAD") -> None:
        """Hard reset to a ref."""
        try:
            self.repo.git.reset("--hard", "-q", ref)
        except GitCommandError as e:
            raise GitError(f"Failed to reset: {e}")

    def stash(self, label: str) -> bool:
        """Stash all changes, untracked files included. Returns True if something was stashed."""
        try:
            result = self.repo.git.stash("push", "--include-untracked", "--message", label)
        except GitCommandError as e:
            raise GitError(f"Failed to stash: {e}")
        return "No local changes" not in result

    def stash_pop(self) -> None:
        """Pop the latest stash."""
        try:
            self.repo.git.stash("pop")
        except GitCommandError as e:
            raise GitError(f"Failed to pop stash: {e}")

    def get_config_bool(self, key: str, default: bool = False) -> bool:
        """Read a boolean git configuration value, e.g. ``rebase.autoStash``."""
        try:
            value = self.repo.git.config("--bool", "--get", key)
        except GitCommandError as e:
            # Exit status 1 means the key is not set
            if e.status == 1:
                return default
            raise GitError(f"Failed to read config {key}: {e}")
        return value.strip() == "true"

    def commits_between(self, exclude: str, include: str) -> list[str]:
        """Commits reachable from include but not from exclude, oldest first."""
        try:
            output = self.repo.git.rev_list("--reverse", f"{exclude}..{include}")
        except GitCommandError as e:
            raise GitError(f"Failed to list commits {exclude}..{include}: {e}")
        return output.split()

    def changed_files(self, from_ref: str, to_ref: str) -> list[str]:
        """Paths that differ between two commits."""
        try:
            output = self.repo.git.diff_tree("-r", "--name-only", "--no-commit-id", from_ref, to_ref)
        except GitCommandError as e:
            raise GitError(f"Failed to diff {from_ref} {to_ref}: {e}")
        return output.splitlines()

    def diff_status(self, from_ref: str, to_ref: str) -> list[tuple[str, str]]:
        """(status letter, path) pairs for every path that differs."""
        try:
            output = self.repo.git.diff_tree("-r", "--name-status", "--no-commit-id", from_ref, to_ref)
        except GitCommandError as e:
            raise GitError(f"Failed to diff {from_ref} {to_ref}: {e}")

        entries = []
        for line in output.splitlines():
            status, _, path = line.partition("\t")
            if path:
                entries.append((status[:1], path))
        return entries

    def get_raw_diff(self, from_ref: str, to_ref: str) -> bytes:
        """Binary-safe patch turning from_ref's tree into to_ref's tree."""
        try:
            result = subprocess.run(
                ["git", "diff-tree", "-r", "-p", "--binary", "--full-index", from_ref, to_ref],
                cwd=self.repo_path,
                capture_output=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise GitError(f"Failed to get diff: {e.stderr.decode(errors='replace')}")
        return result.stdout

    def apply_patch(self, patch: bytes) -> None:
        """Apply a patch to the index and the working tree."""
        args = ["git", "apply", "--index", "--whitespace=nowarn"]
        result = subprocess.run(
            args + ["--check"],
            cwd=self.repo_path,
            input=patch,
            capture_output=True,
        )
        if result.returncode != 0:
            raise GitError(
                f"Patch would not apply cleanly: {result.stderr.decode(errors='replace').strip()}"
            )

        try:
            subprocess.run(
                args,
                cwd=self.repo_path,
                input=patch,
                capture_output=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise GitError(f"Failed to apply patch: {e.stderr.decode(errors='replace')}")

    def stage_diff(self, from_ref: str, to_ref: str) -> None:
        """Stage the change that turns from_ref's tree into to_ref's tree."""
        patch = self.get_raw_diff(from_ref, to_ref)
        if patch.strip():
            self.apply_patch(patch)

    def stage_inverse(self, commit: str) -> None:
        """Stage the inverse of a commit's own change with a three-way merge."""
        try:
            self.repo.git.revert("--no-commit", commit)
        except GitCommandError as e:
            raise GitError(f"Failed to revert {commit}: {e}")

    def staged_paths(self) -> list[str]:
        """Paths whose index entry differs from HEAD."""
        try:
            return self.repo.git.diff("--cached", "--name-only", "--no-renames").splitlines()
        except GitCommandError as e:
            raise GitError(f"Failed to compare index: {e}")

    def branches_at(self, commit: str) -> list[str]:
        """Local branches pointing exactly at a commit."""
        target = self.resolve_tip(commit)
        return [h.name for h in self.repo.heads if h.commit.hexsha == target]

    def commit_summary(self, ref: str) -> str:
        return self._commit(ref).summary

    def replay_range(self, exclude: str, include: str) -> None:
        """Stage the combined change of exclude..include on the current tree."""
        commits = self.commits_between(exclude, include)
        if not commits:
            return

        base = self.resolve_parent(commits[0])
        if base is None:
            raise GitError(f"Cannot replay a range starting at root commit {commits[0]}")
        self.stage_diff(base, include)

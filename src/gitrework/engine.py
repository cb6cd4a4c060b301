"""Split engine: the start / continue / finish / abort state machine.

Splitting works on three pieces of durable state:

* the session record (see ``gitrework.session``),
* the shadow branch ``git/<name>``, which starts at the original commit O
  and gains one anti-commit per slice. Each anti-commit removes exactly the
  slice the user took, so the shadow tip is always "what is left",
* the index at the base commit P, which holds diff(P, shadow tip) for the
  user to pick the next slice from.

When nothing is left, the anti-commits are inverted oldest first on top of
P, which replays the slices in the order they were taken.
"""

from datetime import datetime

from gitrework import display
from gitrework.git import GitOperations, GitError
from gitrework.models import Session, SliceCommit, StatusReport
from gitrework.session import SessionStore, AlreadyInProgress, NotInProgress
from gitrework.verification import Verifier, VerificationError


SHADOW_PREFIX = "git/"


class EngineError(Exception):
    """Engine operation failed."""

    pass


class DetachedHead(EngineError):
    """HEAD is not on a branch."""

    pass


class NoParent(EngineError):
    """The commit to split is a root commit."""

    pass


class MergeCommit(EngineError):
    """The commit to split has more than one parent."""

    pass


class NothingToSplit(EngineError):
    """The commit to split does not change anything."""

    pass


class DirtyWorkingCopy(EngineError):
    """Uncommitted changes and auto-stashing is not allowed."""

    pass


class EmptySlice(EngineError):
    """Continue was requested with nothing staged."""

    pass


class UnexpectedCommit(EngineError):
    """HEAD moved away from the base commit between steps."""

    pass


class ReplayConflict(EngineError):
    """A diff the engine replays internally did not apply."""

    pass


class FinishFailed(EngineError):
    """The replacement commits could not be created; finish can be retried."""

    pass


class SplitEngine:
    """
    Drives one split session per repository. Written once and
    parameterized by the command name, which selects the state
    directory, the shadow branch and the commit labels.
    """

    def __init__(
        self,
        git: GitOperations,
        store: SessionStore,
        name: str = "rework",
    ):
        self.git = git
        self.store = store
        self.name = name

        self.verifier = Verifier(git)

    @property
    def shadow_branch(self) -> str:
        return f"{SHADOW_PREFIX}{self.name}"

    @property
    def label(self) -> str:
        return self.name.capitalize()

    def load(self) -> Session:
        """Load the active session or fail with NotInProgress."""
        session = self.store.load()
        if session is None:
            raise NotInProgress(self.name)
        return session

    def begin(self, autostash: bool = False) -> Session:
        """
        Start splitting the tip commit of the current branch.

        Leaves HEAD detached at the parent commit with the whole change of
        the tip commit staged.
        """
        existing = self.store.load()
        if existing is not None:
            raise AlreadyInProgress(existing.branch, self.name)

        branch = self.git.current_branch
        if branch is None:
            raise DetachedHead(
                f"Git {self.name} only works on a branch, you are in detached HEAD state"
            )

        original = self.git.resolve_tip(branch)
        short = self.git.short_id(original)

        if self.git.parent_count(original) > 1:
            raise MergeCommit(f"Cannot split merge commit {short} on '{branch}'")

        base = self.git.resolve_parent(original)
        if base is None:
            raise NoParent(f"Cannot split root commit {short} on '{branch}': it has no parent")

        original_tree = self.git.get_tree_hash(original)
        if original_tree == self.git.get_tree_hash(base):
            raise NothingToSplit(f"Commit {short} on '{branch}' has no changes to split")

        auto_stashed = False
        if not self.git.is_clean():
            if not (autostash or self.git.get_config_bool("rebase.autoStash")):
                raise DirtyWorkingCopy(
                    f"Uncommitted changes, git {self.name} requires a clean branch. "
                    "Commit or stash them, pass --autostash, or enable rebase.autoStash."
                )

            stamp = datetime.now().strftime("%d %b %Y at %H:%M")
            display.print_step("stashing uncommitted changes")
            auto_stashed = self.git.stash(f"Autostash. Git {self.name} '{branch}' {stamp}")

        # Record the session before touching refs so an interrupted start can be aborted
        session = self.store.create(
            branch,
            original=original,
            original_tree_hash=original_tree,
            auto_stashed=auto_stashed,
        )

        display.print_step(f"creating {self.shadow_branch} at {short}")
        self.git.create_branch(self.shadow_branch, original, force=True)

        display.print_step(f"staging {short} on top of its parent")
        self.git.checkout(base, detach=True)
        self.git.stage_diff(base, original)

        return session

    def step(self, session: Session | None) -> list[SliceCommit] | None:
        """
        Commit the staged selection as the next slice.

        Returns the replacement commits when this step used up the last of
        the change, None when changes remain for another round.
        """
        if session is None:
            raise NotInProgress(self.name)

        original = self._original(session)
        base = self.git.resolve_parent(original)

        # Nothing left means an earlier finish did not complete
        if self.git.get_tree_hash(self.shadow_branch) == self.git.get_tree_hash(base):
            display.print_step("nothing left to split, resuming finish")
            return self.finish(session)

        if self.git.head_commit != base or self.git.current_branch is not None:
            self._rollback(session)
            raise UnexpectedCommit(
                f"Unexpected commit, don't commit during git {self.name}! "
                f"Aborted and returned to '{session.branch}'."
            )

        if not self.git.has_staged_changes():
            raise EmptySlice(
                "Nothing is staged. Stage the changes for the next commit, "
                f"or run 'git {self.name} --abort'."
            )

        display.print_step("discarding unstaged and untracked changes")
        self.git.discard_working_copy()

        temp = self.git.commit(f"{self.label} temp", verify=False)
        files = self.git.changed_files(base, temp)

        display.print_step(f"recording what is left on {self.shadow_branch}")
        self.git.checkout(self.shadow_branch)
        try:
            self.git.stage_inverse(temp)
        except GitError as e:
            self._restage_remaining(base, hard=True)
            raise ReplayConflict(
                "The staged changes are not part of what remains to be split, "
                f"nothing was committed: {e}"
            )

        if sorted(self.git.staged_paths()) != sorted(files):
            self._restage_remaining(base, hard=True)
            raise ReplayConflict(
                "The staged changes are not part of what remains to be split, "
                "nothing was committed."
            )

        self.git.commit(f"{self.label} N-{session.count}", verify=False)
        display.print_slice_committed(session.count, files)

        session.count += 1
        self.store.save(session)

        display.print_step("staging the remaining changes")
        self.git.checkout(base, detach=True)
        self._restage_remaining(base)

        if self.git.is_clean():
            return self.finish(session)
        return None

    def finish(self, session: Session) -> list[SliceCommit]:
        """
        Rebuild the slices as real commits and move the branch onto them.

        Starts over from a clean base every time, so a finish that failed
        part way can simply be run again.
        """
        original = self._original(session)
        base = self.git.resolve_parent(original)

        # HEAD may still be on the branch if an earlier finish was interrupted
        self.git.reset_hard()
        self.git.discard_working_copy()
        self.git.checkout(base, detach=True)

        anti_commits = self.git.commits_between(original, self.shadow_branch)

        created = []
        try:
            for number, anti_commit in enumerate(anti_commits, 1):
                parent = self.git.head_commit
                self.git.stage_inverse(anti_commit)

                message = f"{self.label} {number}"
                commit = self.git.commit(message)
                created.append(
                    SliceCommit(
                        commit=commit,
                        message=message,
                        files=self.git.changed_files(parent, commit),
                    )
                )
        except GitError as e:
            self.git.reset_hard()
            self.git.discard_working_copy()
            self.git.checkout(base, detach=True)
            raise FinishFailed(
                f"Could not create the new commits, branch '{session.branch}' was left untouched: {e}\n"
                f"Fix the problem and run 'git {self.name} --continue' to try again, "
                f"or 'git {self.name} --abort'."
            )

        tip = self.git.head_commit
        display.print_step(f"verifying {self.git.short_id(tip)} against {self.git.short_id(original)}")
        result = self.verifier.verify_split(original, tip)
        display.print_verification_result(result)
        if not result.passed:
            raise VerificationError(
                f"{result.diagnosis}\nBranch '{session.branch}' was left untouched, run 'git {self.name} --abort'."
            )

        display.print_step(f"moving '{session.branch}' to {self.git.short_id(tip)}")
        self.git.force_move_branch(session.branch, tip)
        self.git.checkout(session.branch)
        self.git.delete_branch(self.shadow_branch)

        self.store.clear()

        if session.auto_stashed:
            try:
                self.git.stash_pop()
                display.print_stash_restored()
            except GitError as e:
                display.print_warning(
                    f"Could not restore stashed changes, they are still in the stash: {e}"
                )

        return created

    def abort(self, session: Session | None) -> Session:
        """Return to the original branch and forget the split."""
        if session is None:
            raise NotInProgress(self.name)

        self._rollback(session)
        return session

    def abort_damaged(self) -> str | None:
        """
        Abort a split whose session record can no longer be read.

        The original commit is found by walking the shadow branch back past
        its anti-commits. Returns the branch checked out again, or None when
        HEAD was left detached.
        """
        display.print_step("discarding working copy")
        self.git.reset_hard()
        self.git.discard_working_copy()

        branch = None
        if self.git.branch_exists(self.shadow_branch):
            original = self.git.resolve_tip(self.shadow_branch)
            while self.git.commit_summary(original).startswith(f"{self.label} N-"):
                parent = self.git.resolve_parent(original)
                if parent is None:
                    break
                original = parent

            candidates = [b for b in self.git.branches_at(original) if b != self.shadow_branch]
            if len(candidates) == 1:
                branch = candidates[0]
                self.git.checkout(branch)
            else:
                self.git.checkout(original, detach=True)

            display.print_step(f"deleting {self.shadow_branch}")
            self.git.delete_branch(self.shadow_branch)

        self.store.clear()
        return branch

    def status(self) -> StatusReport:
        """Describe the current split, if any. Never mutates anything."""
        session = self.store.load()
        if session is None:
            return StatusReport(in_progress=False)

        tip = None
        if self.git.branch_exists(session.branch):
            tip = self.git.short_id(session.branch)

        return StatusReport(
            in_progress=True,
            branch=session.branch,
            tip=tip,
            slices_extracted=session.slices_extracted,
            started_at=session.started_at,
        )

    def _original(self, session: Session) -> str:
        return session.original or self.git.resolve_tip(session.branch)

    def _restage_remaining(self, base: str, hard: bool = False) -> None:
        """Put diff(base, shadow tip) back in the index at base."""
        if hard:
            self.git.reset_hard()
            self.git.checkout(base, detach=True)

        try:
            self.git.replay_range(base, self.shadow_branch)
        except GitError as e:
            raise ReplayConflict(
                f"Could not stage the remaining changes: {e}. "
                f"Run 'git {self.name} --abort' to return to the original branch."
            )

    def _rollback(self, session: Session) -> None:
        """Discard everything and return to the original branch. Safe to re-run."""
        display.print_step("discarding working copy")
        self.git.reset_hard()
        self.git.discard_working_copy()

        if self.git.branch_exists(session.branch):
            self.git.checkout(session.branch)
        else:
            display.print_warning(f"Branch '{session.branch}' no longer exists")
            self.git.checkout(session.original or "HEAD", detach=True)

        if self.git.branch_exists(self.shadow_branch):
            display.print_step(f"deleting {self.shadow_branch}")
            self.git.delete_branch(self.shadow_branch)

        self.store.clear()


def create_engine(
    name: str = "rework",
    repo_path: str | None = None,
    git: GitOperations | None = None,
) -> SplitEngine:
    """Create a configured split engine."""
    if git is None:
        git = GitOperations(repo_path)

    return SplitEngine(git, SessionStore(git.git_dir, name), name)

"""Tests for the split engine."""

import pytest
from git import Repo

from conftest import commit_files, staged_files, unstage
from gitrework.engine import (
    DetachedHead,
    DirtyWorkingCopy,
    EmptySlice,
    FinishFailed,
    NoParent,
    NothingToSplit,
    ReplayConflict,
    UnexpectedCommit,
    create_engine,
)
from gitrework.git import GitError, GitOperations
from gitrework.models import VerificationResult
from gitrework.session import AlreadyInProgress, NotInProgress
from gitrework.verification import VerificationError


@pytest.fixture
def engine(temp_git_project):
    return create_engine("rework", git=GitOperations(temp_git_project))


def continue_split(engine):
    return engine.step(engine.store.load())


def new_commits(repo: Repo, base: str) -> list:
    return list(repo.iter_commits(f"{base}..main", reverse=True))


def test_begin_stages_whole_commit_on_parent(engine, repo):
    """Starting leaves HEAD detached at the parent with the full change staged."""
    original = repo.head.commit

    session = engine.begin()

    assert session.branch == "main"
    assert session.count == 1
    assert session.original == original.hexsha
    assert session.auto_stashed is False
    assert repo.head.is_detached
    assert repo.head.commit == original.parents[0]
    assert staged_files(repo) == ["a.txt", "b.txt", "c.txt"]
    assert "git/rework" in [h.name for h in repo.heads]
    assert repo.commit("git/rework") == original
    assert engine.store.exists()


def test_split_into_three_commits_in_order(engine, repo):
    """Each continue commits what is staged; the rest comes back for the next round."""
    original = repo.head.commit
    base = original.parents[0].hexsha

    engine.begin()

    unstage(repo, "b.txt", "c.txt")
    assert continue_split(engine) is None
    assert staged_files(repo) == ["b.txt", "c.txt"]
    assert repo.head.commit.hexsha == base

    unstage(repo, "c.txt")
    assert continue_split(engine) is None
    assert staged_files(repo) == ["c.txt"]

    created = continue_split(engine)

    assert [c.files for c in created] == [["a.txt"], ["b.txt"], ["c.txt"]]
    assert [c.message for c in created] == ["Rework 1", "Rework 2", "Rework 3"]

    commits = new_commits(repo, base)
    assert [c.hexsha for c in commits] == [c.commit for c in created]
    assert [sorted(c.stats.files) for c in commits] == [["a.txt"], ["b.txt"], ["c.txt"]]

    assert repo.active_branch.name == "main"
    assert repo.head.commit.tree.hexsha == original.tree.hexsha
    assert repo.git.status("--porcelain") == ""
    assert "git/rework" not in [h.name for h in repo.heads]
    assert not engine.store.exists()


def test_single_continue_with_everything_staged_finishes(engine, repo):
    original = repo.head.commit

    engine.begin()
    created = continue_split(engine)

    assert len(created) == 1
    assert created[0].files == ["a.txt", "b.txt", "c.txt"]
    assert repo.head.commit.parents[0] == original.parents[0]
    assert repo.head.commit.tree == original.tree


def test_split_inside_a_single_file(temp_git_project, repo):
    """Slices can be part of a file, not just whole files."""
    lines = [f"line {i}\n" for i in range(20)]
    commit_files(repo, {"long.txt": "".join(lines)}, "Add long file")

    lines[0] = "first change\n"
    lines[19] = "second change\n"
    original = repo.commit(commit_files(repo, {"long.txt": "".join(lines)}, "Two changes"))

    engine = create_engine("rework", git=GitOperations(temp_git_project))
    engine.begin()

    # Keep only the first change staged
    partial = ["first change\n"] + [f"line {i}\n" for i in range(1, 20)]
    (temp_git_project / "long.txt").write_text("".join(partial))
    repo.git.add("long.txt")

    assert continue_split(engine) is None
    created = continue_split(engine)

    first, second = new_commits(repo, original.parents[0].hexsha)
    assert [c.commit for c in created] == [first.hexsha, second.hexsha]
    assert first.tree["long.txt"].data_stream.read().decode() == "".join(partial)
    assert second.tree == original.tree


def test_split_new_deleted_and_binary_files(temp_git_project, repo):
    blob = bytes(range(256)) * 4
    original = repo.commit(
        commit_files(
            repo,
            {"c.txt": None, "new.txt": "brand new\n", "image.bin": blob},
            "Mixed change",
        )
    )

    engine = create_engine("rework", git=GitOperations(temp_git_project))
    engine.begin()
    assert staged_files(repo) == ["c.txt", "image.bin", "new.txt"]

    unstage(repo, "new.txt", "image.bin")
    assert continue_split(engine) is None
    assert staged_files(repo) == ["image.bin", "new.txt"]

    unstage(repo, "new.txt")
    assert continue_split(engine) is None
    created = continue_split(engine)

    assert [c.files for c in created] == [["c.txt"], ["image.bin"], ["new.txt"]]
    assert repo.head.commit.tree == original.tree
    assert (temp_git_project / "image.bin").read_bytes() == blob
    assert not (temp_git_project / "c.txt").exists()


def test_begin_twice_fails_and_keeps_session(engine, repo):
    engine.begin()
    unstage(repo, "c.txt")
    continue_split(engine)
    before = engine.store.load()

    with pytest.raises(AlreadyInProgress, match="main"):
        engine.begin()

    assert engine.store.load() == before


def test_begin_on_root_commit_fails(temp_git_project):
    root_path = temp_git_project / "root"
    root_path.mkdir()
    root_repo = Repo.init(root_path)
    with root_repo.config_writer() as config:
        config.set_value("user", "name", "Test User")
        config.set_value("user", "email", "test@example.com")
    commit_files(root_repo, {"only.txt": "only\n"}, "Root")
    tip = root_repo.head.commit.hexsha

    engine = create_engine("rework", git=GitOperations(root_path))
    with pytest.raises(NoParent):
        engine.begin()

    assert root_repo.head.commit.hexsha == tip
    assert not root_repo.head.is_detached
    assert not engine.store.exists()
    assert "git/rework" not in [h.name for h in root_repo.heads]


def test_begin_on_detached_head_fails(engine, repo):
    repo.git.checkout("-q", "--detach", "HEAD")

    with pytest.raises(DetachedHead):
        engine.begin()

    assert not engine.store.exists()


def test_begin_on_empty_commit_fails(engine, repo):
    repo.git.commit("-q", "--allow-empty", "-m", "Nothing")

    with pytest.raises(NothingToSplit):
        engine.begin()

    assert not engine.store.exists()


def test_begin_with_uncommitted_changes_fails(engine, repo, temp_git_project):
    (temp_git_project / "a.txt").write_text("work in progress\n")

    with pytest.raises(DirtyWorkingCopy):
        engine.begin()

    assert not engine.store.exists()
    assert repo.active_branch.name == "main"
    assert (temp_git_project / "a.txt").read_text() == "work in progress\n"


def test_untracked_files_count_as_uncommitted(engine, temp_git_project):
    (temp_git_project / "notes.txt").write_text("todo\n")

    with pytest.raises(DirtyWorkingCopy):
        engine.begin()


def test_autostash_is_restored_after_finish(engine, repo, temp_git_project):
    (temp_git_project / "notes.txt").write_text("todo\n")

    session = engine.begin(autostash=True)
    assert session.auto_stashed is True
    assert not (temp_git_project / "notes.txt").exists()
    assert staged_files(repo) == ["a.txt", "b.txt", "c.txt"]

    continue_split(engine)

    assert (temp_git_project / "notes.txt").read_text() == "todo\n"
    assert repo.git.stash("list") == ""


def test_rebase_autostash_config_allows_dirty_start(engine, repo, temp_git_project):
    with repo.config_writer() as config:
        config.set_value("rebase", "autoStash", "true")
    (temp_git_project / "b.txt").write_text("local edit\n")

    session = engine.begin()

    assert session.auto_stashed is True


def test_abort_keeps_autostash(engine, repo, temp_git_project):
    original = repo.head.commit
    (temp_git_project / "notes.txt").write_text("todo\n")
    engine.begin(autostash=True)

    session = engine.abort(engine.store.load())

    assert session.auto_stashed is True
    assert repo.active_branch.name == "main"
    assert repo.head.commit == original
    assert not (temp_git_project / "notes.txt").exists()
    assert len(repo.git.stash("list").splitlines()) == 1


def test_continue_with_nothing_staged_changes_nothing(engine, repo, temp_git_project):
    engine.begin()
    repo.git.reset("-q")

    with pytest.raises(EmptySlice):
        continue_split(engine)

    assert engine.store.load().count == 1
    assert (temp_git_project / "a.txt").read_text() == "alpha 2\n"
    assert repo.commit("git/rework") == repo.commit("main")


def test_continue_without_session_fails(engine):
    with pytest.raises(NotInProgress):
        engine.step(None)


def test_abort_mid_split_restores_branch(engine, repo):
    original = repo.head.commit
    engine.begin()
    unstage(repo, "b.txt")
    continue_split(engine)

    engine.abort(engine.store.load())

    assert repo.active_branch.name == "main"
    assert repo.head.commit == original
    assert repo.git.status("--porcelain") == ""
    assert "git/rework" not in [h.name for h in repo.heads]
    assert not engine.store.exists()


def test_abort_twice_fails_second_time(engine, repo):
    engine.begin()
    engine.abort(engine.store.load())
    head = repo.head.commit

    with pytest.raises(NotInProgress):
        engine.abort(engine.store.load())

    assert repo.head.commit == head
    assert repo.active_branch.name == "main"


def test_abort_tolerates_missing_shadow_branch(engine, repo):
    original = repo.head.commit
    engine.begin()
    repo.git.branch("-D", "git/rework")

    engine.abort(engine.store.load())

    assert repo.active_branch.name == "main"
    assert repo.head.commit == original
    assert not engine.store.exists()


def test_abort_from_shadow_branch_after_crash(engine, repo):
    """A step interrupted while on the shadow branch can still be aborted."""
    original = repo.head.commit
    engine.begin()
    repo.git.checkout("-q", "-f", "git/rework")

    engine.abort(engine.store.load())

    assert repo.active_branch.name == "main"
    assert repo.head.commit == original
    assert "git/rework" not in [h.name for h in repo.heads]


def test_direct_commit_is_detected_and_rolled_back(engine, repo):
    original = repo.head.commit
    engine.begin()
    unstage(repo, "c.txt")
    repo.git.commit("-q", "-m", "Committed by hand")

    with pytest.raises(UnexpectedCommit):
        continue_split(engine)

    assert repo.active_branch.name == "main"
    assert repo.head.commit == original
    assert repo.git.status("--porcelain") == ""
    assert "git/rework" not in [h.name for h in repo.heads]
    assert not engine.store.exists()


def test_foreign_staged_content_is_rejected(engine, repo, temp_git_project):
    """Staging content that is not part of the commit does not advance the split."""
    engine.begin()
    (temp_git_project / "a.txt").write_text("something else entirely\n")
    repo.git.add("a.txt")

    with pytest.raises(ReplayConflict):
        continue_split(engine)

    session = engine.store.load()
    assert session.count == 1
    assert repo.head.is_detached
    assert repo.head.commit == repo.commit("main").parents[0]
    assert staged_files(repo) == ["a.txt", "b.txt", "c.txt"]
    assert repo.commit("git/rework") == repo.commit("main")


def test_status_reports_progress(engine, repo):
    assert engine.status().in_progress is False

    engine.begin()
    report = engine.status()
    assert report.in_progress is True
    assert report.branch == "main"
    assert report.tip == repo.git.rev_parse("--short", "main")
    assert report.slices_extracted == 0

    unstage(repo, "c.txt")
    continue_split(engine)
    assert engine.status().slices_extracted == 1


def test_split_changes_one_line_apart(temp_git_project, repo):
    """Changes with a single unchanged line between them can go to separate commits."""
    commit_files(repo, {"f.txt": "one\ntwo\nthree\nfour\nfive\n"}, "Add f")
    original = repo.commit(
        commit_files(repo, {"f.txt": "one\nTWO\nthree\nFOUR\nfive\n"}, "Change two lines")
    )
    base = original.parents[0].hexsha

    engine = create_engine("rework", git=GitOperations(temp_git_project))
    engine.begin()

    (temp_git_project / "f.txt").write_text("one\nTWO\nthree\nfour\nfive\n")
    repo.git.add("f.txt")

    assert continue_split(engine) is None
    assert "+FOUR" in repo.git.diff("--cached")
    created = continue_split(engine)

    first, second = new_commits(repo, base)
    assert [c.commit for c in created] == [first.hexsha, second.hexsha]
    assert first.tree["f.txt"].data_stream.read().decode() == "one\nTWO\nthree\nfour\nfive\n"
    assert second.tree == original.tree


def test_failed_finish_can_be_retried(engine, repo, temp_git_project):
    """A hook rejecting a replacement commit leaves a session that --continue completes."""
    original = repo.head.commit
    base = original.parents[0]
    engine.begin()
    unstage(repo, "c.txt")
    assert continue_split(engine) is None

    hook = temp_git_project / ".git" / "hooks" / "pre-commit"
    hook.parent.mkdir(exist_ok=True)
    hook.write_text("#!/bin/sh\nexit 1\n")
    hook.chmod(0o755)

    with pytest.raises(FinishFailed, match="--continue"):
        continue_split(engine)

    assert repo.commit("main") == original
    assert repo.head.is_detached
    assert repo.head.commit == base
    assert repo.git.status("--porcelain") == ""
    assert engine.store.load().count == 3

    hook.unlink()
    created = continue_split(engine)

    assert [c.files for c in created] == [["a.txt", "b.txt"], ["c.txt"]]
    assert repo.active_branch.name == "main"
    assert repo.head.commit.tree == original.tree
    assert [c.hexsha for c in new_commits(repo, base.hexsha)] == [c.commit for c in created]
    assert not engine.store.exists()


def test_failed_verification_leaves_branch_untouched(engine, repo, monkeypatch):
    original = repo.head.commit
    engine.begin()

    def mismatch(original_ref, split_tip_ref):
        return VerificationResult(
            passed=False,
            original_hash="0" * 40,
            final_hash="1" * 40,
            differences=[{"file": "a.txt", "description": "content differs"}],
        )

    monkeypatch.setattr(engine.verifier, "verify_split", mismatch)

    with pytest.raises(VerificationError, match="left untouched"):
        continue_split(engine)

    assert repo.commit("main") == original
    assert engine.store.exists()

    engine.abort(engine.store.load())

    assert repo.active_branch.name == "main"
    assert repo.head.commit == original
    assert "git/rework" not in [h.name for h in repo.heads]


def test_remaining_changes_that_cannot_be_staged(engine, repo, monkeypatch):
    original = repo.head.commit
    engine.begin()
    unstage(repo, "c.txt")

    def fail(exclude, include):
        raise GitError("patch does not apply")

    monkeypatch.setattr(engine.git, "replay_range", fail)

    with pytest.raises(ReplayConflict, match="--abort"):
        continue_split(engine)

    assert engine.store.load().count == 2
    assert repo.commit("main") == original

    engine.abort(engine.store.load())

    assert repo.active_branch.name == "main"
    assert repo.head.commit == original


def test_abort_with_damaged_session_record(engine, repo):
    original = repo.head.commit
    engine.begin()
    unstage(repo, "c.txt")
    continue_split(engine)
    engine.store.path.write_text("{not json")

    assert engine.abort_damaged() == "main"

    assert repo.active_branch.name == "main"
    assert repo.head.commit == original
    assert repo.git.status("--porcelain") == ""
    assert "git/rework" not in [h.name for h in repo.heads]
    assert not engine.store.exists()

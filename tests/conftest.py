"""Shared fixtures: throwaway git repositories."""

import tempfile
from pathlib import Path

import pytest
from git import Repo


def commit_files(repo: Repo, files: dict, message: str) -> str:
    """Write files (None deletes), stage everything and commit."""
    root = Path(repo.working_tree_dir)
    for name, content in files.items():
        path = root / name
        if content is None:
            path.unlink()
        elif isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)

    repo.git.add("-A")
    repo.git.commit("-q", "-m", message)
    return repo.head.commit.hexsha


def staged_files(repo: Repo) -> list[str]:
    return repo.git.diff("--cached", "--name-only").splitlines()


def unstage(repo: Repo, *paths: str) -> None:
    """Move paths out of the next commit, the way a user would."""
    repo.git.reset("-q", "HEAD", "--", *paths)


@pytest.fixture
def temp_git_project():
    """A repository on 'main' whose last commit changes a.txt, b.txt and c.txt."""
    with tempfile.TemporaryDirectory() as temp_dir:
        project_path = Path(temp_dir)

        repo = Repo.init(project_path)
        with repo.config_writer() as config:
            config.set_value("user", "name", "Test User")
            config.set_value("user", "email", "test@example.com")
            config.set_value("commit", "gpgsign", "false")

        commit_files(
            repo,
            {"a.txt": "alpha\n", "b.txt": "bravo\n", "c.txt": "charlie\n"},
            "Initial commit",
        )
        repo.git.branch("-M", "main")
        commit_files(
            repo,
            {"a.txt": "alpha 2\n", "b.txt": "bravo 2\n", "c.txt": "charlie 2\n"},
            "Change everything",
        )

        yield project_path


@pytest.fixture
def repo(temp_git_project):
    return Repo(temp_git_project)

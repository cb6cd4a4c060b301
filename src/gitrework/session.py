"""Session persistence for git-rework.

A split in progress is recorded as a single JSON file inside the
repository's control directory, ``<git-dir>/<name>/session.json``. The
presence of that file is what "in progress" means.
"""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from gitrework.models import Session


SESSION_FILE = "session.json"


class SessionError(Exception):
    """Session record could not be read or written."""

    pass


class AlreadyInProgress(SessionError):
    """A split is already in progress in this repository."""

    def __init__(self, branch: str, name: str = "rework"):
        self.branch = branch
        super().__init__(f"Git {name} already in progress on branch '{branch}'")


class NotInProgress(SessionError):
    """No split is in progress in this repository."""

    def __init__(self, name: str = "rework"):
        super().__init__(f"Git {name} not in progress")


def serialize_session(session: Session) -> dict[str, Any]:
    """Serialize a Session to a dict for JSON storage."""
    return {
        "branch": session.branch,
        "count": session.count,
        "stash": session.auto_stashed,
        "original": session.original,
        "original_tree_hash": session.original_tree_hash,
        "started_at": session.started_at,
    }


def deserialize_session(data: dict[str, Any]) -> Session:
    """Deserialize a Session from a dict."""
    return Session(
        branch=data["branch"],
        count=int(data.get("count", 1)),
        auto_stashed=bool(data.get("stash", False)),
        original=data.get("original", ""),
        original_tree_hash=data.get("original_tree_hash", ""),
        started_at=data.get("started_at", ""),
    )


class SessionStore:
    """Loads, saves and clears the session record of one command name."""

    def __init__(self, git_dir: str | Path, name: str = "rework"):
        self.name = name
        self.state_dir = Path(git_dir) / name
        self.path = self.state_dir / SESSION_FILE

    def exists(self) -> bool:
        return self.path.exists()

    def create(self, branch: str, **fields: Any) -> Session:
        """Start a new session record. Fails if one already exists."""
        existing = self.load()
        if existing is not None:
            raise AlreadyInProgress(existing.branch, self.name)

        fields.setdefault("started_at", datetime.now().isoformat(timespec="seconds"))
        session = Session(branch=branch, **fields)
        self.save(session)
        return session

    def load(self) -> Session | None:
        """Load the session record, or None when no split is in progress."""
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return deserialize_session(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise SessionError(f"Corrupt session record {self.path}: {e}")

    def save(self, session: Session) -> Path:
        """Write the record to a temporary file, then move it into place."""
        self.state_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=self.state_dir, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(serialize_session(session), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        return self.path

    def clear(self) -> None:
        """Remove the record and the state directory. Safe to call twice."""
        self.path.unlink(missing_ok=True)

        if self.state_dir.is_dir():
            for leftover in self.state_dir.glob(".session-*.tmp"):
                leftover.unlink(missing_ok=True)
            try:
                self.state_dir.rmdir()
            except OSError:
                # Not ours to delete if something else lives there
                pass

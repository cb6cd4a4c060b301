"""Data models for git-rework."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Session:
    """Persistent state of one split in progress."""

    branch: str
    count: int = 1
    auto_stashed: bool = False

    # Snapshot of the commit being split, taken at start
    original: str = ""
    original_tree_hash: str = ""
    started_at: str = ""

    @property
    def slices_extracted(self) -> int:
        return self.count - 1


@dataclass
class StatusReport:
    """Read-only view of the split state of a repository."""

    in_progress: bool
    branch: str | None = None
    tip: str | None = None
    slices_extracted: int = 0
    started_at: str = ""


@dataclass
class SliceCommit:
    """A replacement commit created when a split finishes."""

    commit: str
    message: str
    files: list[str] = field(default_factory=list)


@dataclass
class VerificationResult:
    """Result of hash verification."""

    passed: bool
    original_hash: str
    final_hash: str
    differences: list[dict[str, Any]] = field(default_factory=list)

    @property
    def diagnosis(self) -> str:
        """Get a human-readable diagnosis of the verification failure."""
        if self.passed:
            return "Verification passed - trees match"

        if not self.differences:
            return f"Tree mismatch: expected {self.original_hash}, got {self.final_hash}"

        lines = ["Tree mismatch detected:"]
        for diff in self.differences:
            lines.append(f"  {diff.get('file', 'unknown')}: {diff.get('description', 'unknown difference')}")
        return "\n".join(lines)

"""Tree verification for git-rework.

A finished split must reproduce the original commit's tree exactly:
Tree(original commit) == Tree(last replacement commit).
"""

from gitrework.git import GitOperations, GitError
from gitrework.models import VerificationResult


STATUS_DESCRIPTIONS = {
    "A": "only present after split",
    "D": "missing after split",
    "M": "content differs",
    "T": "file type differs",
}


class VerificationError(Exception):
    """Verification operation failed."""

    pass


class Verifier:
    """Handles tree verification for split operations."""

    def __init__(self, git: GitOperations):
        self.git = git

    def verify_split(
        self,
        original_ref: str,
        split_tip_ref: str,
    ) -> VerificationResult:
        """Verify that the split result is identical to the original."""
        try:
            original_hash = self.git.get_tree_hash(original_ref)
            final_hash = self.git.get_tree_hash(split_tip_ref)

            if original_hash == final_hash:
                return VerificationResult(
                    passed=True,
                    original_hash=original_hash,
                    final_hash=final_hash,
                )

            return VerificationResult(
                passed=False,
                original_hash=original_hash,
                final_hash=final_hash,
                differences=self._find_differences(original_ref, split_tip_ref),
            )

        except GitError as e:
            raise VerificationError(f"Failed to verify split: {e}")

    def _find_differences(self, original_ref: str, split_tip_ref: str) -> list[dict[str, str]]:
        """List the paths whose content differs between two refs."""
        return [
            {
                "file": path,
                "description": STATUS_DESCRIPTIONS.get(status, f"status {status}"),
            }
            for status, path in self.git.diff_status(original_ref, split_tip_ref)
        ]


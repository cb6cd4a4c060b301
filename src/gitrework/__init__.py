"""git-rework - split a commit into a sequence of smaller commits.

Stage what belongs in the next commit, continue, repeat until nothing
is left.
"""

__version__ = "0.1.0"

from gitrework.engine import SplitEngine, create_engine
from gitrework.models import Session, StatusReport
from gitrework.session import SessionStore

__all__ = [
    "__version__",
    "SplitEngine",
    "create_engine",
    "Session",
    "SessionStore",
    "StatusReport",
]

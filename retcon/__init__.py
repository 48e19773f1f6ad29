"""retcon — retroactively edit, delete and reorder commits in a git branch."""
from __future__ import annotations

__version__ = "0.1.0"

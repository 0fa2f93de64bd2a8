from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Ensure the repository root (parent of this package) is on ``sys.path``.

    When this file is executed directly (``python cognitive_games/__main__.py``)
    the package itself is not importable, so its parent directory is added.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


if __package__:
    # python -m cognitive_games
    from .app import run
else:
    _ensure_repo_root_on_path()
    from cognitive_games.app import run


def main() -> int:
    """Entry point for running the games from the command line."""
    return run()


if __name__ == "__main__":
    raise SystemExit(main())

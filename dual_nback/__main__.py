from __future__ import annotations

import argparse
import random
import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Put the repository root (parent of this package) on ``sys.path``.

    Needed when this file is run directly (``python dual_nback/__main__.py``)
    rather than as ``python -m dual_nback``.
    """
    pkg_dir = Path(__file__).resolve().parent
    repo_root_str = str(pkg_dir.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


try:
    from .app import run  # type: ignore[attr-defined]
    from .config import configure_logging, default_db_path
    from .persistence import SqliteHistoryStore
    from .simulation import generate_practice_history
except ImportError:
    _ensure_repo_root_on_path()
    from dual_nback.app import run  # type: ignore[attr-defined]
    from dual_nback.config import configure_logging, default_db_path
    from dual_nback.persistence import SqliteHistoryStore
    from dual_nback.simulation import generate_practice_history


def main(argv: list[str] | None = None) -> int:
    """Entry point for running the trainer from the command line."""

    parser = argparse.ArgumentParser(prog="dual-nback", description="Dual n-back trainer")
    parser.add_argument("--log-level", default=None, help="loguru level (default: $DUAL_NBACK_LOG_LEVEL or WARNING)")
    parser.add_argument("--db", type=Path, default=None, help="history database path")
    parser.add_argument("--no-history", action="store_true", help="keep finished sessions in memory only")
    parser.add_argument(
        "--seed-history",
        type=int,
        default=None,
        metavar="COUNT",
        help="store COUNT simulated practice sessions in the history database and exit",
    )
    parser.add_argument("--seed", type=int, default=None, help="random seed for --seed-history")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    if args.seed_history is not None:
        if args.seed_history < 0:
            parser.error("--seed-history must be >= 0")
        store = SqliteHistoryStore(args.db if args.db is not None else default_db_path())
        seed = args.seed if args.seed is not None else random.SystemRandom().randint(1, 2**31 - 1)
        records = generate_practice_history(store, seed=seed, count=args.seed_history)
        print(f"Stored {len(records)} practice sessions in {store.path}")
        return 0
    return run(db_path=args.db, persist=not args.no_history)


if __name__ == "__main__":
    raise SystemExit(main())

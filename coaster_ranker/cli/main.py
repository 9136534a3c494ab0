"""
Command-line interface for coaster ranking.

Usage:
    python -m coaster_ranker battle <coasters.csv> --user alice
    python -m coaster_ranker simulate <coasters.csv> --user alice -n 1000
    python -m coaster_ranker top <coasters.csv> --user alice [-n 20]
    python -m coaster_ranker wizard <coasters.csv> --user alice
    python -m coaster_ranker history <coasters.csv> --user alice [--item NAME]
    python -m coaster_ranker delete|switch <coasters.csv> <index> --user alice
    python -m coaster_ranker export <coasters.csv> --user alice [-o out.json]
    python -m coaster_ranker import <coasters.csv> <in.json> --user alice
    python -m coaster_ranker stats|close|reset <coasters.csv> --user alice
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import polars as pl

DEFAULT_DATA_DIR = Path.home() / ".coaster_ranker"


def open_session(args):
    """Build and load a session from common CLI arguments."""
    from ..data import ItemCatalog
    from ..pairing import NumpyRandom
    from ..persistence import DirectoryStore
    from ..session import RankingSession

    catalog = ItemCatalog.from_path(args.catalog)
    session = RankingSession(
        args.user,
        catalog,
        persistence=DirectoryStore(args.data_dir),
        rng=NumpyRandom(args.seed),
    )
    session.load()
    return session


def print_ranking(session, n: int) -> None:
    table = session.ranking().select(
        "rank", "name", "park", "manufacturer",
        pl.col("displayed_rating").round(1), pl.col("rating").round(1),
        pl.col("rd").round(1), "battles", "wins", "losses",
    )
    with pl.Config(tbl_rows=n, tbl_cols=-1, fmt_str_lengths=40):
        print(table.head(n))


def cmd_battle(args):
    """Interactive battles on the terminal."""
    session = open_session(args)
    print(
        f"{session}\nEnter 1 or 2 to pick a winner, d to delete the last battle, "
        "u to undo a delete, q to quit."
    )

    while True:
        pair = session.next_battle()
        if pair is None:
            print("All matchups have been played.")
            return 0
        left, right = pair
        print(f"\n[1] {left.name} ({left.park})   vs   [2] {right.name} ({right.park})")
        try:
            choice = input("> ").strip().lower()
        except EOFError:
            return 0
        if choice in ("q", "quit", "exit"):
            return 0
        if choice == "d":
            last = len(session.ledger) - 1
            print("Deleted last battle." if session.delete_history_entry(last) else "No battles yet.")
            continue
        if choice == "u":
            if not session.ledger.can_undo:
                print("Nothing to undo.")
            elif session.undo_delete():
                print("Restored last deleted battle.")
            continue
        if choice not in ("1", "2"):
            print("Please enter 1, 2, d, u or q.")
            continue

        record = session.choose_winner(int(choice) - 1)
        w = record.side(record.winner)
        print(
            f"{record.winner} wins: {w.rating_before:.1f} -> {w.rating_after:.1f} "
            f"(#{w.rank_before} -> #{w.rank_after})"
            + ("  close fight!" if record.close_fight else "")
        )


def cmd_simulate(args):
    """Simulate battles with winners drawn from the expected score."""
    session = open_session(args)

    def report(progress):
        if args.verbose or progress.exhausted:
            print(f"  {progress.completed}/{progress.requested} battles")

    played = session.simulate_battles(args.n, progress_callback=report)
    print(f"Simulated {played} battles ({session.remaining_pairs()} matchups left)")
    if args.top:
        print_ranking(session, args.top)
    return 0


def cmd_top(args):
    """Show the top N items."""
    session = open_session(args)
    print_ranking(session, args.n)
    return 0


def cmd_wizard(args):
    """Recompute all ratings from the battle history."""
    session = open_session(args)
    if not len(session.ledger):
        print("No battle history to recalculate.")
        return 1
    result = session.run_wizard(max_iterations=args.max_iterations)
    print(
        f"Wizard complete: {result.iterations} iteration(s), "
        f"{result.total_changes} rank change(s)"
        + ("" if result.converged else " (not converged)")
    )
    return 0


def cmd_history(args):
    """List battle history."""
    session = open_session(args)
    df = session.ledger.to_dataframe()
    if args.item:
        df = df.filter((pl.col("left") == args.item) | (pl.col("right") == args.item))
    with pl.Config(tbl_rows=args.n, tbl_cols=-1):
        print(df.tail(args.n))
    return 0


def cmd_delete(args):
    session = open_session(args)
    if not session.delete_history_entry(args.index):
        print(f"No history entry {args.index}")
        return 1
    print(f"Deleted battle {args.index}")
    return 0


def cmd_switch(args):
    session = open_session(args)
    if not session.switch_history_winner(args.index):
        print(f"No history entry {args.index}")
        return 1
    entry = session.ledger[args.index]
    print(f"Battle {args.index}: {entry.winner} now beats {entry.loser}")
    return 0


def cmd_export(args):
    session = open_session(args)
    text = session.export_json()
    if args.output:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"Exported to {args.output}")
    else:
        print(text)
    return 0


def cmd_import(args):
    session = open_session(args)
    try:
        session.import_data(Path(args.file).read_text(encoding="utf-8"))
    except ValueError as e:
        print(f"Import failed: {e}")
        return 1
    print(f"Imported {len(session.ledger)} battles for {session.user}")
    return 0


def cmd_reset(args):
    session = open_session(args)
    session.reset_ranking()
    print(f"Ranking reset for {session.user}")
    return 0


def cmd_stats(args):
    session = open_session(args)
    stats = session.game_stats()
    for field, value in vars(stats).items():
        print(f"{field:>22}: {value}")
    return 0


def cmd_close(args):
    session = open_session(args)
    pair = session.find_close_matchup()
    if pair is None:
        print("No suitable close matchup available")
        return 1
    print(f"{pair[0].name} vs {pair[1].name}")
    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Coaster Ranker CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Common arguments
    def add_common_args(p):
        p.add_argument("catalog", help="Path to coaster list (CSV or parquet)")
        p.add_argument("--user", "-u", required=True, help="User name")
        p.add_argument("--data-dir", "-d", default=str(DEFAULT_DATA_DIR),
                       help=f"Directory for saved state (default: {DEFAULT_DATA_DIR})")
        p.add_argument("--seed", type=int, default=None,
                       help="Random seed for pairing and simulation")
        p.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    battle_parser = subparsers.add_parser("battle", help="Battle interactively")
    add_common_args(battle_parser)

    simulate_parser = subparsers.add_parser("simulate", help="Simulate battles")
    add_common_args(simulate_parser)
    simulate_parser.add_argument("-n", type=int, default=100,
                                 help="Number of battles (default: 100)")
    simulate_parser.add_argument("--top", "-t", type=int, default=10,
                                 help="Show top N items afterwards (default: 10)")

    top_parser = subparsers.add_parser("top", help="Show top N items")
    add_common_args(top_parser)
    top_parser.add_argument("-n", type=int, default=10, help="Number of items")

    wizard_parser = subparsers.add_parser("wizard", help="Recompute ratings from history")
    add_common_args(wizard_parser)
    wizard_parser.add_argument("--max-iterations", type=int, default=100,
                               help="Maximum number of passes (default: 100)")

    history_parser = subparsers.add_parser("history", help="Show battle history")
    add_common_args(history_parser)
    history_parser.add_argument("-n", type=int, default=20, help="Number of battles")
    history_parser.add_argument("--item", help="Only battles involving this item")

    delete_parser = subparsers.add_parser("delete", help="Delete a history entry")
    add_common_args(delete_parser)
    delete_parser.add_argument("index", type=int, help="History index")

    switch_parser = subparsers.add_parser("switch", help="Switch the winner of a battle")
    add_common_args(switch_parser)
    switch_parser.add_argument("index", type=int, help="History index")

    export_parser = subparsers.add_parser("export", help="Export user data as JSON")
    add_common_args(export_parser)
    export_parser.add_argument("--output", "-o", help="Write to file instead of stdout")

    import_parser = subparsers.add_parser("import", help="Import user data from JSON")
    add_common_args(import_parser)
    import_parser.add_argument("file", help="Exported JSON file")

    reset_parser = subparsers.add_parser("reset", help="Reset ratings and history")
    add_common_args(reset_parser)

    stats_parser = subparsers.add_parser("stats", help="Summary statistics")
    add_common_args(stats_parser)

    close_parser = subparsers.add_parser("close", help="Suggest a close matchup")
    add_common_args(close_parser)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "battle": cmd_battle,
        "simulate": cmd_simulate,
        "top": cmd_top,
        "wizard": cmd_wizard,
        "history": cmd_history,
        "delete": cmd_delete,
        "switch": cmd_switch,
        "export": cmd_export,
        "import": cmd_import,
        "reset": cmd_reset,
        "stats": cmd_stats,
        "close": cmd_close,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())

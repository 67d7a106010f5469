"""
`hierarag` command line.

Commands
--------
hierarag hierarchy <root>                       -- build and summarise a hierarchy
hierarag hierarchy <root> --json --nodes        -- dump every node as JSON
hierarag index <collection> --codebase PATH     -- index a source tree
hierarag index <collection> --doc README.md --doc api.yaml
hierarag index <collection> --reset ...         -- clear the collection first
hierarag search "<query>"                       -- hybrid search
hierarag search "<query>" --collection C --type code --limit 5 --threshold 0.2
hierarag status <collection>                    -- record counts
hierarag clear <collection>                     -- delete the collection

Global options: ``--config PATH``, ``--db PATH``, ``--verbose``.

Exit codes: 0 success, 1 failure, 2 invalid arguments or configuration.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from tqdm import tqdm

from . import __version__
from .api import HierarchicalIndex
from .config import Config
from .errors import HierarAGError, ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure_logging(level_name: str, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, level_name, logging.WARNING)
    if not logging.root.handlers:
        logging.basicConfig(
            level=level,
            format="%(levelname)s  %(name)s  %(message)s",
        )
    else:
        logging.root.setLevel(level)


def _open_index(args: argparse.Namespace) -> HierarchicalIndex:
    config = Config.load(args.config)
    if args.db:
        config.DB_PATH = args.db
    _configure_logging(config.LOG_LEVEL, args.verbose)
    return HierarchicalIndex(config)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_hierarchy(args: argparse.Namespace) -> None:
    with _open_index(args) as index:
        summary = index.build_hierarchy(args.root, include_nodes=args.nodes)
    if args.json:
        _print_json(summary)
        return
    print(f"\nHierarchy of {summary['root_path']}")
    print("=" * 40)
    print(f"  {'root id':<12} {summary['root_id']}")
    print(f"  {'nodes':<12} {summary['node_count']}")
    for kind, count in sorted(summary["by_kind"].items()):
        print(f"  {kind:<12} {count}")
    print()


def _cmd_index(args: argparse.Namespace) -> None:
    if not args.codebase and not args.doc:
        logger.info("No sources given; only the similarity graph will be rebuilt")

    with _open_index(args) as index:
        pbar = tqdm(total=None, unit="item", desc="Indexing")

        def _progress(current: int, total: int, label: str) -> None:
            if pbar.total != total:
                pbar.total = total
                pbar.n = current - 1
                pbar.refresh()
            pbar.set_postfix_str(os.path.basename(label), refresh=False)
            pbar.update(1)

        try:
            summary = index.index_collection(
                args.collection,
                codebase_path=args.codebase,
                external_doc_paths=args.doc,
                reset=args.reset,
                progress_callback=_progress,
            )
        finally:
            pbar.close()

    print(
        f"\nIndex complete ({summary['collection_id']}):\n"
        f"  Nodes:      {summary['node_count']}\n"
        f"  Vectors:    {summary['vector_count']}\n"
        f"  Structural: {summary['structural_count']}\n"
        f"  Documents:  {summary['document_count']}\n"
        f"  Edges:      {summary['edge_count']}\n"
        f"  Errors:     {summary['error_count']}\n"
        f"  Time:       {summary['elapsed_seconds']:.1f}s"
    )


def _cmd_search(args: argparse.Namespace) -> None:
    with _open_index(args) as index:
        results = index.search(
            args.query,
            collection_id=args.collection,
            type=args.type,
            limit=args.limit,
            threshold=args.threshold,
        )
    if args.json:
        _print_json(results)
        return
    if not results:
        print(f"  (no results for: {args.query})")
        return
    print(f"\nResults for '{args.query}'  [{len(results)} result(s)]")
    print("-" * 60)
    for r in results:
        meta = r["metadata"]
        location = meta.get("path") or meta.get("source") or ""
        line_range = meta.get("line_range")
        if line_range:
            location += f":{line_range[0]}-{line_range[1]}"
        name = "/".join(meta.get("hierarchy") or [])[-48:]
        print(f"  {r['score']:.3f}  {r['kind']:<12}  {name:<48}  {location}")
        print(f"         {', '.join(meta.get('relevance', []))}")


def _cmd_status(args: argparse.Namespace) -> None:
    with _open_index(args) as index:
        stats = index.status(args.collection)
    print(f"\nCollection {stats['collection_id']}")
    print("=" * 40)
    print(f"  {'vectors':<20} {stats['vectors']}")
    for kind, count in sorted(stats["by_kind"].items()):
        print(f"    {kind:<18} {count}")
    print(f"  {'structural':<20} {stats['structural']}")
    print(f"  {'edges':<20} {stats['edges']}")
    print()


def _cmd_clear(args: argparse.Namespace) -> None:
    with _open_index(args) as index:
        removed = index.clear(args.collection)
    print(
        f"Cleared {args.collection}: {removed['vectors']} vectors, "
        f"{removed['structural']} structural, {removed['edges']} edges"
    )


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hierarag",
        description="Hierarchical code indexing and hybrid retrieval",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", default=None, help="Path to a .hierarag.yaml file")
    parser.add_argument("--db", default=None, help="SQLite database path (overrides config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- hierarchy ---
    hier_p = subparsers.add_parser("hierarchy", help="Build and summarise a hierarchy")
    hier_p.add_argument("root", help="Root directory")
    hier_p.add_argument("--json", action="store_true", help="Print JSON")
    hier_p.add_argument("--nodes", action="store_true", help="Include every node (with --json)")
    hier_p.set_defaults(func=_cmd_hierarchy)

    # --- index ---
    index_p = subparsers.add_parser("index", help="Index a codebase and/or documents")
    index_p.add_argument("collection", help="Collection id")
    index_p.add_argument("--codebase", default=None, help="Source tree root")
    index_p.add_argument(
        "--doc", action="append", default=[], metavar="PATH",
        help="External document (repeatable)",
    )
    index_p.add_argument("--reset", action="store_true", help="Clear the collection first")
    index_p.set_defaults(func=_cmd_index)

    # --- search ---
    search_p = subparsers.add_parser("search", help="Hybrid search")
    search_p.add_argument("query", help="Search query")
    search_p.add_argument("--collection", default=None, help="Restrict to one collection")
    search_p.add_argument(
        "--type", default=None,
        help="codebase | external_doc | reference (aliases: code, document, guidance, all)",
    )
    search_p.add_argument("--limit", type=int, default=None, help="Maximum results")
    search_p.add_argument("--threshold", type=float, default=None, help="Minimum score (0-1)")
    search_p.add_argument("--json", action="store_true", help="Print JSON")
    search_p.set_defaults(func=_cmd_search)

    # --- status / clear ---
    status_p = subparsers.add_parser("status", help="Record counts of a collection")
    status_p.add_argument("collection", help="Collection id")
    status_p.set_defaults(func=_cmd_status)

    clear_p = subparsers.add_parser("clear", help="Delete every record of a collection")
    clear_p.add_argument("collection", help="Collection id")
    clear_p.set_defaults(func=_cmd_clear)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for the ``hierarag`` command.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        args.func(args)
    except ValidationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(2)
    except HierarAGError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

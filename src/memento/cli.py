"""CLI commands for memory management.

Provides subcommands for listing, inspecting, deleting, searching and
maintaining stored memories.
"""

import argparse
import asyncio
import sys

from .manager import MemoryManager, create_memory_manager
from .models import MemoryCategory, MemoryRecord


def _get_manager() -> MemoryManager:
    """Create a MemoryManager with config loaded from the environment."""
    return create_memory_manager()


def _close(manager: MemoryManager) -> None:
    manager.store.close()
    close_index = getattr(manager.index, "close", None)
    if close_index is not None:
        close_index()


def _format_category(category: MemoryCategory) -> str:
    """Format category for display with color hints."""
    colors = {
        MemoryCategory.FACTUAL: "\033[34m",  # blue
        MemoryCategory.PREFERENCE: "\033[32m",  # green
        MemoryCategory.RELATIONSHIP: "\033[35m",  # magenta
        MemoryCategory.TEMPORAL: "\033[33m",  # yellow
    }
    reset = "\033[0m"
    return f"{colors.get(category, '')}{category.value}{reset}"


def _truncate(text: str, width: int) -> str:
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


def _print_record(record: MemoryRecord) -> None:
    print(f"\nMemory: {record.id}")
    print("-" * 40)
    print(f"Content: {record.content}")
    print(f"Category: {_format_category(record.category)}")
    print(f"Importance: {record.importance:.2f}")
    print(f"Source: {record.source_type}")
    print(f"Created: {record.created_at:%Y-%m-%d %H:%M:%S}")
    print(f"Last accessed: {record.last_accessed:%Y-%m-%d %H:%M:%S}")
    print(f"Access count: {record.access_count}")
    if record.expires_at:
        print(f"Expires: {record.expires_at:%Y-%m-%d %H:%M:%S}")
    if record.superseded_by:
        print(f"Superseded by: {record.superseded_by}")


def cmd_list(args: argparse.Namespace) -> int:
    """List stored memories."""
    category = None
    if args.category:
        try:
            category = MemoryCategory(args.category)
        except ValueError:
            print(f"Error: Unknown category '{args.category}'.")
            return 1

    manager = _get_manager()
    try:
        records = manager.list_memories(
            category, limit=args.limit, offset=args.offset, include_superseded=args.all
        )
    finally:
        _close(manager)

    if not records:
        print("No memories found.")
        return 0

    print(f"\n{'ID':<36}  {'Category':<12}  {'Imp.':<5}  Content")
    print("-" * 90)
    for record in records:
        category_label = _format_category(record.category)
        content = _truncate(record.content, 40)
        if record.superseded_by:
            content = f"(superseded) {content}"
        print(f"{record.id:<36}  {category_label:<21}  {record.importance:<5.2f}  {content}")

    print(f"\nShown: {len(records)} memory(ies)")
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Show a single memory in detail."""
    manager = _get_manager()
    try:
        record = manager.get_memory(args.id)
    finally:
        _close(manager)

    if record is None:
        print(f"Error: Memory '{args.id}' not found.")
        return 1

    _print_record(record)
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a memory and its vector."""
    manager = _get_manager()
    try:
        deleted = asyncio.run(manager.delete_memory(args.id))
    finally:
        _close(manager)

    if not deleted:
        print(f"Error: Memory '{args.id}' not found.")
        return 1

    print(f"Deleted memory: {args.id}")
    return 0


def cmd_clear(args: argparse.Namespace) -> int:
    """Delete every stored memory."""
    if not args.yes:
        print("Error: This deletes all memories. Re-run with --yes to confirm.")
        return 1

    manager = _get_manager()
    try:
        count = asyncio.run(manager.delete_all_memories())
    finally:
        _close(manager)

    print(f"Deleted {count} memory(ies)")
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    """Search memories relevant to a query."""
    manager = _get_manager()
    try:
        context = asyncio.run(_search(manager, args.query, args.limit, args.min_score))
    finally:
        _close(manager)

    if not context.memories:
        print("No relevant memories found.")
        return 0

    print(f"\n{'Score':<6}  {'Sem.':<5}  {'Category':<12}  Content")
    print("-" * 80)
    for memory in context.memories:
        category_label = _format_category(memory.category)
        print(
            f"{memory.score:<6.3f}  {memory.semantic_score:<5.2f}  "
            f"{category_label:<21}  {_truncate(memory.content, 50)}"
        )

    if args.prompt:
        print(f"\n{context.text}")
    return 0


async def _search(manager: MemoryManager, query: str, limit: int, min_score: float):
    context = await manager.query_memories(query, limit=limit, min_score=min_score)
    await manager.retriever.drain()
    return context


def cmd_maintain(args: argparse.Namespace) -> int:
    """Run memory maintenance once."""
    manager = _get_manager()
    try:
        result = asyncio.run(
            manager.run_maintenance(
                decay_factor=args.decay_factor,
                min_importance=args.min_importance,
                stale_days=args.stale_days,
            )
        )
    finally:
        _close(manager)

    print("\nMaintenance complete")
    print("-" * 40)
    print(f"Expired: {result.expired_cleaned}")
    print(f"Decayed: {result.decayed}")
    print(f"Pruned: {result.pruned}")
    print(f"History purged: {result.history_purged}")
    if result.errors:
        print(f"Failed steps: {', '.join(result.errors)}")
        return 1
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the memory CLI."""
    parser = argparse.ArgumentParser(
        prog="memento",
        description="Manage conversational memories",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    # list command
    list_parser = subparsers.add_parser("list", help="List stored memories")
    list_parser.add_argument(
        "-c", "--category",
        choices=[c.value for c in MemoryCategory],
        help="Only show memories of this category",
    )
    list_parser.add_argument("-n", "--limit", type=int, default=50, help="Maximum rows")
    list_parser.add_argument("--offset", type=int, default=0, help="Rows to skip")
    list_parser.add_argument(
        "-a", "--all",
        action="store_true",
        help="Include superseded memories",
    )

    # show command
    show_parser = subparsers.add_parser("show", help="Show a memory in detail")
    show_parser.add_argument("id", help="Memory id")

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a memory")
    delete_parser.add_argument("id", help="Memory id")

    # clear command
    clear_parser = subparsers.add_parser("clear", help="Delete all memories")
    clear_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Confirm deleting every memory",
    )

    # search command
    search_parser = subparsers.add_parser("search", help="Search relevant memories")
    search_parser.add_argument("query", help="Text to find memories for")
    search_parser.add_argument("-n", "--limit", type=int, default=5, help="Maximum results")
    search_parser.add_argument(
        "--min-score",
        type=float,
        default=0.4,
        help="Minimum semantic similarity",
    )
    search_parser.add_argument(
        "-p", "--prompt",
        action="store_true",
        help="Also print the formatted prompt block",
    )

    # maintain command
    maintain_parser = subparsers.add_parser("maintain", help="Run maintenance now")
    maintain_parser.add_argument("--decay-factor", type=float, help="Importance multiplier")
    maintain_parser.add_argument(
        "--min-importance",
        type=float,
        help="Prune stale memories below this importance",
    )
    maintain_parser.add_argument(
        "--stale-days",
        type=int,
        help="Days without access before a memory is stale",
    )

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the memory CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "list": cmd_list,
        "show": cmd_show,
        "delete": cmd_delete,
        "clear": cmd_clear,
        "search": cmd_search,
        "maintain": cmd_maintain,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(run_cli())

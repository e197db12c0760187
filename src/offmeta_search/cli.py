"""
OffMeta Search CLI
Translate natural-language card searches into Scryfall syntax from the terminal.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from .config import LOG_LEVEL
from .events import SearchEventEmitter, SearchEventType
from .history import SearchHistory
from .models.search import FilterState, TranslationResult
from .orchestrator import SearchHandler
from .tools.query_validator import build_filter_query, validate
from .tools.scryfall_api import ScryfallAPI

console = Console()

NOTICE_STYLES = {
    "success": "green",
    "timeout_degraded": "yellow",
    "generic_degraded": "yellow",
    "rate_limited": "red",
}


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


class OffMetaCLI:
    """Terminal front end over SearchHandler"""

    def __init__(self, show_cards: bool = False, filters: Optional[FilterState] = None,
                 history: Optional[SearchHistory] = None, translator=None):
        self.show_cards = show_cards
        self.events = SearchEventEmitter()
        self.history = history if history is not None else SearchHistory()
        self.last_result: Optional[TranslationResult] = None
        self.handler = SearchHandler(
            translator=translator,
            on_complete=self._on_complete,
            history=self.history,
            event_emitter=self.events,
            filters=filters,
        )
        self.scryfall = ScryfallAPI() if show_cards else None
        self._setup_event_handlers()

    def _setup_event_handlers(self):
        def on_notice(data):
            style = NOTICE_STYLES.get(data.get("notice"), "white")
            console.print(f"[{style}]{data['title']}:[/{style}] {data['description']} [dim]({data['query_preview']})[/dim]")

        for event_type in (SearchEventType.SEARCH_SUCCEEDED, SearchEventType.SEARCH_TIMED_OUT,
                           SearchEventType.SEARCH_DEGRADED, SearchEventType.RATE_LIMITED):
            self.events.on(event_type, on_notice)

        def on_search_started(data):
            console.print(f"[dim]Translating:[/dim] {data['query']}")

        self.events.on(SearchEventType.SEARCH_STARTED, on_search_started)

    def _on_complete(self, result: TranslationResult):
        self.last_result = result

    def show_translation(self, result: TranslationResult):
        lines = Text()
        lines.append(result.scryfall_query, style="bold cyan")
        if result.explanation:
            lines.append(f"\n{result.explanation.readable}")
            for assumption in result.explanation.assumptions:
                lines.append(f"\n  - {assumption}", style="dim")
            lines.append(f"\nConfidence: {result.explanation.confidence:.0%}", style="dim")
        for issue in result.validation_issues or []:
            lines.append(f"\n! {issue}", style="yellow")

        source = "cache" if result.from_cache else result.source
        console.print(Panel(lines, title=f"Scryfall query [{source}]", border_style="blue"))

        report = validate(result.scryfall_query)
        for issue in report.issues:
            console.print(f"[yellow]Note:[/yellow] {issue}")

    def show_cards_table(self, query: str):
        result = self.scryfall.search_cards(query, max_results=20)
        if result.error:
            console.print(f"[red]Card search failed: {result.error}[/red]")
            return
        if not result.cards:
            console.print("[yellow]No matching cards found.[/yellow]")
            return

        table = Table(title=f"{result.total_cards} cards", box=box.SIMPLE_HEAVY, header_style="bold green")
        table.add_column("Card Name", style="bold white")
        table.add_column("Cost", justify="center", style="magenta")
        table.add_column("Type", style="blue")
        table.add_column("USD", justify="right", style="yellow")

        for card in result.cards:
            name_cell = Text(card.name, style=f"link {card.scryfall_uri}") if card.scryfall_uri else Text(card.name)
            table.add_row(name_cell, card.mana_cost or "", card.type_line, card.usd_price or "")
        console.print(table)

    async def search(self, query: str, bypass_cache: bool = False) -> Optional[TranslationResult]:
        self.last_result = None
        await self.handler.handle_search(query, bypass_cache=bypass_cache)
        result = self.last_result
        if result is None:
            return None

        self.show_translation(result)
        if self.show_cards:
            filter_query = build_filter_query(self.handler.filters)
            full_query = f"{result.scryfall_query} {filter_query}".strip()
            await asyncio.to_thread(self.show_cards_table, full_query)
        return result

    async def interactive(self):
        console.print("Type a card search in plain English, or 'quit' to exit.\n")
        while True:
            query = Prompt.ask("[cyan]Search for cards")
            if query.lower() in ("quit", "exit", "q"):
                break
            if not query.strip():
                continue
            await self.search(query)
            console.print()


def show_history(history: SearchHistory):
    if not len(history):
        console.print("[dim]No searches yet.[/dim]")
        return
    for i, entry in enumerate(history.items, 1):
        console.print(f"  {i}. {entry}")


def _split_csv(value: Optional[str]) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()] if value else []


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="offmeta-search",
        description="Translate natural-language Magic card searches into Scryfall syntax",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # Interactive mode
  %(prog)s "green ramp"                     # Single translation
  %(prog)s --cards "cheap red removal"      # Translate and list matching cards
  %(prog)s --colors R,G --types creature "big trample"
  %(prog)s --history                        # Show search history
        """
    )
    parser.add_argument("query", nargs="?", help="Search text (interactive mode when omitted)")
    parser.add_argument("--cards", action="store_true", help="Also fetch matching cards from Scryfall")
    parser.add_argument("--colors", help="Comma separated color filter, e.g. W,U or C")
    parser.add_argument("--types", help="Comma separated card type filter")
    parser.add_argument("--min-mv", type=int, default=0, help="Minimum mana value")
    parser.add_argument("--max-mv", type=int, default=16, help="Maximum mana value")
    parser.add_argument("--sort", default="name-asc", help="Sort, e.g. cmc-desc, price-asc")
    parser.add_argument("--no-cache", action="store_true", help="Bypass the translation cache")
    parser.add_argument("--history", action="store_true", help="Show search history and exit")
    parser.add_argument("--clear-history", action="store_true", help="Clear search history and exit")
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Logging level (default: %(default)s)")
    parser.add_argument("--version", action="version", version="OffMeta Search 1.0")
    return parser


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point"""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    history = SearchHistory()
    if args.clear_history:
        history.clear()
        console.print("[green]Search history cleared.[/green]")
        return
    if args.history:
        show_history(history)
        return

    filters = None
    if args.colors or args.types or args.min_mv or args.max_mv != 16 or args.sort != "name-asc":
        filters = FilterState(
            colors=_split_csv(args.colors),
            types=_split_csv(args.types),
            cmc_range=(args.min_mv, args.max_mv),
            sort_by=args.sort,
        )

    async def run_cli():
        try:
            cli = OffMetaCLI(show_cards=args.cards, filters=filters, history=history)
        except ValueError as e:
            console.print(f"[red]Configuration error: {e}[/red]")
            sys.exit(1)

        if args.query:
            result = await cli.search(args.query, bypass_cache=args.no_cache)
            if result is None and cli.handler.is_rate_limited():
                sys.exit(2)
        else:
            await cli.interactive()

    try:
        asyncio.run(run_cli())
    except KeyboardInterrupt:
        console.print("\n[yellow]Goodbye![/yellow]")
        sys.exit(0)


if __name__ == "__main__":
    main()

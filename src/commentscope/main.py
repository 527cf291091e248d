import json
import logging
from pathlib import Path
from typing import Annotated, Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from typer import Argument, BadParameter, Exit, Option, Typer

from .config import resolve_log_level
from .models import SourceContext, TextUnit
from .search import SearchOptions
from .service import CommentSearchEngine

app = Typer(help="Adaptive embedding cache and multi-strategy comment search.")
console = Console()

DbPathOption = Annotated[
    str | None,
    Option("--db-path", help="DuckDB store path (defaults to COMMENTSCOPE_DB_PATH)."),
]
ProviderOption = Annotated[
    str | None,
    Option("--provider", help="Embedding provider: gemini or local."),
]
CollectionOption = Annotated[
    str,
    Option("--collection", "-c", help="Collection id, e.g. a video id."),
]


@app.callback()
def configure(
    log_level: Annotated[
        str | None,
        Option("--log-level", help="Logging level (defaults to COMMENTSCOPE_LOG_LEVEL)."),
    ] = None,
) -> None:
    logging.basicConfig(
        level=resolve_log_level(log_level),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _open_engine(db_path: str | None, provider: str | None) -> CommentSearchEngine:
    try:
        return CommentSearchEngine.from_config(db_path=db_path, provider_name=provider)
    except ValueError as exc:
        console.print(f"[bold red]{exc}[/]")
        raise Exit(code=1) from exc


def _unit_from_record(record: dict[str, Any], line_no: int) -> TextUnit:
    text = record.get("text")
    if not isinstance(text, str):
        raise BadParameter(f"Line {line_no}: missing 'text' field.")
    raw_context = record.get("context")
    if not isinstance(raw_context, dict):
        raw_context = {
            key: value
            for key, value in record.items()
            if key not in {"id", "text", "author", "context"}
        }
    return TextUnit(
        id=str(record.get("id") or f"line-{line_no}"),
        text=text,
        context=SourceContext.from_dict(raw_context),
        author=record.get("author"),
    )


def _read_units(path: Path) -> list[TextUnit]:
    units: list[TextUnit] = []
    with path.open(encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise BadParameter(f"Line {line_no}: invalid JSON ({exc.msg}).") from exc
            if not isinstance(record, dict):
                raise BadParameter(f"Line {line_no}: expected a JSON object.")
            units.append(_unit_from_record(record, line_no))
    return units


@app.command()
def ingest(
    file: Annotated[Path, Argument(help="JSON lines file, one comment per line.", exists=True, dir_okay=False)],
    collection: CollectionOption,
    db_path: DbPathOption = None,
    provider: ProviderOption = None,
) -> None:
    """Decide, embed and store comments from a JSON lines file."""
    units = _read_units(file)
    engine = _open_engine(db_path, provider)
    try:
        with console.status(f"Processing {len(units)} comments..."):
            report = engine.process_batch(units, collection)
        outcomes: dict[str, int] = {}
        for result in report.results.values():
            outcomes[result.reason] = outcomes.get(result.reason, 0) + 1

        table = Table(title=f"Ingest into {collection}")
        table.add_column("Reason")
        table.add_column("Count", justify="right")
        for reason, count in sorted(outcomes.items()):
            table.add_row(reason, str(count))
        console.print(table)
        vectorized = sum(1 for r in report.results.values() if r.vectorized)
        console.print(
            f"[bold green]{vectorized}[/] vectorized, "
            f"[bold yellow]{len(report.deferred)}[/] deferred, "
            f"{len(units) - vectorized - len(report.deferred)} skipped."
        )
    finally:
        engine.close()


@app.command()
def search(
    query: Annotated[str, Argument(help="Search query.")],
    collection: CollectionOption,
    limit: Annotated[int, Option("--limit", "-n", help="Maximum results.")] = 10,
    strategy: Annotated[
        list[str] | None,
        Option("--strategy", "-s", help="Force a strategy (repeatable)."),
    ] = None,
    db_path: DbPathOption = None,
    provider: ProviderOption = None,
) -> None:
    """Search a collection and print ranked results."""
    engine = _open_engine(db_path, provider)
    try:
        options = SearchOptions(
            strategies=tuple(strategy) if strategy else None,
            max_results=limit,
        )
        try:
            response = engine.search(query, collection, options)
        except ValueError as exc:
            console.print(f"[bold red]{exc}[/]")
            raise Exit(code=1) from exc

        console.print(
            f"Intent: [bold]{response.intent.type}[/]  "
            f"Strategies: {', '.join(response.strategies_used)}  "
            f"Confidence: {response.confidence:.2f}"
        )
        if not response.results:
            console.print("[yellow]No matching comments.[/]")
            return
        table = Table(show_lines=False)
        table.add_column("#", justify="right")
        table.add_column("Score", justify="right")
        table.add_column("Author")
        table.add_column("Snippet")
        table.add_column("Matched by")
        for result in response.results:
            table.add_row(
                str(result.rank),
                f"{result.final_score:.3f}",
                result.candidate.entry.author or "-",
                result.snippet,
                "+".join(result.candidate.strategies),
            )
        console.print(table)
    finally:
        engine.close()


@app.command()
def decide(
    text: Annotated[str, Argument(help="Comment text to evaluate.")],
    context: Annotated[
        str | None,
        Option("--context", help='Source context as JSON, e.g. \'{"is_question": true}\'.'),
    ] = None,
    db_path: DbPathOption = None,
    provider: ProviderOption = None,
) -> None:
    """Show the embedding decision for a text without embedding it."""
    try:
        raw_context = json.loads(context) if context else {}
    except json.JSONDecodeError as exc:
        raise BadParameter(f"--context is not valid JSON: {exc.msg}") from exc
    engine = _open_engine(db_path, provider)
    try:
        decision = engine.decide(text, SourceContext.from_dict(raw_context))
        style = "bold green" if decision.should_embed else "bold yellow"
        console.print(
            Panel(
                json.dumps(decision.to_dict(), indent=2, default=str),
                title=f"{decision.action} ({decision.reason})",
                title_align="left",
                border_style=style,
            )
        )
    finally:
        engine.close()


@app.command()
def stats(
    collection: CollectionOption,
    db_path: DbPathOption = None,
    provider: ProviderOption = None,
) -> None:
    """Print collection, cache, quota and learning statistics."""
    engine = _open_engine(db_path, provider)
    try:
        console.print_json(json.dumps(engine.collection_stats(collection), default=str))
    finally:
        engine.close()


@app.command()
def adapt(
    db_path: DbPathOption = None,
    provider: ProviderOption = None,
) -> None:
    """Run one adaptation pass over the stored learning state."""
    engine = _open_engine(db_path, provider)
    try:
        report = engine.adapt()
        console.print_json(json.dumps(report.as_dict(), default=str))
    finally:
        engine.close()

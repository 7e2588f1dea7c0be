"""declreaper CLI - remove unreferenced declarations from C/C++ reduction inputs."""
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import typer
from rich.markup import escape
from rich.table import Table

from declreaper.analyzer.extractor import EmissionPolicy
from declreaper.analyzer.parser import LanguageParser
from declreaper.config import __version__, get_config
from declreaper.errors import InternalRewriteError, SelectionRangeError
from declreaper.reaper.candidates import Candidate, GroupCandidate, LeafCandidate
from declreaper.reaper.engine import UnreferencedDeclPass
from declreaper.reaper.rewriter import RewriteBuffer
from declreaper.utils.logger import configure_logging, sanitize_for_terminal
from declreaper.utils.safe_console import SafeConsole

app = typer.Typer(
    name="declreaper",
    help="Remove declarations that are unreferenced within the source code",
    add_completion=False
)
console = SafeConsole()
err_console = SafeConsole(stderr=True)

# Table cells bypass SafeConsole.print, so the mark is sanitized up front
USED_MARK = sanitize_for_terminal("✓")


def _version_callback(value: bool):
    if value:
        typer.echo(f"declreaper {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every propagation pass and edit"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True,
                                 help="Show version and exit"),
):
    """Analyze one translation unit and remove dead declarations by ordinal."""
    try:
        level = logging.DEBUG if verbose else get_config().log_level
    except ValueError as e:
        err_console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)
    configure_logging(level, console=err_console)


def build_pass(file_path: Path, language: Optional[str], all_at_once: bool,
               retain_external: bool, keep: Optional[List[str]],
               protect: Optional[List[str]]) -> Tuple[UnreferencedDeclPass, bytes]:
    """Shared setup for every command: read, resolve settings, analyze.

    Command-line values are merged with the environment configuration; a
    flag that is switched on always wins.

    Returns:
        Tuple of (pass, original source bytes)

    Raises:
        typer.Exit: If the input cannot be read or a setting is invalid
    """
    try:
        source = file_path.read_bytes()
    except OSError as e:
        err_console.print(f"[bold red]Error:[/bold red] Cannot read {escape(str(file_path))}: {escape(str(e))}")
        raise typer.Exit(1)

    language = language or LanguageParser.language_for(file_path) or 'cpp'

    try:
        config = get_config()
        policy = EmissionPolicy(
            required_names=set(config.required_names) | set(keep or []),
            retain_external=retain_external or config.retain_external,
        )
        reduction = UnreferencedDeclPass.from_source(
            source,
            language=language,
            policy=policy,
            protected_patterns=config.protected_patterns + list(protect or []),
            all_at_once=all_at_once or config.all_at_once,
        )
    except ValueError as e:
        err_console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)

    return reduction, source


def _candidate_rows(candidates: List[Candidate]) -> Iterator[Tuple[int, LeafCandidate]]:
    """Flatten candidates into (ordinal, leaf) rows; group members share an ordinal."""
    for ordinal, candidate in enumerate(candidates, start=1):
        if isinstance(candidate, GroupCandidate):
            for member in candidate.members:
                yield ordinal, member
        else:
            yield ordinal, candidate


FILE_ARGUMENT = typer.Argument(..., help="Source file (usually preprocessed) to analyze")
LANGUAGE_OPTION = typer.Option(None, "--language", "-l", help="Language (c, cpp); guessed from the extension by default")
ALL_AT_ONCE_OPTION = typer.Option(False, "--all-at-once", help="Remove every dead declaration as one instance")
RETAIN_EXTERNAL_OPTION = typer.Option(False, "--retain-external", help="Keep externally visible function definitions")
KEEP_OPTION = typer.Option(None, "--keep", "-k", help="Declaration name that must be kept (repeatable)")
PROTECT_OPTION = typer.Option(None, "--protect", "-p", help="Origin file pattern whose text is protected (repeatable)")


@app.command()
def count(
    file: Path = FILE_ARGUMENT,
    language: Optional[str] = LANGUAGE_OPTION,
    all_at_once: bool = ALL_AT_ONCE_OPTION,
    retain_external: bool = RETAIN_EXTERNAL_OPTION,
    keep: Optional[List[str]] = KEEP_OPTION,
    protect: Optional[List[str]] = PROTECT_OPTION,
):
    """Print the number of valid removal instances."""
    reduction, _ = build_pass(file, language, all_at_once, retain_external, keep, protect)
    typer.echo(reduction.query_count())


@app.command(name="list")
def list_candidates(
    file: Path = FILE_ARGUMENT,
    language: Optional[str] = LANGUAGE_OPTION,
    all_at_once: bool = ALL_AT_ONCE_OPTION,
    retain_external: bool = RETAIN_EXTERNAL_OPTION,
    keep: Optional[List[str]] = KEEP_OPTION,
    protect: Optional[List[str]] = PROTECT_OPTION,
):
    """Show every removal instance with its ordinal."""
    reduction, _ = build_pass(file, language, all_at_once, retain_external, keep, protect)
    candidates = reduction.candidates

    if not candidates:
        console.print("[green]✓ No unreferenced declarations found.[/green]")
        return

    table = Table(title=f"Removal Candidates ({len(candidates)})")
    table.add_column("#", justify="right", style="green")
    table.add_column("Kind", style="yellow")
    table.add_column("Name", style="cyan")
    table.add_column("Span", style="magenta")
    table.add_column("Used", justify="center")

    for ordinal, leaf in _candidate_rows(candidates):
        node = reduction.tree.node(leaf.handle)
        span = reduction.tree.full_span(leaf.handle)
        table.add_row(
            str(ordinal),
            node.kind.value,
            escape(node.qualified_name or node.name or "<anonymous>"),
            str(span) if span is not None else "-",
            USED_MARK if reduction.state.is_used(leaf.handle) else "",
        )

    console.print(table)


@app.command()
def reduce(
    file: Path = FILE_ARGUMENT,
    counter: int = typer.Option(..., "--counter", "-c", help="1-based ordinal of the instance to remove"),
    to_counter: Optional[int] = typer.Option(None, "--to-counter", "-t", help="Remove the range counter..to-counter"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result here instead of stdout"),
    in_place: bool = typer.Option(False, "--in-place", "-i", help="Overwrite the input file"),
    language: Optional[str] = LANGUAGE_OPTION,
    all_at_once: bool = ALL_AT_ONCE_OPTION,
    retain_external: bool = RETAIN_EXTERNAL_OPTION,
    keep: Optional[List[str]] = KEEP_OPTION,
    protect: Optional[List[str]] = PROTECT_OPTION,
):
    """Remove the selected instance(s) and write the rewritten source."""
    if output is not None and in_place:
        err_console.print("[bold red]Error:[/bold red] --output and --in-place are mutually exclusive")
        raise typer.Exit(1)

    reduction, source = build_pass(file, language, all_at_once, retain_external, keep, protect)
    buffer = RewriteBuffer(source)

    try:
        edits = reduction.select_and_apply(buffer, counter, to_counter)
    except SelectionRangeError as e:
        err_console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)
    except InternalRewriteError as e:
        err_console.print(f"[bold red]Internal error:[/bold red] {escape(str(e))}")
        for diagnostic in e.diagnostics:
            err_console.print(f"  {escape(str(diagnostic))}")
        raise typer.Exit(2)

    result = buffer.getvalue()
    target = file if in_place else output
    if target is None:
        typer.echo(result, nl=False)
    else:
        target.write_bytes(result)
        err_console.print(
            f"[green]✓ Wrote {escape(str(target))}[/green] "
            f"({edits} edit(s), {len(source) - len(result)} bytes removed)"
        )


if __name__ == "__main__":
    app()

"""Main CLI entry point for the fishing regulation extraction pipeline."""
import asyncio
import hashlib
import json
import signal
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from utils.logger import setup_logger
from ingestion.cleaner import find_special_regulations_section
from ingestion.entry_parser import EntryParser
from ingestion.models import RawDocument
from ingestion.pdf_splitter import PdfSplitter, SplitError
from ingestion.text_segmenter import TextSegmenter
from extraction.backend import AnthropicBackend
from extraction.checkpoint import ExtractionCheckpoint
from extraction.models import ExtractedRegulation, MergedExtractionResult
from extraction.regulation_extractor import RegulationExtractor
from pipeline.orchestrator import ExtractionPipeline
from population.models import PopulationResult
from population.populator import PopulationEngine
from storage.database import Database
from storage.entity_store import SQLiteEntityStore
import config

logger = setup_logger(__name__)
console = Console()


def compute_file_hash(file_path: Path) -> str:
    """Compute SHA256 hash of a file.

    Args:
        file_path: Path to file

    Returns:
        Hex digest of hash
    """
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(4096), b""):
            sha256_hash.update(byte_block)
    return sha256_hash.hexdigest()


def _load_document(pdf: Optional[str], text: Optional[str]) -> Optional[RawDocument]:
    if bool(pdf) == bool(text):
        console.print("[red]Error: pass exactly one of --pdf or --text[/red]")
        return None
    return RawDocument.from_path(pdf or text)


def _build_pipeline(concurrency: int, with_population: bool = False) -> ExtractionPipeline:
    extractor = RegulationExtractor(AnthropicBackend())
    engine = PopulationEngine(SQLiteEntityStore()) if with_population else None
    return ExtractionPipeline(extractor, population_engine=engine, concurrency=concurrency)


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    """Ctrl-C stops after the in-flight entry instead of killing the run."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable on this platform; Ctrl-C aborts immediately")


def _print_regulation(regulation: ExtractedRegulation) -> None:
    species = ", ".join(rule.species for rule in regulation.rules) or "general notes only"
    console.print(
        f"  [green]✓[/green] {regulation.name} ([dim]{regulation.locality}[/dim]) - "
        f"{species} [dim](confidence {regulation.confidence:.2f})[/dim]"
    )


def _print_extraction_summary(merged: MergedExtractionResult) -> None:
    table = Table(show_header=False)
    table.add_row("Status", f"[cyan]{merged.status.value}[/cyan]")
    table.add_row("Lakes Processed", str(merged.lakes_processed))
    table.add_row("Water Bodies", str(len(merged.regulations)))
    table.add_row("Species Rules", str(merged.regulations_extracted))
    table.add_row("Warnings", str(len(merged.warnings)))
    table.add_row("Merge Conflicts", str(len(merged.merge_warnings)))
    table.add_row("Elapsed", f"{merged.elapsed_seconds:.1f}s")
    console.print(table)

    for warning in merged.warnings[:10]:
        console.print(f"  [yellow]![/yellow] {warning}")
    if len(merged.warnings) > 10:
        console.print(f"  [dim]... and {len(merged.warnings) - 10} more warnings[/dim]")


def _print_population_summary(result: PopulationResult) -> None:
    table = Table(show_header=False)
    table.add_row("Run ID", f"[cyan]{result.run_id}[/cyan]")
    table.add_row("Status", result.status)
    table.add_row("Lakes Processed", str(result.lakes_processed))
    table.add_row("Water Bodies Created", str(result.water_bodies_created))
    table.add_row("Species Created", str(result.species_created))
    table.add_row("Regulations Created", str(result.regulations_created))
    table.add_row("Regulations Updated", str(result.regulations_updated))
    table.add_row("Regulations Unchanged", str(result.regulations_unchanged))
    table.add_row("Regulations Rejected", str(result.regulations_rejected))
    table.add_row("Errors", str(len(result.errors)))
    console.print(table)

    for reason in result.excluded:
        console.print(f"  [yellow]-[/yellow] Excluded {reason}")
    for error in result.errors:
        console.print(f"  [red]✗[/red] {error}")


@click.group()
def cli():
    """Fishing Regulation Extraction Pipeline"""
    pass


@cli.command()
@click.option('--pdf', required=True, type=click.Path(exists=True), help='Path to regulation PDF')
@click.option('--max-kb', default=config.MAX_CHUNK_KB, show_default=True, help='Maximum chunk size in KB')
@click.option('--out-dir', type=click.Path(), default=None, help='Write chunk PDFs to this directory')
def split(pdf, max_kb, out_dir):
    """Split an oversized PDF into page-aligned chunks."""
    console.print("\n[bold cyan]PDF Splitting[/bold cyan]\n")

    pdf_path = Path(pdf)
    splitter = PdfSplitter()
    try:
        result = splitter.split(pdf_path.read_bytes(), pdf_path.name, max_kb)
    except SplitError as e:
        console.print(f"[red]Error: {e}[/red]")
        return

    table = Table(title=f"Chunks - {pdf_path.name} ({result.total_pages} pages)")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("File")
    table.add_column("Pages", justify="right")
    table.add_column("Size (KB)", justify="right")
    for chunk in result.chunks:
        table.add_row(
            str(chunk.index),
            chunk.filename,
            f"{chunk.page_start}-{chunk.page_end}",
            f"{chunk.size_bytes / 1024:.1f}"
        )
    console.print(table)

    if not result.required:
        console.print("[green]Document is within the size limit, no splitting needed[/green]")
    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")

    if out_dir and result.required:
        out_path = Path(out_dir)
        out_path.mkdir(parents=True, exist_ok=True)
        for chunk in result.chunks:
            (out_path / chunk.filename).write_bytes(chunk.data)
        console.print(f"Chunks written to: [cyan]{out_path}[/cyan]")


@cli.command()
@click.option('--pdf', type=click.Path(exists=True), help='Path to regulation PDF')
@click.option('--text', type=click.Path(exists=True), help='Path to plain-text regulations')
def parse(pdf, text):
    """List the lake entries the parser finds, without calling the AI backend."""
    console.print("\n[bold cyan]Entry Parsing[/bold cyan]\n")

    document = _load_document(pdf, text)
    if document is None:
        return

    segmenter = TextSegmenter()
    if document.is_pdf:
        try:
            split_result = PdfSplitter().split(document.data, document.filename, config.MAX_CHUNK_KB)
        except SplitError as e:
            console.print(f"[red]Error: {e}[/red]")
            return
        text_chunks = [segmenter.extract(chunk) for chunk in split_result.chunks]
    else:
        text_chunks = [segmenter.from_text(0, document.data.decode("utf-8", errors="replace"))]

    full_text = "\n".join(tc.text for tc in text_chunks)
    section = find_special_regulations_section(full_text)
    if section is None:
        console.print("[yellow]No special regulations heading found, parsing the whole text[/yellow]")

    entries = EntryParser().parse(section or full_text)

    table = Table(title=f"Lake Entries - {document.filename}")
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Name")
    table.add_column("Locality")
    table.add_column("Text", style="dim")
    for i, entry in enumerate(entries, 1):
        preview = entry.raw_text if len(entry.raw_text) <= 80 else entry.raw_text[:77] + "..."
        table.add_row(str(i), entry.name, entry.locality, preview)
    console.print(table)
    console.print(f"\nFound {len(entries)} entries")


@cli.command()
@click.option('--pdf', type=click.Path(exists=True), help='Path to regulation PDF')
@click.option('--text', type=click.Path(exists=True), help='Path to plain-text regulations')
@click.option('--out', type=click.Path(), default=None, help='Write the merged result as JSON')
@click.option('--concurrency', default=config.CHUNK_CONCURRENCY, show_default=True, help='Chunks extracted at once')
@click.option('--resume/--no-resume', default=True, help='Resume from a checkpoint for this document')
def extract(pdf, text, out, concurrency, resume):
    """Stream AI extraction over a document and write the merged result."""
    console.print("\n[bold cyan]Regulation Extraction[/bold cyan]\n")

    if not config.ANTHROPIC_API_KEY:
        console.print("[red]Error: ANTHROPIC_API_KEY not set in environment[/red]")
        return

    document = _load_document(pdf, text)
    if document is None:
        return

    document_id = compute_file_hash(Path(pdf or text))
    checkpoint = ExtractionCheckpoint(document_id)
    if not resume:
        checkpoint.clear()

    pipeline = _build_pipeline(concurrency)
    console.print(f"Extracting with model: [cyan]{config.ANTHROPIC_MODEL}[/cyan]\n")

    async def _run() -> MergedExtractionResult:
        cancel_event = asyncio.Event()
        _install_cancel_handler(cancel_event)
        return await pipeline.process_document(
            document,
            on_entry_extracted=_print_regulation,
            cancel_event=cancel_event,
            checkpoint=checkpoint
        )

    try:
        merged = asyncio.run(_run())
    except SplitError as e:
        console.print(f"[red]Error: {e}[/red]")
        return

    if not merged.cancelled:
        checkpoint.clear()

    out_path = Path(out) if out else config.RESULTS_DIR / f"{Path(document.filename).stem}.json"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with open(out_path, 'w', encoding='utf-8') as f:
        f.write(merged.model_dump_json(indent=2))

    console.print(f"\n[green]✓ Extraction complete![/green]\n")
    _print_extraction_summary(merged)
    console.print(f"Document ID: [cyan]{document_id}[/cyan]")
    console.print(f"Exported to: [cyan]{out_path}[/cyan]")


@cli.command()
@click.option('--results', required=True, type=click.Path(exists=True), help='Merged result JSON from extract')
@click.option('--document-id', required=True, help='Source document ID')
@click.option('--year', default=config.REGULATION_YEAR, show_default=True, help='Regulation year')
def populate(results, document_id, year):
    """Populate the database from a merged extraction result."""
    console.print("\n[bold cyan]Database Population[/bold cyan]\n")

    with open(results, 'r', encoding='utf-8') as f:
        merged = MergedExtractionResult.model_validate(json.load(f))

    engine = PopulationEngine(SQLiteEntityStore())
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        task = progress.add_task(f"Populating {len(merged.regulations)} lakes...", total=None)
        result = asyncio.run(engine.populate(merged, document_id, year))
        progress.update(task, completed=True)

    console.print(f"\n[green]✓ Population complete![/green]\n")
    _print_population_summary(result)


@cli.command()
@click.option('--pdf', type=click.Path(exists=True), help='Path to regulation PDF')
@click.option('--text', type=click.Path(exists=True), help='Path to plain-text regulations')
@click.option('--year', default=config.REGULATION_YEAR, show_default=True, help='Regulation year')
@click.option('--concurrency', default=config.CHUNK_CONCURRENCY, show_default=True, help='Chunks extracted at once')
def run(pdf, text, year, concurrency):
    """Run complete pipeline: split + extract + merge + populate."""
    console.print("\n[bold cyan]Fishing Regulation Pipeline - Full Run[/bold cyan]\n")

    if not config.ANTHROPIC_API_KEY:
        console.print("[red]Error: ANTHROPIC_API_KEY not set in environment[/red]")
        return

    document = _load_document(pdf, text)
    if document is None:
        return

    document_id = compute_file_hash(Path(pdf or text))
    checkpoint = ExtractionCheckpoint(document_id)
    pipeline = _build_pipeline(concurrency, with_population=True)

    async def _run():
        cancel_event = asyncio.Event()
        _install_cancel_handler(cancel_event)
        return await pipeline.run(
            document,
            document_id,
            year,
            on_entry_extracted=_print_regulation,
            cancel_event=cancel_event,
            checkpoint=checkpoint
        )

    console.print("[bold]Step 1: Extracting regulations[/bold]\n")
    try:
        merged, population = asyncio.run(_run())
    except SplitError as e:
        console.print(f"[red]Error: {e}[/red]")
        return

    if not merged.cancelled:
        checkpoint.clear()

    console.print("\n[bold]Step 2: Summary[/bold]\n")
    _print_extraction_summary(merged)
    console.print()
    _print_population_summary(population)
    console.print("\n[bold green]✓ Pipeline Complete![/bold green]\n")


@cli.command()
@click.option('--year', default=None, type=int, help='Only show one regulation year')
def list_regulations(year):
    """List regulations stored in the database."""
    db = Database()
    rows = db.get_regulations(year)

    if not rows:
        console.print("[yellow]No regulations stored yet[/yellow]")
        return

    table = Table(title="Stored Regulations")
    table.add_column("Water Body", style="cyan")
    table.add_column("Species")
    table.add_column("Year", justify="right")
    table.add_column("Daily", justify="right")
    table.add_column("Min Size", justify="right")
    table.add_column("Review", style="dim")
    for row in rows:
        table.add_row(
            row['water_body_name'],
            row['species_name'],
            str(row['regulation_year']),
            "" if row['daily_limit'] is None else str(row['daily_limit']),
            "" if row['minimum_size_inches'] is None else f"{row['minimum_size_inches']:g}\"",
            "yes" if row['needs_review'] else ""
        )
    console.print(table)


if __name__ == '__main__':
    cli()

#!/usr/bin/env python3
"""
EPUB Translator - literary translation of EPUB books using AI.

Translates every text node of an EPUB package through any model supported
by LiteLLM, preserving markup, with bounded concurrency, a translation
cache and resume after interruption.
"""
import os
import sys
import signal
import asyncio
import logging
import traceback
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from epub_translator.cache import SqliteStore
from epub_translator.errors import (
    ArchiveFormatError,
    TranslationCancelledError,
    TranslationFailedError,
)
from epub_translator.logging_config import get_log_file_path, progress_logger, setup_logging
from epub_translator.pipeline import TranslationPipeline
from epub_translator.progress import STATUS_RATE_LIMITED, ProgressReporter, ProgressSnapshot
from epub_translator.translator import AVAILABLE_TAGS, DEFAULT_TAGS, TranslationClient, TranslationSettings


console = Console()


def validate_model_name(model: str) -> str:
    """
    Normalize a model name to its LiteLLM provider/model form.

    Args:
        model: Model name as given on the command line

    Returns:
        Normalized model name
    """
    known_models = {
        'gpt-4o': 'openai/gpt-4o',
        'gpt-4o-mini': 'openai/gpt-4o-mini',
        'gpt-4-turbo': 'openai/gpt-4-turbo',
        'claude-3-haiku': 'anthropic/claude-3-haiku',
        'claude-3.5-sonnet': 'anthropic/claude-3.5-sonnet',
        'gemini-flash-lite-latest': 'gemini/gemini-flash-lite-latest',
        'gemini-2.5-flash': 'gemini/gemini-2.5-flash',
        'gemini-2.5-pro': 'gemini/gemini-2.5-pro',
    }

    if '/' in model:
        if model.startswith('google/gemini'):
            return model.replace('google/gemini', 'gemini/gemini')
        return model

    return known_models.get(model, model)


def parse_tags(tags: str) -> list[str]:
    """
    Parse a comma-separated tag list.

    Raises:
        click.BadParameter: If a tag is not supported
    """
    parsed = [t.strip().lower() for t in tags.split(',') if t.strip()]
    unknown = [t for t in parsed if t not in AVAILABLE_TAGS]
    if unknown:
        raise click.BadParameter(
            f"unsupported tags: {', '.join(unknown)} (available: {', '.join(AVAILABLE_TAGS)})",
            param_hint='--tags'
        )
    if not parsed:
        raise click.BadParameter("at least one tag is required", param_hint='--tags')
    return parsed


class ProgressDisplay:
    """Real-time progress display driven by progress snapshots."""

    def __init__(self):
        self.console = Console()
        self.current_progress = None
        self.main_task = None

    def start_progress(self):
        self.current_progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("{task.fields[details]}"),
            console=self.console
        )
        self.main_task = self.current_progress.add_task(
            "[cyan]Translating...", total=100, details=""
        )
        self.current_progress.start()

    def update(self, snapshot: ProgressSnapshot):
        if not self.current_progress:
            return

        details = f"{snapshot.documents_done}/{snapshot.documents_total} docs"
        if snapshot.words_per_second:
            details += f" | {snapshot.words_per_second:.1f} w/s"
        if snapshot.eta_seconds:
            details += f" | ETA {int(snapshot.eta_seconds // 60)}m{int(snapshot.eta_seconds % 60):02d}s"

        description = "[yellow]Rate limited - waiting..." if snapshot.status == STATUS_RATE_LIMITED \
            else f"[cyan]{Path(snapshot.current_document).name or snapshot.status}"

        self.current_progress.update(
            self.main_task,
            completed=snapshot.percent_complete,
            description=description,
            details=details
        )

    def stop_progress(self):
        if self.current_progress:
            self.current_progress.stop()
            self.current_progress = None


def show_models():
    console.print("\n[bold]Available models:[/bold]")

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Provider", style="cyan")
    table.add_column("Model", style="green")
    table.add_column("Full name", style="yellow")

    for model_name in TranslationClient.list_available_models():
        provider, model = model_name.split('/', 1)
        table.add_row(provider, model, model_name)

    console.print(table)
    console.print("\n[dim]Use the full name with --model (provider/model)[/dim]")


@click.command()
@click.option('--input', '--in', 'input_file', type=click.Path(exists=True, dir_okay=False),
              help='Input EPUB file')
@click.option('--output', '--out', 'output_file', type=click.Path(dir_okay=False),
              help='Output EPUB file')
@click.option('--model', default=TranslationSettings.model,
              help='AI model (e.g. gemini/gemini-2.5-flash, anthropic/claude-3.5-sonnet)')
@click.option('--source-lang', default=TranslationSettings.source_language,
              help='Source language ("Automatic" to detect)')
@click.option('--target-lang', default=TranslationSettings.target_language,
              help='Target language (e.g. Turkish, English, Portuguese)')
@click.option('--temperature', default=TranslationSettings.temperature, type=float,
              help='Sampling temperature (overridden by the style analysis)')
@click.option('--tags', default=','.join(DEFAULT_TAGS),
              help='Comma-separated elements whose text is translated')
@click.option('--api-key', envvar='API_KEY',
              help='Provider API key (or set the API_KEY environment variable)')
@click.option('--max-concurrency', default=TranslationSettings.max_concurrency, type=click.IntRange(min=1),
              help='Maximum simultaneous translation requests')
@click.option('--cooldown', default=TranslationSettings.cooldown_seconds, type=click.FloatRange(min=0),
              help='Seconds to pause after a rate limit')
@click.option('--store', 'store_path', type=click.Path(dir_okay=False),
              help='SQLite file for the cache and the resume record (default: <output>.translator.db)')
@click.option('--resume/--no-resume', default=True,
              help='Resume an interrupted translation when possible')
@click.option('--log-level', default='INFO', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Logging level')
@click.option('--log-file', type=click.Path(),
              help='Detailed log file (generated automatically when omitted)')
@click.option('--clean-terminal/--verbose-terminal', default=True,
              help='Only essential messages in the terminal vs. verbose')
@click.option('--test-connection', is_flag=True,
              help='Only test the connection with the model and exit')
@click.option('--list-models', is_flag=True,
              help='List common models and exit')
def main(
    input_file: Optional[str],
    output_file: Optional[str],
    model: str,
    source_lang: str,
    target_lang: str,
    temperature: float,
    tags: str,
    api_key: Optional[str],
    max_concurrency: int,
    cooldown: float,
    store_path: Optional[str],
    resume: bool,
    log_level: str,
    log_file: Optional[str],
    clean_terminal: bool,
    test_connection: bool,
    list_models: bool
):
    """
    EPUB Translator - translates EPUB books using AI.

    Examples:

    \b
    # Basic translation
    python main.py --input book.epub --output book_tr.epub --api-key your_key

    \b
    # Other model and languages
    python main.py --input book.epub --output book_pt.epub \\
        --model anthropic/claude-3.5-sonnet --source-lang English \\
        --target-lang Portuguese --max-concurrency 8

    \b
    # Connection test
    python main.py --test-connection --model openai/gpt-4o --api-key your_key
    """
    if not log_file:
        log_file = get_log_file_path()

    setup_logging(
        log_level=log_level,
        log_file=log_file,
        clean_terminal=clean_terminal
    )

    if list_models:
        show_models()
        return

    settings = TranslationSettings(
        model=validate_model_name(model),
        source_language=source_lang,
        target_language=target_lang,
        temperature=temperature,
        target_tags=parse_tags(tags),
        max_concurrency=max_concurrency,
        cooldown_seconds=cooldown
    )

    if test_connection:
        console.print(f"\n[yellow]Testing connection with {settings.model}...[/yellow]")

        translator = TranslationClient(settings, api_key)
        success, message = asyncio.run(translator.test_connection())

        if not success:
            console.print(f"✗ [red]{message}[/red]")
            sys.exit(1)

        console.print(f"✓ [green]{message}[/green]")
        info = translator.get_model_info()
        panel_content = f"""[bold]Model:[/bold] {info['model']}
[bold]Source language:[/bold] {info['source_language']}
[bold]Target language:[/bold] {info['target_language']}"""
        console.print(Panel(panel_content, title="Model configuration", border_style="green"))
        return

    if not input_file:
        console.print("✗ [red]An input file is required. Use --input[/red]")
        sys.exit(1)

    if not output_file:
        console.print("✗ [red]An output file is required. Use --output[/red]")
        sys.exit(1)

    if not api_key:
        console.print("✗ [red]An API key is required. Use --api-key or set API_KEY[/red]")
        sys.exit(1)

    exit_code = asyncio.run(translate_book(
        input_file=input_file,
        output_file=output_file,
        settings=settings,
        api_key=api_key,
        store_path=store_path or f"{output_file}.translator.db",
        resume=resume,
        log_file=log_file
    ))
    if exit_code:
        sys.exit(exit_code)


async def translate_book(
    input_file: str,
    output_file: str,
    settings: TranslationSettings,
    api_key: Optional[str],
    store_path: str,
    resume: bool,
    log_file: Optional[str] = None
) -> int:
    """Run one translation; returns the process exit code."""
    logger = logging.getLogger(__name__)

    console.print("\n[bold blue]🚀 Starting EPUB Translator[/bold blue]")
    logger.info("========== TRANSLATION STARTED ==========")
    logger.info(f"Input file: {input_file}")
    logger.info(f"Output file: {output_file}")
    logger.info(f"Model: {settings.model}")
    logger.info(f"Languages: {settings.source_language} -> {settings.target_language}")
    logger.info(f"Tags: {', '.join(settings.target_tags)}")
    logger.info(f"Max concurrency: {settings.max_concurrency}, cooldown: {settings.cooldown_seconds}s")
    logger.info(f"Resume: {resume}, store: {store_path}")

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
    except NotImplementedError:
        # Signal handlers are unavailable on this platform; Ctrl+C raises KeyboardInterrupt
        pass

    progress_display = ProgressDisplay()
    reporter = ProgressReporter(log_window=settings.log_window)
    reporter.subscribe(progress_display.update)

    store = SqliteStore(store_path)
    pipeline = TranslationPipeline(
        settings=settings,
        service=TranslationClient(settings, api_key),
        store=store,
        reporter=reporter,
        cancel_event=cancel_event
    )

    try:
        data = Path(input_file).read_bytes()
        progress_display.start_progress()
        result = await pipeline.run(data, os.path.basename(input_file), resume=resume)
        progress_display.stop_progress()

        Path(output_file).parent.mkdir(parents=True, exist_ok=True)
        Path(output_file).write_bytes(result.data)
        pipeline.finish()

    except TranslationCancelledError:
        progress_display.stop_progress()
        logger.warning("Translation cancelled by the user")
        console.print("\n[yellow]⏸️ Translation cancelled[/yellow]")
        console.print(f"💾 [cyan]Progress saved in: {store_path}[/cyan]")
        console.print("🔄 [cyan]Run the same command again to resume[/cyan]")
        return 130

    except ArchiveFormatError as e:
        progress_display.stop_progress()
        logger.error(f"Invalid EPUB: {e}")
        console.print(f"\n✗ [red]Invalid EPUB: {e}[/red]")
        return 1

    except TranslationFailedError as e:
        progress_display.stop_progress()
        progress_logger.log_error("Translation", str(e))
        console.print(f"\n✗ [red]Translation failed: {e}[/red]")
        console.print(f"💾 [cyan]Progress saved in: {store_path}[/cyan]")
        return 1

    except Exception as e:
        progress_display.stop_progress()
        logger.error(f"Fatal error: {e}")
        logger.debug(f"Traceback: {traceback.format_exc()}")
        console.print(f"\n✗ [red]Fatal error: {e}[/red]")
        return 1

    finally:
        store.close()

    stats = result.stats
    snapshot = reporter.last_snapshot
    words_per_second = snapshot.words_per_second if snapshot else 0.0

    console.print("\n[bold green]✅ Translation completed![/bold green]")
    stats_content = f"""[bold]Total time:[/bold] {stats.total_time:.1f}s
[bold]Documents:[/bold] {stats.documents_processed} ({stats.documents_rewritten} rewritten)
[bold]Nodes translated:[/bold] {stats.nodes_translated}
[bold]Nodes from cache:[/bold] {stats.nodes_cached}
[bold]Nodes from resume record:[/bold] {stats.nodes_from_record}
[bold]Nodes skipped:[/bold] {stats.nodes_skipped}
[bold]Repairs:[/bold] {stats.repairs}
[bold]Rate-limit pauses:[/bold] {stats.rate_limit_waits}
[bold]Words/s:[/bold] {words_per_second:.1f}
[bold]Tokens:[/bold] {result.token_usage.get('total_tokens', 0) + result.token_usage.get('analysis_tokens', 0)}"""
    console.print(Panel(stats_content, title="Statistics", border_style="green"))

    console.print(f"\n📄 [green]Translated book saved to: {output_file}[/green]")
    if log_file:
        console.print(f"📊 [blue]Detailed log in: {log_file}[/blue]")

    progress_logger.log_completion(stats.total_time, stats.documents_processed, stats.nodes_translated)
    progress_logger.log_stats(stats.to_dict())
    return 0


if __name__ == '__main__':
    main()

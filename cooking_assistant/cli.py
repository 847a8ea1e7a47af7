"""
Command-line interface for the cooking assistant.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="cooking-assistant",
    help="Hands-free voice control for cooking",
    no_args_is_help=True,
)

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(config_file: Optional[Path]):
    from cooking_assistant.config import Config, get_config, set_config

    if config_file is None:
        return get_config()
    if not config_file.exists():
        console.print(f"[red]Error: Config file not found: {config_file}[/red]")
        raise typer.Exit(1)
    config = Config.from_yaml(config_file)
    set_config(config)
    return config


@app.command()
def cook(
    recipe_file: Optional[Path] = typer.Option(None, "--recipe", "-r", help="Recipe YAML file (default: built-in sample)"),
    script: Optional[Path] = typer.Option(None, "--script", "-s", help="Transcript script (default: stdin)"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config preset"),
    speech: Optional[str] = typer.Option(None, "--speech", help="Answer speech output (command or null)"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Cook a recipe hands-free, driven by a transcript script or stdin."""
    from cooking_assistant.recipe import SAMPLE_RECIPE, load_recipe

    config = _load_config(config_file)
    _setup_logging(verbose or config.verbose)

    if speech is not None:
        if speech not in ("command", "null"):
            console.print(f"[red]Error: Unknown speech output: {speech}[/red]")
            raise typer.Exit(1)
        config.speech.backend = speech

    if recipe_file is not None:
        if not recipe_file.exists():
            console.print(f"[red]Error: File not found: {recipe_file}[/red]")
            raise typer.Exit(1)
        recipe = load_recipe(recipe_file)
    else:
        recipe = SAMPLE_RECIPE

    if script is not None and not script.exists():
        console.print(f"[red]Error: File not found: {script}[/red]")
        raise typer.Exit(1)
    stream = open(script) if script is not None else sys.stdin
    try:
        _run_cooking(config, recipe, stream, verbose)
    finally:
        if script is not None:
            stream.close()


def _run_cooking(config, recipe, stream, verbose: bool) -> None:
    from cooking_assistant.cooking import CookingSession
    from cooking_assistant.qa.client import QAClient
    from cooking_assistant.speech.output import create_speaker
    from cooking_assistant.voice.controller import VoiceSessionController
    from cooking_assistant.voice.source import LineTranscriptSource
    from cooking_assistant.voice.types import (
        CommandDetected,
        ErrorReported,
        ListeningChanged,
        QueryDetected,
    )

    qa_client = QAClient.from_config(config.qa)
    controller = None
    session = None
    try:
        if not qa_client.is_configured:
            console.print("[yellow]Q&A disabled: set WORKER_BASE_URL to answer questions[/yellow]")

        source = LineTranscriptSource(stream, tick_interval=config.voice.tick_interval_s)
        controller = VoiceSessionController(source, config=config.voice)
        speaker = create_speaker(config.speech)

        def on_voice_event(event) -> None:
            if isinstance(event, CommandDetected):
                console.print(f"[cyan]Command: {event.command.value}[/cyan]")
            elif isinstance(event, QueryDetected):
                console.print(f"[magenta]Question: {event.text}[/magenta]")
            elif isinstance(event, ErrorReported):
                console.print(f"[red]Error: {event.message}[/red]")
            elif isinstance(event, ListeningChanged) and verbose:
                state = "listening" if event.is_listening else f"paused ({event.reason.value})"
                console.print(f"[dim]Voice {state}[/dim]")

        shown = {"index": None, "answer": None, "error": None}

        def on_change(session: CookingSession) -> None:
            if session.current_index != shown["index"]:
                shown["index"] = session.current_index
                console.print(f"[bold]{session.step_label}[/bold]: {session.current_step.text}")
            if session.answer_text and session.answer_text != shown["answer"]:
                shown["answer"] = session.answer_text
                console.print(f"[green]Answer: {session.answer_text}[/green]")
            if session.answer_error and session.answer_error != shown["error"]:
                shown["error"] = session.answer_error
                console.print(f"[red]Error: {session.answer_error}[/red]")

        controller.subscribe(on_voice_event)
        session = CookingSession(recipe, controller, qa_client, speaker, on_change=on_change)

        console.print(f"\n[bold]{recipe.title}[/bold]")
        if recipe.summary:
            console.print(f"[dim]{recipe.summary}[/dim]")
        on_change(session)
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

        session.start()
        while not source.exhausted.wait(0.2):
            pass
        # Let trailing speech time out, then wait for in-flight answers
        time.sleep(config.voice.inactivity_timeout_s + config.voice.tick_interval_s * 2)
        controller.flush()
        deadline = time.monotonic() + config.qa.timeout_s
        while (session.is_answering or speaker.is_speaking) and time.monotonic() < deadline:
            time.sleep(0.2)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")
    finally:
        if session is not None:
            session.close()
        if controller is not None:
            controller.shutdown()
        qa_client.close()


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to ask"),
    context: Optional[str] = typer.Option(None, "--context", help="Context, e.g. the recipe title"),
    base_url: Optional[str] = typer.Option(None, "--base-url", help="Q&A service URL (default: WORKER_BASE_URL)"),
):
    """Ask the Q&A service one question."""
    from cooking_assistant.config import get_config
    from cooking_assistant.errors import AnsweringServiceError
    from cooking_assistant.qa.client import QAClient

    config = get_config()
    client = QAClient(base_url or config.qa.worker_base_url, timeout=config.qa.timeout_s)
    try:
        answer = client.answer(question, context=context)
    except AnsweringServiceError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    finally:
        client.close()

    console.print(answer)


@app.command()
def classify(
    text: str = typer.Argument(..., help="Transcript fragment"),
):
    """Show how a transcript fragment is classified."""
    from cooking_assistant.voice.classifier import classify as classify_text

    result = classify_text(text)

    table = Table()
    table.add_column("Property")
    table.add_column("Value")
    table.add_row("Question-like", "Yes" if result.is_question else "No")
    table.add_row("Command-like", "Yes" if result.is_command_like else "No")
    table.add_row("Command", result.command.value if result.command else "-")
    table.add_row("Actionable", result.actionable_command.value if result.actionable_command else "-")
    console.print(table)


@app.command()
def config(
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config preset"),
):
    """Print the effective configuration."""
    cfg = _load_config(config_file)
    console.print_json(cfg.model_dump_json())


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()

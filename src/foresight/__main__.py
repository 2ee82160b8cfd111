"""CLI entry point for Foresight."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path

import click

from foresight import __version__
from foresight.config import Config, ConfigError, apply_env_overrides, load_config
from foresight.models.capabilities import CapabilityRegistry
from foresight.prediction.context import ContextCollector
from foresight.prediction.controller import PredictionService
from foresight.prediction.prompt import PromptBuilder
from foresight.prediction.types import (
    BufferSnapshot,
    CursorPosition,
    EditPrediction,
    PredictionFailure,
)

_LANGUAGES = {
    ".py": "Python",
    ".rs": "Rust",
    ".js": "JavaScript",
    ".ts": "TypeScript",
    ".go": "Go",
    ".c": "C",
    ".cpp": "C++",
    ".java": "Java",
    ".rb": "Ruby",
    ".lua": "Lua",
    ".md": "Markdown",
}


def _read_snapshot(path: Path, language: str | None, tab_size: int) -> BufferSnapshot:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        click.echo(f"Cannot read {path}: {e}", err=True)
        sys.exit(1)
    return BufferSnapshot(
        buffer_id=str(path),
        text=text,
        language=language or _LANGUAGES.get(path.suffix.lower(), "unknown"),
        file_path=path.as_posix(),
        tab_size=tab_size,
    )


def _cursor(snapshot: BufferSnapshot, line: int | None, column: int | None) -> CursorPosition:
    """Convert 1-based CLI coordinates; missing values mean end of file/line."""
    lines = snapshot.text.split("\n")
    row = (line - 1) if line else len(lines) - 1
    row = max(0, min(row, len(lines) - 1))
    col = (column - 1) if column else len(lines[row])
    return CursorPosition(line=row, column=max(0, col))


def _format_prompt(prompt) -> str:
    if isinstance(prompt, str):
        return prompt
    blocks = [f"[{message.role}]\n{message.content}" for message in prompt]
    return "\n\n".join(blocks)


_position_options = [
    click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path)),
    click.option("--line", "-l", type=int, default=None, help="1-based cursor line."),
    click.option("--column", "-c", type=int, default=None, help="1-based cursor column."),
    click.option("--language", default=None, help="Override the detected language."),
    click.option("--tab-size", type=int, default=4, show_default=True),
]


def _with_position(func):
    for decorator in reversed(_position_options):
        func = decorator(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="foresight")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to foresight.toml configuration file.",
)
@click.option("--model", "-m", default=None, help="Model identifier (overrides config and env).")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Path | None,
    model: str | None,
    verbose: bool,
) -> None:
    """Foresight: cursor-anchored code completion from a local model server."""
    ctx.ensure_object(dict)
    try:
        config = apply_env_overrides(load_config(config_path))
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    if model:
        config = dataclasses.replace(
            config, model=dataclasses.replace(config.model, name=model),
        )

    logging.basicConfig(
        level=logging.DEBUG if verbose else config.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj["config"] = config


@cli.command()
@click.argument("model")
@click.pass_context
def capabilities(ctx: click.Context, model: str) -> None:
    """Show the resolved capabilities for MODEL."""
    config: Config = ctx.obj["config"]
    caps = CapabilityRegistry(config.capabilities).resolve(model)
    click.echo(json.dumps(dataclasses.asdict(caps), indent=2))


@cli.command()
@_with_position
@click.pass_context
def prompt(
    ctx: click.Context,
    file: Path,
    line: int | None,
    column: int | None,
    language: str | None,
    tab_size: int,
) -> None:
    """Print the prompt that would be sent for a cursor in FILE."""
    config: Config = ctx.obj["config"]
    if not config.model.enabled:
        click.echo("No model configured. Set [model] name, OLLAMA_MODEL or --model.", err=True)
        sys.exit(1)
    snapshot = _read_snapshot(file, language, tab_size)
    cursor = _cursor(snapshot, line, column)
    caps = CapabilityRegistry(config.capabilities).resolve(config.model.name)
    context = ContextCollector(config.prediction).collect(snapshot, cursor, caps)
    rendered = PromptBuilder(config.prediction, config.fim_templates).build(context, caps)
    click.echo(_format_prompt(rendered))


@cli.command()
@_with_position
@click.pass_context
def predict(
    ctx: click.Context,
    file: Path,
    line: int | None,
    column: int | None,
    language: str | None,
    tab_size: int,
) -> None:
    """Run one prediction for a cursor in FILE and print the inserted text."""
    config: Config = ctx.obj["config"]
    if not config.model.enabled:
        click.echo("No model configured. Set [model] name, OLLAMA_MODEL or --model.", err=True)
        sys.exit(1)
    snapshot = _read_snapshot(file, language, tab_size)
    cursor = _cursor(snapshot, line, column)

    prediction, failure = asyncio.run(_predict(config, snapshot, cursor))
    if failure is not None:
        click.echo(f"Prediction failed ({failure.kind.value}): {failure.message}", err=True)
        sys.exit(1)
    if prediction is None:
        click.echo("No prediction.", err=True)
        return
    click.echo(prediction.inserted_text)


async def _predict(
    config: Config,
    snapshot: BufferSnapshot,
    cursor: CursorPosition,
) -> tuple[EditPrediction | None, PredictionFailure | None]:
    ready: list[EditPrediction] = []
    failed: list[PredictionFailure] = []
    service = PredictionService(config, on_ready=ready.append, on_failed=failed.append)
    try:
        session = service.request_prediction(snapshot, cursor, debounce=False)
        await session.wait_idle()
    finally:
        await service.close()
    return (ready[0] if ready else None), (failed[0] if failed else None)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()

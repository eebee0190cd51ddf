"""
CLI interface for the ETL pipeline framework.

Provides commands to run a pipeline from its configuration file, validate a
configuration and scaffold new pipelines.
"""

import asyncio
import signal
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from core.exceptions import CancellationError, ConfigError, PipelineFailedError
from core.logging import setup_logging
from etl import __version__
from etl.base import RunResult
from etl.config_parser import load_config
from etl.factory import build_for_config_path
from etl.orchestrator import Orchestrator
from etl.scaffold import PipelineGenerator


def _load_env(env_file: Optional[str], config_path: str) -> None:
    """Load a .env file so ${VAR} placeholders can be resolved."""
    if env_file:
        load_dotenv(env_file, override=False)
        return
    for candidate in (Path(config_path).parent / ".env", Path.cwd() / ".env"):
        if candidate.is_file():
            load_dotenv(candidate, override=False)
            return


async def execute_with_signals(orchestrator: Orchestrator) -> RunResult:
    """Run the orchestrator with SIGINT/SIGTERM mapped to a stop request."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not available on this platform or outside the main thread
            pass
    try:
        return await orchestrator.execute(stop_event)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


@click.group()
@click.version_option(version=__version__, prog_name="etl-pipeline")
@click.option("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, ...)")
def main(log_level):
    """
    etl-pipeline - sharded relational ETL runner.

    Extracts from SQL shards, transforms, and upserts into a sink database.
    """
    setup_logging(log_level)


@main.command("run")
@click.option("--config", "-c", "config_path", required=True, type=click.Path(dir_okay=False),
              help="Pipeline configuration file")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False),
              help=".env file with values for ${VAR} placeholders")
def run_command(config_path: str, env_file: Optional[str]):
    """Run a pipeline once."""
    _load_env(env_file, config_path)

    try:
        config = load_config(config_path)
        orchestrator = build_for_config_path(config_path, config)
    except ConfigError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        raise SystemExit(2)

    try:
        result = asyncio.run(execute_with_signals(orchestrator))
    except PipelineFailedError as e:
        click.echo(
            f"✗ {config.name} failed after {e.attempts} attempts: {e.last_error}",
            err=True
        )
        raise SystemExit(1)
    except CancellationError as e:
        click.echo(f"✗ {config.name} stopped: {e.message}", err=True)
        raise SystemExit(1)
    except ConfigError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        raise SystemExit(2)

    click.echo(
        f"✓ {config.name} completed: {result.records_loaded} records loaded, "
        f"{result.records_failed} failed ({result.attempts} attempt(s))"
    )


@main.command("validate")
@click.option("--config", "-c", "config_path", required=True, type=click.Path(dir_okay=False),
              help="Pipeline configuration file")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False))
def validate_command(config_path: str, env_file: Optional[str]):
    """Check a pipeline configuration without running it."""
    _load_env(env_file, config_path)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        click.echo(f"✗ Configuration validation failed: {e}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Configuration for {config.name} is valid")


@main.command("generate")
@click.option("--name", required=True, help="Name of the pipeline to generate")
@click.option("--output-dir", default=".", type=click.Path(file_okay=False),
              help="Project root that holds the pipelines/ directory")
@click.option("--force", is_flag=True, help="Overwrite an existing pipeline directory")
def generate_command(name: str, output_dir: str, force: bool):
    """Scaffold a new pipeline."""
    try:
        created = PipelineGenerator(name, output_dir).generate(force=force)
    except (ConfigError, FileExistsError) as e:
        click.echo(f"✗ Failed to generate pipeline: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ Successfully generated pipeline: {name}")
    for path in created:
        click.echo(f"  {path}")


if __name__ == "__main__":
    main()

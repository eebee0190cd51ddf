"""
Script to run every pipeline found under pipelines/*/config.yaml
"""

import asyncio
import sys
import os
import logging
from pathlib import Path

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from dotenv import load_dotenv

from core.exceptions import ETLException
from core.logging import setup_logging
from etl.cli import execute_with_signals
from etl.config_parser import load_config
from etl.factory import build_for_config_path

logger = logging.getLogger(__name__)

PIPELINES_DIR = Path(os.getcwd()) / "pipelines"


async def run_all(pipelines_dir: Path = PIPELINES_DIR) -> int:
    """Run each configured pipeline in turn; returns the number that failed."""
    configs = sorted(pipelines_dir.glob("*/config.yaml"))
    if not configs:
        logger.warning(f"No pipeline configurations found under {pipelines_dir}. Skipping ETL.")
        return 0

    failed = 0
    for config_path in configs:
        load_dotenv(config_path.parent / ".env", override=False)
        try:
            config = load_config(config_path)
            logger.info(f"Running pipeline: {config.name}")
            result = await execute_with_signals(build_for_config_path(config_path, config))
            logger.info(
                f"Pipeline {config.name} completed: "
                f"Loaded={result.records_loaded}, Failed={result.records_failed}, "
                f"Attempts={result.attempts}"
            )
        except ETLException as e:
            logger.error(f"Pipeline {config_path.parent.name} failed: {e}")
            failed += 1
            continue

    logger.info("All pipelines completed")
    return failed


if __name__ == "__main__":
    setup_logging()
    sys.exit(1 if asyncio.run(run_all()) else 0)

"""
Create the login analytics sink tables from the ORM models
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from dotenv import load_dotenv

from core.database import build_url, create_engine, resolve_driver
from core.logging import setup_logging
from etl.config_parser import load_config
from models.base import Base
# Import all models to ensure they are registered
from models.user_connection import UserConnectionHistory, UserConnectionLog  # noqa: F401
from pipelines.login_analytics.pipeline import CONFIG_PATH, PIPELINE_DIR

logger = logging.getLogger(__name__)


async def init_database(config_path=CONFIG_PATH):
    config = load_config(config_path)
    sink = config.sink

    logger.info(f"Connecting to sink database {sink.host}/{sink.database}...")
    url = build_url(
        resolve_driver(sink.type, sink.driver), sink.host, sink.port, sink.database,
        username=sink.username, password=sink.password, options=sink.options
    )
    engine = create_engine(url)

    try:
        async with engine.begin() as conn:
            logger.info("Creating tables...")
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created successfully.")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    load_dotenv(PIPELINE_DIR / ".env", override=False)
    asyncio.run(init_database(sys.argv[1] if len(sys.argv) > 1 else CONFIG_PATH))

"""
File templates for new pipeline scaffolds.

Templates use ``string.Template`` placeholders (``$name``, ``$module``,
``$class_prefix``). ``${VAR}`` environment placeholders in the config
template are left for the config parser.
"""

PIPELINE_TEMPLATE = '''"""
$title ETL pipeline
"""

import asyncio
import logging
import sys
from pathlib import Path

from core.logging import setup_logging
from etl.base import Record, StreamTransformer
from etl.cli import execute_with_signals
from etl.config_parser import load_config
from etl.extractors.sql_extractor import ShardedSQLExtractor
from etl.loaders.postgres_loader import PostgresUpsertLoader
from etl.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent / "config.yaml"


class ${class_prefix}Extractor(ShardedSQLExtractor):
    record_kind = "$module"

    def row_to_record(self, row, shard, table):
        # TODO: map source columns for $name
        return Record(kind=self.record_kind, data=row, source=table, shard=shard.index)


class ${class_prefix}Transformer(StreamTransformer):
    accepts = "$module"

    def transform_record(self, record):
        # TODO: reshape $name records
        return record


def build_pipeline(config) -> Orchestrator:
    return Orchestrator(
        config,
        ${class_prefix}Extractor(),
        ${class_prefix}Transformer(),
        PostgresUpsertLoader(),
    )


async def main() -> int:
    setup_logging()
    try:
        config = load_config(CONFIG_PATH)
        result = await execute_with_signals(build_pipeline(config))
    except Exception as e:
        logger.error(f"Pipeline execution failed: {e}")
        return 1
    logger.info(f"Loaded {result.records_loaded} records ({result.records_failed} failed)")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
'''

CONFIG_TEMPLATE = '''# Pipeline Configuration
pipeline:
  name: "$name"
  description: "ETL pipeline for $name"

  # Number of times to retry a failed pipeline execution
  retries: 3

  # Time to wait between retry attempts. Examples: "5s", "1m", "2m30s"
  retry_delay: "5s"
  max_retry_delay: "15m"
  exponential_backoff: true

  # Stop retrying once the whole execution has taken this long
  timeout: "1h"

  # Abort the attempt on the first row-level error instead of counting it
  abort_on_row_error: false

# Source Database Configuration (SQL Server shards)
source:
  type: "sqlserver"
  servers:
    - "$${SQLSERVER_SHARD1_HOST}:$${SQLSERVER_SHARD1_PORT}"
    - "$${SQLSERVER_SHARD2_HOST}:$${SQLSERVER_SHARD2_PORT}"
  database: "$${SOURCE_DB_NAME}"
  username: "$${SOURCE_DB_USER}"
  password: "$${SOURCE_DB_PASSWORD}"
  table: "source_table"

# Sink Database Configuration (PostgreSQL)
sink:
  type: "postgres"
  host: "$${POSTGRES_HOST}"
  port: "$${POSTGRES_PORT}"
  database: "$${SINK_DB_NAME}"
  username: "$${SINK_DB_USER}"
  password: "$${SINK_DB_PASSWORD}"
  table: "sink_table"
  key_columns: ["id"]

# Optional column transformations
transformations: []
'''

README_TEMPLATE = '''# $title ETL Pipeline

Generated pipeline that extracts rows from SQL Server shards and upserts
them into PostgreSQL.

## Structure

- `pipeline.py`: extractor, transformer and entry point
- `config.yaml`: pipeline configuration
- `.env`: connection settings referenced from `config.yaml`

## Running the Pipeline

```bash
etl-pipeline validate --config pipelines/$module/config.yaml
etl-pipeline run --config pipelines/$module/config.yaml --env-file pipelines/$module/.env
```

or with the custom components in `pipeline.py`:

```bash
python -m pipelines.$module.pipeline
```

## Customization

1. Map source columns in `${class_prefix}Extractor.row_to_record()`
2. Reshape records in `${class_prefix}Transformer.transform_record()`
3. Set `sink.key_columns` to the natural key of the sink table

## Error Handling

- Whole-run retries with backoff (`pipeline.retries`, `pipeline.retry_delay`)
- Row-level errors are counted unless `abort_on_row_error` is set
- Ctrl+C stops the current attempt and releases all connections
'''

ENV_TEMPLATE = '''# Database Configuration - Source (SQL Server Shards)
SQLSERVER_SHARD1_HOST=localhost
SQLSERVER_SHARD1_PORT=1433
SQLSERVER_SHARD2_HOST=localhost
SQLSERVER_SHARD2_PORT=1434
SOURCE_DB_NAME=my_source_db
SOURCE_DB_USER=sa
SOURCE_DB_PASSWORD=

# Database Configuration - Sink (PostgreSQL)
POSTGRES_HOST=localhost
POSTGRES_PORT=5432
SINK_DB_NAME=my_sink_db
SINK_DB_USER=etl_user
SINK_DB_PASSWORD=
'''
